"""Commented configuration file printed by ``--print-default-config``."""

DEFAULT_CONFIG = """\
# pgvault configuration file

# PostgreSQL binaries path. Leave empty to search $PATH
bin_directory =

# Where to store the dumps and other files. It can include the
# {dbname} keyword that will be replaced by the name of the database
# being dumped.
backup_directory = /var/backups/postgresql

# Timestamp format to use in filenames of output files. Two values are
# possible: legacy and rfc3339. For example legacy is 2006-01-02_15-04-05, and
# rfc3339 is 2006-01-02T15:04:05-07:00. rfc3339 is the default, except on
# Windows where it is not possible to use the rfc3339 format in filename.
timestamp_format = rfc3339

# PostgreSQL connection options. This are the usual libpq
# variables. dbname is the database used to dump globals, acl,
# configuration and pause replication. password is better set in
# ~/.pgpass
host =
port =
user =
dbname =

# List of database names to dump. When left empty, dump all
# databases. See with_templates to dump templates too. Separator is
# comma.
include_dbs =

# List of database names not to dump. Separator is comma.
exclude_dbs =

# When set to true, database templates are also dumped, either
# explicitly if listed in the include_dbs list or if empty.
with_templates = false

# Format of the dump, understood by pg_dump. Possible values are
# plain, custom, tar or directory.
format = custom

# When the format is directory, number of parallel jobs to dumps (-j
# option of pg_dump).
parallel_backup_jobs = 1

# When using a compressed binary format, e.g. custom or directory, adjust the
# compression level between 0 and 9. Use -1 to keep the default level of
# pg_dump.
compress_level = -1

# Compute checksum a checksum file for each dump that can be checked
# by the corresponding shaXsum -c command. Possible values are none to
# disable checksums, sha1, sha224, sha256, sha384, and sha512.
checksum_algorithm = none

# Encrypt the files produced, including globals and configuration.
encrypt = false

# Passphrase to use for encryption and decryption. The PGBK_CIPHER_PASS
# environment variable can be used alternatively.
cipher_pass =

# AGE public key for encryption; in Bech32 encoding starting with 'age1'
cipher_public_key =

# AGE private key for decryption; in Bech32 encoding starting with
# 'AGE-SECRET-KEY-1'
cipher_private_key =

# Keep original files after encrypting them.
encrypt_keep_source = false

# Purge dumps older than this number of days. If the interval has to
# be shorter than one day, use a duration with units, h for hours, m
# for minutes, s for seconds, us for microseconds or ns for
# nanoseconds, ex. 1h30m24s.
purge_older_than = 30

# When purging older dumps, always keep this minimum number of
# dumps. The default is 0, even if purge_older_than is 0 the dumps of
# the current run are kept. Use "all" to never purge.
purge_min_keep = 0

# Number of pg_dump commands to run concurrently
jobs = 1

# inject these options to pg_dump
pg_dump_options =

# When dumping from a hot standby server, wait for exclusive locks to
# be released within this number of seconds. If not possible, the run
# is aborted.
pause_timeout = 3600

# Commands to execute before dumping and after. The post-backup
# command is always executed even in case of failure.
pre_backup_hook =
post_backup_hook =

# Dump only databases, excluding configuration and globals
dump_only = false

# Dump role passwords with the globals
with_role_passwords = true

# Upload resulting files to a remote location. Possible values are: none,
# s3, sftp, gcs, azure. The default is none, meaning no file will be uploaded.
upload = none

# Purge remote files. When uploading to a remote location, purge the remote
# files with the same rules as the local directory
purge_remote = false

# AWS S3 Access information. Region and Bucket are mandatory. If no
# credential or profile is provided defaults from the SDK are used.
s3_region =
s3_bucket =
s3_endpoint =
s3_profile =
s3_key_id =
s3_secret =
s3_force_path = false
s3_tls = true

# SFTP Access information. The password can be set with the
# PGBK_SSH_PASS environment variable. A private key may be
# given with sftp_identity.
sftp_host =
sftp_port = 22
sftp_user =
sftp_password =
sftp_directory =
sftp_identity =
sftp_ignore_hostkey = false

# Google Cloud Storage (GCS) Access information. Bucket is mandatory. If the
# path to the key file is empty, the GOOGLE_APPLICATION_CREDENTIALS environment
# variable is used.
gcs_bucket =
gcs_endpoint =
gcs_keyfile =

# Azure Blob Storage access information. The account and key can be set
# with AZURE_STORAGE_ACCOUNT and AZURE_STORAGE_KEY. The container is
# mandatory. Access is anonymous when the account is empty.
azure_container =
azure_account =
azure_key =
azure_endpoint = blob.core.windows.net

# Per database options. Use a ini section named the same as the
# database. These options take precedence over the global values
# [dbname]
# format =
# parallel_backup_jobs =
# compress_level =
# checksum_algorithm =
# purge_older_than =
# purge_min_keep =
# schemas =
# exclude_schemas =
# tables =
# exclude_tables =
# with_blobs =
# pg_dump_options =
"""
