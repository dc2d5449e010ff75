"""Command line for pgvault (Typer + Rich)."""

from __future__ import annotations

import logging
from typing import Annotated, Any, Optional

import typer
from click.core import ParameterSource
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pgvault import __version__
from pgvault.config import (
    DEFAULT_CONFIG,
    DEFAULT_CONFIG_FILE,
    RunOptions,
    convert_legacy_config_file,
    load_options,
)
from pgvault.errors import PgVaultError
from pgvault.log import init_logging
from pgvault.orchestrator import BackupRun, decrypt_directory, download_files, list_remote_files
from pgvault.storage import RemoteKind, create_repository

app = typer.Typer(
    name="pgvault",
    help="Dump PostgreSQL databases, then mirror and purge the dumps.",
    add_completion=False,
)
console = Console()

logger = logging.getLogger(__name__)

# Command line parameter name -> option name in the configuration file
OPTION_KEYS = {
    "bin_directory": "bin_directory",
    "backup_directory": "backup_directory",
    "exclude_dbs": "exclude_dbs",
    "with_templates": "with_templates",
    "pause_timeout": "pause_timeout",
    "jobs": "jobs",
    "format": "format",
    "parallel_backup_jobs": "parallel_backup_jobs",
    "compress": "compress_level",
    "checksum_algo": "checksum_algorithm",
    "purge_older_than": "purge_older_than",
    "purge_min_keep": "purge_min_keep",
    "dump_only": "dump_only",
    "pre_backup_hook": "pre_backup_hook",
    "post_backup_hook": "post_backup_hook",
    "host": "host",
    "port": "port",
    "username": "user",
    "dbname": "dbname",
    "encrypt": "encrypt",
    "encrypt_keep_src": "encrypt_keep_source",
    "cipher_pass": "cipher_pass",
    "cipher_public_key": "cipher_public_key",
    "cipher_private_key": "cipher_private_key",
    "decrypt": "decrypt",
    "upload": "upload",
    "download": "download",
    "list_remote": "list_remote",
    "purge_remote": "purge_remote",
    "s3_region": "s3_region",
    "s3_bucket": "s3_bucket",
    "s3_profile": "s3_profile",
    "s3_key_id": "s3_key_id",
    "s3_secret": "s3_secret",
    "s3_endpoint": "s3_endpoint",
    "s3_force_path": "s3_force_path",
    "s3_tls": "s3_tls",
    "sftp_host": "sftp_host",
    "sftp_port": "sftp_port",
    "sftp_user": "sftp_user",
    "sftp_password": "sftp_password",
    "sftp_directory": "sftp_directory",
    "sftp_identity": "sftp_identity",
    "sftp_ignore_hostkey": "sftp_ignore_hostkey",
    "gcs_bucket": "gcs_bucket",
    "gcs_endpoint": "gcs_endpoint",
    "gcs_keyfile": "gcs_keyfile",
    "azure_container": "azure_container",
    "azure_account": "azure_account",
    "azure_key": "azure_key",
    "azure_endpoint": "azure_endpoint",
    "verbose": "verbose",
    "quiet": "quiet",
}


def explicit_options(ctx: typer.Context) -> dict[str, Any]:
    """Values of the flags actually given on the command line."""
    cli: dict[str, Any] = {}
    for param, key in OPTION_KEYS.items():
        if ctx.get_parameter_source(param) is ParameterSource.COMMANDLINE:
            cli[key] = ctx.params[param]

    if ctx.get_parameter_source("without_role_passwords") is ParameterSource.COMMANDLINE:
        cli["with_role_passwords"] = not ctx.params["without_role_passwords"]

    return cli


def _print_summary(run: BackupRun, exit_code: int) -> None:
    table = Table(show_header=True, box=None)
    table.add_column("Database", style="cyan")
    table.add_column("Status")
    table.add_column("Output")

    for job in sorted(run.jobs, key=lambda j: j.dbname):
        status = "[green]ok[/]" if job.ok else f"[red]failed ({job.exit_code})[/]"
        table.add_row(job.dbname, status, job.path or "-")

    title = "[green]Backup complete[/]" if exit_code == 0 else "[red]Backup failed[/]"
    if run.options.upload is not RemoteKind.NONE:
        title += f" ({run.uploaded} file(s) uploaded to {run.options.upload.value})"
    console.print(Panel(table, title=title, expand=False))


def _open_repository(kind: RemoteKind, options: RunOptions):
    try:
        return create_repository(kind, options)
    except PgVaultError as e:
        logger.critical(f"could not open {kind.value} repository: {e}")
        raise typer.Exit(1)


def _list_remote(options: RunOptions, globs: list[str]) -> None:
    repo = _open_repository(options.list_remote, options)
    try:
        items = list_remote_files(repo, globs)
    except PgVaultError as e:
        logger.critical(str(e))
        raise typer.Exit(1)
    finally:
        repo.close()

    table = Table(show_header=True, box=None)
    table.add_column("Key", style="cyan")
    table.add_column("Modified")
    for item in sorted(items, key=lambda i: i.key):
        modified = item.mod_time.strftime("%Y-%m-%d %H:%M:%S %z") if item.mod_time else "-"
        table.add_row(item.key, modified)
    console.print(table)


def _download(options: RunOptions, globs: list[str]) -> int:
    repo = _open_repository(options.download, options)
    try:
        return download_files(options, repo, globs)
    except PgVaultError as e:
        logger.critical(str(e))
        return 1
    finally:
        repo.close()


@app.command()
def backup(
    ctx: typer.Context,
    dbnames: Annotated[Optional[list[str]], typer.Argument(help="Databases to dump, or globs of files to decrypt, download or list", show_default=False)] = None,
    bin_directory: Annotated[str, typer.Option("--bin-directory", "-B", help="PostgreSQL binaries directory")] = "",
    backup_directory: Annotated[str, typer.Option("--backup-directory", "-b", help="Store dumps in this directory")] = "/var/backups/postgresql",
    config: Annotated[str, typer.Option("--config", "-c", help="Alternate config file")] = DEFAULT_CONFIG_FILE,
    no_config_file: Annotated[bool, typer.Option("--no-config-file", help="Skip reading the config file")] = False,
    exclude_dbs: Annotated[Optional[str], typer.Option("--exclude-dbs", "-D", help="Comma separated list of databases not to dump")] = None,
    with_templates: Annotated[bool, typer.Option("--with-templates/--without-templates", "-t", help="Include templates")] = False,
    pause_timeout: Annotated[int, typer.Option("--pause-timeout", "-T", help="Abort if replication cannot be paused after this number of seconds")] = 3600,
    jobs: Annotated[int, typer.Option("--jobs", "-j", help="Dump this many databases concurrently")] = 1,
    format: Annotated[str, typer.Option("--format", "-F", help="Database dump format: plain, custom, tar or directory")] = "custom",
    parallel_backup_jobs: Annotated[int, typer.Option("--parallel-backup-jobs", "-J", help="Number of parallel jobs to dumps when using directory format")] = 1,
    compress: Annotated[int, typer.Option("--compress", "-Z", help="Compression level for compressed formats")] = -1,
    checksum_algo: Annotated[str, typer.Option("--checksum-algo", "-S", help="Signature algorithm: none, sha1, sha224, sha256, sha384 or sha512")] = "none",
    purge_older_than: Annotated[str, typer.Option("--purge-older-than", "-P", help="Purge backups older than this duration in days; use an interval with units \"s\" for seconds, \"m\" for minutes, \"h\" for hours")] = "30",
    purge_min_keep: Annotated[str, typer.Option("--purge-min-keep", "-K", help="Minimum number of dumps to keep when purging or 'all' to keep everything")] = "0",
    without_role_passwords: Annotated[bool, typer.Option("--without-role-passwords", help="Do not dump passwords of roles")] = False,
    dump_only: Annotated[bool, typer.Option("--dump-only", "-O", help="Only dump databases, excluding configuration and globals")] = False,
    pre_backup_hook: Annotated[str, typer.Option("--pre-backup-hook", help="Command to run before taking dumps")] = "",
    post_backup_hook: Annotated[str, typer.Option("--post-backup-hook", help="Command to run after taking dumps")] = "",
    host: Annotated[str, typer.Option("--host", "-h", help="Database server host or socket directory")] = "",
    port: Annotated[int, typer.Option("--port", "-p", help="Database server port number")] = 0,
    username: Annotated[str, typer.Option("--username", "-U", help="Connect as specified database user")] = "",
    dbname: Annotated[str, typer.Option("--dbname", "-d", help="Connect to database name or connection string")] = "",
    encrypt: Annotated[bool, typer.Option("--encrypt", help="Encrypt the dumps")] = False,
    encrypt_keep_src: Annotated[bool, typer.Option("--encrypt-keep-src", help="Keep original files when encrypting")] = False,
    cipher_pass: Annotated[str, typer.Option("--cipher-pass", help="Cipher passphrase for encryption and decryption")] = "",
    cipher_public_key: Annotated[str, typer.Option("--cipher-public-key", help="AGE public key for encryption")] = "",
    cipher_private_key: Annotated[str, typer.Option("--cipher-private-key", help="AGE private key for decryption")] = "",
    decrypt: Annotated[bool, typer.Option("--decrypt", help="Decrypt files in the backup directory")] = False,
    upload: Annotated[str, typer.Option("--upload", help="Upload files to the given remote location: none, s3, sftp, gcs or azure")] = "none",
    download: Annotated[str, typer.Option("--download", help="Download files from the given remote location")] = "none",
    list_remote: Annotated[str, typer.Option("--list-remote", help="List the remote files on the given remote location")] = "none",
    purge_remote: Annotated[bool, typer.Option("--purge-remote", help="Purge the file on remote location after upload, with the same rules as the local directory")] = False,
    s3_region: Annotated[str, typer.Option("--s3-region", help="S3 region")] = "",
    s3_bucket: Annotated[str, typer.Option("--s3-bucket", help="S3 bucket")] = "",
    s3_profile: Annotated[str, typer.Option("--s3-profile", help="AWS client profile name to get credentials")] = "",
    s3_key_id: Annotated[str, typer.Option("--s3-key-id", help="AWS Access key ID")] = "",
    s3_secret: Annotated[str, typer.Option("--s3-secret", help="AWS Secret access key")] = "",
    s3_endpoint: Annotated[str, typer.Option("--s3-endpoint", help="S3 endpoint URI")] = "",
    s3_force_path: Annotated[bool, typer.Option("--s3-force-path", help="Force setting the bucket in the path")] = False,
    s3_tls: Annotated[bool, typer.Option("--s3-tls/--s3-disable-tls", help="Use TLS to reach the S3 endpoint")] = True,
    sftp_host: Annotated[str, typer.Option("--sftp-host", help="Remote hostname for SFTP")] = "",
    sftp_port: Annotated[int, typer.Option("--sftp-port", help="Remote port for SFTP")] = 22,
    sftp_user: Annotated[str, typer.Option("--sftp-user", help="Login for SFTP when different than the current user")] = "",
    sftp_password: Annotated[str, typer.Option("--sftp-password", help="Password for SFTP or passphrase when identity file is set")] = "",
    sftp_directory: Annotated[str, typer.Option("--sftp-directory", help="Target directory on the remote host")] = "",
    sftp_identity: Annotated[str, typer.Option("--sftp-identity", help="Path to a private key")] = "",
    sftp_ignore_hostkey: Annotated[bool, typer.Option("--sftp-ignore-hostkey", help="Check the target host is in known_hosts")] = False,
    gcs_bucket: Annotated[str, typer.Option("--gcs-bucket", help="GCS bucket name")] = "",
    gcs_endpoint: Annotated[str, typer.Option("--gcs-endpoint", help="GCS endpoint URL")] = "",
    gcs_keyfile: Annotated[str, typer.Option("--gcs-keyfile", help="Path to the GCS credentials file")] = "",
    azure_container: Annotated[str, typer.Option("--azure-container", help="Azure Blob Container")] = "",
    azure_account: Annotated[str, typer.Option("--azure-account", help="Azure Blob Storage account")] = "",
    azure_key: Annotated[str, typer.Option("--azure-key", help="Azure Blob Storage shared key")] = "",
    azure_endpoint: Annotated[str, typer.Option("--azure-endpoint", help="Azure Blob Storage endpoint")] = "blob.core.windows.net",
    convert_legacy_config: Annotated[Optional[str], typer.Option("--convert-legacy-config", help="Convert a pg_back v1 configuration file", metavar="PATH")] = None,
    print_default_config: Annotated[bool, typer.Option("--print-default-config", help="Print the default configuration")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose output")] = False,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Quiet mode")] = False,
    version: Annotated[bool, typer.Option("--version", "-V", help="Print version and exit")] = False,
) -> None:
    """Dump every database of a PostgreSQL cluster, with retention, checksums, encryption and upload."""
    if version:
        typer.echo(f"pgvault version {__version__}")
        return

    if print_default_config:
        typer.echo(DEFAULT_CONFIG, nl=False)
        return

    init_logging(verbose=verbose, quiet=quiet)

    if convert_legacy_config:
        try:
            typer.echo(convert_legacy_config_file(convert_legacy_config), nl=False)
        except OSError as e:
            logger.critical(f"could not convert {convert_legacy_config}: {e.strerror}")
            raise typer.Exit(1)
        return

    load_dotenv()

    cli = explicit_options(ctx)
    globs = list(dbnames or [])
    utility_mode = decrypt or download.lower() != "none" or list_remote.lower() != "none"
    if globs and not utility_mode:
        cli["include_dbs"] = globs

    try:
        options = load_options(
            config,
            cli,
            config_explicit=ctx.get_parameter_source("config") is ParameterSource.COMMANDLINE,
            no_config_file=no_config_file,
        )
    except PgVaultError as e:
        logger.critical(str(e))
        raise typer.Exit(1)

    if options.decrypt:
        raise typer.Exit(decrypt_directory(options, globs))

    if options.list_remote is not RemoteKind.NONE:
        _list_remote(options, globs)
        return

    if options.download is not RemoteKind.NONE:
        raise typer.Exit(_download(options, globs))

    run = BackupRun(options)
    exit_code = run.run()
    if not options.quiet:
        _print_summary(run, exit_code)
    raise typer.Exit(exit_code)


def main() -> None:
    app()
