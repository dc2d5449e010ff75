"""Tests for configuration loading and merging."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from pgvault.config import (
    DEFAULT_CONFIG,
    EnvSecrets,
    load_options,
    merge_options,
    parse_duration,
    read_config_file,
    resolve_cipher_params,
)
from pgvault.dumptool import DumpFormat
from pgvault.errors import CapabilityError, ConfigError
from pgvault.naming import TimestampFormat
from pgvault.storage import RemoteKind


@pytest.fixture
def write_config(tmp_path):
    def _write(text):
        path = tmp_path / "pgvault.conf"
        path.write_text(text)
        return str(path)

    return _write


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("30", timedelta(days=30)),
            (7, timedelta(days=7)),
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("90s", timedelta(seconds=90)),
            ("1.5h", timedelta(minutes=90)),
            ("-2h", timedelta(hours=-2)),
            ("1000000000ns", timedelta(seconds=1)),
            ("1500us", timedelta(microseconds=1500)),
            ("250ms", timedelta(milliseconds=250)),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "3 days", "1d", "h"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestReadConfigFile:
    """Tests for read_config_file."""

    def test_globals_and_sections(self, write_config):
        path = write_config("backup_directory = /a\njobs = 2\n\n[db1]\nformat = directory\n")

        file_globals, file_dbs = read_config_file(path)

        assert file_globals == {"backup_directory": "/a", "jobs": "2"}
        assert file_dbs == {"db1": {"format": "directory"}}

    def test_unknown_global_key(self, write_config):
        path = write_config("backup_dir = /a\n")
        with pytest.raises(ConfigError, match="unknown parameter in configuration file: backup_dir"):
            read_config_file(path)

    def test_unknown_database_key(self, write_config):
        path = write_config("[db1]\njobs = 3\n")
        with pytest.raises(ConfigError, match="for db db1: jobs"):
            read_config_file(path)

    def test_empty_value_is_unset(self, write_config):
        path = write_config("port =\nhost = db\n")
        file_globals, _ = read_config_file(path)
        assert file_globals == {"host": "db"}

    def test_malformed_file(self, write_config):
        path = write_config("[unterminated\n")
        with pytest.raises(ConfigError, match="could not load configuration file"):
            read_config_file(path)

    def test_default_config_is_loadable(self, write_config):
        options = load_options(write_config(DEFAULT_CONFIG), {}, env=EnvSecrets())
        assert options.backup_directory == "/var/backups/postgresql"
        assert options.format is DumpFormat.CUSTOM
        assert options.upload is RemoteKind.NONE


class TestMergeOptions:
    """Tests for merge_options."""

    def test_defaults(self):
        options = merge_options({}, {}, {})
        assert options.format is DumpFormat.CUSTOM
        assert options.purge_older_than == timedelta(days=30)
        assert options.purge_min_keep == 0
        assert options.jobs == 1
        assert options.timestamp_format is TimestampFormat.RFC3339

    def test_cli_format_wins_everywhere(self):
        options = merge_options({"backup_directory": "/a"}, {"db1": {"format": "directory"}}, {"format": "tar"})
        assert options.format is DumpFormat.TAR
        assert options.databases["db1"].format is DumpFormat.TAR
        assert options.backup_directory == "/a"

    def test_unset_cli_keeps_file_values(self):
        options = merge_options({"jobs": "4", "format": "plain"}, {}, {"verbose": True})
        assert options.jobs == 4
        assert options.format is DumpFormat.PLAIN

    def test_database_inherits_globals(self):
        options = merge_options(
            {"compress_level": "5", "purge_min_keep": "3"},
            {"db1": {"purge_min_keep": "all", "schemas": "a; b"}},
            {},
        )
        db1 = options.databases["db1"]
        assert db1.compress_level == 5
        assert db1.purge_min_keep == -1
        assert db1.schemas == ["a", "b"]

    def test_fallback_for_database_without_section(self):
        options = merge_options({"compress_level": "4", "pg_dump_options": "--no-owner -x"}, {}, {})
        policy = options.database_options("other")
        assert policy.compress_level == 4
        assert policy.pg_dump_options == ["--no-owner", "-x"]
        assert policy.with_blobs is None

    def test_empty_section_options_cancel_inherited(self):
        options = merge_options({"pg_dump_options": "--no-owner"}, {"db1": {"pg_dump_options": ""}}, {})
        assert options.databases["db1"].pg_dump_options == []

    def test_lists(self):
        options = merge_options({"include_dbs": "a, b,,c", "exclude_dbs": "x"}, {}, {})
        assert options.include_dbs == ["a", "b", "c"]
        assert options.exclude_dbs == ["x"]

    def test_remote_keys_nested(self):
        options = merge_options(
            {"upload": "S3", "s3_bucket": "dumps", "s3_force_path": "true", "sftp_port": "2222"}, {}, {}
        )
        assert options.upload is RemoteKind.S3
        assert options.s3.bucket == "dumps"
        assert options.s3.force_path is True
        assert options.sftp.port == 2222

    def test_invalid_remote_value_named_with_prefix(self):
        with pytest.raises(ConfigError, match="sftp_port"):
            merge_options({"sftp_port": "ssh"}, {}, {})

    def test_invalid_database_value_named(self):
        with pytest.raises(ConfigError, match="compress_level for db db1"):
            merge_options({}, {"db1": {"compress_level": "12"}}, {})

    @pytest.mark.parametrize(
        ("key", "value", "message"),
        [
            ("purge_min_keep", "-2", "negative value: -2"),
            ("purge_min_keep", "many", "invalid input for keep"),
            ("purge_older_than", "-1h", "must not be negative"),
            ("format", "zip", "invalid dump format"),
            ("jobs", "0", "jobs"),
        ],
    )
    def test_invalid_values(self, key, value, message):
        with pytest.raises(ConfigError, match=message):
            merge_options({key: value}, {}, {})

    def test_unsupported_checksum_is_capability_error(self):
        with pytest.raises(CapabilityError, match="checksum_algorithm"):
            merge_options({"checksum_algorithm": "md5"}, {}, {})

    def test_options_are_frozen(self):
        options = merge_options({}, {}, {})
        with pytest.raises(Exception):
            options.jobs = 3


class TestCipherOptions:
    """Tests for encryption option checks."""

    def test_encrypt_needs_key_material(self):
        with pytest.raises(CapabilityError, match="empty passphrase for encryption"):
            merge_options({"encrypt": "true"}, {}, {})

    def test_decrypt_needs_key_material(self):
        with pytest.raises(CapabilityError, match="empty passphrase for decryption"):
            merge_options({}, {}, {"decrypt": True})

    def test_encrypt_and_decrypt_exclusive(self):
        with pytest.raises(ConfigError, match="mutually exclusive"):
            merge_options({"encrypt": "true", "cipher_pass": "x"}, {}, {"decrypt": True})

    @patch.dict("os.environ", {"PGBK_CIPHER_PASS": "from-env", "AZURE_STORAGE_KEY": "k3y"})
    def test_secrets_from_environment(self):
        options = merge_options({"encrypt": "true"}, {}, {}, env=EnvSecrets())
        assert options.cipher_pass == "from-env"
        assert options.azure.key == "k3y"
        assert resolve_cipher_params(options).passphrase == "from-env"

    @patch.dict("os.environ", {"PGBK_CIPHER_PASS": "from-env"})
    def test_file_secret_wins_over_environment(self):
        options = merge_options({"cipher_pass": "from-file"}, {}, {}, env=EnvSecrets())
        assert options.cipher_pass == "from-file"

    def test_secrets_hidden_from_repr(self):
        options = merge_options({"cipher_pass": "hunter2"}, {}, {})
        assert "hunter2" not in repr(options)


class TestLoadOptions:
    """Tests for load_options."""

    def test_missing_default_file_is_fine(self, tmp_path):
        options = load_options(str(tmp_path / "absent.conf"), {"jobs": 2}, env=EnvSecrets())
        assert options.jobs == 2

    def test_missing_explicit_file(self, tmp_path):
        path = str(tmp_path / "absent.conf")
        with pytest.raises(ConfigError, match="file not found"):
            load_options(path, {}, config_explicit=True, env=EnvSecrets())

    def test_no_config_file_skips_reading(self, write_config):
        path = write_config("bogus = 1\n")
        options = load_options(path, {}, no_config_file=True, env=EnvSecrets())
        assert options.jobs == 1

    def test_file_and_cli(self, write_config):
        path = write_config("backup_directory = /a\njobs = 3\n\n[db1]\nformat = directory\n")
        options = load_options(path, {"format": "tar"}, env=EnvSecrets())
        assert options.jobs == 3
        assert options.databases["db1"].format is DumpFormat.TAR
