"""Tests for the conversion of 1.x shell configuration files."""

import pytest

from pgvault.config import convert_legacy_config, convert_legacy_config_file
from pgvault.config.legacy import read_legacy_conf, strip_end_comment

LEGACY_CONF = """\
#!/bin/sh
# pg_back configuration file

PGBK_BIN=/usr/lib/postgresql/16/bin/
PGBK_BACKUP_DIR=/var/backups/postgresql   # where dumps go
PGBK_TIMESTAMP='%Y-%m-%d_%H-%M-%S'
PGBK_PURGE=30
PGBK_PURGE_MIN_KEEP=2
PGBK_OPTS="-Fc -T 'audit log'"
PGBK_DBLIST="db1 db2"
PGBK_EXCLUDE=""
PGBK_WITH_TEMPLATES="yes"
SIGNATURE_ALGO="sha256"
PGBK_UNKNOWN=whatever
"""


class TestStripEndComment:
    """Tests for strip_end_comment."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("value # comment", "value"),
            ("'a # b' # c", "'a # b'"),
            ('"a # b"', '"a # b"'),
            ("a\\'b # c", "a\\'b"),
            ("plain", "plain"),
        ],
    )
    def test_strip(self, text, expected):
        assert strip_end_comment(text) == expected


class TestConvertLegacyConfig:
    """Tests for convert_legacy_config."""

    def test_only_option_lines_read(self):
        assert read_legacy_conf(["# PGBK_BIN=x", "  PGBK_BIN=/bin  \n", "echo hi"]) == ["PGBK_BIN=/bin"]

    def test_full_file(self):
        out = convert_legacy_config(LEGACY_CONF.splitlines(keepends=True))

        assert out == (
            "bin_directory = /usr/lib/postgresql/16/bin/\n"
            "backup_directory = /var/backups/postgresql\n"
            "timestamp_format = legacy\n"
            "purge_older_than = 30\n"
            "purge_min_keep = 2\n"
            "format = custom\n"
            'pg_dump_options = -T "audit log"\n'
            "include_dbs = db1, db2\n"
            "exclude_dbs = \n"
            "with_templates = true\n"
            "checksum_algorithm = sha256\n"
        )

    def test_other_timestamp_is_rfc3339(self):
        assert convert_legacy_config(["PGBK_TIMESTAMP='%Y%m%d'"]) == "timestamp_format = rfc3339\n"

    def test_shell_array_options(self):
        out = convert_legacy_config(['PGBK_OPTS=("-Fd" "--no-owner" "-j" "4")'])
        assert out == "format = directory\npg_dump_options = --no-owner -j 4\n"

    def test_separate_format_argument(self):
        out = convert_legacy_config(['PGBK_OPTS="-F p --clean"'])
        assert out == "format = plain\npg_dump_options = --clean\n"

    def test_converted_file_is_loadable(self, tmp_path):
        from pgvault.config import EnvSecrets, load_options

        source = tmp_path / "pg_back.conf"
        source.write_text(LEGACY_CONF)
        target = tmp_path / "pgvault.conf"
        target.write_text(convert_legacy_config_file(str(source)))

        options = load_options(str(target), {}, env=EnvSecrets())

        assert options.include_dbs == ["db1", "db2"]
        assert options.pg_dump_options == ["-T", "audit log"]
        assert options.purge_min_keep == 2
