"""Tests for pg_dump and pg_dumpall invocation."""

import pytest

from pgvault.connstring import ConnInfo
from pgvault.dumptool import DumpFormat, DumpTool, parse_tool_version
from pgvault.errors import DumpFailed, PgVaultError
from pgvault.process import CommandResult


@pytest.fixture
def conninfo():
    return ConnInfo.parse("host=db port=5433 user=backup")


class TestDumpFormat:
    """Tests for DumpFormat."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("plain", DumpFormat.PLAIN), ("c", DumpFormat.CUSTOM), ("Tar", DumpFormat.TAR), ("directory", DumpFormat.DIRECTORY)],
    )
    def test_parse(self, value, expected):
        assert DumpFormat.parse(value) is expected

    def test_parse_invalid(self):
        with pytest.raises(ValueError, match="invalid dump format"):
            DumpFormat.parse("zip")

    def test_extensions(self):
        assert [f.ext for f in DumpFormat] == ["sql", "dump", "tar", "d"]


class TestParseToolVersion:
    """Tests for parse_tool_version."""

    @pytest.mark.parametrize(
        ("output", "expected"),
        [
            ("pg_dump (PostgreSQL) 9.6.24", 90624),
            ("pg_dump (PostgreSQL) 16.2", 160002),
            ("pg_dump (PostgreSQL) 16.2 (Debian 16.2-1.pgdg120+2)", 160002),
            ("pg_dump (PostgreSQL) 17devel", 170000),
            ("something else", 0),
        ],
    )
    def test_versions(self, output, expected):
        assert parse_tool_version(output) == expected


class TestDumpTool:
    """Tests for DumpTool."""

    def test_version_cached(self, runner):
        tool = DumpTool(runner=runner)
        assert tool.tool_version("pg_dump") == 160002
        assert tool.tool_version("pg_dump") == 160002
        assert len(runner.calls) == 1

    def test_version_failure_is_zero(self, caplog):
        tool = DumpTool(runner=lambda argv, env=None: CommandResult(127, b"pg_dump: not found"))
        assert tool.tool_version("pg_dump") == 0
        assert "failed to retrieve version of pg_dump" in caplog.text

    def test_bin_directory(self):
        assert DumpTool("/usr/lib/postgresql/16/bin").exec_path("pg_dump").startswith("/usr/lib/postgresql/16/bin")

    def test_db_dump_argv_and_env(self, runner, conninfo, tmp_path):
        tool = DumpTool(runner=runner)
        out = str(tmp_path / "app.dump")

        tool.run_db_dump(out, conninfo, "app", DumpFormat.CUSTOM, compress_level=6, extra_args=["--no-owner"])

        argv, env = runner.calls[-1]
        assert argv == ["pg_dump", "-Fc", "-f", out, "-w", "-Z", "6", "--no-owner"]
        assert env["PGDATABASE"] == "app"
        assert env["PGHOST"] == "db"
        assert env["PGPORT"] == "5433"

    def test_parallel_directory_dump(self, runner, conninfo, tmp_path):
        tool = DumpTool(runner=runner)
        out = str(tmp_path / "app.d")

        tool.run_db_dump(out, conninfo, "app", DumpFormat.DIRECTORY, parallel_jobs=4, selection=["-n", "public"])

        argv, _ = runner.calls[-1]
        assert argv == ["pg_dump", "-Fd", "-f", out, "-w", "-j", "4", "-n", "public"]

    def test_parallel_ignored_for_custom(self, runner, conninfo, tmp_path):
        tool = DumpTool(runner=runner)
        tool.run_db_dump(str(tmp_path / "a.dump"), conninfo, "app", DumpFormat.CUSTOM, parallel_jobs=4)
        assert "-j" not in runner.calls[-1][0]

    def test_tar_compression_warns(self, runner, conninfo, tmp_path, caplog):
        tool = DumpTool(runner=runner)
        tool.run_db_dump(str(tmp_path / "a.tar"), conninfo, "app", DumpFormat.TAR, compress_level=3)
        assert "-Z" not in runner.calls[-1][0]
        assert "compression level is not supported" in caplog.text

    def test_directory_needs_recent_pg_dump(self, make_runner, conninfo, tmp_path):
        tool = DumpTool(runner=make_runner(version="pg_dump (PostgreSQL) 9.0.23"))
        with pytest.raises(PgVaultError, match="directory format"):
            tool.run_db_dump(str(tmp_path / "a.d"), conninfo, "app", DumpFormat.DIRECTORY)

    def test_failure_raises(self, runner, conninfo, tmp_path, caplog):
        runner.fail["app"] = 1
        tool = DumpTool(runner=runner)

        with pytest.raises(DumpFailed, match="pg_dump exited with status 1") as exc_info:
            tool.run_db_dump(str(tmp_path / "a.dump"), conninfo, "app", DumpFormat.CUSTOM)

        assert exc_info.value.exit_code == 1
        assert "[app] pg_dump: error: connection failed" in caplog.text

    def test_globals_argv(self, runner, tmp_path):
        tool = DumpTool(runner=runner)
        out = str(tmp_path / "globals" / "pg_globals.sql")

        tool.run_globals(out, ConnInfo.parse("host=db dbname=maint"), with_role_passwords=False)

        argv, _ = runner.calls[-1]
        assert argv == ["pg_dumpall", "-g", "-w", "-l", "maint", "--no-role-passwords", "-f", out]


class TestSelectionArgs:
    """Tests for selection_args."""

    def test_all_filters(self, runner):
        args = DumpTool(runner=runner).selection_args(["s1"], ["s2"], ["t1", "t2"], ["t3"], with_blobs=True)
        assert args == ["-n", "s1", "-N", "s2", "-t", "t1", "-t", "t2", "-T", "t3", "-b"]

    def test_exclude_blobs_needs_pg10(self, make_runner):
        assert DumpTool(runner=make_runner()).selection_args(with_blobs=False) == ["-B"]
        assert DumpTool(runner=make_runner(version="pg_dump (PostgreSQL) 9.6.1")).selection_args(with_blobs=False) == []
