"""Drive pg_dump and pg_dumpall as child processes."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable, Mapping, Sequence
from enum import Enum
from typing import TYPE_CHECKING

from pgvault.errors import DumpFailed, PgVaultError
from pgvault.log import log_output
from pgvault.process import CommandResult, run_command

if TYPE_CHECKING:
    from pgvault.connstring import ConnInfo

logger = logging.getLogger(__name__)

Runner = Callable[..., CommandResult]

VERSION_RE = re.compile(r"\(PostgreSQL\) (\d+)(?:\.(\d+))?(?:\.(\d+))?")


class DumpFormat(str, Enum):
    PLAIN = "p"
    CUSTOM = "c"
    TAR = "t"
    DIRECTORY = "d"

    @classmethod
    def parse(cls, value: str) -> DumpFormat:
        """Accept a full format name or its first letter."""
        value = value.strip().lower()
        for fmt in cls:
            if value and (value == fmt.value or value == fmt.name.lower()):
                return fmt
        raise ValueError(f"invalid dump format: {value!r}")

    @property
    def ext(self) -> str:
        return {"p": "sql", "c": "dump", "t": "tar", "d": "d"}[self.value]

    @property
    def compressible(self) -> bool:
        return self is not DumpFormat.TAR


def parse_tool_version(output: str) -> int:
    """Numeric version from ``pg_dump --version`` output, 0 if unknown."""
    match = VERSION_RE.search(output)
    if match is None:
        return 0

    major, minor, patch = match.groups()
    if patch is not None:
        # Before 10: MAJ.MIN.REV
        return (int(major) * 100 + int(minor)) * 100 + int(patch)
    if minor is not None:
        return int(major) * 10000 + int(minor)

    # Development and beta builds: "17devel", "17beta1"
    return int(major) * 10000


class DumpTool:
    """argv and environment building for the PostgreSQL dump utilities."""

    def __init__(self, bin_directory: str = "", runner: Runner = run_command) -> None:
        self.bin_directory = bin_directory
        self.runner = runner
        self._versions: dict[str, int] = {}

    def exec_path(self, name: str) -> str:
        if os.name == "nt":
            name = f"{name}.exe"
        if self.bin_directory:
            return os.path.join(self.bin_directory, name)
        return name

    def tool_version(self, name: str) -> int:
        """Version of a dump utility, cached for the run."""
        if name not in self._versions:
            result = self.runner([self.exec_path(name), "--version"])
            if not result.ok:
                logger.warning(f"failed to retrieve version of {name}: {result.output.decode(errors='replace').strip()}")
                version = 0
            else:
                version = parse_tool_version(result.output.decode(errors="replace"))
            logger.debug(f"{name} version is: {version}")
            self._versions[name] = version
        return self._versions[name]

    def _environment(self, conninfo: ConnInfo) -> dict[str, str]:
        env = dict(os.environ)
        env.update(conninfo.make_env())
        return env

    def _run(self, argv: Sequence[str], env: Mapping[str, str], tool: str, prefix: str) -> None:
        logger.debug(f"running: {' '.join(argv)}")
        result = self.runner(argv, env=env)
        log_output(logger, prefix, result.output, failed=not result.ok)
        if not result.ok:
            raise DumpFailed(tool, result.returncode, result.output)

    def run_globals(
        self,
        out_path: str,
        conninfo: ConnInfo,
        with_role_passwords: bool = True,
    ) -> None:
        """Dump roles and tablespaces with ``pg_dumpall -g``."""
        argv = [self.exec_path("pg_dumpall"), "-g", "-w"]

        # pg_dumpall only uses another maintenance database with -l
        dbname = conninfo.get("dbname")
        if dbname:
            argv += ["-l", dbname]

        if not with_role_passwords:
            argv.append("--no-role-passwords")

        argv += ["-f", out_path]

        os.makedirs(os.path.dirname(out_path) or ".", mode=0o755, exist_ok=True)
        self._run(argv, self._environment(conninfo), "pg_dumpall", "")

    def selection_args(
        self,
        schemas: Sequence[str] = (),
        exclude_schemas: Sequence[str] = (),
        tables: Sequence[str] = (),
        exclude_tables: Sequence[str] = (),
        with_blobs: bool | None = None,
    ) -> list[str]:
        """pg_dump options selecting what goes in the dump."""
        args: list[str] = []
        for obj in schemas:
            args += ["-n", obj]
        for obj in exclude_schemas:
            args += ["-N", obj]
        for obj in tables:
            args += ["-t", obj]
        for obj in exclude_tables:
            args += ["-T", obj]

        if with_blobs is True:
            args.append("-b")
        elif with_blobs is False:
            if self.tool_version("pg_dump") < 100000:
                logger.warning("provided pg_dump version does not support excluding blobs, ignoring option")
            else:
                args.append("-B")

        return args

    def run_db_dump(
        self,
        out_path: str,
        conninfo: ConnInfo,
        dbname: str,
        format: DumpFormat,
        compress_level: int = -1,
        parallel_jobs: int = 1,
        selection: Sequence[str] = (),
        extra_args: Sequence[str] = (),
    ) -> None:
        """Dump one database to ``out_path`` with pg_dump.

        ``selection`` comes from ``selection_args``; ``extra_args`` are the
        user's pg_dump options, passed last.
        """
        version = self.tool_version("pg_dump")
        if format is DumpFormat.DIRECTORY and version < 90100:
            raise PgVaultError("provided pg_dump version does not support directory format")

        argv = [self.exec_path("pg_dump"), f"-F{format.value}", "-f", out_path, "-w"]

        if format is DumpFormat.DIRECTORY and parallel_jobs > 1:
            if version < 90300:
                logger.warning("provided pg_dump version does not support parallel jobs, ignoring option")
            else:
                argv += ["-j", str(parallel_jobs)]

        argv += list(selection)

        if compress_level >= 0:
            if format.compressible:
                argv += ["-Z", str(compress_level)]
            else:
                logger.warning("compression level is not supported by the target format")

        argv += list(extra_args)

        env = self._environment(conninfo.set("dbname", dbname))
        self._run(argv, env, "pg_dump", f"[{dbname}] ")
