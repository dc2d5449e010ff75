"""Pytest configuration and fixtures for pgvault tests."""

from __future__ import annotations

import logging
import os
import threading
import time

import pytest

from pgvault.config import merge_options
from pgvault.process import CommandResult
from pgvault.storage import RemoteItem


class FakeRunner:
    """Stand-in for ``run_command``: records argv and plays pg_dump.

    Dump tools write a small file (or a directory for ``-Fd``) at their
    ``-f`` target. ``fail`` maps a database name or program name to the
    exit status to return instead.
    """

    def __init__(self, version: str = "pg_dump (PostgreSQL) 16.2", delay: float = 0.0) -> None:
        self.version = version
        self.delay = delay
        self.fail: dict[str, int] = {}
        self.calls: list[tuple[list[str], dict | None]] = []
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()

    def __call__(self, argv, env=None, stdin=None) -> CommandResult:
        argv = list(argv)
        with self._lock:
            self.calls.append((argv, dict(env) if env is not None else None))

        program = os.path.basename(argv[0])
        if argv[1:] == ["--version"]:
            return CommandResult(0, f"{self.version}\n".encode())

        dbname = (env or {}).get("PGDATABASE", "")
        if program in self.fail:
            return CommandResult(self.fail[program], f"{program}: failed\n".encode())
        if program == "pg_dump" and dbname in self.fail:
            return CommandResult(self.fail[dbname], b'pg_dump: error: connection failed\n')

        if program in ("pg_dump", "pg_dumpall"):
            with self._lock:
                self.running += 1
                self.max_running = max(self.max_running, self.running)
            try:
                time.sleep(self.delay)
                self._write_output(argv)
            finally:
                with self._lock:
                    self.running -= 1

        return CommandResult(0, b"")

    @staticmethod
    def _write_output(argv: list[str]) -> None:
        target = argv[argv.index("-f") + 1]
        if "-Fd" in argv:
            os.makedirs(target, exist_ok=True)
            with open(os.path.join(target, "toc.dat"), "wb") as f:
                f.write(b"toc")
        else:
            with open(target, "wb") as f:
                f.write(b"-- dump\n")

    def argvs(self, program: str) -> list[list[str]]:
        return [argv for argv, _ in self.calls if os.path.basename(argv[0]) == program]


class FakeRepository:
    """In-memory repository keyed by remote key."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.removed: list[str] = []
        self.fail_remove: set[str] = set()
        self.closed = False

    def upload(self, local_path: str, remote_key: str) -> None:
        with open(local_path, "rb") as f:
            self.objects[remote_key] = f.read()

    def download(self, remote_key: str, local_path: str) -> None:
        os.makedirs(os.path.dirname(local_path), exist_ok=True)
        with open(local_path, "wb") as f:
            f.write(self.objects[remote_key])

    def list(self, prefix: str = "") -> list[RemoteItem]:
        return [RemoteItem(key=key) for key in sorted(self.objects) if key.startswith(prefix)]

    def remove(self, remote_key: str) -> None:
        from pgvault.errors import RepositoryError

        if remote_key in self.fail_remove:
            raise RepositoryError(f"cannot remove {remote_key}")
        self.objects.pop(remote_key, None)
        self.removed.append(remote_key)

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo init_logging so caplog sees records in every test."""
    yield
    logger = logging.getLogger("pgvault")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def runner():
    """A fresh fake process runner."""
    return FakeRunner()


@pytest.fixture
def make_runner():
    """Factory for fake runners reporting a given pg_dump version."""
    return FakeRunner


@pytest.fixture
def repository():
    """A fresh in-memory repository."""
    return FakeRepository()


@pytest.fixture
def make_options(tmp_path):
    """Build RunOptions as if the given values came from the command line."""

    def _make(file_dbs=None, **cli):
        cli.setdefault("backup_directory", str(tmp_path / "backups"))
        return merge_options({}, file_dbs or {}, cli)

    return _make
