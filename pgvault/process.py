"""Spawn-and-wait seam for every external program pgvault runs."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# What a shell reports for a missing executable
EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """Exit status and combined stdout/stderr of a finished child."""

    returncode: int
    output: bytes = b""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_command(
    argv: Sequence[str],
    env: Mapping[str, str] | None = None,
    stdin: bytes | None = None,
) -> CommandResult:
    """Run ``argv`` without a shell and wait for it.

    The whole output is buffered in memory. A missing or non-executable
    program is reported as status 127 instead of raising.
    """
    logger.debug(f"running: {' '.join(argv)}")
    try:
        result = subprocess.run(
            list(argv),
            input=stdin,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=None if stdin is not None else subprocess.DEVNULL,
            env=dict(env) if env is not None else None,
        )
    except (FileNotFoundError, PermissionError) as e:
        return CommandResult(EXIT_NOT_FOUND, f"{argv[0]}: {e.strerror or e}\n".encode())

    return CommandResult(result.returncode, result.stdout or b"")
