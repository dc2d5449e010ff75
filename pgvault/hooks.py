"""Pre and post backup hook commands."""

from __future__ import annotations

import logging
import shlex
from collections.abc import Callable

from pgvault.errors import HookFailed
from pgvault.log import log_output
from pgvault.process import CommandResult, run_command

logger = logging.getLogger(__name__)

Runner = Callable[[list[str]], CommandResult]


def split_command(command: str) -> list[str]:
    """Tokenize a hook command line like a POSIX shell would, without running one."""
    if not command.strip():
        raise HookFailed("unable to run an empty command")
    try:
        words = shlex.split(command, posix=True)
    except ValueError as e:
        raise HookFailed(f"unable to parse hook command: {e}") from e
    if not words:
        raise HookFailed("unable to run an empty command")
    return words


def run_hook(command: str, label: str, runner: Runner = run_command) -> None:
    """Run a hook; raise ``HookFailed`` on parse error or non-zero exit."""
    logger.info(f"running {label} command: {command}")
    argv = split_command(command)

    logger.debug(f"running: {argv}")
    result = runner(argv)
    log_output(logger, f"{label}: ", result.output, failed=not result.ok)

    if not result.ok:
        raise HookFailed(f"{label} command exited with status {result.returncode}")
