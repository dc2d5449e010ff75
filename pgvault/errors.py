"""Exception taxonomy for backup runs.

Library code raises these; the orchestrator turns per-job failures into
job status and the CLI turns fatal ones into exit code 1.
"""

from __future__ import annotations

from enum import Enum


class PgVaultError(Exception):
    """Base class for every error raised by pgvault."""


class ConfigError(PgVaultError):
    """Invalid flag value, unknown key or out-of-range setting."""


class CapabilityError(ConfigError):
    """Missing encryption material or an unsupported algorithm/format."""


class ConnectError(PgVaultError):
    """The server could not be reached or refused the credentials."""


class PgVersionError(PgVaultError):
    """The server is too old for the requested interrogation."""


class PauseTimeout(PgVaultError):
    """Replication replay could not be paused before the deadline."""


class LockBusy(PgVaultError):
    """Another process holds the per-database lock."""


class DumpFailed(PgVaultError):
    """A dump tool exited with a non-zero status."""

    def __init__(self, tool: str, exit_code: int, output: bytes = b"") -> None:
        super().__init__(f"{tool} exited with status {exit_code}")
        self.tool = tool
        self.exit_code = exit_code
        self.output = output


class PostStepFailed(PgVaultError):
    """Checksum or encryption failed after a successful dump."""


class UploadFailed(PgVaultError):
    """A file could not be pushed to the remote repository."""


class RemovalFailed(PgVaultError):
    """One or more artifacts could not be purged."""


class HookFailed(PgVaultError):
    """A pre or post backup hook could not be run or exited non-zero."""


class NoIdentityMatch(PgVaultError):
    """The ciphertext is valid but the key or passphrase does not open it."""


class MalformedCiphertext(PgVaultError):
    """The input is not an age encrypted file."""


class RepositoryErrorKind(str, Enum):
    AUTH = "auth"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    TRANSPORT = "transport"
    OTHER = "other"


class RepositoryError(PgVaultError):
    """A remote store operation failed.

    ``kind`` tells callers whether the failure is an authentication,
    permission, missing object or transport problem. Backends never
    retry on their own.
    """

    def __init__(self, message: str, kind: RepositoryErrorKind = RepositoryErrorKind.OTHER) -> None:
        super().__init__(message)
        self.kind = kind
