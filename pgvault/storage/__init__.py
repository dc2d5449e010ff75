"""Remote artifact repositories: S3, SFTP, Google Cloud Storage, Azure Blob."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from pgvault.errors import ConfigError

if TYPE_CHECKING:
    from pgvault.config import RunOptions


class RemoteKind(str, Enum):
    NONE = "none"
    S3 = "s3"
    SFTP = "sftp"
    GCS = "gcs"
    AZURE = "azure"


@dataclass(frozen=True)
class RemoteItem:
    """One object of a remote listing."""

    key: str
    mod_time: datetime | None = None
    is_dir: bool = False


class Repository(Protocol):
    """Protocol every remote store implements.

    Keys always use forward slashes. Implementations surface failures as
    ``RepositoryError`` and never retry.
    """

    def upload(self, local_path: str, remote_key: str) -> None: ...

    def download(self, remote_key: str, local_path: str) -> None: ...

    def list(self, prefix: str = "") -> list[RemoteItem]: ...

    def remove(self, remote_key: str) -> None: ...

    def close(self) -> None: ...


def download_atomically(local_path: str, fetch: Callable[[str], None]) -> None:
    """Run ``fetch`` into a temporary file then move it over ``local_path``.

    The temporary file lives next to the target so the final rename stays
    on one filesystem. It is removed when ``fetch`` fails.
    """
    directory = os.path.dirname(local_path) or "."
    os.makedirs(directory, mode=0o755, exist_ok=True)

    fd, tmp = tempfile.mkstemp(prefix=".pgvault-", dir=directory)
    os.close(fd)
    try:
        fetch(tmp)
        os.replace(tmp, local_path)
    except BaseException:
        try:
            os.remove(tmp)
        except FileNotFoundError:
            pass
        raise


def create_repository(kind: RemoteKind | str, options: RunOptions) -> Repository:
    """Create the repository for ``kind`` from the run options."""
    kind = RemoteKind(kind)

    if kind is RemoteKind.S3:
        from pgvault.storage.s3 import S3Repository

        return S3Repository(options.s3)

    if kind is RemoteKind.SFTP:
        from pgvault.storage.sftp import SFTPRepository

        return SFTPRepository(options.sftp)

    if kind is RemoteKind.GCS:
        from pgvault.storage.gcs import GCSRepository

        return GCSRepository(options.gcs)

    if kind is RemoteKind.AZURE:
        from pgvault.storage.azure import AzureRepository

        return AzureRepository(options.azure)

    raise ConfigError(f"no repository for remote kind {kind.value}")
