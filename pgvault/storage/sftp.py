"""SFTP repository over one SSH connection."""

from __future__ import annotations

import getpass
import logging
import posixpath
import socket
import stat
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import paramiko

from pgvault.errors import RepositoryError, RepositoryErrorKind
from pgvault.storage import RemoteItem, download_atomically

if TYPE_CHECKING:
    from pgvault.config._sections import SFTPSettings

logger = logging.getLogger(__name__)


def _repository_error(action: str, e: Exception) -> RepositoryError:
    kind = RepositoryErrorKind.OTHER
    if isinstance(e, paramiko.AuthenticationException):
        kind = RepositoryErrorKind.AUTH
    elif isinstance(e, FileNotFoundError):
        kind = RepositoryErrorKind.NOT_FOUND
    elif isinstance(e, PermissionError):
        kind = RepositoryErrorKind.PERMISSION
    elif isinstance(e, (paramiko.SSHException, socket.error, EOFError)):
        kind = RepositoryErrorKind.TRANSPORT
    return RepositoryError(f"could not {action}: {e}", kind)


class SFTPRepository:
    """Store artifacts below ``sftp_directory`` on an SSH server."""

    def __init__(self, settings: SFTPSettings, client: paramiko.SSHClient | None = None) -> None:
        self.base_dir = settings.directory
        self.target = f"{settings.host}:{settings.port}"

        if client is None:
            client = self._connect(settings)
        self.ssh = client
        try:
            self.sftp = client.open_sftp()
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise _repository_error(f"open sftp session on {self.target}", e) from e

    @staticmethod
    def _connect(settings: SFTPSettings) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        if settings.ignore_hostkey:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.RejectPolicy())

        user = settings.user or getpass.getuser()
        logger.debug(f"connecting to {user}@{settings.host}:{settings.port}")
        try:
            client.connect(
                settings.host,
                port=settings.port,
                username=user,
                password=settings.password or None,
                key_filename=settings.identity or None,
                look_for_keys=not settings.identity,
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise _repository_error(f"connect to {settings.host}:{settings.port}", e) from e
        return client

    def _remote_path(self, key: str) -> str:
        if self.base_dir:
            return posixpath.join(self.base_dir, key)
        return key

    def _makedirs(self, directory: str) -> None:
        if not directory or directory in (".", "/"):
            return
        try:
            self.sftp.stat(directory)
            return
        except FileNotFoundError:
            pass
        self._makedirs(posixpath.dirname(directory))
        self.sftp.mkdir(directory)

    def upload(self, local_path: str, remote_key: str) -> None:
        target = self._remote_path(remote_key)
        logger.info(f"uploading {local_path} to {self.target}:{target}")
        try:
            self._makedirs(posixpath.dirname(target))
            self.sftp.put(local_path, target)
        except (paramiko.SSHException, OSError) as e:
            raise _repository_error(f"upload {local_path}", e) from e

    def download(self, remote_key: str, local_path: str) -> None:
        source = self._remote_path(remote_key)
        logger.info(f"downloading {self.target}:{source} to {local_path}")
        try:
            download_atomically(local_path, lambda tmp: self.sftp.get(source, tmp))
        except (paramiko.SSHException, OSError) as e:
            raise _repository_error(f"download {remote_key}", e) from e

    def _walk(self, directory: str, items: list[RemoteItem]) -> None:
        for attr in self.sftp.listdir_attr(directory or "."):
            path = posixpath.join(directory, attr.filename) if directory else attr.filename
            key = path
            if self.base_dir:
                key = posixpath.relpath(path, self.base_dir)

            mod_time = None
            if attr.st_mtime is not None:
                mod_time = datetime.fromtimestamp(attr.st_mtime, tz=UTC)

            if attr.st_mode is not None and stat.S_ISDIR(attr.st_mode):
                items.append(RemoteItem(key=key, mod_time=mod_time, is_dir=True))
                self._walk(path, items)
            else:
                items.append(RemoteItem(key=key, mod_time=mod_time))

    def list(self, prefix: str = "") -> list[RemoteItem]:
        # Walk everything below the base directory, the prefix may end in
        # the middle of a file name
        items: list[RemoteItem] = []
        try:
            self._walk(self.base_dir, items)
        except FileNotFoundError:
            return []
        except (paramiko.SSHException, OSError) as e:
            raise _repository_error(f"list {self.target}:{self.base_dir}", e) from e

        return [item for item in items if item.key.startswith(prefix)]

    def remove(self, remote_key: str) -> None:
        path = self._remote_path(remote_key)
        try:
            info = self.sftp.stat(path)
            if info.st_mode is not None and stat.S_ISDIR(info.st_mode):
                self.sftp.rmdir(path)
            else:
                self.sftp.remove(path)
        except FileNotFoundError:
            logger.debug(f"{self.target}:{path} already removed")
        except (paramiko.SSHException, OSError) as e:
            raise _repository_error(f"remove {remote_key}", e) from e

    def close(self) -> None:
        self.sftp.close()
        self.ssh.close()
