"""Azure Blob Storage repository."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import BlobServiceClient

from pgvault.errors import RepositoryError, RepositoryErrorKind
from pgvault.storage import RemoteItem, download_atomically

if TYPE_CHECKING:
    from pgvault.config._sections import AzureSettings

logger = logging.getLogger(__name__)


def _repository_error(action: str, e: Exception) -> RepositoryError:
    kind = RepositoryErrorKind.OTHER
    if isinstance(e, ClientAuthenticationError):
        kind = RepositoryErrorKind.AUTH
    elif isinstance(e, ResourceNotFoundError):
        kind = RepositoryErrorKind.NOT_FOUND
    elif isinstance(e, HttpResponseError) and e.status_code == 403:
        kind = RepositoryErrorKind.PERMISSION
    elif isinstance(e, (ServiceRequestError, ServiceResponseError)):
        kind = RepositoryErrorKind.TRANSPORT
    return RepositoryError(f"could not {action}: {e}", kind)


def account_url(settings: AzureSettings) -> str:
    # Anonymous access still needs an account name in the URL
    return f"https://{settings.account}.{settings.endpoint}"


class AzureRepository:
    """Store artifacts in a blob container, shared key or anonymous access."""

    def __init__(self, settings: AzureSettings, service: BlobServiceClient | None = None) -> None:
        self.container_name = settings.container
        if service is None:
            credential = None
            if settings.account and settings.key:
                credential = {"account_name": settings.account, "account_key": settings.key}
            else:
                logger.info("no azure account key given, using anonymous access")
            service = BlobServiceClient(account_url=account_url(settings), credential=credential)
        self.service = service
        self.container = service.get_container_client(self.container_name)

    def upload(self, local_path: str, remote_key: str) -> None:
        logger.info(f"uploading {local_path} to azure container {self.container_name}: {remote_key}")
        try:
            with open(local_path, "rb") as f:
                # The SDK splits large files into blocks
                self.container.upload_blob(remote_key, f, overwrite=True)
        except (AzureError, OSError) as e:
            raise _repository_error(f"upload {local_path}", e) from e

    def download(self, remote_key: str, local_path: str) -> None:
        logger.info(f"downloading {remote_key} from azure container {self.container_name} to {local_path}")

        def fetch(tmp: str) -> None:
            with open(tmp, "wb") as f:
                self.container.download_blob(remote_key).readinto(f)

        try:
            download_atomically(local_path, fetch)
        except (AzureError, OSError) as e:
            raise _repository_error(f"download {remote_key}", e) from e

    def list(self, prefix: str = "") -> list[RemoteItem]:
        try:
            return [
                RemoteItem(key=blob.name, mod_time=blob.last_modified)
                for blob in self.container.list_blobs(name_starts_with=prefix or None)
            ]
        except AzureError as e:
            raise _repository_error(f"list {self.container_name}/{prefix}", e) from e

    def remove(self, remote_key: str) -> None:
        try:
            self.container.delete_blob(remote_key)
        except ResourceNotFoundError:
            logger.debug(f"{self.container_name}/{remote_key} already removed")
        except AzureError as e:
            raise _repository_error(f"remove {remote_key}", e) from e

    def close(self) -> None:
        self.container.close()
        self.service.close()
