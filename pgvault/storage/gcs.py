"""Google Cloud Storage repository."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from google.api_core import exceptions as gax
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import storage

from pgvault.errors import RepositoryError, RepositoryErrorKind
from pgvault.storage import RemoteItem, download_atomically

if TYPE_CHECKING:
    from pgvault.config._sections import GCSSettings

logger = logging.getLogger(__name__)


def _repository_error(action: str, e: Exception) -> RepositoryError:
    kind = RepositoryErrorKind.OTHER
    if isinstance(e, (gax.Unauthorized, DefaultCredentialsError)):
        kind = RepositoryErrorKind.AUTH
    elif isinstance(e, gax.Forbidden):
        kind = RepositoryErrorKind.PERMISSION
    elif isinstance(e, gax.NotFound):
        kind = RepositoryErrorKind.NOT_FOUND
    elif isinstance(e, (gax.ServiceUnavailable, gax.DeadlineExceeded, ConnectionError)):
        kind = RepositoryErrorKind.TRANSPORT
    return RepositoryError(f"could not {action}: {e}", kind)


class GCSRepository:
    """Store artifacts in a GCS bucket.

    Without a key file the client uses the application default
    credentials (``GOOGLE_APPLICATION_CREDENTIALS``).
    """

    def __init__(self, settings: GCSSettings, client: storage.Client | None = None) -> None:
        self.bucket_name = settings.bucket
        if client is None:
            try:
                client = self._build_client(settings)
            except (gax.GoogleAPIError, DefaultCredentialsError) as e:
                raise _repository_error("create GCS client", e) from e
        self.client = client
        self.bucket = client.bucket(self.bucket_name)

    @staticmethod
    def _build_client(settings: GCSSettings) -> storage.Client:
        options = {"api_endpoint": settings.endpoint} if settings.endpoint else None
        if settings.keyfile:
            return storage.Client.from_service_account_json(settings.keyfile, client_options=options)
        return storage.Client(client_options=options)

    def upload(self, local_path: str, remote_key: str) -> None:
        logger.info(f"uploading {local_path} to gs://{self.bucket_name}/{remote_key}")
        blob = self.bucket.blob(remote_key)
        try:
            # Large files go through a resumable upload
            blob.upload_from_filename(local_path)
        except (gax.GoogleAPIError, OSError) as e:
            raise _repository_error(f"upload {local_path}", e) from e

    def download(self, remote_key: str, local_path: str) -> None:
        logger.info(f"downloading gs://{self.bucket_name}/{remote_key} to {local_path}")
        blob = self.bucket.blob(remote_key)
        try:
            download_atomically(local_path, blob.download_to_filename)
        except (gax.GoogleAPIError, OSError) as e:
            raise _repository_error(f"download {remote_key}", e) from e

    def list(self, prefix: str = "") -> list[RemoteItem]:
        try:
            blobs = self.client.list_blobs(self.bucket_name, prefix=prefix or None)
            return [RemoteItem(key=blob.name, mod_time=blob.updated) for blob in blobs]
        except gax.GoogleAPIError as e:
            raise _repository_error(f"list gs://{self.bucket_name}/{prefix}", e) from e

    def remove(self, remote_key: str) -> None:
        try:
            self.bucket.blob(remote_key).delete()
        except gax.NotFound:
            logger.debug(f"gs://{self.bucket_name}/{remote_key} already removed")
        except gax.GoogleAPIError as e:
            raise _repository_error(f"remove {remote_key}", e) from e

    def close(self) -> None:
        self.client.close()
