"""S3-compatible repository (AWS, MinIO, Wasabi...)."""

from __future__ import annotations

import logging
import re
from datetime import UTC
from typing import TYPE_CHECKING

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from pgvault.errors import RepositoryError, RepositoryErrorKind
from pgvault.storage import RemoteItem, download_atomically

if TYPE_CHECKING:
    from pgvault.config._sections import S3Settings

logger = logging.getLogger(__name__)

# Files above this size are sent in parts
MULTIPART_THRESHOLD = 64 * 1024 * 1024

AUTH_CODES = {"InvalidAccessKeyId", "SignatureDoesNotMatch", "ExpiredToken", "InvalidToken"}
PERMISSION_CODES = {"AccessDenied", "AllAccessDisabled", "403"}
NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NotFound", "404"}

# S3UploadFailedError only keeps the text of the ClientError it replaces
ERROR_CODE_RE = re.compile(r"An error occurred \((\w+)\)")


def _code_kind(code: str) -> RepositoryErrorKind:
    if code in AUTH_CODES:
        return RepositoryErrorKind.AUTH
    if code in PERMISSION_CODES:
        return RepositoryErrorKind.PERMISSION
    if code in NOT_FOUND_CODES:
        return RepositoryErrorKind.NOT_FOUND
    return RepositoryErrorKind.OTHER


def _repository_error(action: str, e: Exception) -> RepositoryError:
    if isinstance(e, S3UploadFailedError):
        inner = e.__cause__ or e.__context__
        if isinstance(inner, (BotoCoreError, ClientError)):
            return _repository_error(action, inner)
        match = ERROR_CODE_RE.search(str(e))
        kind = _code_kind(match.group(1)) if match else RepositoryErrorKind.OTHER
        return RepositoryError(f"could not {action}: {e}", kind)

    kind = RepositoryErrorKind.OTHER
    if isinstance(e, NoCredentialsError):
        kind = RepositoryErrorKind.AUTH
    elif isinstance(e, ClientError):
        kind = _code_kind(e.response.get("Error", {}).get("Code", ""))
    elif isinstance(e, BotoCoreError):
        kind = RepositoryErrorKind.TRANSPORT
    elif isinstance(e, OSError):
        return RepositoryError(f"could not {action}: {e.strerror or e}", kind)
    return RepositoryError(f"could not {action}: {e}", kind)


class S3Repository:
    """Store artifacts in an S3 bucket, keys relative to the bucket root."""

    def __init__(self, settings: S3Settings, client=None) -> None:
        self.bucket = settings.bucket
        if client is None:
            client = self._build_client(settings)
        self.client = client
        self.transfer = TransferConfig(multipart_threshold=MULTIPART_THRESHOLD)

    @staticmethod
    def _build_client(settings: S3Settings):
        session = boto3.Session(profile_name=settings.profile or None)
        config = Config(s3={"addressing_style": "path"}) if settings.force_path else None
        return session.client(
            "s3",
            region_name=settings.region or None,
            endpoint_url=settings.endpoint or None,
            aws_access_key_id=settings.key_id or None,
            aws_secret_access_key=settings.secret or None,
            use_ssl=settings.tls,
            config=config,
        )

    def upload(self, local_path: str, remote_key: str) -> None:
        logger.info(f"uploading {local_path} to s3://{self.bucket}/{remote_key}")
        try:
            self.client.upload_file(local_path, self.bucket, remote_key, Config=self.transfer)
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as e:
            raise _repository_error(f"upload {local_path}", e) from e

    def download(self, remote_key: str, local_path: str) -> None:
        logger.info(f"downloading s3://{self.bucket}/{remote_key} to {local_path}")

        def fetch(tmp: str) -> None:
            self.client.download_file(self.bucket, remote_key, tmp, Config=self.transfer)

        try:
            download_atomically(local_path, fetch)
        except (BotoCoreError, ClientError, OSError) as e:
            raise _repository_error(f"download {remote_key}", e) from e

    def list(self, prefix: str = "") -> list[RemoteItem]:
        items = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    modified = obj.get("LastModified")
                    if modified is not None and modified.tzinfo is None:
                        modified = modified.replace(tzinfo=UTC)
                    items.append(RemoteItem(key=obj["Key"], mod_time=modified))
        except (BotoCoreError, ClientError) as e:
            raise _repository_error(f"list s3://{self.bucket}/{prefix}", e) from e
        return items

    def remove(self, remote_key: str) -> None:
        # Deleting a missing key succeeds on S3
        try:
            self.client.delete_object(Bucket=self.bucket, Key=remote_key)
        except (BotoCoreError, ClientError) as e:
            raise _repository_error(f"remove {remote_key}", e) from e
        logger.debug(f"removed s3://{self.bucket}/{remote_key}")

    def close(self) -> None:
        self.client.close()
