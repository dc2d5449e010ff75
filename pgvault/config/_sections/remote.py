"""Remote repository settings, one model per backend.

In the configuration file each field carries the backend as a prefix,
e.g. ``s3_bucket`` or ``sftp_host``.
"""

from pydantic import BaseModel, Field


class S3Settings(BaseModel):
    region: str = ""
    bucket: str = ""
    profile: str = ""
    key_id: str = ""
    secret: str = ""
    endpoint: str = ""
    force_path: bool = False
    tls: bool = True


class SFTPSettings(BaseModel):
    host: str = ""
    port: int = Field(default=22, ge=1, le=65535)
    user: str = ""
    password: str = ""
    directory: str = ""
    identity: str = ""
    ignore_hostkey: bool = False


class GCSSettings(BaseModel):
    bucket: str = ""
    endpoint: str = ""
    keyfile: str = ""


class AzureSettings(BaseModel):
    container: str = ""
    account: str = ""
    key: str = ""
    endpoint: str = "blob.core.windows.net"
