"""Root RunOptions model and the secrets read from the environment."""

from __future__ import annotations

import os
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from pgvault.config._sections import (
    AzureSettings,
    DatabaseOptions,
    DumpPolicy,
    GCSSettings,
    S3Settings,
    SFTPSettings,
)
from pgvault.config._sections.policy import split_list
from pgvault.naming import TimestampFormat
from pgvault.storage import RemoteKind

# Keys a database section inherits from the globals when it does not set them
POLICY_KEYS = tuple(DumpPolicy.model_fields)


class RunOptions(DumpPolicy):
    """Everything one invocation needs, immutable once assembled."""

    model_config = {"extra": "forbid", "validate_default": True, "frozen": True}

    bin_directory: str = ""
    backup_directory: str = "/var/backups/postgresql"
    timestamp_format: TimestampFormat = TimestampFormat.RFC3339

    host: str = ""
    port: int = Field(default=0, ge=0, le=65535)
    user: str = ""
    dbname: str = ""

    include_dbs: list[str] = Field(default_factory=list)
    exclude_dbs: list[str] = Field(default_factory=list)
    with_templates: bool = False
    with_role_passwords: bool = True
    dump_only: bool = False

    jobs: int = Field(default=1, ge=1)
    pause_timeout: int = Field(default=3600, ge=0)

    pre_backup_hook: str = ""
    post_backup_hook: str = ""

    encrypt: bool = False
    encrypt_keep_source: bool = False
    cipher_pass: str = Field(default="", repr=False)
    cipher_public_key: str = ""
    cipher_private_key: str = Field(default="", repr=False)
    decrypt: bool = False

    upload: RemoteKind = RemoteKind.NONE
    download: RemoteKind = RemoteKind.NONE
    list_remote: RemoteKind = RemoteKind.NONE
    purge_remote: bool = False

    s3: S3Settings = Field(default_factory=S3Settings)
    sftp: SFTPSettings = Field(default_factory=SFTPSettings)
    gcs: GCSSettings = Field(default_factory=GCSSettings)
    azure: AzureSettings = Field(default_factory=AzureSettings)

    databases: dict[str, DatabaseOptions] = Field(default_factory=dict)

    verbose: bool = False
    quiet: bool = False

    @field_validator("include_dbs", "exclude_dbs", mode="before")
    @classmethod
    def _split_db_lists(cls, v: Any) -> Any:
        return split_list(v, ",")

    @field_validator("upload", "download", "list_remote", mode="before")
    @classmethod
    def _lower_remote_kind(cls, v: Any) -> Any:
        if isinstance(v, str) and not isinstance(v, RemoteKind):
            return v.strip().lower() or RemoteKind.NONE
        return v

    @field_validator("timestamp_format", mode="before")
    @classmethod
    def _lower_timestamp_format(cls, v: Any) -> Any:
        if isinstance(v, str) and not isinstance(v, TimestampFormat):
            return v.strip().lower()
        return v

    @model_validator(mode="after")
    def _legacy_timestamps_on_windows(self) -> RunOptions:
        # ":" is not allowed in file names there
        if os.name == "nt" and self.timestamp_format is not TimestampFormat.LEGACY:
            object.__setattr__(self, "timestamp_format", TimestampFormat.LEGACY)
        return self

    def database_options(self, dbname: str) -> DatabaseOptions:
        """Effective policy of ``dbname``, the globals when it has no section."""
        if dbname in self.databases:
            return self.databases[dbname]
        return DatabaseOptions(**{key: getattr(self, key) for key in POLICY_KEYS})


class EnvSecrets(BaseSettings):
    """Secrets that may be given through the environment instead of the file."""

    model_config = {"case_sensitive": False, "extra": "ignore"}

    pgbk_cipher_pass: str = Field(default="", repr=False)
    pgbk_ssh_pass: str = Field(default="", repr=False)
    azure_storage_account: str = ""
    azure_storage_key: str = Field(default="", repr=False)
