"""Option sections nested under RunOptions."""

from pgvault.config._sections.policy import DatabaseOptions, DumpPolicy, parse_duration
from pgvault.config._sections.remote import AzureSettings, GCSSettings, S3Settings, SFTPSettings

__all__ = [
    "AzureSettings",
    "DatabaseOptions",
    "DumpPolicy",
    "GCSSettings",
    "S3Settings",
    "SFTPSettings",
    "parse_duration",
]
