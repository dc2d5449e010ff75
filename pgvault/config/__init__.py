"""Run configuration for pgvault.

Usage:
    from pgvault.config import load_options

    options = load_options("/etc/pgvault/pgvault.conf", cli={"jobs": 4})
    options.database_options("db1").format   # DumpFormat.CUSTOM
    options.s3.bucket                         # "..."
"""

from __future__ import annotations

from pgvault.config._loader import (
    DATABASE_KEYS,
    GLOBAL_KEYS,
    check_cipher_options,
    load_options,
    merge_options,
    read_config_file,
    resolve_cipher_params,
)
from pgvault.config._sections import DatabaseOptions, DumpPolicy, parse_duration
from pgvault.config._settings import EnvSecrets, RunOptions
from pgvault.config.defaults import DEFAULT_CONFIG
from pgvault.config.legacy import convert_legacy_config, convert_legacy_config_file

DEFAULT_CONFIG_FILE = "/etc/pgvault/pgvault.conf"

__all__ = [
    "DATABASE_KEYS",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "GLOBAL_KEYS",
    "DatabaseOptions",
    "DumpPolicy",
    "EnvSecrets",
    "RunOptions",
    "check_cipher_options",
    "convert_legacy_config",
    "convert_legacy_config_file",
    "load_options",
    "merge_options",
    "parse_duration",
    "read_config_file",
    "resolve_cipher_params",
]
