"""INI configuration file reading and merging with the command line."""

from __future__ import annotations

import configparser
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from pgvault.config._sections import DatabaseOptions
from pgvault.config._settings import POLICY_KEYS, EnvSecrets, RunOptions
from pgvault.crypto import CipherParams
from pgvault.errors import CapabilityError, ConfigError

logger = logging.getLogger(__name__)

# Section names nobody can give to a database
GLOBALS_SECTION = "pgvault:globals"
DEFAULTS_SECTION = "pgvault:defaults"

REMOTE_PREFIXES = ("s3", "sftp", "gcs", "azure")

# Options only the command line can set
CLI_ONLY_KEYS = frozenset({"decrypt", "download", "list_remote", "verbose", "quiet"})

_NESTED = frozenset({"s3", "sftp", "gcs", "azure", "databases"})


def _remote_keys() -> set[str]:
    keys = set()
    for prefix in REMOTE_PREFIXES:
        section = RunOptions.model_fields[prefix].default_factory
        keys.update(f"{prefix}_{name}" for name in section.model_fields)
    return keys


GLOBAL_KEYS = frozenset(set(RunOptions.model_fields) - _NESTED - CLI_ONLY_KEYS) | _remote_keys()
DATABASE_KEYS = frozenset(DatabaseOptions.model_fields)

# An empty value in a section means "unset", except for these keys where
# it cancels the inherited value
EMPTY_MEANINGFUL = frozenset({"pg_dump_options", "with_blobs"})

# Validation errors on these fields mean a capability pgvault does not have
CAPABILITY_FIELDS = ("checksum_algorithm", "timestamp_format")


def read_config_file(path: str) -> tuple[dict[str, str], dict[str, dict[str, str]]]:
    """Read an INI file: the unnamed top section holds the globals.

    Returns the globals and a mapping of database name to its section.
    Unknown keys are rejected here so the message names the section.
    """
    parser = configparser.ConfigParser(
        interpolation=None,
        strict=False,
        default_section=DEFAULTS_SECTION,
    )
    # Keys are case sensitive like database names
    parser.optionxform = str

    with open(path, encoding="utf-8") as f:
        text = f.read()

    try:
        parser.read_string(f"[{GLOBALS_SECTION}]\n{text}", source=path)
    except configparser.Error as e:
        raise ConfigError(f"could not load configuration file {path}: {e}") from e

    file_globals = _drop_unset(dict(parser.items(GLOBALS_SECTION)))
    for key in file_globals:
        if key not in GLOBAL_KEYS:
            raise ConfigError(f"unknown parameter in configuration file: {key}")

    file_dbs: dict[str, dict[str, str]] = {}
    for section in parser.sections():
        if section == GLOBALS_SECTION:
            continue
        values = dict(parser.items(section))
        for key in values:
            if key not in DATABASE_KEYS:
                raise ConfigError(f"unknown parameter in configuration file for db {section}: {key}")
        file_dbs[section] = _drop_unset(values)

    return file_globals, file_dbs


def _drop_unset(values: dict[str, str]) -> dict[str, str]:
    return {key: value for key, value in values.items() if value or key in EMPTY_MEANINGFUL}


def _translate(e: ValidationError) -> ConfigError:
    err = e.errors()[0]
    loc = [str(part) for part in err["loc"]]
    msg = err["msg"].removeprefix("Value error, ")

    if len(loc) >= 3 and loc[0] == "databases":
        where = f"{loc[-1]} for db {loc[1]}"
    elif loc and loc[0] in ("s3", "sftp", "gcs", "azure") and len(loc) > 1:
        where = f"{loc[0]}_{loc[1]}"
    else:
        where = ".".join(loc) or "options"

    if loc and loc[-1] in CAPABILITY_FIELDS:
        return CapabilityError(f"invalid value for {where}: {msg}")
    return ConfigError(f"invalid value for {where}: {msg}")


def _nest_remote(raw: dict[str, Any]) -> None:
    for prefix in REMOTE_PREFIXES:
        marker = f"{prefix}_"
        section = {key[len(marker) :]: raw.pop(key) for key in list(raw) if key.startswith(marker)}
        raw[prefix] = section


def _apply_env_secrets(raw: dict[str, Any], env: EnvSecrets) -> None:
    fallbacks = {
        "cipher_pass": env.pgbk_cipher_pass,
        "sftp_password": env.pgbk_ssh_pass,
        "azure_account": env.azure_storage_account,
        "azure_key": env.azure_storage_key,
    }
    for key, value in fallbacks.items():
        if not raw.get(key) and value:
            raw[key] = value


def merge_options(
    file_globals: Mapping[str, Any],
    file_dbs: Mapping[str, Mapping[str, Any]],
    cli: Mapping[str, Any],
    env: EnvSecrets | None = None,
) -> RunOptions:
    """Overlay defaults, the file and the explicitly set command line flags.

    ``cli`` must only hold the flags given on the command line: a flag left
    at its default never overrides the file. Policy keys given on the
    command line also win over every database section.
    """
    raw: dict[str, Any] = {**file_globals, **cli}
    if env is not None:
        _apply_env_secrets(raw, env)

    databases = {}
    for name, section in file_dbs.items():
        db_raw = {key: raw[key] for key in POLICY_KEYS if key in raw}
        db_raw.update(section)
        db_raw.update({key: cli[key] for key in POLICY_KEYS if key in cli})
        databases[name] = db_raw

    _nest_remote(raw)
    raw["databases"] = databases

    try:
        options = RunOptions.model_validate(raw)
    except ValidationError as e:
        raise _translate(e) from e

    check_cipher_options(options)
    return options


def load_options(
    config_path: str,
    cli: Mapping[str, Any],
    config_explicit: bool = False,
    no_config_file: bool = False,
    env: EnvSecrets | None = None,
) -> RunOptions:
    """Assemble the run options from the configuration file and the CLI.

    A missing file is only an error when it was given explicitly.
    """
    file_globals: dict[str, str] = {}
    file_dbs: dict[str, dict[str, str]] = {}

    if not no_config_file:
        logger.debug(f"loading configuration file: {config_path}")
        try:
            file_globals, file_dbs = read_config_file(config_path)
        except FileNotFoundError:
            if config_explicit:
                raise ConfigError(f"could not load configuration file {config_path}: file not found") from None
            logger.debug(f"configuration file {config_path} not found, using defaults")
        except OSError as e:
            raise ConfigError(f"could not load configuration file {config_path}: {e.strerror}") from e

    if env is None:
        env = EnvSecrets()

    return merge_options(file_globals, file_dbs, cli, env)


def check_cipher_options(options: RunOptions) -> None:
    if options.encrypt and options.decrypt:
        raise ConfigError("options encrypt and decrypt are mutually exclusive")

    if options.encrypt and not (options.cipher_public_key or options.cipher_pass):
        raise CapabilityError("cannot use an empty passphrase for encryption")

    if options.decrypt and not (options.cipher_private_key or options.cipher_pass):
        raise CapabilityError("cannot use an empty passphrase for decryption")


def resolve_cipher_params(options: RunOptions) -> CipherParams:
    return CipherParams(
        passphrase=options.cipher_pass,
        public_key=options.cipher_public_key,
        private_key=options.cipher_private_key,
    )
