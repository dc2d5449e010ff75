"""Conversion of shell style configuration files from the 1.x series."""

from __future__ import annotations

import logging
import shlex
from collections.abc import Iterable

logger = logging.getLogger(__name__)

LEGACY_KEYS = {
    "PGBK_BIN": "bin_directory",
    "PGBK_BACKUP_DIR": "backup_directory",
    "PGBK_PURGE": "purge_older_than",
    "PGBK_PURGE_MIN_KEEP": "purge_min_keep",
    "PGBK_DBLIST": "include_dbs",
    "PGBK_EXCLUDE": "exclude_dbs",
    "PGBK_STANDBY_PAUSE_TIMEOUT": "pause_timeout",
    "PGBK_HOSTNAME": "host",
    "PGBK_PORT": "port",
    "PGBK_USERNAME": "user",
    "PGBK_CONNDB": "dbname",
    "PGBK_PRE_BACKUP_COMMAND": "pre_backup_hook",
    "PGBK_POST_BACKUP_COMMAND": "post_backup_hook",
    "SIGNATURE_ALGO": "checksum_algorithm",
}

FORMAT_FLAGS = {
    "plain": ("-Fp", "-Fplain", "--format=p", "--format=plain"),
    "custom": ("-Fc", "-Fcustom", "--format=c", "--format=custom"),
    "tar": ("-Ft", "-Ftar", "--format=t", "--format=tar"),
    "directory": ("-Fd", "-Fdirectory", "--format=d", "--format=directory"),
}

FORMAT_LETTERS = {"p": "plain", "c": "custom", "t": "tar", "d": "directory"}


def read_legacy_conf(lines: Iterable[str]) -> list[str]:
    """Keep only the lines that look like legacy options."""
    found = []
    for line in lines:
        line = line.strip(" \t\r\v\n")
        if line.startswith("PGBK_") or line.startswith("SIGNATURE_ALGO="):
            found.append(line)
    return found


def strip_end_comment(text: str) -> str:
    """Drop a trailing ``# comment`` that is outside of quotes."""
    out = []
    in_squote = in_dquote = in_escape = False

    for c in text:
        if c == '"':
            if in_squote or in_escape:
                in_escape = False
            else:
                in_dquote = not in_dquote
        elif c == "'":
            if in_dquote or in_escape:
                in_escape = False
            else:
                in_squote = not in_squote
        elif c == "\\":
            in_escape = not in_escape
        elif c == "#" and not in_squote and not in_dquote:
            break
        else:
            in_escape = False
        out.append(c)

    return "".join(out).strip(" \t\v")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


def _convert_pg_dump_options(value: str) -> list[str]:
    # Shell arrays keep their elements, plain strings lose their quotes
    if value.startswith("(") and value.endswith(")"):
        text = value[1:-1]
    else:
        text = _unquote(value)

    try:
        words = shlex.split(text)
    except ValueError as e:
        logger.warning(f'could not parse value of PGBK_OPTS "{value}": {e}')
        return []

    # A format in pg_dump_options would fight with the one pgvault passes
    result = []
    options = []
    expect_format = False
    for word in words:
        fmt = next((name for name, flags in FORMAT_FLAGS.items() if word in flags), None)
        if fmt is not None:
            result.append(f"format = {fmt}")
            continue
        if word in ("-F", "--format"):
            expect_format = True
            continue
        if expect_format:
            expect_format = False
            fmt = FORMAT_LETTERS.get(word[:1])
            if fmt is not None:
                result.append(f"format = {fmt}")
            continue

        if " " in word:
            quoted = word.replace("\\", "\\\\").replace('"', '\\"')
            options.append(f'"{quoted}"')
        else:
            options.append(word)

    result.append(f"pg_dump_options = {' '.join(options)}")
    return result


def convert_legacy_config(lines: Iterable[str]) -> str:
    """Translate legacy ``KEY=value`` lines into the INI format."""
    result = []

    for line in read_legacy_conf(lines):
        key, _, raw = line.partition("=")
        value = strip_end_comment(raw)
        unquoted = _unquote(value)

        if key == "PGBK_TIMESTAMP":
            fmt = "legacy" if unquoted == "%Y-%m-%d_%H-%M-%S" else "rfc3339"
            result.append(f"timestamp_format = {fmt}")
        elif key == "PGBK_OPTS":
            result.extend(_convert_pg_dump_options(value))
        elif key in ("PGBK_DBLIST", "PGBK_EXCLUDE"):
            # Lists of databases are now comma separated
            dbs = [d for d in unquoted.split(" ") if d]
            result.append(f"{LEGACY_KEYS[key]} = {', '.join(dbs)}")
        elif key == "PGBK_WITH_TEMPLATES":
            result.append(f"with_templates = {'true' if unquoted == 'yes' else 'false'}")
        elif key in LEGACY_KEYS:
            result.append(f"{LEGACY_KEYS[key]} = {unquoted}")
        else:
            logger.debug(f"no equivalent for legacy option {key}, skipped")

    return "".join(f"{line}\n" for line in result)


def convert_legacy_config_file(path: str) -> str:
    with open(path, encoding="utf-8") as f:
        return convert_legacy_config(f)
