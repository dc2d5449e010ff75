"""Dump policy: the options a database section may override."""

from __future__ import annotations

import re
import shlex
from datetime import timedelta
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from pgvault.checksum import ChecksumAlgorithm
from pgvault.dumptool import DumpFormat

DURATION_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

# Nanoseconds per unit; timedelta itself cannot hold a nanosecond
DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}


def parse_duration(value: str | int | timedelta) -> timedelta:
    """A bare integer is a number of days, otherwise ``1h30m`` style units."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, int):
        return timedelta(days=value)

    text = value.strip()
    if re.fullmatch(r"[+-]?\d+", text):
        return timedelta(days=int(text))

    sign = 1
    if text.startswith(("+", "-")):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    if not text:
        raise ValueError(f"invalid duration {value!r}")

    pos = 0
    total_ns = Decimal(0)
    while pos < len(text):
        match = DURATION_RE.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        total_ns += Decimal(match.group(1)) * DURATION_UNITS[match.group(2)]
        pos = match.end()

    return sign * timedelta(microseconds=float(total_ns / 1000))


def split_list(value: Any, sep: str) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(sep) if item.strip()]
    return value


class DumpPolicy(BaseModel):
    """Options shared by the global section and database sections."""

    model_config = {"extra": "forbid", "validate_default": True}

    format: DumpFormat = DumpFormat.CUSTOM
    parallel_backup_jobs: int = Field(default=1, ge=1)
    compress_level: int = Field(default=-1, ge=-1, le=9)
    checksum_algorithm: ChecksumAlgorithm = ChecksumAlgorithm.NONE
    purge_older_than: timedelta = timedelta(days=30)
    purge_min_keep: int = 0
    pg_dump_options: list[str] = Field(default_factory=list)

    @field_validator("format", mode="before")
    @classmethod
    def _parse_format(cls, v: Any) -> Any:
        if isinstance(v, str) and not isinstance(v, DumpFormat):
            return DumpFormat.parse(v)
        return v

    @field_validator("purge_older_than", mode="before")
    @classmethod
    def _parse_purge_older_than(cls, v: Any) -> Any:
        interval = parse_duration(v)
        if interval < timedelta(0):
            raise ValueError("purge interval must not be negative")
        return interval

    @field_validator("purge_min_keep", mode="before")
    @classmethod
    def _parse_purge_min_keep(cls, v: Any) -> Any:
        # -1 means keep everything
        if isinstance(v, str):
            v = v.strip()
            if v == "all":
                return -1
            try:
                keep = int(v)
            except ValueError:
                raise ValueError(f"invalid input for keep: {v!r}") from None
            if keep < 0:
                raise ValueError(f"invalid input for keep: negative value: {keep}")
            return keep
        if isinstance(v, int) and v < -1:
            raise ValueError(f"invalid input for keep: negative value: {v}")
        return v

    @field_validator("pg_dump_options", mode="before")
    @classmethod
    def _split_pg_dump_options(cls, v: Any) -> Any:
        if isinstance(v, str):
            try:
                return shlex.split(v)
            except ValueError as e:
                raise ValueError(f"unable to parse pg_dump_options: {e}") from e
        return v


class DatabaseOptions(DumpPolicy):
    """Effective policy of one database."""

    schemas: list[str] = Field(default_factory=list)
    exclude_schemas: list[str] = Field(default_factory=list)
    tables: list[str] = Field(default_factory=list)
    exclude_tables: list[str] = Field(default_factory=list)
    with_blobs: bool | None = None

    @field_validator("schemas", "exclude_schemas", "tables", "exclude_tables", mode="before")
    @classmethod
    def _split_identifiers(cls, v: Any) -> Any:
        return split_list(v, ";")

    @field_validator("with_blobs", mode="before")
    @classmethod
    def _empty_blobs_is_unset(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v
