"""Artifact naming: where dumps go and how to recognize them later."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

LEGACY_LAYOUT = "%Y-%m-%d_%H-%M-%S"

# Base extensions first (longest alternatives before their prefixes), then up
# to two checksum/age suffixes and a final checksum. Anything after a further
# dot is tolerated (db_<ts>.sql.gz). Directory dump parts listed remotely
# look like "d/toc.dat.age", hence the "/" boundary.
ARTIFACT_RE = re.compile(
    r"^(?P<base>createdb\.sql|dump|sql|tar|out|d)"
    r"(?P<suffixes>(?:\.(?:sha\d{1,3}|age)){0,2}(?:\.sha\d{1,3})?)"
    r"(?=$|/|\.)"
)


class TimestampFormat(str, Enum):
    RFC3339 = "rfc3339"
    LEGACY = "legacy"

    def render(self, when: datetime) -> str:
        if self is TimestampFormat.LEGACY:
            return when.strftime(LEGACY_LAYOUT)
        if when.tzinfo is None:
            when = when.astimezone()
        return when.isoformat(timespec="seconds")


class ArtifactKind(str, Enum):
    DUMP = "dump"
    ACL = "acl"
    SETTINGS = "settings"
    CHECKSUM = "checksum"
    ENCRYPTED = "encrypted"


@dataclass(frozen=True)
class ArtifactName:
    """A parsed ``<dbname>_<timestamp>.<base>[.<suffix>...]`` name."""

    dbname: str
    timestamp: str
    when: datetime
    base: str
    suffixes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def kind(self) -> ArtifactKind:
        if self.suffixes and self.suffixes[-1].startswith("sha"):
            return ArtifactKind.CHECKSUM
        if "age" in self.suffixes:
            return ArtifactKind.ENCRYPTED
        if self.base == "createdb.sql":
            return ArtifactKind.ACL
        if self.base == "out":
            return ArtifactKind.SETTINGS
        return ArtifactKind.DUMP

    @property
    def algorithm(self) -> str | None:
        """Checksum algorithm for checksum sidecars."""
        if self.kind is ArtifactKind.CHECKSUM:
            return self.suffixes[-1]
        return None

    @property
    def inner_kind(self) -> ArtifactKind | None:
        """What an encrypted artifact holds once decrypted."""
        if self.kind is not ArtifactKind.ENCRYPTED:
            return None
        inner = self.suffixes[: self.suffixes.index("age")]
        return ArtifactName(self.dbname, self.timestamp, self.when, self.base, inner).kind


def clean_db_name(dbname: str) -> str:
    """Make a database name safe to use as a file name."""
    # No hidden files
    if dbname.startswith("."):
        dbname = "_" + dbname

    # Never write into a sub or parent directory
    if os.sep in dbname:
        dbname = dbname.replace(os.sep, "_")

    return dbname.replace("/", "_")


def format_dump_path(
    directory: str,
    time_format: TimestampFormat,
    ext: str,
    dbname: str,
    when: datetime | None,
    index: int = 0,
) -> str:
    """Build the output path of an artifact. No I/O.

    ``when=None`` is the zero instant: the name carries no timestamp, which
    is what the per-database lock file uses. ``index`` is accepted for
    disambiguating several outputs of one run and does not change the name.
    """
    dbname = clean_db_name(dbname)

    target_dir = directory
    if dbname:
        target_dir = directory.replace("{dbname}", dbname)

    ext = ext or "dump"

    if when is None:
        filename = f"{dbname}.{ext}"
    else:
        filename = f"{dbname}_{time_format.render(when)}.{ext}"

    return os.path.join(target_dir, filename)


def dump_directory(directory: str, dbname: str) -> str:
    """The directory holding the artifacts of ``dbname``."""
    return os.path.dirname(format_dump_path(directory, TimestampFormat.LEGACY, "", dbname, None))


def parse_timestamp(text: str) -> datetime | None:
    """Parse a run timestamp in any layout pgvault ever wrote.

    Naive forms are interpreted in the local timezone so they compare
    correctly with a local retention limit.
    """
    try:
        return datetime.strptime(text, LEGACY_LAYOUT).astimezone()
    except ValueError:
        pass

    # RFC 3339 only: reject the looser forms fromisoformat accepts
    if len(text) < 20 or text[10] != "T":
        return None
    try:
        when = datetime.fromisoformat(text)
    except ValueError:
        return None
    if when.tzinfo is None:
        return None
    return when


def parse_artifact_name(dbname: str, name: str) -> ArtifactName | None:
    """Classify ``name`` as an artifact of ``dbname``, or return None."""
    prefix = clean_db_name(dbname) + "_"
    if not name.startswith(prefix):
        return None

    timestamp, sep, rest = name[len(prefix) :].partition(".")
    if not sep:
        return None

    when = parse_timestamp(timestamp)
    if when is None:
        return None

    match = ARTIFACT_RE.match(rest)
    if match is None:
        return None

    suffixes = tuple(s for s in match.group("suffixes").split(".") if s)
    return ArtifactName(dbname, timestamp, when, match.group("base"), suffixes)


def rel_path(basedir: str, path: str) -> str:
    """Relative path of ``path`` under ``basedir`` as a forward-slash key.

    Leading ``../`` components are dropped so that a ``{dbname}`` template
    in the backup directory still yields keys below the bucket root.
    """
    try:
        target = os.path.relpath(path, basedir)
    except ValueError:
        target = path

    prefix = ".." + os.sep
    while target.startswith(prefix):
        target = target[len(prefix) :]

    return forward_slashes(target)


def forward_slashes(path: str) -> str:
    if os.sep != "/":
        return path.replace(os.sep, "/")
    return path
