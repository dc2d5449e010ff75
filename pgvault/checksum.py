"""Checksum sidecar files readable by ``shaXsum -c``."""

from __future__ import annotations

import hashlib
import logging
import os
from collections.abc import Iterable
from enum import Enum

from pgvault.errors import CapabilityError, PostStepFailed

logger = logging.getLogger(__name__)


class ChecksumAlgorithm(str, Enum):
    NONE = "none"
    SHA1 = "sha1"
    SHA224 = "sha224"
    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"


def _algorithm(algo: str) -> ChecksumAlgorithm:
    try:
        return ChecksumAlgorithm(algo)
    except ValueError:
        raise CapabilityError(f"unsupported hash algorithm: {algo}") from None


def file_digest(path: str, algo: str) -> str:
    """Hex digest of the file at ``path``."""
    with open(path, "rb") as f:
        return hashlib.file_digest(f, algo).hexdigest()


def _regular_files(path: str) -> list[str]:
    files = []
    for root, dirs, names in os.walk(path):
        dirs.sort()
        for name in sorted(names):
            full = os.path.join(root, name)
            if os.path.isfile(full) and not os.path.islink(full):
                files.append(full)
    return files


def _write_sidecar(sidecar: str, paths: Iterable[str], algo: str, mode: int) -> str:
    logger.debug(f"create checksum file: {sidecar}")
    try:
        with open(sidecar, "w") as out:
            for path in paths:
                logger.debug(f"computing checksum of: {path}")
                try:
                    digest = file_digest(path, algo)
                except OSError as e:
                    raise PostStepFailed(f"could not checksum {path}: {e.strerror or e}") from e
                out.write(f"{digest}  {path}\n")
    except PostStepFailed:
        os.remove(sidecar)
        raise
    except OSError as e:
        raise PostStepFailed(f"could not write {sidecar}: {e.strerror or e}") from e

    if mode > 0:
        os.chmod(sidecar, mode)
    return sidecar


def checksum(path: str, algo: str, mode: int = 0) -> str:
    """Write ``<path>.<algo>`` for a file or every regular file of a directory.

    Returns the sidecar path, or an empty string when ``algo`` is ``none``.
    """
    algorithm = _algorithm(algo)
    if algorithm is ChecksumAlgorithm.NONE:
        return ""

    if os.path.isdir(path):
        logger.debug("dump is a directory, checksumming all files inside")
        paths: list[str] = _regular_files(path)
    else:
        paths = [path]

    return _write_sidecar(f"{path}.{algorithm.value}", paths, algorithm.value, mode)


def checksum_list(paths: list[str], algo: str, target: str, mode: int = 0) -> str:
    """Write ``<target>.<algo>`` covering ``paths`` in order."""
    algorithm = _algorithm(algo)
    if algorithm is ChecksumAlgorithm.NONE:
        return ""

    return _write_sidecar(f"{target}.{algorithm.value}", paths, algorithm.value, mode)
