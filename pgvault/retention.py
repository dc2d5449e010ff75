"""Retention: group artifacts by run and purge the old groups.

The files of one run (dump, checksum, encrypted copy, createdb.sql) share
a ``<dbname>_<timestamp>`` prefix and are always kept or removed together.
The ``keep`` newest groups survive whatever their age.
"""

from __future__ import annotations

import logging
import os
import posixpath
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from pgvault.errors import PgVaultError, RemovalFailed
from pgvault.naming import clean_db_name, dump_directory, parse_artifact_name, rel_path
from pgvault.storage import RemoteItem

if TYPE_CHECKING:
    from pgvault.storage import Repository

logger = logging.getLogger(__name__)


@dataclass
class PurgeJob:
    """The artifacts of one run."""

    when: datetime
    files: list[str] = field(default_factory=list)
    dirs: list[str] = field(default_factory=list)


def plan_purge(items: list[RemoteItem], dbname: str) -> list[PurgeJob]:
    """Group the artifacts of ``dbname`` by run, newest first.

    Items that do not parse as an artifact name are ignored.
    """
    jobs: dict[str, PurgeJob] = {}

    for item in items:
        name = parse_artifact_name(dbname, item.key)
        if name is None:
            continue

        job = jobs.get(name.timestamp)
        if job is None:
            job = jobs[name.timestamp] = PurgeJob(when=name.when)
        elif name.when < job.when:
            job.when = name.when

        if item.is_dir:
            job.dirs.append(item.key)
        else:
            job.files.append(item.key)

    return sorted(jobs.values(), key=lambda j: j.when, reverse=True)


def split_purge_jobs(jobs: list[PurgeJob], keep: int, limit: datetime) -> tuple[list[PurgeJob], list[PurgeJob]]:
    """Split newest-first jobs into the ones to keep and the ones to remove.

    ``keep`` applies before age: the first ``keep`` jobs are never removed,
    a negative ``keep`` keeps everything.
    """
    if keep < 0 or keep >= len(jobs):
        return list(jobs), []

    kept = list(jobs[:keep])
    removed = []
    for job in jobs[keep:]:
        if job.when < limit:
            removed.append(job)
        else:
            kept.append(job)
    return kept, removed


def _log_kept(jobs: list[PurgeJob], keep: int, base: str, label: str) -> None:
    for i, job in enumerate(jobs):
        reason = "count" if keep < 0 or i < keep else "age"
        for name in job.files + job.dirs:
            logger.debug(f"keeping{label} ({reason}) {posixpath.join(base, name) if base else name}")


def purge_dumps(directory: str, dbname: str, keep: int, limit: datetime) -> None:
    """Remove the old local artifacts of ``dbname``.

    Every removal is attempted; ``RemovalFailed`` is raised at the end
    when at least one failed.
    """
    logger.debug(f"purge: {dbname} limit: {limit} keep: {keep}")

    # The dbname may be part of the directory
    dirpath = dump_directory(directory, dbname)
    try:
        with os.scandir(dirpath) as entries:
            items = [RemoteItem(key=e.name, is_dir=e.is_dir(follow_symlinks=False)) for e in entries]
    except FileNotFoundError:
        logger.debug(f"{dirpath} does not exist, nothing to purge")
        return
    except OSError as e:
        raise RemovalFailed(f"could not purge {dirpath}: {e.strerror}") from e

    kept, removed = split_purge_jobs(plan_purge(items, dbname), keep, limit)
    _log_kept(kept, keep, dirpath, "")

    failed = False
    for job in removed:
        for name in job.files:
            path = os.path.join(dirpath, name)
            logger.info(f"removing {path}")
            try:
                os.remove(path)
            except OSError as e:
                logger.error(f"could not remove {path}: {e.strerror}")
                failed = True

        for name in job.dirs:
            path = os.path.join(dirpath, name)
            logger.info(f"removing {path}")
            try:
                shutil.rmtree(path)
            except OSError as e:
                logger.error(f"could not remove {path}: {e.strerror}")
                failed = True

    if failed:
        raise RemovalFailed(f"could not purge {dirpath}")


def purge_remote_dumps(repo: Repository, directory: str, dbname: str, keep: int, limit: datetime) -> None:
    """Remote counterpart of ``purge_dumps``.

    Keys are listed under the path the artifacts of ``dbname`` have
    relative to ``directory``; parts of directory format dumps are grouped
    with their run.
    """
    logger.debug(f"remote purge: {dbname} limit: {limit} keep: {keep}")

    dirpath = dump_directory(directory, dbname)
    prefix = rel_path(directory, os.path.join(dirpath, clean_db_name(dbname)))

    try:
        remote_items = repo.list(prefix)
    except PgVaultError as e:
        raise RemovalFailed(f"could not purge: {e}") from e

    parent = posixpath.dirname(prefix)
    if parent in (".", "/"):
        parent = ""

    items = []
    for item in remote_items:
        key = posixpath.relpath(item.key, parent) if parent else item.key
        items.append(RemoteItem(key=key, mod_time=item.mod_time, is_dir=item.is_dir))

    kept, removed = split_purge_jobs(plan_purge(items, dbname), keep, limit)
    _log_kept(kept, keep, parent, " remote")

    failed = False
    for job in removed:
        # Directories go last, deepest first, once their content is gone
        keys = job.files + sorted(job.dirs, key=len, reverse=True)
        for name in keys:
            key = posixpath.join(parent, name) if parent else name
            logger.info(f"removing remote {key}")
            try:
                repo.remove(key)
            except PgVaultError as e:
                logger.error(f"could not remove remote {key}: {e}")
                failed = True

    if failed:
        raise RemovalFailed("could not purge remote files")
