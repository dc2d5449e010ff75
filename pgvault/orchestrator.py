"""Backup run: hooks, globals, per-database dump jobs, upload and purge.

A run walks these steps in order:

1. pre-backup hook
2. retention limit, sampled before anything is dumped
3. globals, settings and configuration files
4. replication pause on a hot standby
5. one dump job per database on a pool of ``jobs`` workers
6. replication resume
7. upload, local purge, remote purge
8. post-backup hook, whatever happened before
"""

from __future__ import annotations

import fnmatch
import logging
import os
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from pgvault.checksum import ChecksumAlgorithm, checksum, checksum_list
from pgvault.config import resolve_cipher_params
from pgvault.connstring import prepare_conninfo
from pgvault.crypto import decrypt_file, encrypt_file
from pgvault.database import Interrogator
from pgvault.dumptool import DumpTool
from pgvault.errors import (
    DumpFailed,
    HookFailed,
    LockBusy,
    PgVaultError,
    PgVersionError,
    PostStepFailed,
    RemovalFailed,
    RepositoryError,
    UploadFailed,
)
from pgvault.hooks import run_hook
from pgvault.lock import LockHandle, lock_path, unlock_path
from pgvault.naming import format_dump_path, forward_slashes, rel_path
from pgvault.process import run_command
from pgvault.retention import purge_dumps, purge_remote_dumps
from pgvault.storage import RemoteItem, RemoteKind, create_repository

if TYPE_CHECKING:
    from pgvault.config import DatabaseOptions, RunOptions
    from pgvault.connstring import ConnInfo
    from pgvault.process import CommandResult
    from pgvault.storage import Repository

logger = logging.getLogger(__name__)

# Outputs that are not databases but follow the same retention
GLOBALS_NAME = "pg_globals"
SETTINGS_NAME = "pg_settings"
CONFIG_FILES = ("hba_file", "ident_file")

# createdb.sql carries what pg_dump only includes itself from 11
CREATEDB_MIN_VERSION = 90000
CREATEDB_MAX_VERSION = 110000


def local_now() -> datetime:
    return datetime.now().astimezone()


@dataclass
class DumpJob:
    """One database to dump during a run.

    ``exit_code`` is -1 until the job ran, 0 on success.
    """

    dbname: str
    options: DatabaseOptions
    when: datetime | None = None
    path: str = ""
    exit_code: int = -1
    files: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def static_root(directory: str) -> str:
    """The part of the backup directory before any ``{dbname}`` template."""
    if "{dbname}" not in directory:
        return directory
    head = directory.split("{dbname}", 1)[0]
    if head.endswith(("/", os.sep)):
        return head.rstrip("/" + os.sep) or head
    return os.path.dirname(head)


def matches_any(name: str, globs: Iterable[str]) -> bool:
    globs = list(globs)
    if not globs:
        return True
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in globs)


class BackupRun:
    """One invocation of the backup pipeline.

    The interrogator, the repository and the child process runner are
    injectable so tests can swap them for fakes.
    """

    def __init__(
        self,
        options: RunOptions,
        dump_tool: DumpTool | None = None,
        interrogator_factory: Callable[[ConnInfo], Interrogator] = Interrogator,
        repository_factory: Callable[[RemoteKind, RunOptions], Repository] = create_repository,
        runner: Callable[..., CommandResult] = run_command,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.options = options
        self.runner = runner
        self.tool = dump_tool or DumpTool(options.bin_directory, runner)
        self.interrogator_factory = interrogator_factory
        self.repository_factory = repository_factory
        self.clock = clock

        self.conninfo = prepare_conninfo(options.host, options.port, options.user, options.dbname)
        self.cipher = resolve_cipher_params(options)

        self.jobs: list[DumpJob] = []
        self.produced: list[str] = []
        self.uploaded = 0
        self.failed = False
        self._lock = threading.Lock()

    def run(self) -> int:
        """Execute the run; returns the process exit code."""
        try:
            self._run()
        except PgVaultError as e:
            logger.critical(str(e))
            self.failed = True
        except OSError as e:
            logger.critical(str(e))
            self.failed = True
        finally:
            if self.options.post_backup_hook:
                try:
                    run_hook(self.options.post_backup_hook, "post-backup", self.runner)
                except HookFailed as e:
                    logger.error(str(e))
                    self.failed = True

        return 1 if self.failed else 0

    def _run(self) -> None:
        opts = self.options

        if opts.pre_backup_hook:
            run_hook(opts.pre_backup_hook, "pre-backup", self.runner)

        # Sampled before any dump so this run is never older than the limit
        now = self.clock().replace(microsecond=0)
        logger.debug(f"purge limit is {now - opts.purge_older_than}")

        if not opts.dump_only:
            logger.info("dumping globals")
            self.dump_globals()

        db = self.interrogator_factory(self.conninfo)
        try:
            if not opts.dump_only:
                self.dump_settings(db)
                self.dump_config_files(db)

            databases = db.list_databases(opts.with_templates, opts.exclude_dbs, opts.include_dbs)
            logger.debug(f"databases to dump: {databases}")

            try:
                paused = db.pause_replication(opts.pause_timeout)
            except PgVaultError:
                # The last attempt may have paused replay after the deadline
                self.resume_replication(db)
                raise

            try:
                self.run_jobs(databases, db.version, db)
            finally:
                if paused:
                    self.resume_replication(db)
        finally:
            db.close()

        repo = self.open_repository()
        try:
            if repo is not None:
                self.upload_files(repo)

            self.purge_local(now)

            if repo is not None and opts.purge_remote:
                self.purge_remote(repo, now)
        finally:
            if repo is not None:
                repo.close()

    def resume_replication(self, db: Interrogator) -> None:
        try:
            db.resume_replication()
        except PgVaultError as e:
            logger.error(str(e))

    def _mark_failed(self) -> None:
        with self._lock:
            self.failed = True

    def _record(self, paths: Iterable[str]) -> None:
        with self._lock:
            self.produced.extend(p for p in paths if p)

    def _path(self, dbname: str, ext: str, when: datetime | None) -> str:
        return format_dump_path(self.options.backup_directory, self.options.timestamp_format, ext, dbname, when)

    def post_process(self, path: str, algo: ChecksumAlgorithm, prefix: str = "") -> list[str]:
        """Checksum then encrypt ``path``. Returns the files to keep track of."""
        opts = self.options
        files = [path]

        if algo is not ChecksumAlgorithm.NONE:
            logger.info(f"{prefix}computing checksum of {path}")
            files.append(checksum(path, algo.value))

        if opts.encrypt:
            logger.info(f"{prefix}encrypting {path}")
            encrypted = encrypt_file(path, self.cipher, keep_src=opts.encrypt_keep_source)
            if not opts.encrypt_keep_source:
                files.remove(path)
            files.extend(encrypted)
            if algo is not ChecksumAlgorithm.NONE:
                files.append(checksum_list(encrypted, algo.value, f"{path}.age"))

        return files

    def _write_text(self, path: str, text: str) -> None:
        try:
            os.makedirs(os.path.dirname(path) or ".", mode=0o755, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            raise PostStepFailed(f"could not write {path}: {e.strerror or e}") from e

    def dump_globals(self) -> None:
        path = self._path(GLOBALS_NAME, "sql", self.clock())
        self.tool.run_globals(path, self.conninfo, self.options.with_role_passwords)
        self._record(self.post_process(path, self.options.checksum_algorithm))

    def dump_settings(self, db: Interrogator) -> None:
        try:
            text = db.show_settings()
        except PgVersionError as e:
            logger.warning(str(e))
            return

        warning = db.settings_warning()
        if warning:
            logger.warning(warning)

        if not text:
            logger.info("no parameter set in configuration files, not dumping settings")
            return

        path = self._path(SETTINGS_NAME, "out", self.clock())
        logger.info(f"dumping instance configuration to {path}")
        self._write_text(path, text)
        self._record(self.post_process(path, self.options.checksum_algorithm))

    def dump_config_files(self, db: Interrogator) -> None:
        for name in CONFIG_FILES:
            text = db.extract_file_from_settings(name)
            if not text:
                continue
            path = self._path(name, "out", self.clock())
            logger.info(f"dumping {name} to {path}")
            self._write_text(path, text)
            self._record(self.post_process(path, self.options.checksum_algorithm))

    def run_jobs(self, databases: list[str], server_version: int, db: Interrogator) -> None:
        """Dump every database on a pool of ``jobs`` workers."""
        self.jobs = [DumpJob(dbname, self.options.database_options(dbname)) for dbname in databases]
        if not self.jobs:
            logger.warning("no database to dump")
            return

        with ThreadPoolExecutor(max_workers=self.options.jobs, thread_name_prefix="dump") as pool:
            futures = [pool.submit(self.dump_database, job, server_version, db) for job in self.jobs]
            for future in as_completed(futures):
                job = future.result()
                if not job.ok:
                    self._mark_failed()

    def dump_database(self, job: DumpJob, server_version: int, db: Interrogator) -> DumpJob:
        """Lock, dump, checksum, encrypt and write createdb.sql for one database."""
        prefix = f"[{job.dbname}] "
        opts = job.options

        try:
            handle = self.acquire_lock(job.dbname)
        except LockBusy as e:
            logger.error(f"{prefix}{e}")
            job.exit_code = 1
            return job

        try:
            job.when = self.clock()
            job.path = self._path(job.dbname, opts.format.ext, job.when)

            logger.info(f"{prefix}dumping database")
            selection = self.tool.selection_args(
                opts.schemas, opts.exclude_schemas, opts.tables, opts.exclude_tables, opts.with_blobs
            )
            self.tool.run_db_dump(
                job.path,
                self.conninfo,
                job.dbname,
                opts.format,
                compress_level=opts.compress_level,
                parallel_jobs=opts.parallel_backup_jobs,
                selection=selection,
                extra_args=opts.pg_dump_options,
            )
            logger.info(f"{prefix}dump of {job.dbname} to {job.path} done")

            job.files = self.post_process(job.path, opts.checksum_algorithm, prefix)

            if CREATEDB_MIN_VERSION <= server_version < CREATEDB_MAX_VERSION:
                job.files += self.dump_create_database(job, db)

            job.exit_code = 0
        except DumpFailed as e:
            logger.error(f"{prefix}{e}")
            job.exit_code = max(e.exit_code, 1)
        except (PgVaultError, OSError) as e:
            logger.error(f"{prefix}{e}")
            job.exit_code = 1
        finally:
            unlock_path(handle)

        self._record(job.files)
        return job

    def acquire_lock(self, dbname: str) -> LockHandle:
        lock_file = self._path(dbname, "lock", None)
        try:
            handle, acquired = lock_path(lock_file)
        except OSError as e:
            raise LockBusy(f"could not lock {lock_file}: {e.strerror or e}") from e
        if not acquired:
            raise LockBusy(f"could not acquire lock on {lock_file}, another dump is running")
        return handle

    def dump_create_database(self, job: DumpJob, db: Interrogator) -> list[str]:
        try:
            text = db.dump_create_db_and_acl(job.dbname) + db.dump_db_config(job.dbname)
        except PgVersionError as e:
            logger.warning(f"[{job.dbname}] {e}")
            return []

        path = self._path(job.dbname, "createdb.sql", job.when)
        logger.info(f"[{job.dbname}] writing database creation commands to {path}")
        self._write_text(path, text)
        return self.post_process(path, job.options.checksum_algorithm, f"[{job.dbname}] ")

    def open_repository(self) -> Repository | None:
        if self.options.upload is RemoteKind.NONE:
            return None
        try:
            return self.repository_factory(self.options.upload, self.options)
        except PgVaultError as e:
            logger.error(f"could not open {self.options.upload.value} repository: {e}")
            self._mark_failed()
            return None

    def _upload_files(self) -> list[str]:
        files = []
        for path in self.produced:
            if os.path.isdir(path):
                for root, dirs, names in os.walk(path):
                    dirs.sort()
                    files.extend(os.path.join(root, name) for name in sorted(names))
            else:
                files.append(path)
        return files

    def upload_files(self, repo: Repository) -> None:
        """Push every artifact of the run, keyed by its path under the backup directory."""

        def upload(path: str) -> bool:
            try:
                self.upload_file(repo, path)
            except UploadFailed as e:
                logger.error(str(e))
                return False
            return True

        files = self._upload_files()
        with ThreadPoolExecutor(max_workers=self.options.jobs, thread_name_prefix="upload") as pool:
            for ok in pool.map(upload, files):
                if ok:
                    self.uploaded += 1
                else:
                    self._mark_failed()

    def upload_file(self, repo: Repository, path: str) -> None:
        key = rel_path(self.options.backup_directory, path)
        try:
            repo.upload(path, key)
        except RepositoryError as e:
            raise UploadFailed(f"upload of {key} failed: {e}") from e

    def _purge_targets(self) -> list[tuple[str, DatabaseOptions | RunOptions]]:
        targets: list[tuple[str, DatabaseOptions | RunOptions]] = [
            (job.dbname, job.options) for job in self.jobs if job.ok
        ]
        if not self.options.dump_only:
            for name in (GLOBALS_NAME, SETTINGS_NAME, *CONFIG_FILES):
                targets.append((name, self.options))
        return targets

    def purge_local(self, now: datetime) -> None:
        for dbname, policy in self._purge_targets():
            limit = self._limit(now, policy)
            try:
                purge_dumps(self.options.backup_directory, dbname, policy.purge_min_keep, limit)
            except RemovalFailed as e:
                logger.error(str(e))
                self._mark_failed()

    def purge_remote(self, repo: Repository, now: datetime) -> None:
        for dbname, policy in self._purge_targets():
            limit = self._limit(now, policy)
            try:
                purge_remote_dumps(repo, self.options.backup_directory, dbname, policy.purge_min_keep, limit)
            except RemovalFailed as e:
                logger.error(str(e))
                self._mark_failed()

    @staticmethod
    def _limit(now: datetime, policy: DatabaseOptions | RunOptions) -> datetime:
        return now - policy.purge_older_than


def decrypt_directory(options: RunOptions, globs: Iterable[str] = ()) -> int:
    """Decrypt the ``.age`` files below the backup directory matching ``globs``."""
    root = static_root(options.backup_directory)
    params = resolve_cipher_params(options)
    globs = list(globs)

    paths = []
    for current, dirs, names in os.walk(root):
        dirs.sort()
        for name in sorted(names):
            if not name.endswith(".age"):
                continue
            path = os.path.join(current, name)
            if matches_any(forward_slashes(os.path.relpath(path, root)), globs):
                paths.append(path)

    if not paths:
        logger.warning(f"no encrypted file to decrypt in {root}")
        return 0

    def decrypt(path: str) -> bool:
        try:
            decrypt_file(path, params)
        except (PgVaultError, OSError) as e:
            logger.error(f"could not decrypt {path}: {e}")
            return False
        return True

    with ThreadPoolExecutor(max_workers=options.jobs, thread_name_prefix="decrypt") as pool:
        results = list(pool.map(decrypt, paths))

    return 0 if all(results) else 1


def list_remote_files(repo: Repository, globs: Iterable[str] = ()) -> list[RemoteItem]:
    """Keys of the remote store matching any glob, all when none is given."""
    globs = list(globs)
    return [item for item in repo.list("") if not item.is_dir and matches_any(item.key, globs)]


def download_files(options: RunOptions, repo: Repository, globs: Iterable[str] = ()) -> int:
    """Fetch the remote keys matching ``globs`` below the backup directory."""
    root = static_root(options.backup_directory)
    failed = False

    for item in list_remote_files(repo, globs):
        target = os.path.join(root, *item.key.split("/"))
        try:
            repo.download(item.key, target)
        except PgVaultError as e:
            logger.error(f"could not download {item.key}: {e}")
            failed = True

    return 1 if failed else 0
