"""Server interrogation: version, catalog, legacy SQL and replication pause."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import psycopg
from psycopg_pool import ConnectionPool, PoolTimeout

from pgvault.errors import ConnectError, PauseTimeout, PgVaultError, PgVersionError

if TYPE_CHECKING:
    from pgvault.connstring import ConnInfo

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 30.0
PAUSE_RETRY_INTERVAL = 10.0

# Parameters whose value is a list and must not be quoted as a whole
UNQUOTED_SETTINGS = ("DateStyle", "search_path")


def sql_quote_literal(value: str) -> str:
    """Quote a string literal, using E'' when it holds backslashes."""
    prefix = "E" if "\\" in value else ""
    escaped = value.replace("\\", "\\\\").replace("'", "''")
    return f"{prefix}'{escaped}'"


def sql_quote_ident(value: str) -> str:
    """Escape an identifier for use between double quotes."""
    return value.replace('"', '""')


def filter_databases(
    available: Sequence[str],
    exclude: Iterable[str] = (),
    include: Iterable[str] = (),
) -> list[str]:
    """Apply the include and exclude lists to the server's databases.

    With an include list, only its members that exist are kept, in the
    include list's order. Exclusion always wins.
    """
    include = list(include)
    excluded = set(exclude)

    if include:
        databases = []
        for name in include:
            if name in available:
                databases.append(name)
            else:
                logger.warning(f'database "{name}" does not exists, excluded')
    else:
        databases = list(available)

    return [d for d in databases if d not in excluded]


def make_acl_commands(aclitem: str, dbname: str, owner: str) -> str:
    """Turn one ``grantee=privs/grantor`` entry into GRANT/REVOKE statements."""
    grantee, sep, rest = aclitem.partition("=")
    if not sep or "=" in rest:
        return ""
    privs, sep, grantor = rest.partition("/")
    if not sep or "/" in grantor:
        return ""

    db = sql_quote_ident(dbname)
    out = ""

    if grantee == "":
        grantee = "PUBLIC"
        if privs == "Tc":
            return out
        out += f'REVOKE ALL ON DATABASE "{db}" FROM PUBLIC;\n'

    if grantee == owner:
        if privs == "CTc":
            return out
        out += f'REVOKE ALL ON DATABASE "{db}" FROM "{sql_quote_ident(grantee)}";\n'

    if grantor != owner:
        out += f'SET SESSION AUTHORIZATION "{sql_quote_ident(grantor)}";\n'

    names = {"C": "CREATE", "T": "TEMPORARY", "c": "CONNECT"}
    for i, letter in enumerate(privs):
        if letter in names:
            out += f'GRANT {names[letter]} ON DATABASE "{db}" TO "{sql_quote_ident(grantee)}"'

        if i + 1 < len(privs) and privs[i + 1] == "*":
            out += " WITH GRANT OPTION;\n"
        elif letter != "*":
            out += ";\n"

    if grantor != owner:
        out += "RESET SESSION AUTHORIZATION;\n"

    return out


def render_create_database(
    dbname: str,
    owner: str,
    encoding: str,
    collate: str,
    ctype: str,
    is_template: bool,
    acl: Sequence[str | None] | None,
    connlimit: int,
    tablespace: str,
) -> str:
    """CREATE DATABASE and privileges of a database, as pg_dump < 11 omits them."""
    out = ""
    db = sql_quote_ident(dbname)

    if dbname not in ("template1", "postgres"):
        out += "--\n-- Database creation\n--\n\n"
        out += f'CREATE DATABASE "{db}" WITH TEMPLATE = template0 OWNER = "{sql_quote_ident(owner)}"'
        out += f" ENCODING = {sql_quote_literal(encoding)}"
        out += f" LC_COLLATE = {sql_quote_literal(collate)}"
        out += f" LC_CTYPE = {sql_quote_literal(ctype)}"
        if tablespace != "pg_default":
            out += f' TABLESPACE = "{sql_quote_ident(tablespace)}"'
        if connlimit != -1:
            out += f" CONNECTION LIMIT = {connlimit}"
        out += ";\n\n"

        if is_template:
            out += (
                "UPDATE pg_catalog.pg_database SET datistemplate = 't' "
                f"WHERE datname = {sql_quote_literal(dbname)};\n"
            )

    entries = [e for e in (acl or []) if e is not None]
    if acl:
        out += "--\n-- Database privileges \n--\n\n"
        # Privileges fully revoked from PUBLIC leave no "=..." entry behind
        if not any(e.startswith("=") for e in entries):
            out += f'REVOKE CONNECT, TEMPORARY ON DATABASE "{db}" FROM PUBLIC;\n'
        out += "".join(make_acl_commands(e, dbname, owner) for e in entries)

    return out


def render_db_config(dbname: str, rows: Iterable[tuple[str | None, str]]) -> str:
    """ALTER DATABASE / ALTER ROLE IN DATABASE statements from role settings."""
    out = ""
    for role, keyval in rows:
        name, _, value = keyval.partition("=")
        if name not in UNQUOTED_SETTINGS:
            value = f"'{value}'"

        if role is not None:
            out += f'ALTER ROLE "{role}" IN DATABASE "{dbname}" SET "{name}" TO {value};\n'
        else:
            out += f'ALTER DATABASE "{dbname}" SET "{name}" TO {value};\n'
    return out


def render_settings(rows: Iterable[tuple[str, str]]) -> str:
    """``name = 'value'`` lines, the format of postgresql.conf."""
    out = ""
    for name, value in rows:
        if name not in UNQUOTED_SETTINGS:
            value = f"'{value}'"
        out += f"{name} = {value}\n"
    return out


class Interrogator:
    """Catalog queries and replication control over one pooled connection."""

    def __init__(
        self,
        conninfo: ConnInfo,
        pool: ConnectionPool | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        self.conninfo = conninfo
        self.retry_interval = PAUSE_RETRY_INTERVAL

        logger.debug(f'connecting to PostgreSQL with: "{conninfo.masked()}"')
        if pool is None:
            pool = ConnectionPool(
                conninfo=str(conninfo),
                min_size=1,
                max_size=1,
                kwargs={"autocommit": True},
                open=False,
            )
            try:
                pool.open(wait=True, timeout=connect_timeout)
            except PoolTimeout as e:
                pool.close()
                raise ConnectError(f"could not connect to database: {e}") from e
        self.pool = pool

        try:
            self.version = self._fetch_version()
        except psycopg.Error as e:
            self.close()
            raise ConnectError(f"could not get PostgreSQL server version: {e}") from e

        logger.debug(f"server num version is: {self.version}")
        # xlog was renamed wal in 10
        self.xlog_or_wal = "wal" if self.version >= 100000 else "xlog"

    def close(self) -> None:
        logger.debug("closing connection to PostgreSQL")
        self.pool.close()

    def __enter__(self) -> Interrogator:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @contextmanager
    def _get_cursor(self) -> Iterator[psycopg.Cursor]:
        """Get a cursor from the connection pool."""
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    yield cur
        except PoolTimeout as e:
            raise ConnectError(f"no connection available: {e}") from e

    def _query(self, query: str, params: Sequence[Any] | None = None) -> list[tuple]:
        logger.debug(f"executing SQL query: {query}")
        with self._get_cursor() as cur:
            cur.execute(query, params)
            if cur.description is None:
                return []
            return cur.fetchall()

    def _fetch_version(self) -> int:
        rows = self._query("select setting from pg_settings where name = 'server_version_num'")
        return int(rows[0][0])

    def server_version(self) -> int:
        return self.version

    def list_databases(
        self,
        include_templates: bool,
        exclude: Iterable[str] = (),
        include: Iterable[str] = (),
    ) -> list[str]:
        """Connectable databases after include/exclude filtering."""
        include = list(include)

        # An explicit list may name templates
        if include or include_templates:
            query = "select datname from pg_database where datallowconn"
        else:
            query = "select datname from pg_database where datallowconn and not datistemplate"

        try:
            available = [row[0] for row in self._query(query)]
        except psycopg.Error as e:
            raise ConnectError(f"could not list databases: {e}") from e

        return filter_databases(available, exclude, include)

    def dump_create_db_and_acl(self, dbname: str) -> str:
        if not dbname:
            raise ValueError("empty input dbname")

        # datcollate and datctype appeared in 9.0
        if self.version < 90000:
            raise PgVersionError("cluster version is older than 9.0, not dumping ACL")

        logger.info(f"dumping database creation and ACL commands of {dbname}")
        query = (
            "SELECT coalesce(rolname, (select rolname from pg_authid where oid="
            "(select datdba from pg_database where datname='template0'))), "
            "  pg_encoding_to_char(d.encoding), "
            "  datcollate, datctype, datistemplate, datacl::text[], datconnlimit, "
            "  (SELECT spcname FROM pg_tablespace t WHERE t.oid = d.dattablespace) AS dattablespace "
            "FROM pg_database d"
            "  LEFT JOIN pg_authid u ON (datdba = u.oid) "
            "WHERE datallowconn AND datname = %s"
        )
        try:
            rows = self._query(query, (dbname,))
        except psycopg.Error as e:
            raise PgVaultError(f"could not query database information for {dbname}: {e}") from e

        return "".join(
            render_create_database(dbname, owner, encoding, collate, ctype, is_template, acl, connlimit, tablespace)
            for owner, encoding, collate, ctype, is_template, acl, connlimit, tablespace in rows
        )

    def dump_db_config(self, dbname: str) -> str:
        if not dbname:
            raise ValueError("empty input dbname")

        # pg_db_role_setting appeared in 9.0
        if self.version < 90000:
            raise PgVersionError("cluster version is older than 9.0, not dumping database configuration")

        logger.info(f"dumping database configuration commands of {dbname}")
        query = (
            "SELECT CASE setrole WHEN 0 THEN NULL ELSE pg_get_userbyid(setrole) END, unnest(setconfig) "
            "FROM pg_db_role_setting "
            "WHERE setdatabase = (SELECT oid FROM pg_database WHERE datname = %s) ORDER BY 1, 2"
        )
        try:
            rows = self._query(query, (dbname,))
        except psycopg.Error as e:
            raise PgVaultError(f"could not query database configuration for {dbname}: {e}") from e

        return render_db_config(dbname, rows)

    def show_settings(self) -> str:
        """Settings applied from configuration files.

        Before 9.5 the result comes from pg_settings and may miss values,
        see ``settings_warning``.
        """
        if self.version < 80400:
            raise PgVersionError("cluster version is older than 8.4, not dumping configuration")

        if self.version >= 90500:
            # Only the applied value when several files set a parameter
            query = "SELECT name, setting FROM pg_show_all_file_settings() WHERE applied ORDER BY name"
        else:
            query = "SELECT name, setting FROM pg_settings WHERE sourcefile IS NOT NULL ORDER BY name"

        try:
            rows = self._query(query)
        except psycopg.Error as e:
            raise PgVaultError(f"could not query instance configuration: {e}") from e

        return render_settings(rows)

    def settings_warning(self) -> str | None:
        if self.version < 90500:
            return (
                "cluster version is older than 9.5, settings from configuration files "
                "could be missing if the SET command was used"
            )
        return None

    def extract_file_from_settings(self, name: str) -> str:
        """Contents of the file a setting points to, e.g. ``hba_file``."""
        query = (
            "SELECT setting, pg_read_file(setting, 0, (pg_stat_file(setting)).size) "
            "FROM pg_settings WHERE name = %s"
        )
        try:
            rows = self._query(query, (name,))
        except psycopg.Error as e:
            raise PgVaultError(f"could not query file contents from settings: {e}") from e

        result = ""
        for path, contents in rows:
            result = f"# path: {path}\n{contents}\n"
        return result

    def can_pause_replication(self) -> bool:
        # Hot standby exists from 9.0
        if self.version < 90000:
            return False

        query = f"SELECT 1 FROM pg_proc WHERE proname='pg_{self.xlog_or_wal}_replay_pause' AND pg_is_in_recovery()"
        try:
            rows = self._query(query)
        except psycopg.Error as e:
            raise PgVaultError(f"could not check if replication is pausable: {e}") from e
        return bool(rows)

    def _pause_once(self) -> bool:
        # A replay paused while an AccessExclusiveLock is held would block
        # pg_dump forever
        query = (
            f"SELECT pg_{self.xlog_or_wal}_replay_pause() "
            "WHERE NOT EXISTS (SELECT 1 FROM pg_locks WHERE mode = 'AccessExclusiveLock') "
            "AND pg_is_in_recovery()"
        )
        return bool(self._query(query))

    def pause_replication(self, timeout: float) -> bool:
        """Pause WAL replay on a standby, retrying until ``timeout`` seconds.

        Returns False when the server is not a pausable standby. Raises
        ``PauseTimeout`` when the deadline passes.
        """
        if not self.can_pause_replication():
            return False

        logger.info("pausing replication")
        done = threading.Event()
        stop = threading.Event()
        failure: list[Exception] = []

        def attempt() -> None:
            while True:
                try:
                    if self._pause_once():
                        done.set()
                        return
                    logger.warning("replication not paused because of AccessExclusiveLock")
                except (psycopg.Error, PgVaultError) as e:
                    failure.append(e)
                    done.set()
                    return

                if stop.wait(self.retry_interval):
                    return

        worker = threading.Thread(target=attempt, name="pause-replication", daemon=True)
        worker.start()

        if not done.wait(timeout):
            stop.set()
            # A pause query in flight may still succeed, the caller resumes
            worker.join()
            raise PauseTimeout(f"replication not paused after {timeout:g}s")

        if failure:
            raise PgVaultError(f"could not pause replication: {failure[0]}")

        logger.info("replication paused")
        return True

    def resume_replication(self) -> None:
        if not self.can_pause_replication():
            return

        logger.info("resuming replication")
        try:
            self._query(f"SELECT pg_{self.xlog_or_wal}_replay_resume() WHERE pg_is_in_recovery()")
        except psycopg.Error as e:
            raise PgVaultError(f"could not resume replication: {e}") from e
