"""libpq connection descriptors: keyword/value strings and postgresql:// URIs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import parse_qs, quote, unquote, urlencode

from pgvault.errors import ConfigError

logger = logging.getLogger(__name__)

APPLICATION_NAME = "pgvault"

URI_PREFIXES = ("postgresql://", "postgres://")

# Keywords with a documented libpq environment variable
ENV_VARS = {
    "host": "PGHOST",
    "hostaddr": "PGHOSTADDR",
    "port": "PGPORT",
    "dbname": "PGDATABASE",
    "user": "PGUSER",
    "password": "PGPASSWORD",
    "passfile": "PGPASSFILE",
    "service": "PGSERVICE",
    "options": "PGOPTIONS",
    "application_name": "PGAPPNAME",
    "sslmode": "PGSSLMODE",
    "requiressl": "PGREQUIRESSL",
    "sslcert": "PGSSLCERT",
    "sslkey": "PGSSLKEY",
    "sslrootcert": "PGSSLROOTCERT",
    "sslcrl": "PGSSLCRL",
    "krbsrvname": "PGKRBSRVNAME",
    "gsslib": "PGGSSLIB",
    "connect_timeout": "PGCONNECT_TIMEOUT",
    "channel_binding": "PGCHANNELBINDING",
    "sslcompression": "PGSSLCOMPRESSION",
    "sslcrldir": "PGSSLCRLDIR",
    "sslsni": "PGSSLSNI",
    "requirepeer": "PGREQUIREPEER",
    "ssl_min_protocol_version": "PGSSLMINPROTOCOLVERSION",
    "ssl_max_protocol_version": "PGSSLMAXPROTOCOLVERSION",
    "gssencmode": "PGGSSENCMODE",
    "client_encoding": "PGCLIENTENCODING",
    "target_session_attrs": "PGTARGETSESSIONATTRS",
}

SECRET_KEYS = ("password",)
_QUOTE_TRIGGERS = set(" \t\n\v\f\r='")


class ConnKind(str, Enum):
    KEYVAL = "keyval"
    URI = "uri"


@dataclass(frozen=True)
class ConnInfo:
    """A parsed connection descriptor. Changes return a new instance."""

    kind: ConnKind = ConnKind.KEYVAL
    infos: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, text: str) -> ConnInfo:
        if text.startswith(URI_PREFIXES):
            return cls(ConnKind.URI, parse_url(text))
        if "=" in text:
            return cls(ConnKind.KEYVAL, parse_keywords(text))
        raise ConfigError("invalid input connection string")

    def __str__(self) -> str:
        if self.kind is ConnKind.URI:
            return self.to_url()
        return self.to_keyword()

    def to_keyword(self) -> str:
        return make_keywords(self.infos)

    def to_url(self) -> str:
        return make_url(self.infos)

    def __repr__(self) -> str:
        return f"ConnInfo({self.masked()!r})"

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.infos.get(key, default)

    def set(self, key: str, value: str) -> ConnInfo:
        return ConnInfo(self.kind, {**self.infos, key: value})

    def delete(self, key: str) -> ConnInfo:
        return ConnInfo(self.kind, {k: v for k, v in self.infos.items() if k != key})

    def masked(self) -> str:
        """Printable form with secrets hidden."""
        shown = {k: ("****" if k in SECRET_KEYS else v) for k, v in self.infos.items()}
        return str(ConnInfo(self.kind, shown))

    def make_env(self) -> dict[str, str]:
        """libpq environment equivalent to this descriptor."""
        env = {}
        for key, value in self.infos.items():
            var = ENV_VARS.get(key)
            if var is None:
                logger.debug(f"connection parameter {key} has no environment variable, not forwarded")
                continue
            env[var] = value
        return env


def parse_keywords(text: str) -> dict[str, str]:
    """Parse ``key=value`` pairs; the rightmost duplicate wins like libpq."""
    pairs: dict[str, str] = {}
    keyword = ""
    value = ""

    exp_key = True
    exp_sep = exp_val = in_key = in_val = in_escape = quoted = False

    for c in text:
        if exp_key:
            if c.isspace():
                continue
            # Stricter than libpq: keywords start with a lowercase letter
            if "a" <= c <= "z":
                keyword += c
                exp_key = False
                in_key = True
                continue
            raise ConfigError("illegal keyword character")

        if exp_sep:
            if c.isspace():
                continue
            if c == "=":
                exp_sep = False
                exp_val = True
                continue
            raise ConfigError(f'missing "=" after "{keyword}"')

        if exp_val:
            if c.isspace():
                continue
            exp_val = False
            in_val = True
            if c == "'":
                quoted = True
                continue

        if in_key:
            if "a" <= c <= "z" or c == "_":
                keyword += c
                continue
            if c.isspace():
                in_key = False
                exp_sep = True
                continue
            if c == "=":
                in_key = False
                exp_val = True
                continue
            raise ConfigError("illegal character in keyword")

        if in_val:
            if c == "\\" and not in_escape:
                in_escape = True
                continue
            if in_escape:
                in_escape = False
                value += c
                continue
            if (quoted and c == "'") or (not quoted and c.isspace()):
                quoted = False
                in_val = False
                exp_key = True
                pairs[keyword] = value
                keyword = value = ""
                continue
            value += c

    if exp_sep or in_key:
        raise ConfigError("missing value")
    if in_val and quoted:
        raise ConfigError("unterminated quoted string")
    if exp_val or in_val:
        pairs[keyword] = value

    return pairs


def make_keywords(infos: dict[str, str]) -> str:
    """Format a map as a libpq keyword/value string, keys sorted."""
    words = []
    for key in sorted(infos):
        raw = infos[key]
        value = raw.replace("\\", "\\\\").replace("'", "\\'")
        if not raw or _QUOTE_TRIGGERS.intersection(raw):
            value = f"'{value}'"
        words.append(f"{key}={value}")
    return " ".join(words)


def _split_host_port(item: str) -> tuple[str, str]:
    if item.startswith("["):
        host, _, rest = item[1:].partition("]")
        return host, rest.removeprefix(":")
    host, _, port = item.partition(":")
    return host, port


def parse_url(text: str) -> dict[str, str]:
    """Parse a postgresql:// URI, including multi-host and IPv6 forms."""
    rest = text.split("://", 1)[1]

    rest, _, query = rest.partition("?")
    netloc, slash, path = rest.partition("/")

    infos: dict[str, str] = {}

    userinfo, at, hostlist = netloc.rpartition("@")
    if not at:
        hostlist = netloc
    if userinfo:
        user, colon, password = userinfo.partition(":")
        if user:
            infos["user"] = unquote(user)
        if colon and password:
            infos["password"] = unquote(password)

    if hostlist:
        items = hostlist.split(",")
        pairs = [_split_host_port(item) for item in items]
        if len(pairs) == 1:
            host, port = pairs[0]
            if host:
                infos["host"] = unquote(host)
            if port:
                infos["port"] = port
        else:
            infos["host"] = ",".join(unquote(h) for h, _ in pairs)
            infos["port"] = ",".join(p for _, p in pairs if p)

    dbname = unquote(path) if slash else ""
    if dbname:
        infos["dbname"] = dbname

    for key, values in parse_qs(query, keep_blank_values=True).items():
        if key:
            infos[key] = ",".join(values)

    return infos


def make_url(infos: dict[str, str]) -> str:
    """Format a map as a postgresql:// URI."""
    userinfo = ""
    if "password" in infos:
        userinfo = f"{quote(infos.get('user', ''), safe='')}:{quote(infos['password'], safe='')}@"
    elif "user" in infos:
        userinfo = f"{quote(infos['user'], safe='')}@"

    host = infos.get("host", "")
    netloc = ""
    # Socket directories cannot go in the authority, they move to the query
    host_in_query = "/" in host
    if not host_in_query:
        hosts = host.split(",")
        ports = infos.get("port", "").split(",")
        if len(hosts) > len(ports):
            if len(ports) == 1:
                ports = ports * len(hosts)
            else:
                ports += [""] * (len(hosts) - len(ports))

        names = []
        for h, p in zip(hosts, ports):
            if ":" in h and not h.startswith("["):
                h = f"[{h}]"
            names.append(f"{h}:{p}" if p else h)
        netloc = ",".join(names)

    query = {}
    for key in sorted(infos):
        if key in ("host", "port") and host_in_query:
            query[key] = infos[key]
        elif key not in ("host", "port", "user", "password", "dbname"):
            query[key] = infos[key]

    url = f"postgresql://{userinfo}{netloc}/{quote(infos.get('dbname', ''), safe='')}"
    if query:
        url += "?" + urlencode(query)
    return url


def prepare_conninfo(host: str = "", port: int = 0, user: str = "", dbname: str = "") -> ConnInfo:
    """Build the descriptor of a run from the connection options.

    ``dbname`` may itself be a full descriptor, like the ``-d`` option of
    the PostgreSQL tools; host, port and user are then ignored.
    """
    if dbname.startswith(URI_PREFIXES) or "=" in dbname:
        conninfo = ConnInfo.parse(dbname)
    else:
        infos = {}
        if host:
            infos["host"] = host
        if port:
            infos["port"] = str(port)
        if user:
            infos["user"] = user
        if dbname:
            infos["dbname"] = dbname
        conninfo = ConnInfo(ConnKind.KEYVAL, infos)

    if "application_name" not in conninfo.infos:
        logger.debug(f"using {APPLICATION_NAME} as application_name")
        conninfo = conninfo.set("application_name", APPLICATION_NAME)

    return conninfo
