"""
Connection settings and the adapter protocol the SQL driver writes through.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Sequence

from ..security.dsns import DSNConfig, dsn_from_env, parse_dsn
from ..utils import ConfigValueError, parse_bool, parse_float, parse_int


class AdapterError(RuntimeError):
    """Base class for adapter failures."""


class AdapterConfigurationError(AdapterError):
    """Connection settings are missing or malformed."""


class AdapterConnectionError(AdapterError):
    """The database could not be reached, or the adapter is not connected."""


class AdapterExecutionError(AdapterError):
    """A statement was rejected before it reached the database."""


_SSL_PARAMS = ("sslmode", "sslrootcert", "sslcert", "sslkey")

# query parameters handed to the driver that need a non-string value
_TYPED_OPTIONS: Dict[str, Callable[..., Any]] = {"connect_timeout": parse_int}


def _convert(parser: Callable[..., Any], raw: str, key: str) -> Any:
    try:
        return parser(raw, key=key)
    except ConfigValueError as exc:
        raise AdapterConfigurationError(str(exc)) from exc


@dataclass
class SSLConfig:
    mode: Optional[str] = None
    rootcert: Optional[str] = None
    cert: Optional[str] = None
    key: Optional[str] = None

    @classmethod
    def from_query(cls, query: Dict[str, str]) -> Optional["SSLConfig"]:
        """Consume the ``ssl*`` entries of ``query``."""
        found = {name[3:]: query.pop(name) for name in _SSL_PARAMS if name in query}
        return cls(**found) if found else None

    def postgres_options(self) -> Dict[str, str]:
        return {f"ssl{name}": value for name, value in vars(self).items() if value}


@dataclass
class ConnectionConfig:
    """
    Where and how an adapter connects.

    ``url`` is kept verbatim; ``dsn`` is its parsed form when the config was
    built from a connection URL. ``source`` names the environment variable
    it came from, if any, for log messages.
    """

    url: str
    autocommit: bool = False
    isolation_level: Optional[str] = None
    timeout: Optional[float] = None
    options: Optional[Dict[str, Any]] = None
    ssl: Optional[SSLConfig] = None
    dsn: Optional[DSNConfig] = field(default=None, repr=False)
    source: Optional[str] = None

    @classmethod
    def from_dsn(cls, dsn: str, **overrides: Any) -> "ConnectionConfig":
        """
        Parse a connection URL. ``autocommit``, ``timeout``,
        ``isolation_level`` and the ``ssl*`` parameters become attributes;
        any other query parameter is passed to the driver as a connect
        option. Keyword arguments take precedence over the URL, and an
        ``options`` argument is merged into the parsed options.
        """
        parsed = parse_dsn(dsn)
        query = dict(parsed.query)
        values: Dict[str, Any] = {"url": dsn, "dsn": parsed, "ssl": SSLConfig.from_query(query)}
        if "autocommit" in query:
            values["autocommit"] = _convert(parse_bool, query.pop("autocommit"), "autocommit")
        if "timeout" in query:
            values["timeout"] = _convert(parse_float, query.pop("timeout"), "timeout")
        if "isolation_level" in query:
            values["isolation_level"] = query.pop("isolation_level")

        options = {
            name: _convert(_TYPED_OPTIONS[name], raw, name) if name in _TYPED_OPTIONS else raw
            for name, raw in query.items()
        }
        options.update(overrides.pop("options", None) or {})
        values["options"] = options or None
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_env(cls, env_var: str, **overrides: Any) -> "ConnectionConfig":
        try:
            url = dsn_from_env(env_var)
        except ValueError as exc:
            raise AdapterConfigurationError(str(exc)) from exc
        overrides.setdefault("source", env_var)
        return cls.from_dsn(url, **overrides)

    def parsed(self) -> DSNConfig:
        return self.dsn if self.dsn is not None else parse_dsn(self.url)

    def server_url(self) -> str:
        """The URL without the query parameters that were parsed into options."""
        return self.parsed().render(with_query=False) if self.dsn is not None else self.url

    def redacted_dsn(self) -> str:
        return self.dsn.redacted() if self.dsn is not None else self.url

    def descriptive_label(self) -> str:
        label = self.redacted_dsn()
        return f"{self.source} ({label})" if self.source else label


class DatabaseAdapter(Protocol):
    """
    Thin layer over one DB-API connection.

    The SQL driver renders statements with ``dialect``'s placeholder style
    and relies on the adapter for execution, transaction boundaries and
    generated keys.
    """

    dialect: Any

    def connect(self, config: ConnectionConfig) -> Any: ...

    def close(self) -> None: ...

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> Any: ...

    def executemany(self, sql: str, seq_of_params: Sequence[Sequence[Any]]) -> Any: ...

    def begin(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def last_insert_id(self, cursor: Any, table: str, pk_column: str) -> Any:
        """
        Key generated by the INSERT that produced ``cursor``.
        """
