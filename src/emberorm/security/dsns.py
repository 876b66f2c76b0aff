"""
Connection URL parsing.

``DSNConfig.render`` rebuilds the URL, optionally without its query string
(the adapters pass query parameters as keyword options instead) and with the
password masked for log output.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlsplit

from .redaction import REDACTED_VALUE


@dataclass(frozen=True)
class DSNConfig:
    scheme: str
    username: Optional[str] = None
    password: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    path: str = ""
    query: Dict[str, str] = field(default_factory=dict)

    @property
    def database(self) -> Optional[str]:
        return self.path.lstrip("/") or None

    @property
    def is_sqlite(self) -> bool:
        return self.scheme == "sqlite"

    def sqlite_path(self) -> str:
        # sqlite:///relative.db -> "relative.db", sqlite:////abs.db -> "/abs.db"
        return self.path[1:] if self.path.startswith("/") else self.path

    def render(self, *, mask_password: bool = False, with_query: bool = True) -> str:
        credentials = ""
        if self.username:
            credentials = quote(self.username, safe="")
            if self.password:
                secret = REDACTED_VALUE if mask_password else quote(self.password, safe="")
                credentials += f":{secret}"
            credentials += "@"
        location = self.host or ""
        if self.port:
            location += f":{self.port}"
        url = f"{self.scheme}://{credentials}{location}{self.path}"
        if with_query and self.query:
            url += "?" + urlencode(self.query)
        return url

    def redacted(self) -> str:
        return self.render(mask_password=True)


def parse_dsn(dsn: str) -> DSNConfig:
    parts = urlsplit(dsn)
    return DSNConfig(
        scheme=parts.scheme,
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
        host=parts.hostname,
        port=parts.port,
        path=parts.path,
        query=dict(parse_qsl(parts.query)),
    )


def dsn_from_env(env_var: str) -> str:
    """
    Return the connection URL stored in ``env_var``.
    """
    value = os.getenv(env_var)
    if not value:
        raise ValueError(f"Environment variable '{env_var}' is not set or empty.")
    return value
