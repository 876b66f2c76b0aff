"""
Masking of credentials before statement parameters reach the logs.

Matching is done on a squashed form (lower case, letters and digits only)
so ``api_key``, ``API-Key`` and ``apikey`` are treated alike.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping

REDACTED_VALUE = "***"

_KEY_MARKERS = (
    "password",
    "passwd",
    "pwd",
    "secret",
    "token",
    "apikey",
    "accesskey",
    "privatekey",
    "sslkey",
    "sslcert",
    "sslrootcert",
)
_VALUE_MARKERS = (
    "password",
    "passwd",
    "secret",
    "token",
    "apikey",
    "accesskey",
    "privatekey",
    "bearer",
    "authorization",
)


def _squash(text: str) -> str:
    return "".join(char for char in text.lower() if char.isalnum())


def is_sensitive_key(key: str) -> bool:
    squashed = _squash(key)
    return any(marker in squashed for marker in _KEY_MARKERS)


def is_sensitive_value(value: str | bytes) -> bool:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    squashed = _squash(value)
    return any(marker in squashed for marker in _VALUE_MARKERS)


def redact_value(value: Any, *, key: str | None = None) -> Any:
    """
    Return ``value`` with secrets replaced by :data:`REDACTED_VALUE`.
    Mappings are masked per key, sequences item by item.
    """
    if key is not None and is_sensitive_key(key):
        return REDACTED_VALUE
    if isinstance(value, Mapping):
        return {name: redact_value(item, key=str(name)) for name, item in value.items()}
    if isinstance(value, (list, tuple)):
        masked = [redact_value(item) for item in value]
        return tuple(masked) if isinstance(value, tuple) else masked
    if isinstance(value, (str, bytes)) and is_sensitive_value(value):
        return REDACTED_VALUE
    return value


def redact_params(params: Iterable[Any]) -> List[Any]:
    return [redact_value(param) for param in params]
