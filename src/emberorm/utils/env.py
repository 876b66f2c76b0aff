"""
Environment and string-option parsing shared by configuration objects.
"""

from __future__ import annotations

import os
from typing import Callable, TypeVar

T = TypeVar("T")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigValueError(ValueError):
    """Raised when a textual configuration value cannot be parsed."""


def parse_bool(value: str, *, key: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigValueError(f"Invalid boolean value for '{key}': {value!r}")


def parse_float(value: str, *, key: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigValueError(f"Invalid float value for '{key}': {value!r}") from exc


def parse_int(value: str, *, key: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigValueError(f"Invalid integer value for '{key}': {value!r}") from exc


def env_value(name: str, parser: Callable[..., T], default: T) -> T:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return parser(raw, key=name)


def resolve_slow_query_ms(*, default: int, override: int | None = None) -> int:
    """
    Pick the slow-query threshold: explicit override, then
    ``EMBERORM_SLOW_QUERY_MS``, then the adapter default.
    """
    if override is not None:
        return override
    return env_value("EMBERORM_SLOW_QUERY_MS", parse_int, default)
