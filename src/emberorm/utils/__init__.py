"""
Utility helpers shared across emberorm packages.
"""

from .env import ConfigValueError, env_value, parse_bool, parse_float, parse_int, resolve_slow_query_ms
from .logging import configure_logging, get_logger, time_call
from .naming import camel_to_snake, join_column_name, pivot_table_name

__all__ = [
    "ConfigValueError",
    "camel_to_snake",
    "configure_logging",
    "env_value",
    "get_logger",
    "join_column_name",
    "parse_bool",
    "parse_float",
    "parse_int",
    "pivot_table_name",
    "resolve_slow_query_ms",
    "time_call",
]
