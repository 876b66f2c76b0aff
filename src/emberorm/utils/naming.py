"""
Naming conventions for tables, join columns and pivot tables.
"""

import re


_FIRST_CAP_RE = re.compile("(.)([A-Z][a-z]+)")
_ALL_CAP_RE = re.compile("([a-z0-9])([A-Z])")


def camel_to_snake(name: str) -> str:
    """
    Convert ``CamelCase`` class names to ``snake_case`` table names.
    """
    step1 = _FIRST_CAP_RE.sub(r"\1_\2", name)
    return _ALL_CAP_RE.sub(r"\1_\2", step1).lower()


def join_column_name(table_name: str) -> str:
    return f"{table_name}_id"


def pivot_table_name(owner_table: str, target_table: str) -> str:
    return f"{owner_table}_{target_table}"
