"""
Session-level configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..utils import env_value, parse_bool, parse_float


@dataclass
class SessionConfig:
    """
    Behaviour switches for a :class:`~emberorm.persistence.session.Session`.

    ``implicit_transactions`` wraps each flush in a transaction when the
    driver supports them and no caller-managed transaction is open.
    ``slow_commit_ms`` is the threshold above which commit timings are
    logged at WARNING.
    """

    implicit_transactions: bool = True
    slow_commit_ms: float = 500.0

    @classmethod
    def from_env(cls, **overrides: Any) -> "SessionConfig":
        values = {
            "implicit_transactions": env_value(
                "EMBERORM_IMPLICIT_TRANSACTIONS", parse_bool, cls.implicit_transactions
            ),
            "slow_commit_ms": env_value("EMBERORM_SLOW_COMMIT_MS", parse_float, cls.slow_commit_ms),
        }
        values.update(overrides)
        return cls(**values)
