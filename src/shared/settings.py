"""Immutable runtime settings for the Run Gate and the Outbound Dispatcher.

Values are read from the environment once, at construction time, and handed
to components as frozen dataclasses. Nothing downstream reads ``os.environ``
per call.
"""

import os
from dataclasses import dataclass

_TRUTHY = {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value >= minimum else default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class RunGateSettings:
    """Per-adapter idempotency knobs.

    Stale takeover lets a caller re-acquire a run stuck in ``started`` for
    longer than ``stale_minutes``. If the original call is merely slow, the
    side effect runs twice, so it stays off unless an operator enables it.
    """

    allow_started_takeover: bool = False
    stale_minutes: int = 10

    @classmethod
    def from_env(cls, prefix: str = "") -> "RunGateSettings":
        return cls(
            allow_started_takeover=_env_bool(f"{prefix}ALLOW_STARTED_TAKEOVER"),
            stale_minutes=_env_int(f"{prefix}STALE_MINUTES", 10, minimum=1),
        )


@dataclass(frozen=True)
class DispatchSettings:
    """Outbound fulfillment call limits."""

    timeout_ms: int = 1500
    max_redirects: int = 3
    max_response_bytes: int = 65536
    error_body_chars: int = 500

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @classmethod
    def from_env(cls) -> "DispatchSettings":
        return cls(
            timeout_ms=_env_int("OUTBOUND_FULFILLMENT_TIMEOUT_MS", 1500, minimum=1),
            max_redirects=_env_int("OUTBOUND_MAX_REDIRECTS", 3),
            max_response_bytes=_env_int("OUTBOUND_MAX_RESPONSE_BYTES", 65536, minimum=1),
        )


def ledger_url(default: str = "sqlite+aiosqlite:///./fulfillment_runs.db") -> str:
    """SQLAlchemy async URL of the idempotency ledger."""
    return os.environ.get("FULFILLMENT_LEDGER_URL") or default
