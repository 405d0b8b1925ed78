"""Admin API guard for the marketplace and the adapters.

The admin routes register trusted callers and outbound credentials, so they
sit behind their own key. ``ADMIN_API_KEY`` is read once, when the app starts;
while it is unset every admin request is refused with 503.
"""

import hmac
import os

import structlog
from fastapi import HTTPException, Request

logger = structlog.get_logger(__name__)

ADMIN_KEY_HEADER = "X-Admin-Key"
MIN_ADMIN_KEY_LENGTH = 16

_admin_key: bytes | None = None
_loaded = False


def get_admin_key() -> bytes | None:
    global _admin_key, _loaded
    if not _loaded:
        raw = (os.environ.get("ADMIN_API_KEY") or "").strip()
        _admin_key = raw.encode("utf-8") if raw else None
        _loaded = True
        if _admin_key is None:
            logger.warning("ADMIN_API_KEY is not set; admin routes are disabled")
        elif len(_admin_key) < MIN_ADMIN_KEY_LENGTH:
            logger.warning("Admin key is shorter than recommended", minimum_length=MIN_ADMIN_KEY_LENGTH)
    return _admin_key


def set_admin_key(key: str | None) -> None:
    """Override the configured admin key (useful for tests)."""
    global _admin_key, _loaded
    key = (key or "").strip()
    _admin_key = key.encode("utf-8") if key else None
    _loaded = True


def reset_admin_key() -> None:
    global _admin_key, _loaded
    _admin_key = None
    _loaded = False


async def require_admin(request: Request) -> None:
    """Router dependency: reject callers that do not present the admin key."""
    expected = get_admin_key()
    if expected is None:
        raise HTTPException(status_code=503, detail="Admin API is disabled")

    presented = (request.headers.get(ADMIN_KEY_HEADER) or "").strip().encode("utf-8")
    if not presented or not hmac.compare_digest(presented, expected):
        logger.warning("Rejected admin call", path=request.url.path, method=request.method)
        raise HTTPException(status_code=401, detail="Unauthorized")
