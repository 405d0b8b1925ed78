"""Trust Authenticator factory.

ADAPTER_AUTH_MODE selects the strategy:
- registry (default): RegistryAuth over TrustedCaller aggregates
- shared_secret: SharedSecretAuth with CIRCLES_SERVICE_KEY
"""

import os

from adapters.auth.port import AuthResult, TrustedCallerAuth
from adapters.auth.registry import RegistryAuth
from adapters.auth.shared_secret import SharedSecretAuth

DEFAULT_KEY_HEADER = "X-Circles-Service-Key"

_current_auth: TrustedCallerAuth | None = None


def service_key_header() -> str:
    return (os.environ.get("SERVICE_KEY_HEADER") or DEFAULT_KEY_HEADER).strip()


def get_authenticator() -> TrustedCallerAuth:
    global _current_auth
    if _current_auth is None:
        mode = (os.environ.get("ADAPTER_AUTH_MODE") or "registry").strip().lower()
        if mode == "shared_secret":
            _current_auth = SharedSecretAuth(os.environ.get("CIRCLES_SERVICE_KEY", ""))
        else:
            _current_auth = RegistryAuth()
    return _current_auth


def set_authenticator(auth: TrustedCallerAuth) -> None:
    """Override the active authenticator (useful for tests)."""
    global _current_auth
    _current_auth = auth


def reset_authenticator() -> None:
    global _current_auth
    _current_auth = None


__all__ = ["AuthResult", "TrustedCallerAuth", "get_authenticator", "set_authenticator", "reset_authenticator"]
