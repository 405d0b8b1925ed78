"""Outbound credential provider factory.

Provides get_credential_provider() / set_credential_provider() to swap
implementations:
- RegistryCredentialProvider (default) reads OutboundCredential aggregates
- EnvCredentialProvider when OUTBOUND_AUTH_MODE=env
"""

import os

from dispatch.credentials.provider import (
    EnvCredentialProvider,
    OutboundCredentialProvider,
    RegistryCredentialProvider,
)

_current_provider: OutboundCredentialProvider | None = None


def get_credential_provider() -> OutboundCredentialProvider:
    """Return the active provider, built from OUTBOUND_AUTH_MODE on first use."""
    global _current_provider
    if _current_provider is None:
        mode = (os.environ.get("OUTBOUND_AUTH_MODE") or "registry").strip().lower()
        if mode == "env":
            _current_provider = EnvCredentialProvider.from_env()
        else:
            _current_provider = RegistryCredentialProvider()
    return _current_provider


def set_credential_provider(provider: OutboundCredentialProvider) -> None:
    """Override the active provider (useful for tests)."""
    global _current_provider
    _current_provider = provider


def reset_credential_provider() -> None:
    global _current_provider
    _current_provider = None
