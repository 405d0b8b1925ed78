"""Trust Authenticator port.

Authorization failure is a returned ``AuthResult``, never an exception.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class AuthResult:
    allowed: bool
    caller_id: str | None = None
    reason: str | None = None

    @classmethod
    def allow(cls, caller_id: str) -> "AuthResult":
        return cls(allowed=True, caller_id=caller_id)

    @classmethod
    def deny(cls, reason: str) -> "AuthResult":
        return cls(allowed=False, reason=reason)


class TrustedCallerAuth(ABC):
    @abstractmethod
    async def authorize(
        self,
        raw_key: str | None,
        required_scope: str,
        chain_id: int,
        seller: str,
    ) -> AuthResult:
        """Decide whether the presented key may call ``required_scope`` for (chain, seller)."""
        ...
