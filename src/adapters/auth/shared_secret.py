"""Shared-secret authenticator: one key for every caller, no scopes."""

import hmac

import structlog

from adapters.auth.port import AuthResult, TrustedCallerAuth

logger = structlog.get_logger(__name__)

MIN_SECRET_LENGTH = 16
CALLER_ID = "env"


class SharedSecretAuth(TrustedCallerAuth):
    def __init__(self, secret: str) -> None:
        secret = (secret or "").strip()
        if not secret:
            raise ValueError("Shared secret is required")
        if len(secret) < MIN_SECRET_LENGTH:
            logger.warning("Shared service key is shorter than recommended", minimum_length=MIN_SECRET_LENGTH)
        self._secret = secret.encode("utf-8")

    async def authorize(
        self,
        raw_key: str | None,
        required_scope: str,
        chain_id: int,
        seller: str,
    ) -> AuthResult:
        if not raw_key or not raw_key.strip():
            return AuthResult.deny("missing api key")

        presented = raw_key.strip().encode("utf-8")
        if len(presented) != len(self._secret) or not hmac.compare_digest(presented, self._secret):
            logger.warning("Rejected shared service key", scope=required_scope, chain_id=chain_id, seller=seller)
            return AuthResult.deny("invalid api key")

        return AuthResult.allow(CALLER_ID)
