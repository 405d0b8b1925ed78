"""Registry authenticator: per-caller keys with scope, seller and chain bindings."""

import asyncio

import structlog
from protean.utils.globals import current_domain

from adapters.auth.port import AuthResult, TrustedCallerAuth
from adapters.auth.trusted_caller import TrustedCaller, hash_api_key

logger = structlog.get_logger(__name__)


def _callers_with(key_hash: str) -> list[TrustedCaller]:
    return current_domain.repository_for(TrustedCaller)._dao.query.filter(api_key_sha256=key_hash).all().items


class RegistryAuth(TrustedCallerAuth):
    """Looks callers up by key hash in the ``TrustedCaller`` repository.

    Checks, in order: known hash, not revoked, enabled, scope granted,
    seller binding, chain binding.
    """

    async def authorize(
        self,
        raw_key: str | None,
        required_scope: str,
        chain_id: int,
        seller: str,
    ) -> AuthResult:
        if not raw_key or not raw_key.strip():
            return AuthResult.deny("missing api key")

        key_hash = hash_api_key(raw_key.strip())
        try:
            callers = await asyncio.to_thread(_callers_with, key_hash)
        except Exception:
            logger.exception("Trusted caller lookup failed", key_hash=key_hash)
            return AuthResult.deny("internal error")

        if not callers:
            logger.warning("Unknown service key", key_hash=key_hash, scope=required_scope)
            return AuthResult.deny("unknown key")

        result = self._check(callers[0], required_scope, chain_id, seller)
        if not result.allowed:
            logger.warning(
                "Trusted caller denied",
                caller_id=callers[0].caller_id,
                reason=result.reason,
                scope=required_scope,
                chain_id=chain_id,
                seller=seller,
            )
        return result

    @staticmethod
    def _check(caller: TrustedCaller, required_scope: str, chain_id: int, seller: str) -> AuthResult:
        if caller.is_revoked:
            return AuthResult.deny("revoked")
        if not caller.enabled:
            return AuthResult.deny("disabled")
        if (required_scope or "").strip().lower() not in caller.scope_set:
            return AuthResult.deny("insufficient scope")
        if caller.seller_address and caller.seller_address.lower() != (seller or "").strip().lower():
            return AuthResult.deny("seller mismatch")
        if caller.chain_id is not None and caller.chain_id != chain_id:
            return AuthResult.deny("chain mismatch")
        return AuthResult.allow(caller.caller_id)
