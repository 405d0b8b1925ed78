"""TrustedCaller aggregate: a marketplace (or operator) allowed to call this adapter.

Only the SHA-256 of the API key is stored. The raw key is returned once, at
issue time.

State:
    enabled, not revoked  → may be authorized
    disabled or revoked   → never authorized
"""

import hashlib
import json
import secrets
from datetime import UTC, datetime
from uuid import uuid4

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Integer, String, Text

from adapters.domain import adapters

KNOWN_SCOPES = ("fulfill", "inventory")


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> str:
    return secrets.token_urlsafe(32)


@adapters.aggregate
class TrustedCaller:
    caller_id = String(identifier=True, max_length=100)
    api_key_sha256 = String(required=True, max_length=64, unique=True)
    scopes = Text(default="[]")  # JSON list of lower-cased scope names
    seller_address = String(max_length=64)
    chain_id = Integer()
    enabled = Boolean(default=True)
    created_at = DateTime()
    revoked_at = DateTime()

    @classmethod
    def issue(
        cls,
        scopes: list[str],
        caller_id: str | None = None,
        seller_address: str | None = None,
        chain_id: int | None = None,
        raw_key: str | None = None,
    ) -> tuple["TrustedCaller", str]:
        """Create a caller and return it together with its raw API key."""
        normalized = sorted({s.strip().lower() for s in scopes or [] if s and s.strip()})
        if not normalized:
            raise ValidationError({"scopes": ["At least one scope is required"]})
        unknown = [s for s in normalized if s not in KNOWN_SCOPES]
        if unknown:
            raise ValidationError({"scopes": [f"Unknown scope: {unknown[0]}"]})

        raw_key = raw_key or generate_api_key()
        caller = cls(
            caller_id=(caller_id or "").strip() or f"caller-{uuid4().hex[:12]}",
            api_key_sha256=hash_api_key(raw_key),
            scopes=json.dumps(normalized),
            seller_address=(seller_address or "").strip().lower() or None,
            chain_id=chain_id,
            enabled=True,
            created_at=datetime.now(UTC),
        )
        return caller, raw_key

    @property
    def scope_set(self) -> set[str]:
        return {s.lower() for s in json.loads(self.scopes or "[]")}

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def revoke(self) -> None:
        if self.is_revoked:
            raise ValidationError({"revoked_at": ["Caller is already revoked"]})
        self.revoked_at = datetime.now(UTC)
        self.enabled = False
