"""MarketRoute aggregate: which upstream endpoint serves a seller's sku.

Endpoints are always re-read from here at dispatch time. An endpoint carried
by an order or offer snapshot is never used.
"""

import re
from datetime import UTC, datetime
from enum import Enum
from urllib.parse import quote

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Integer, String

from dispatch.domain import dispatch


class ServiceKind(Enum):
    FULFILLMENT = "fulfillment"
    INVENTORY = "inventory"


_PLACEHOLDER = re.compile(r"\{([A-Za-z0-9_]+)\}")
_TEMPLATE_VARIABLES = ("chain_id", "seller", "sku")


def normalize_seller(seller: str | None) -> str:
    return (seller or "").strip().lower()


def normalize_sku(sku: str | None) -> str:
    return (sku or "").strip().lower()


def expand_endpoint(template: str, chain_id: int, seller: str, sku: str) -> str:
    """Substitute ``{chain_id}``, ``{seller}`` and ``{sku}`` in an endpoint template.

    Seller and sku are URL-escaped. Unknown placeholders raise ``ValueError``.
    """
    values = {
        "chain_id": str(chain_id),
        "seller": quote(normalize_seller(seller), safe=""),
        "sku": quote(normalize_sku(sku), safe=""),
    }

    def _substitute(match: re.Match) -> str:
        key = match.group(1).lower()
        if key not in values:
            raise ValueError(f"Unknown template variable: {match.group(1)}")
        return values[key]

    return _PLACEHOLDER.sub(_substitute, template)


@dispatch.aggregate
class MarketRoute:
    chain_id = Integer(required=True, min_value=1)
    seller_address = String(required=True, max_length=64)
    sku = String(required=True, max_length=100)
    service_kind = String(
        choices=ServiceKind,
        default=ServiceKind.FULFILLMENT.value,
    )
    endpoint = String(required=True, max_length=500)
    enabled = Boolean(default=True)
    updated_at = DateTime()

    @classmethod
    def configure(
        cls,
        chain_id: int,
        seller_address: str,
        sku: str,
        endpoint: str,
        service_kind: str = ServiceKind.FULFILLMENT.value,
    ):
        seller = normalize_seller(seller_address)
        sku = normalize_sku(sku)
        if not seller:
            raise ValidationError({"seller_address": ["Seller address is required"]})
        if not sku:
            raise ValidationError({"sku": ["SKU is required"]})
        _check_template(endpoint)

        return cls(
            chain_id=chain_id,
            seller_address=seller,
            sku=sku,
            service_kind=service_kind,
            endpoint=endpoint.strip(),
            enabled=True,
            updated_at=datetime.now(UTC),
        )

    def point_to(self, endpoint: str) -> None:
        _check_template(endpoint)
        self.endpoint = endpoint.strip()
        self.enabled = True
        self.updated_at = datetime.now(UTC)

    def disable(self) -> None:
        if not self.enabled:
            raise ValidationError({"enabled": ["Route is already disabled"]})
        self.enabled = False
        self.updated_at = datetime.now(UTC)

    def resolved_endpoint(self) -> str:
        return expand_endpoint(self.endpoint, self.chain_id, self.seller_address, self.sku)


def _check_template(endpoint: str | None) -> None:
    if not endpoint or not endpoint.strip():
        raise ValidationError({"endpoint": ["Endpoint is required"]})
    unknown = [name for name in _PLACEHOLDER.findall(endpoint) if name.lower() not in _TEMPLATE_VARIABLES]
    if unknown:
        raise ValidationError({"endpoint": [f"Unknown template variable: {unknown[0]}"]})
