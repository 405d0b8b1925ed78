"""Order snapshots handed to the dispatch side by the ordering collaborator.

Lines and offers are index-aligned: ``offers[i]`` is the offer that
``lines[i]`` was bought from.
"""

import re
from dataclasses import dataclass, field

_SELLER_ID = re.compile(r"^eip155:(\d+):(0x[0-9a-fA-F]{40})$")


@dataclass(frozen=True)
class SellerId:
    chain_id: int
    address: str


def parse_seller_id(value: str | None) -> SellerId | None:
    """Parse ``eip155:{chainId}:{address}``; None when malformed."""
    if not value:
        return None
    match = _SELLER_ID.match(value.strip())
    if match is None:
        return None
    chain_id = int(match.group(1))
    if chain_id <= 0:
        return None
    return SellerId(chain_id=chain_id, address=match.group(2).lower())


@dataclass(frozen=True)
class OrderLine:
    sku: str | None
    quantity: float = 1


@dataclass(frozen=True)
class Offer:
    seller_id: str | None
    sku: str | None = None
    fulfillment_trigger: str | None = None
    # Present on some snapshots; never used for routing.
    fulfillment_endpoint: str | None = None


@dataclass(frozen=True)
class OrderSnapshot:
    order_id: str
    payment_reference: str
    buyer: str | None = None
    lines: tuple[OrderLine, ...] = field(default_factory=tuple)
    offers: tuple[Offer, ...] = field(default_factory=tuple)
