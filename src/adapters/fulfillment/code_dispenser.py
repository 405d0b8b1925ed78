"""Code dispenser capability: hands out pre-loaded codes (vouchers, licences).

Result statuses:
    ok             codes assigned (same codes on replay of the same payment)
    depleted       the pool cannot cover the requested quantity
    notApplicable  no requested sku is mapped to a pool
    ambiguous      requested skus map to more than one pool or sku
"""

import math
from collections import deque
from dataclasses import dataclass, field

import structlog
from protean.exceptions import ValidationError

from adapters.fulfillment.port import FulfillmentCapability, result_document, utc_timestamp
from shared.fulfillment import FulfillmentRequest

logger = structlog.get_logger(__name__)

RESULT_TYPE = "circles:CodeDispenserResult"
MAX_CODES_PER_REQUEST = 100


@dataclass
class CodePool:
    pool_id: str
    codes: deque = field(default_factory=deque)
    download_url_template: str | None = None


def _key(chain_id: int, seller: str, sku: str) -> tuple[int, str, str]:
    return chain_id, seller.strip().lower(), sku.strip().lower()


class CodeDispenserCapability(FulfillmentCapability):
    kind = "codedispenser"

    def __init__(self) -> None:
        self._pools: dict[str, CodePool] = {}
        self._mappings: dict[tuple[int, str, str], str] = {}
        self._assigned: dict[tuple[int, str, str, str], list[str]] = {}

    def add_pool(self, pool_id: str, codes: list[str], download_url_template: str | None = None) -> CodePool:
        pool = self._pools.get(pool_id)
        if pool is None:
            pool = self._pools[pool_id] = CodePool(pool_id=pool_id, download_url_template=download_url_template)
        pool.codes.extend(code for code in codes if code and code.strip())
        if download_url_template:
            pool.download_url_template = download_url_template
        return pool

    def map_sku(self, chain_id: int, seller: str, sku: str, pool_id: str) -> None:
        if pool_id not in self._pools:
            raise ValueError(f"Unknown code pool: {pool_id}")
        self._mappings[_key(chain_id, seller, sku)] = pool_id

    def needs_retry(self, result: dict) -> bool:
        # A refilled pool can still serve a depleted payment.
        return result.get("status") == "depleted"

    async def availability(self, chain_id: int, seller: str, sku: str) -> int | None:
        pool_id = self._mappings.get(_key(chain_id, seller, sku))
        if pool_id is None:
            return None
        return len(self._pools[pool_id].codes)

    async def fulfill(self, chain_id: int, seller: str, request: FulfillmentRequest) -> dict:
        seller = seller.strip().lower()
        mapped = [
            (item.sku, self._mappings[_key(chain_id, seller, item.sku)])
            for item in request.items
            if _key(chain_id, seller, item.sku) in self._mappings
        ]
        if not mapped:
            return result_document(RESULT_TYPE, "notApplicable", request, codes=[])

        if len({pool for _, pool in mapped}) != 1 or len({sku for sku, _ in mapped}) != 1:
            logger.warning("Requested skus map to several code pools", seller=seller, chain_id=chain_id)
            return result_document(RESULT_TYPE, "ambiguous", request, codes=[])

        sku, pool_id = mapped[0]
        quantity = math.floor(sum(item.quantity for item in request.items if item.sku == sku))
        quantity = max(quantity, 1)
        if quantity > MAX_CODES_PER_REQUEST:
            raise ValidationError({"quantity": [f"Requested quantity exceeds limit (max {MAX_CODES_PER_REQUEST})"]})

        pool = self._pools[pool_id]
        assignment_key = (chain_id, seller, request.payment_reference, sku)
        codes = self._assigned.get(assignment_key)
        if codes is None:
            if len(pool.codes) < quantity:
                logger.warning("Code pool depleted", pool_id=pool_id, requested=quantity, available=len(pool.codes))
                return result_document(
                    RESULT_TYPE,
                    "depleted",
                    request,
                    seller=seller,
                    sku=sku,
                    requestedQuantity=quantity,
                    codes=[],
                    issuedAt=utc_timestamp(),
                )
            codes = [pool.codes.popleft() for _ in range(quantity)]
            self._assigned[assignment_key] = codes

        download_url = None
        if pool.download_url_template:
            download_url = pool.download_url_template.replace("{code}", codes[0])

        logger.info("Codes assigned", pool_id=pool_id, sku=sku, count=len(codes), order_id=request.order_id)
        return result_document(
            RESULT_TYPE,
            "ok",
            request,
            seller=seller,
            sku=sku,
            codes=list(codes),
            downloadUrl=download_url,
            issuedAt=utc_timestamp(),
        )
