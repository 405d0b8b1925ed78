"""FastAPI routes for an upstream adapter.

/fulfill order of checks:
    seller path segment → request body → caller authorization → Run Gate
    → capability → mark ok / error
"""

import json
import re

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain
from pydantic import ValidationError as PayloadValidationError

from adapters.api.schemas import IssueTrustedCallerRequest, StatusResponse, TrustedCallerIssuedResponse
from adapters.auth import get_authenticator, service_key_header
from adapters.auth.management import IssueTrustedCaller, RevokeTrustedCaller
from adapters.fulfillment import get_capability
from adapters.fulfillment.port import CapabilityError
from adapters.ledger import get_run_gate
from shared.admin import require_admin
from shared.fulfillment import FulfillmentRequest
from shared.ledger.gate import RunGateState

logger = structlog.get_logger(__name__)

_SELLER = re.compile(r"^0x[0-9a-f]{40}$")


def _check_target(chain_id: int, seller: str) -> str:
    if chain_id <= 0 or not _SELLER.match(seller):
        raise HTTPException(status_code=400, detail="Invalid seller address")
    return seller


async def _authorize(request: Request, scope: str, chain_id: int, seller: str) -> str:
    result = await get_authenticator().authorize(request.headers.get(service_key_header()), scope, chain_id, seller)
    if not result.allowed:
        logger.warning("Unauthorized adapter call", scope=scope, reason=result.reason, chain_id=chain_id, seller=seller)
        raise HTTPException(status_code=401, detail="Unauthorized")
    return result.caller_id


# ---------------------------------------------------------------------------
# Fulfillment Router
# ---------------------------------------------------------------------------
fulfillment_router = APIRouter(tags=["fulfillment"])


@fulfillment_router.post("/fulfill/{chain_id}/{seller}")
async def fulfill(chain_id: int, seller: str, request: Request):
    """Run the adapter's capability at most once per (chain, seller, payment)."""
    _check_target(chain_id, seller)

    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
    try:
        payload = FulfillmentRequest.model_validate(body)
    except PayloadValidationError as exc:
        raise HTTPException(status_code=400, detail=[error["msg"] for error in exc.errors()]) from exc

    caller_id = await _authorize(request, "fulfill", chain_id, seller)

    gate = get_run_gate()
    ref = payload.payment_reference
    acquired = await gate.try_acquire(chain_id, seller, ref, payload.order_id)
    if acquired.state is RunGateState.UNAVAILABLE:
        raise HTTPException(status_code=503, detail="Could not acquire fulfillment lock")
    if acquired.is_replay:
        return {
            "status": acquired.state.value,
            "orderId": payload.order_id,
            "paymentReference": ref,
        }

    capability = get_capability()
    log = logger.bind(caller_id=caller_id, chain_id=chain_id, seller=seller, payment_reference=ref)
    try:
        result = await capability.fulfill(chain_id, seller, payload)
    except ValidationError as exc:
        await gate.mark_error(chain_id, seller, ref, json.dumps(exc.messages))
        raise HTTPException(status_code=400, detail=exc.messages) from exc
    except CapabilityError as exc:
        log.error("Fulfillment capability failed", capability=capability.kind, error=str(exc))
        await gate.mark_error(chain_id, seller, ref, str(exc))
        return JSONResponse(status_code=502, content={"status": "error", "message": str(exc)})
    except Exception as exc:
        log.exception("Fulfillment capability crashed", capability=capability.kind)
        await gate.mark_error(chain_id, seller, ref, f"internal error: {exc}")
        raise

    detail = capability.ledger_detail(result)
    if detail:
        await gate.set_detail(chain_id, seller, ref, detail)
    if capability.needs_retry(result):
        log.warning("Fulfillment left retriable", capability=capability.kind, status=result.get("status"))
        await gate.mark_error(chain_id, seller, ref, f"retriable result: {result.get('status')}")
        return result
    await gate.mark_ok(chain_id, seller, ref)

    log.info("Fulfillment completed", capability=capability.kind, status=result.get("status"))
    return result


@fulfillment_router.get("/inventory/{chain_id}/{seller}/{sku}")
async def inventory(chain_id: int, seller: str, sku: str, request: Request):
    """Units available for a seller's sku as a schema.org QuantitativeValue."""
    _check_target(chain_id, seller)
    if not sku.strip():
        raise HTTPException(status_code=400, detail="Missing sku")

    await _authorize(request, "inventory", chain_id, seller)

    try:
        available = await get_capability().availability(chain_id, seller, sku)
    except CapabilityError as exc:
        logger.error("Inventory lookup failed", chain_id=chain_id, seller=seller, sku=sku, error=str(exc))
        raise HTTPException(status_code=502, detail="Inventory lookup failed") from exc

    if available is None:
        raise HTTPException(status_code=404, detail="No mapping for seller/sku")
    return {"@type": "QuantitativeValue", "value": available, "unitCode": "C62"}


# ---------------------------------------------------------------------------
# Admin Router
# ---------------------------------------------------------------------------
admin_router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@admin_router.post("/trusted-callers", status_code=201, response_model=TrustedCallerIssuedResponse)
async def issue_trusted_caller(body: IssueTrustedCallerRequest) -> TrustedCallerIssuedResponse:
    """Register a caller. The raw API key is only returned here."""
    command = IssueTrustedCaller(
        scopes=json.dumps(body.scopes),
        caller_id=body.caller_id,
        seller_address=body.seller_address,
        chain_id=body.chain_id,
    )
    try:
        caller_id, api_key = current_domain.process(command, asynchronous=False)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.messages) from exc
    return TrustedCallerIssuedResponse(caller_id=caller_id, api_key=api_key)


@admin_router.delete("/trusted-callers/{caller_id}", response_model=StatusResponse)
async def revoke_trusted_caller(caller_id: str) -> StatusResponse:
    try:
        current_domain.process(RevokeTrustedCaller(caller_id=caller_id), asynchronous=False)
    except ObjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Trusted caller not found") from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.messages) from exc
    return StatusResponse(status="revoked")
