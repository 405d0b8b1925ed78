"""FastAPI routes for the marketplace dispatch API."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from dispatch.api.schemas import (
    ConfigureRouteRequest,
    CredentialIdResponse,
    DispatchRequest,
    FulfillmentRunResponse,
    LifecycleEventRequest,
    RegisterOutboundCredentialRequest,
    RouteIdResponse,
    StatusResponse,
)
from dispatch.credentials.management import RegisterOutboundCredential, RevokeOutboundCredential
from dispatch.lifecycle import get_lifecycle_hooks
from dispatch.lifecycle.report import OutcomeKind
from dispatch.routing.management import ConfigureRoute, DisableRoute
from shared.admin import require_admin
from shared.fulfillment import normalize_trigger

# ---------------------------------------------------------------------------
# Lifecycle Router
# ---------------------------------------------------------------------------
lifecycle_router = APIRouter(prefix="/lifecycle", tags=["lifecycle"])


@lifecycle_router.post("/{trigger}")
async def lifecycle_event(trigger: str, body: LifecycleEventRequest) -> dict:
    """Evaluate every order line settled by a payment for a lifecycle event."""
    event = normalize_trigger(trigger)
    if event is None:
        raise HTTPException(status_code=400, detail=f"Unknown lifecycle trigger: {trigger}")

    report = await get_lifecycle_hooks().on_event(body.payment_reference, event)
    if report.error:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()


# ---------------------------------------------------------------------------
# Fulfillment Router
# ---------------------------------------------------------------------------
fulfillment_router = APIRouter(prefix="/fulfillment", tags=["fulfillment"])


@fulfillment_router.post("/dispatch")
async def dispatch_fulfillment(body: DispatchRequest):
    """Dispatch one seller's lines for a payment and answer with the outcome."""
    event = normalize_trigger(body.trigger)
    if event is None:
        raise HTTPException(status_code=400, detail=f"Unknown lifecycle trigger: {body.trigger}")

    report = await get_lifecycle_hooks().resolver.run(
        body.payment_reference,
        event,
        chain_id=body.chain_id,
        seller=body.seller,
    )

    if report.error:
        return JSONResponse(status_code=503, content={"error": report.error, "report": report.to_dict()})

    outcome = next((o for o in report.outcomes if o.kind is not OutcomeKind.SKIPPED), None)
    if outcome is None:
        return JSONResponse(
            status_code=404,
            content={"error": "nothing_to_dispatch", "report": report.to_dict()},
        )

    if outcome.kind is OutcomeKind.DISPATCHED:
        return JSONResponse(status_code=200, content=outcome.payload)
    if outcome.kind is OutcomeKind.REPLAYED:
        return JSONResponse(status_code=200, content={"status": "alreadyHandled", "state": outcome.reason})

    return JSONResponse(
        status_code=outcome.http_status or 502,
        content={"error": outcome.reason, "message": outcome.detail},
    )


@fulfillment_router.get("/runs/{chain_id}/{seller}/{payment_reference}", response_model=FulfillmentRunResponse)
async def get_fulfillment_run(chain_id: int, seller: str, payment_reference: str) -> FulfillmentRunResponse:
    """Ledger row for one fulfillment identity."""
    store = get_lifecycle_hooks().resolver.gate.store
    try:
        run = await store.get_run(chain_id, seller, payment_reference)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if run is None:
        raise HTTPException(status_code=404, detail="Fulfillment run not found")
    return FulfillmentRunResponse(**asdict(run))


# ---------------------------------------------------------------------------
# Admin Router
# ---------------------------------------------------------------------------
admin_router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@admin_router.post("/routes", status_code=201, response_model=RouteIdResponse)
async def configure_route(body: ConfigureRouteRequest) -> RouteIdResponse:
    """Create or repoint the route for a seller's sku."""
    command = ConfigureRoute(
        chain_id=body.chain_id,
        seller_address=body.seller_address,
        sku=body.sku,
        endpoint=body.endpoint,
        service_kind=body.service_kind,
    )
    try:
        result = current_domain.process(command, asynchronous=False)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.messages) from exc
    return RouteIdResponse(route_id=result)


@admin_router.delete("/routes/{route_id}", response_model=StatusResponse)
async def disable_route(route_id: str) -> StatusResponse:
    try:
        current_domain.process(DisableRoute(route_id=route_id), asynchronous=False)
    except ObjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Route not found") from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.messages) from exc
    return StatusResponse(status="disabled")


@admin_router.post("/outbound-credentials", status_code=201, response_model=CredentialIdResponse)
async def register_outbound_credential(body: RegisterOutboundCredentialRequest) -> CredentialIdResponse:
    """Pre-authorize an upstream destination."""
    command = RegisterOutboundCredential(
        endpoint_origin=body.endpoint_origin,
        api_key=body.api_key,
        service_kind=body.service_kind,
        header_name=body.header_name,
        path_prefix=body.path_prefix,
        seller_address=body.seller_address,
        chain_id=body.chain_id,
    )
    try:
        result = current_domain.process(command, asynchronous=False)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.messages) from exc
    return CredentialIdResponse(credential_id=result)


@admin_router.delete("/outbound-credentials/{credential_id}", response_model=StatusResponse)
async def revoke_outbound_credential(credential_id: str) -> StatusResponse:
    try:
        current_domain.process(RevokeOutboundCredential(credential_id=credential_id), asynchronous=False)
    except ObjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Credential not found") from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.messages) from exc
    return StatusResponse(status="revoked")
