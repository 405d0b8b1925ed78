"""Pydantic API schemas for the marketplace dispatch API.

Lifecycle and dispatch payloads use the camelCase names of the payment
observer; admin payloads are snake_case.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------
class LifecycleEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_reference: str = Field(alias="paymentReference", min_length=1)


class DispatchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_reference: str = Field(alias="paymentReference", min_length=1)
    trigger: str
    chain_id: int = Field(alias="chainId", gt=0)
    seller: str = Field(min_length=1)


class ConfigureRouteRequest(BaseModel):
    chain_id: int
    seller_address: str
    sku: str
    endpoint: str
    service_kind: str = "fulfillment"


class RegisterOutboundCredentialRequest(BaseModel):
    endpoint_origin: str
    api_key: str
    service_kind: str = "fulfillment"
    header_name: str | None = None
    path_prefix: str | None = None
    seller_address: str | None = None
    chain_id: int | None = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------
class RouteIdResponse(BaseModel):
    route_id: str


class CredentialIdResponse(BaseModel):
    credential_id: str


class StatusResponse(BaseModel):
    status: str


class FulfillmentRunResponse(BaseModel):
    chain_id: int
    seller_address: str
    payment_reference: str
    order_id: str
    status: str
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    last_error: str | None = None
    detail: dict | None = None
