"""Pydantic API schemas for the adapter API."""

from pydantic import BaseModel, Field


class IssueTrustedCallerRequest(BaseModel):
    scopes: list[str] = Field(min_length=1)
    caller_id: str | None = None
    seller_address: str | None = None
    chain_id: int | None = None


class TrustedCallerIssuedResponse(BaseModel):
    caller_id: str
    api_key: str  # shown once


class StatusResponse(BaseModel):
    status: str
