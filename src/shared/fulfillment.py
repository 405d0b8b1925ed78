"""Fulfillment request wire contract shared by the marketplace and the adapters.

The marketplace builds one ``FulfillmentRequest`` per dispatch attempt from an
order snapshot; adapters parse and validate the same shape on the way in.
Field names on the wire are camelCase.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FulfillmentTrigger(Enum):
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"


DEFAULT_TRIGGER = FulfillmentTrigger.FINALIZED.value
_TRIGGERS = {t.value for t in FulfillmentTrigger}


def normalize_trigger(value: str | None) -> str | None:
    """Return the canonical trigger name, or None when it is not recognized."""
    if value is None:
        return None
    candidate = value.strip().lower()
    return candidate if candidate in _TRIGGERS else None


class FulfillmentItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    sku: str
    quantity: float = 1

    @field_validator("sku")
    @classmethod
    def sku_is_present(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("item.sku is required")
        return value.strip().lower()


class FulfillmentRequest(BaseModel):
    """Payload POSTed to ``.../fulfill/{chainId}/{sellerAddress}``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    order_id: str = Field(alias="orderId")
    payment_reference: str = Field(alias="paymentReference")
    buyer: str | None = None
    items: tuple[FulfillmentItem, ...]
    trigger: str

    @field_validator("order_id", "payment_reference")
    @classmethod
    def required_text(cls, value: str, info) -> str:
        if not value or not value.strip():
            raise ValueError(f"{info.field_name} is required")
        return value.strip()

    @field_validator("items")
    @classmethod
    def at_least_one_item(cls, value: tuple[FulfillmentItem, ...]) -> tuple[FulfillmentItem, ...]:
        if not value:
            raise ValueError("items must contain at least one element")
        return value

    @field_validator("trigger")
    @classmethod
    def known_trigger(cls, value: str) -> str:
        trigger = normalize_trigger(value)
        if trigger is None:
            raise ValueError("trigger must be 'confirmed' or 'finalized'")
        return trigger

    def to_wire(self) -> dict:
        """Serialize with the camelCase field names the adapters expect."""
        return {
            "orderId": self.order_id,
            "paymentReference": self.payment_reference,
            "buyer": self.buyer,
            "items": [{"sku": item.sku, "quantity": item.quantity} for item in self.items],
            "trigger": self.trigger,
        }
