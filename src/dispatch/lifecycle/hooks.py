"""Lifecycle hooks called by the payment observer."""

from dispatch.lifecycle.report import BatchReport
from dispatch.lifecycle.resolver import FulfillmentResolver
from shared.fulfillment import FulfillmentTrigger


class LifecycleHooks:
    def __init__(self, resolver: FulfillmentResolver) -> None:
        self.resolver = resolver

    async def on_confirmed(self, payment_reference: str) -> BatchReport:
        return await self.resolver.run(payment_reference, FulfillmentTrigger.CONFIRMED.value)

    async def on_finalized(self, payment_reference: str) -> BatchReport:
        return await self.resolver.run(payment_reference, FulfillmentTrigger.FINALIZED.value)

    async def on_event(self, payment_reference: str, trigger: str) -> BatchReport:
        return await self.resolver.run(payment_reference, trigger)
