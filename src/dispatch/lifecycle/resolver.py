"""Trigger & Line Resolver: decides which order lines a lifecycle event dispatches.

For every order settled by a payment, lines and offers are walked
index-aligned up to the shorter of the two. Each pair is:

    1. routed through the route table (never the snapshot's own endpoint)
    2. matched against its offer's trigger, ``finalized`` when undeclared
    3. gated on (chain_id, seller, payment_reference)
    4. dispatched together with the seller's other lines that share its
       trigger and endpoint, marked ok/error and, on success, written to the outbox

Every line yields a ``LineOutcome``; one line failing never stops the rest.
"""

from collections.abc import Callable
from typing import Any

import structlog
from pydantic import ValidationError as PayloadValidationError

from dispatch.lifecycle.report import BatchReport, LineOutcome, OutcomeKind
from dispatch.orders.snapshot import OrderSnapshot, SellerId, parse_seller_id
from dispatch.orders.source import OrderSource
from dispatch.outbound.client import FulfillmentDispatcher
from dispatch.outbound.errors import DispatchError
from dispatch.outbox.outbox import record_outbox
from dispatch.routing.route import ServiceKind, normalize_sku
from dispatch.routing.table import RouteTable
from shared.fulfillment import DEFAULT_TRIGGER, FulfillmentItem, FulfillmentRequest, normalize_trigger
from shared.ledger.gate import RunGate, RunGateState

logger = structlog.get_logger(__name__)

OUTBOX_SOURCE = "fulfillment"

OutboxWriter = Callable[[str, str, Any], None]


def effective_trigger(declared: str | None) -> str:
    if declared is None or not declared.strip():
        return DEFAULT_TRIGGER
    return declared.strip().lower()


def build_request(snapshot: OrderSnapshot, items: list[FulfillmentItem], trigger: str) -> FulfillmentRequest:
    return FulfillmentRequest(
        order_id=snapshot.order_id,
        payment_reference=snapshot.payment_reference,
        buyer=snapshot.buyer,
        items=tuple(items),
        trigger=trigger,
    )


class FulfillmentResolver:
    def __init__(
        self,
        orders: OrderSource,
        routes: RouteTable,
        gate: RunGate,
        dispatcher: FulfillmentDispatcher,
        outbox: OutboxWriter = record_outbox,
    ) -> None:
        self.orders = orders
        self.routes = routes
        self.gate = gate
        self.dispatcher = dispatcher
        self.outbox = outbox

    async def run(
        self,
        payment_reference: str,
        trigger: str,
        *,
        chain_id: int | None = None,
        seller: str | None = None,
    ) -> BatchReport:
        """Evaluate every line settled by ``payment_reference`` for ``trigger``.

        ``chain_id``/``seller`` restrict the run to one seller's lines.
        """
        event = normalize_trigger(trigger)
        if event is None:
            raise ValueError(f"Unknown lifecycle trigger: {trigger!r}")

        report = BatchReport(payment_reference=payment_reference, trigger=event)
        only = SellerId(chain_id=chain_id, address=seller.strip().lower()) if chain_id and seller else None

        try:
            snapshots = await self.orders.orders_for_payment(payment_reference)
        except Exception:
            logger.exception("Failed to load orders for payment", payment_reference=payment_reference, trigger=event)
            report.error = "orders_unavailable"
            return report

        for snapshot in snapshots:
            pairs = min(len(snapshot.lines), len(snapshot.offers))
            for index in range(pairs):
                try:
                    outcome = await self._process_line(snapshot, index, event, only)
                except Exception as exc:
                    logger.exception(
                        "Fulfillment line failed",
                        order_id=snapshot.order_id,
                        line_index=index,
                        payment_reference=payment_reference,
                    )
                    outcome = LineOutcome(
                        snapshot.order_id,
                        index,
                        OutcomeKind.FAILED,
                        reason="internal_error",
                        detail=str(exc),
                        http_status=500,
                    )
                if outcome is not None:
                    report.add(outcome)

        logger.info(
            "Lifecycle fulfillment evaluated",
            payment_reference=payment_reference,
            trigger=event,
            **report.counts(),
        )
        return report

    async def _process_line(
        self,
        snapshot: OrderSnapshot,
        index: int,
        event: str,
        only: SellerId | None,
    ) -> LineOutcome | None:
        line, offer = snapshot.lines[index], snapshot.offers[index]
        order_id = snapshot.order_id

        seller = parse_seller_id(offer.seller_id)
        if seller is None:
            return LineOutcome(order_id, index, OutcomeKind.SKIPPED, reason="invalid_seller_id")
        if only is not None and seller != only:
            return None

        sku = normalize_sku(line.sku or offer.sku)
        tags = {"chain_id": seller.chain_id, "seller": seller.address, "sku": sku or None}
        if not sku:
            return LineOutcome(order_id, index, OutcomeKind.SKIPPED, reason="missing_sku", **tags)

        endpoint = await self.routes.resolve_upstream(seller.chain_id, seller.address, sku, ServiceKind.FULFILLMENT)
        if not endpoint:
            logger.warning("Fulfillment skipped: no configured endpoint", order_id=order_id, **tags)
            return LineOutcome(order_id, index, OutcomeKind.SKIPPED, reason="no_route", **tags)

        if effective_trigger(offer.fulfillment_trigger) != event:
            return LineOutcome(
                order_id, index, OutcomeKind.SKIPPED, reason="trigger_mismatch", endpoint=endpoint, **tags
            )

        try:
            request = build_request(snapshot, await self._items_for(snapshot, seller, event, endpoint), event)
        except PayloadValidationError as exc:
            logger.error("Fulfillment request is invalid", order_id=order_id, error=str(exc), **tags)
            return LineOutcome(
                order_id, index, OutcomeKind.FAILED, reason="invalid_request", detail=str(exc), http_status=400, **tags
            )

        gate = await self.gate.try_acquire(seller.chain_id, seller.address, snapshot.payment_reference, order_id)
        if gate.state is RunGateState.UNAVAILABLE:
            return LineOutcome(order_id, index, OutcomeKind.FAILED, reason="gate_unavailable", http_status=503, **tags)
        if gate.is_replay:
            logger.info("Fulfillment already handled", order_id=order_id, state=gate.state.value, **tags)
            return LineOutcome(
                order_id, index, OutcomeKind.REPLAYED, reason=gate.state.value, endpoint=endpoint, **tags
            )

        return await self._dispatch(snapshot, index, request, endpoint, seller, tags)

    async def _items_for(
        self,
        snapshot: OrderSnapshot,
        seller: SellerId,
        event: str,
        endpoint: str,
    ) -> list[FulfillmentItem]:
        """Lines of ``seller`` that fire on ``event`` and route to ``endpoint``."""
        items = []
        for line, offer in zip(snapshot.lines, snapshot.offers):
            if parse_seller_id(offer.seller_id) != seller:
                continue
            if effective_trigger(offer.fulfillment_trigger) != event:
                continue
            sku = normalize_sku(line.sku or offer.sku)
            if not sku:
                continue
            routed = await self.routes.resolve_upstream(seller.chain_id, seller.address, sku, ServiceKind.FULFILLMENT)
            if routed == endpoint:
                items.append(FulfillmentItem(sku=sku, quantity=line.quantity))
        return items

    async def _dispatch(
        self,
        snapshot: OrderSnapshot,
        index: int,
        request: FulfillmentRequest,
        endpoint: str,
        seller: SellerId,
        tags: dict,
    ) -> LineOutcome:
        order_id = snapshot.order_id
        key = (seller.chain_id, seller.address, snapshot.payment_reference)
        try:
            payload = await self.dispatcher.dispatch(endpoint, request)
        except DispatchError as exc:
            logger.error(
                "Fulfillment failed",
                order_id=order_id,
                endpoint=endpoint,
                error_code=exc.error_code,
                error=str(exc),
                **tags,
            )
            await self.gate.mark_error(*key, f"{exc.error_code}: {exc}")
            return LineOutcome(
                order_id,
                index,
                OutcomeKind.FAILED,
                reason=exc.error_code,
                endpoint=endpoint,
                detail=str(exc),
                http_status=exc.http_status,
                **tags,
            )
        except Exception as exc:
            logger.exception("Fulfillment failed unexpectedly", order_id=order_id, endpoint=endpoint, **tags)
            await self.gate.mark_error(*key, f"internal_error: {exc}")
            return LineOutcome(
                order_id,
                index,
                OutcomeKind.FAILED,
                reason="internal_error",
                endpoint=endpoint,
                detail=str(exc),
                http_status=500,
                **tags,
            )

        await self.gate.mark_ok(*key)
        try:
            self.outbox(order_id, OUTBOX_SOURCE, payload)
        except Exception:
            # The adapter has already acted; the run stays ok.
            logger.exception("Failed to record fulfillment outbox entry", order_id=order_id, **tags)

        return LineOutcome(
            order_id,
            index,
            OutcomeKind.DISPATCHED,
            endpoint=endpoint,
            payload=payload,
            http_status=200,
            **tags,
        )
