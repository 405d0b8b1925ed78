"""Tests for the Trigger & Line Resolver."""

import json
import uuid

import httpx
import pytest
from dispatch.credentials.provider import RegistryCredentialProvider
from dispatch.lifecycle.report import OutcomeKind
from dispatch.lifecycle.resolver import FulfillmentResolver, build_request, effective_trigger
from dispatch.orders.snapshot import Offer, OrderLine, OrderSnapshot
from dispatch.orders.source import OrderSource
from dispatch.outbound.client import FulfillmentDispatcher
from dispatch.outbox.outbox import OrderOutbox
from dispatch.routing.table import RouteTable
from protean import current_domain
from shared.fulfillment import FulfillmentItem
from shared.ledger.gate import RunGate
from shared.ledger.store import FulfillmentRunStore
from shared.settings import DispatchSettings
from sqlalchemy.exc import OperationalError

SELLER_A = "0x" + "a5" * 20
SELLER_B = "0x" + "b6" * 20
CHAIN_ID = 100


class StaticRouteTable(RouteTable):
    def __init__(self, routes: dict[tuple[str, str], str]) -> None:
        self.routes = routes

    async def resolve_upstream(self, chain_id, seller, sku, service_kind=None):
        return self.routes.get((seller, sku))


class FlakyRouteTable(StaticRouteTable):
    def __init__(self, routes: dict[tuple[str, str], str], broken_sku: str) -> None:
        super().__init__(routes)
        self.broken_sku = broken_sku

    async def resolve_upstream(self, chain_id, seller, sku, service_kind=None):
        if sku == self.broken_sku:
            raise RuntimeError("route store connection reset")
        return await super().resolve_upstream(chain_id, seller, sku, service_kind)


class UnreachableOrderSource(OrderSource):
    async def orders_for_payment(self, payment_reference):
        raise ConnectionError("order store offline")


class UnavailableStore(FulfillmentRunStore):
    async def try_begin(self, *args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    async def mark_ok(self, *args):
        raise OperationalError("UPDATE", {}, Exception("database is locked"))

    async def mark_error(self, *args):
        raise OperationalError("UPDATE", {}, Exception("database is locked"))

    async def get_status(self, *args):
        return None

    async def get_run(self, *args):
        return None

    async def set_detail(self, *args):
        return None


def _endpoint(seller):
    return f"http://adapter.example.com/fulfill/{CHAIN_ID}/{seller}"


def _seller_id(seller, chain_id=CHAIN_ID):
    return f"eip155:{chain_id}:{seller}"


def _snapshot(lines, offers, order_id=None, payment_reference=None):
    return OrderSnapshot(
        order_id=order_id or f"ord-{uuid.uuid4().hex[:8]}",
        payment_reference=payment_reference or f"pay-{uuid.uuid4().hex[:8]}",
        buyer="0xbuyer",
        lines=tuple(lines),
        offers=tuple(offers),
    )


def _echo(request):
    body = json.loads(request.content)
    return httpx.Response(200, json={"status": "ok", "orderId": body["orderId"], "items": body["items"]})


@pytest.fixture()
def routes():
    return StaticRouteTable(
        {
            (SELLER_A, "voucher-10"): _endpoint(SELLER_A),
            (SELLER_A, "voucher-20"): _endpoint(SELLER_A),
            (SELLER_A, "voucher-30"): f"http://mirror.example.com/fulfill/{CHAIN_ID}/{SELLER_A}",
            (SELLER_B, "tshirt"): _endpoint(SELLER_B),
        }
    )


@pytest.fixture()
async def build_resolver(order_source, routes, run_store, resolver, recording_transport):
    dispatchers = []

    def _build(handler=_echo, gate=None, outbox=None):
        transport = recording_transport(handler)
        dispatcher = FulfillmentDispatcher(
            RegistryCredentialProvider(), DispatchSettings(), resolver=resolver, transport=transport
        )
        dispatchers.append(dispatcher)
        kwargs = {"outbox": outbox} if outbox is not None else {}
        fulfillment = FulfillmentResolver(order_source, routes, gate or RunGate(run_store), dispatcher, **kwargs)
        return fulfillment, transport

    yield _build
    for dispatcher in dispatchers:
        await dispatcher.aclose()


class TestEffectiveTrigger:
    def test_undeclared_defaults_to_finalized(self):
        assert effective_trigger(None) == "finalized"
        assert effective_trigger("  ") == "finalized"

    def test_declared_is_normalized(self):
        assert effective_trigger(" Confirmed ") == "confirmed"


class TestBuildRequest:
    def test_carries_order_identity_and_items(self):
        snapshot = _snapshot([OrderLine("voucher-10", 2)], [Offer(_seller_id(SELLER_A))])
        request = build_request(snapshot, [FulfillmentItem(sku="voucher-10", quantity=2)], "finalized")
        assert [(item.sku, item.quantity) for item in request.items] == [("voucher-10", 2)]
        assert request.order_id == snapshot.order_id
        assert request.payment_reference == snapshot.payment_reference
        assert request.trigger == "finalized"
        assert request.buyer == "0xbuyer"


class TestDispatch:
    async def test_two_lines_same_seller_dispatch_once(self, build_resolver, order_source, run_store):
        snapshot = _snapshot(
            [OrderLine("voucher-10"), OrderLine("voucher-20", 3)],
            [Offer(_seller_id(SELLER_A)), Offer(_seller_id(SELLER_A))],
        )
        order_source.add(snapshot)
        fulfillment, transport = build_resolver()

        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        assert [o.kind for o in report.outcomes] == [OutcomeKind.DISPATCHED, OutcomeKind.REPLAYED]
        assert report.outcomes[1].reason == "alreadyProcessed"
        assert len(transport.requests) == 1
        sent = json.loads(transport.requests[0].content)
        assert sent["items"] == [{"sku": "voucher-10", "quantity": 1}, {"sku": "voucher-20", "quantity": 3}]
        assert await run_store.get_status(CHAIN_ID, SELLER_A, snapshot.payment_reference) == "ok"

    async def test_lines_routed_elsewhere_are_not_bundled(self, build_resolver, order_source):
        snapshot = _snapshot(
            [OrderLine("voucher-10"), OrderLine("voucher-30"), OrderLine("unrouted")],
            [Offer(_seller_id(SELLER_A)), Offer(_seller_id(SELLER_A)), Offer(_seller_id(SELLER_A))],
        )
        order_source.add(snapshot)
        fulfillment, transport = build_resolver()

        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        assert [o.kind for o in report.outcomes] == [OutcomeKind.DISPATCHED, OutcomeKind.REPLAYED, OutcomeKind.SKIPPED]
        assert len(transport.requests) == 1
        assert transport.requests[0].headers["host"] == "adapter.example.com"
        assert json.loads(transport.requests[0].content)["items"] == [{"sku": "voucher-10", "quantity": 1}]

    async def test_replayed_event_does_not_dispatch_again(self, build_resolver, order_source):
        snapshot = _snapshot([OrderLine("voucher-10")], [Offer(_seller_id(SELLER_A))])
        order_source.add(snapshot)
        fulfillment, transport = build_resolver()

        await fulfillment.run(snapshot.payment_reference, "finalized")
        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        assert report.replayed and not report.dispatched
        assert len(transport.requests) == 1

    async def test_snapshot_endpoint_is_ignored(self, build_resolver, order_source):
        snapshot = _snapshot(
            [OrderLine("voucher-10")],
            [Offer(_seller_id(SELLER_A), fulfillment_endpoint="http://evil.example.com/steal")],
        )
        order_source.add(snapshot)
        fulfillment, transport = build_resolver()

        await fulfillment.run(snapshot.payment_reference, "finalized")

        assert transport.requests[0].headers["host"] == "adapter.example.com"

    async def test_sku_falls_back_to_offer(self, build_resolver, order_source):
        snapshot = _snapshot([OrderLine(None)], [Offer(_seller_id(SELLER_B), sku="TShirt")])
        order_source.add(snapshot)
        fulfillment, _ = build_resolver()

        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        assert report.dispatched[0].sku == "tshirt"


class TestTriggers:
    async def test_undeclared_trigger_waits_for_finalized(self, build_resolver, order_source):
        snapshot = _snapshot([OrderLine("voucher-10")], [Offer(_seller_id(SELLER_A))])
        order_source.add(snapshot)
        fulfillment, transport = build_resolver()

        confirmed = await fulfillment.run(snapshot.payment_reference, "confirmed")
        assert confirmed.skipped[0].reason == "trigger_mismatch"
        assert transport.requests == []

        finalized = await fulfillment.run(snapshot.payment_reference, "finalized")
        assert len(finalized.dispatched) == 1

    async def test_confirmed_offer_dispatches_on_confirmed(self, build_resolver, order_source):
        snapshot = _snapshot(
            [OrderLine("voucher-10")], [Offer(_seller_id(SELLER_A), fulfillment_trigger="confirmed")]
        )
        order_source.add(snapshot)
        fulfillment, _ = build_resolver()

        assert len((await fulfillment.run(snapshot.payment_reference, "confirmed")).dispatched) == 1

    async def test_confirmed_event_leaves_finalized_lines_out(self, build_resolver, order_source):
        snapshot = _snapshot(
            [OrderLine("voucher-10"), OrderLine("voucher-20", 2)],
            [Offer(_seller_id(SELLER_A), fulfillment_trigger="confirmed"), Offer(_seller_id(SELLER_A))],
        )
        order_source.add(snapshot)
        fulfillment, transport = build_resolver()

        report = await fulfillment.run(snapshot.payment_reference, "confirmed")

        assert [o.kind for o in report.outcomes] == [OutcomeKind.DISPATCHED, OutcomeKind.SKIPPED]
        assert report.outcomes[1].reason == "trigger_mismatch"
        sent = json.loads(transport.requests[0].content)
        assert sent["items"] == [{"sku": "voucher-10", "quantity": 1}]
        assert sent["trigger"] == "confirmed"

    async def test_unknown_trigger_rejected(self, build_resolver):
        fulfillment, _ = build_resolver()
        with pytest.raises(ValueError):
            await fulfillment.run("pay-x", "shipped")


class TestSkips:
    async def test_invalid_seller_id(self, build_resolver, order_source):
        snapshot = _snapshot([OrderLine("voucher-10")], [Offer("seller-a")])
        order_source.add(snapshot)
        fulfillment, _ = build_resolver()

        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        assert report.skipped[0].reason == "invalid_seller_id"

    async def test_missing_sku(self, build_resolver, order_source):
        snapshot = _snapshot([OrderLine("  ")], [Offer(_seller_id(SELLER_A))])
        order_source.add(snapshot)
        fulfillment, _ = build_resolver()

        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        assert report.skipped[0].reason == "missing_sku"

    async def test_unrouted_line(self, build_resolver, order_source, run_store):
        snapshot = _snapshot([OrderLine("unknown-sku")], [Offer(_seller_id(SELLER_A))])
        order_source.add(snapshot)
        fulfillment, transport = build_resolver()

        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        assert report.skipped[0].reason == "no_route"
        assert transport.requests == []
        assert await run_store.get_status(CHAIN_ID, SELLER_A, snapshot.payment_reference) is None

    async def test_unaligned_lines_beyond_offers_ignored(self, build_resolver, order_source):
        snapshot = _snapshot([OrderLine("voucher-10"), OrderLine("voucher-20")], [Offer(_seller_id(SELLER_A))])
        order_source.add(snapshot)
        fulfillment, _ = build_resolver()

        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        assert len(report.outcomes) == 1

    async def test_seller_filter(self, build_resolver, order_source):
        snapshot = _snapshot(
            [OrderLine("voucher-10"), OrderLine("tshirt")],
            [Offer(_seller_id(SELLER_A)), Offer(_seller_id(SELLER_B))],
        )
        order_source.add(snapshot)
        fulfillment, transport = build_resolver()

        report = await fulfillment.run(snapshot.payment_reference, "finalized", chain_id=CHAIN_ID, seller=SELLER_B)

        assert [o.seller for o in report.outcomes] == [SELLER_B]
        assert len(transport.requests) == 1


class TestFailures:
    async def test_failing_seller_does_not_block_others(self, build_resolver, order_source, run_store):
        def handler(request):
            if SELLER_A in request.url.path:
                return httpx.Response(500, text="adapter down")
            return _echo(request)

        snapshot = _snapshot(
            [OrderLine("voucher-10"), OrderLine("tshirt")],
            [Offer(_seller_id(SELLER_A)), Offer(_seller_id(SELLER_B))],
        )
        order_source.add(snapshot)
        fulfillment, _ = build_resolver(handler)

        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        failed, dispatched = report.outcomes
        assert failed.kind is OutcomeKind.FAILED
        assert failed.reason == "upstream_status"
        assert failed.http_status == 502
        assert dispatched.kind is OutcomeKind.DISPATCHED
        run = await run_store.get_run(CHAIN_ID, SELLER_A, snapshot.payment_reference)
        assert run.status == "error"
        assert run.last_error.startswith("upstream_status")

    async def test_route_lookup_failure_is_isolated(self, build_resolver, order_source, routes, run_store):
        snapshot = _snapshot(
            [OrderLine("voucher-10"), OrderLine("tshirt")],
            [Offer(_seller_id(SELLER_A)), Offer(_seller_id(SELLER_B))],
        )
        order_source.add(snapshot)
        fulfillment, transport = build_resolver()
        fulfillment.routes = FlakyRouteTable(routes.routes, broken_sku="voucher-10")

        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        failed, dispatched = report.outcomes
        assert failed.kind is OutcomeKind.FAILED
        assert failed.reason == "internal_error"
        assert failed.http_status == 500
        assert "connection reset" in failed.detail
        assert dispatched.kind is OutcomeKind.DISPATCHED
        assert dispatched.seller == SELLER_B
        assert len(transport.requests) == 1
        assert await run_store.get_status(CHAIN_ID, SELLER_A, snapshot.payment_reference) is None

    async def test_unreachable_order_source_reports_error(self, build_resolver):
        fulfillment, transport = build_resolver()
        fulfillment.orders = UnreachableOrderSource()

        report = await fulfillment.run("pay-offline", "finalized")

        assert report.error == "orders_unavailable"
        assert report.outcomes == []
        assert transport.requests == []

    async def test_failed_run_is_retried_on_next_event(self, build_resolver, order_source):
        calls = {"count": 0}

        def flaky(request):
            calls["count"] += 1
            if calls["count"] == 1:
                return httpx.Response(503, text="try later")
            return _echo(request)

        snapshot = _snapshot([OrderLine("voucher-10")], [Offer(_seller_id(SELLER_A))])
        order_source.add(snapshot)
        fulfillment, _ = build_resolver(flaky)

        first = await fulfillment.run(snapshot.payment_reference, "finalized")
        second = await fulfillment.run(snapshot.payment_reference, "finalized")

        assert first.failed and second.dispatched

    async def test_unavailable_ledger(self, build_resolver, order_source):
        snapshot = _snapshot([OrderLine("voucher-10")], [Offer(_seller_id(SELLER_A))])
        order_source.add(snapshot)
        fulfillment, transport = build_resolver(gate=RunGate(UnavailableStore()))

        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        assert report.failed[0].reason == "gate_unavailable"
        assert report.failed[0].http_status == 503
        assert transport.requests == []

    async def test_blank_order_id_is_an_invalid_request(self, build_resolver, order_source):
        snapshot = _snapshot([OrderLine("voucher-10")], [Offer(_seller_id(SELLER_A))], order_id=" ")
        order_source.add(snapshot)
        fulfillment, transport = build_resolver()

        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        assert report.failed[0].reason == "invalid_request"
        assert report.failed[0].http_status == 400
        assert transport.requests == []

    async def test_unexpected_error_marks_run_failed(self, build_resolver, order_source, run_store):
        snapshot = _snapshot([OrderLine("voucher-10")], [Offer(_seller_id(SELLER_A))])
        order_source.add(snapshot)
        fulfillment, _ = build_resolver()

        async def explode(endpoint, request):
            raise RuntimeError("boom")

        fulfillment.dispatcher.dispatch = explode
        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        assert report.failed[0].reason == "internal_error"
        assert report.failed[0].http_status == 500
        assert await run_store.get_status(CHAIN_ID, SELLER_A, snapshot.payment_reference) == "error"


class TestOutbox:
    async def test_success_is_recorded(self, build_resolver, order_source):
        snapshot = _snapshot([OrderLine("voucher-10")], [Offer(_seller_id(SELLER_A))])
        order_source.add(snapshot)
        fulfillment, _ = build_resolver()

        await fulfillment.run(snapshot.payment_reference, "finalized")

        outbox = current_domain.repository_for(OrderOutbox).get(snapshot.order_id)
        assert len(outbox.entries) == 1
        assert outbox.entries[0].source == "fulfillment"
        assert outbox.entries[0].data["orderId"] == snapshot.order_id

    async def test_outbox_failure_keeps_run_ok(self, build_resolver, order_source, run_store):
        def broken_outbox(order_id, source, payload):
            raise RuntimeError("outbox offline")

        snapshot = _snapshot([OrderLine("voucher-10")], [Offer(_seller_id(SELLER_A))])
        order_source.add(snapshot)
        fulfillment, _ = build_resolver(outbox=broken_outbox)

        report = await fulfillment.run(snapshot.payment_reference, "finalized")

        assert report.dispatched
        assert await run_store.get_status(CHAIN_ID, SELLER_A, snapshot.payment_reference) == "ok"
