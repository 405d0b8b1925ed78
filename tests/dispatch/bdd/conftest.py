"""Shared BDD fixtures and step definitions for lifecycle dispatch."""

import asyncio
import json

import httpx
import pytest
from dispatch.credentials.provider import RegistryCredentialProvider
from dispatch.lifecycle.resolver import FulfillmentResolver
from dispatch.orders.snapshot import Offer, OrderLine, OrderSnapshot
from dispatch.outbound.client import FulfillmentDispatcher
from dispatch.routing.management import ConfigureRoute
from dispatch.routing.table import RepositoryRouteTable
from protean import current_domain
from pytest_bdd import given, parsers, then
from shared.ledger.gate import RunGate
from shared.ledger.store import SqlAlchemyFulfillmentRunStore
from shared.settings import DispatchSettings


def _adapter(request):
    body = json.loads(request.content)
    return httpx.Response(200, json={"status": "ok", "orderId": body["orderId"]})


@pytest.fixture()
def adapter(recording_transport):
    return recording_transport(_adapter)


@pytest.fixture()
def ledger(ledger_url):
    store = SqlAlchemyFulfillmentRunStore.from_url(ledger_url)
    asyncio.run(store.ensure_schema())
    yield store
    asyncio.run(store.dispose())


@pytest.fixture()
def fulfillment(order_source, ledger, resolver, adapter):
    dispatcher = FulfillmentDispatcher(
        RegistryCredentialProvider(), DispatchSettings(), resolver=resolver, transport=adapter
    )
    yield FulfillmentResolver(order_source, RepositoryRouteTable(), RunGate(ledger), dispatcher)
    asyncio.run(dispatcher.aclose())


@pytest.fixture()
def reports():
    return []


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('a route for sku "{sku}" of seller "{seller}" on chain {chain_id:d}'))
def route_for(sku, seller, chain_id):
    current_domain.process(
        ConfigureRoute(
            chain_id=chain_id,
            seller_address=seller,
            sku=sku,
            endpoint="http://adapter.example.com/fulfill/{chain_id}/{seller}",
        ),
        asynchronous=False,
    )


@given(
    parsers.cfparse(
        'an order paid by "{payment_reference}" buying "{first}" and "{second}" '
        'from seller "{seller}" on chain {chain_id:d}'
    ),
    target_fixture="payment_reference",
)
def order_with_two_lines(order_source, payment_reference, first, second, seller, chain_id):
    seller_id = f"eip155:{chain_id}:{seller}"
    order_source.add(
        OrderSnapshot(
            order_id=f"ord-{payment_reference}",
            payment_reference=payment_reference,
            lines=(OrderLine(first), OrderLine(second)),
            offers=(Offer(seller_id), Offer(seller_id)),
        )
    )
    return payment_reference


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.re(r"(?P<count>\d+) lines? (is|are) dispatched"), converters={"count": int})
def lines_dispatched(reports, count):
    assert len(reports[-1].dispatched) == count


@then(
    parsers.re(r'(?P<count>\d+) lines? (is|are) replayed with state "(?P<state>\w+)"'),
    converters={"count": int},
)
def lines_replayed(reports, count, state):
    replayed = reports[-1].replayed
    assert len(replayed) == count
    assert all(outcome.reason == state for outcome in replayed)


@then(
    parsers.re(r'(?P<count>\d+) lines? (is|are) skipped with reason "(?P<reason>\w+)"'),
    converters={"count": int},
)
def lines_skipped(reports, count, reason):
    assert [o.reason for o in reports[-1].skipped] == [reason] * count


@then(parsers.re(r"the adapter received (?P<count>\d+) requests?$"), converters={"count": int})
def adapter_requests(adapter, count):
    assert len(adapter.requests) == count


@then(
    parsers.re(r"the adapter received (?P<count>\d+) requests? carrying (?P<items>\d+) items"),
    converters={"count": int, "items": int},
)
def adapter_requests_with_items(adapter, count, items):
    assert len(adapter.requests) == count
    assert all(len(json.loads(request.content)["items"]) == items for request in adapter.requests)
