import asyncio
import json

import httpx
import pytest
from dispatch.credentials.provider import RegistryCredentialProvider
from dispatch.lifecycle import set_lifecycle_hooks
from dispatch.lifecycle.hooks import LifecycleHooks
from dispatch.lifecycle.resolver import FulfillmentResolver
from dispatch.outbound.client import FulfillmentDispatcher
from dispatch.routing.table import RepositoryRouteTable
from shared.ledger.gate import RunGate
from shared.ledger.store import SqlAlchemyFulfillmentRunStore
from shared.settings import DispatchSettings


def echo_adapter(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(
        200,
        json={
            "@type": "circles:CodeDispenserResult",
            "status": "ok",
            "orderId": body["orderId"],
            "paymentReference": body["paymentReference"],
            "codes": [f"CODE-{item['sku']}" for item in body["items"]],
        },
    )


@pytest.fixture()
def adapter_handler():
    """Upstream behaviour; tests replace ``handler["fn"]`` to simulate failures."""
    return {"fn": echo_adapter}


@pytest.fixture()
def ledger(ledger_url):
    store = SqlAlchemyFulfillmentRunStore.from_url(ledger_url)
    asyncio.run(store.ensure_schema())
    yield store
    asyncio.run(store.dispose())


@pytest.fixture()
def adapter_transport(recording_transport, adapter_handler):
    return recording_transport(lambda request: adapter_handler["fn"](request))


@pytest.fixture()
def hooks(ledger, order_source, resolver, adapter_transport):
    dispatcher = FulfillmentDispatcher(
        RegistryCredentialProvider(),
        DispatchSettings(),
        resolver=resolver,
        transport=adapter_transport,
    )
    lifecycle = LifecycleHooks(FulfillmentResolver(order_source, RepositoryRouteTable(), RunGate(ledger), dispatcher))
    set_lifecycle_hooks(lifecycle)
    yield lifecycle
    asyncio.run(dispatcher.aclose())
