import httpx
import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture

PUBLIC_IP = "93.184.216.34"


@pytest.fixture(scope="session")
def dispatch_bed():
    from dispatch.domain import dispatch

    bed = DomainFixture(dispatch)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(dispatch_bed):
    from dispatch.credentials import reset_credential_provider
    from dispatch.lifecycle import reset_lifecycle_hooks
    from dispatch.orders import reset_order_source
    from shared.admin import reset_admin_key

    with dispatch_bed.domain_context():
        yield
        for provider in current_domain.providers.values():
            provider._data_reset()
    reset_credential_provider()
    reset_lifecycle_hooks()
    reset_order_source()
    reset_admin_key()


class FakeResolver:
    """DNS stand-in: maps host names to addresses and records lookups."""

    def __init__(self, hosts: dict[str, list[str]]) -> None:
        self.hosts = hosts
        self.lookups: list[str] = []

    async def __call__(self, host: str) -> list[str]:
        self.lookups.append(host)
        if host not in self.hosts:
            raise OSError(f"unknown host {host}")
        return self.hosts[host]


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler) -> None:
        self.requests: list[httpx.Request] = []

        def _record(request: httpx.Request):
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


@pytest.fixture()
def resolver():
    return FakeResolver(
        {
            "adapter.example.com": [PUBLIC_IP],
            "mirror.example.com": [PUBLIC_IP],
            "internal.example.com": ["10.0.0.7"],
        }
    )


@pytest.fixture()
def recording_transport():
    return RecordingTransport


@pytest.fixture()
async def run_store(ledger_url):
    from shared.ledger.store import SqlAlchemyFulfillmentRunStore

    store = SqlAlchemyFulfillmentRunStore.from_url(ledger_url)
    await store.ensure_schema()
    yield store
    await store.dispose()


@pytest.fixture()
def order_source():
    from dispatch.orders import set_order_source
    from dispatch.orders.source import InMemoryOrderSource

    source = InMemoryOrderSource()
    set_order_source(source)
    return source
