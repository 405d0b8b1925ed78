from datetime import UTC, datetime, timedelta

import pytest
from shared.ledger.store import SqlAlchemyFulfillmentRunStore


class FrozenClock:
    """Clock the tests can move forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int) -> None:
        self.now += timedelta(minutes=minutes)


@pytest.fixture()
def clock():
    return FrozenClock()


@pytest.fixture()
async def store(ledger_url, clock):
    run_store = SqlAlchemyFulfillmentRunStore.from_url(ledger_url, clock=clock)
    await run_store.ensure_schema()
    yield run_store
    await run_store.dispose()
