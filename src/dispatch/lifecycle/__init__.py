"""Lifecycle wiring.

get_lifecycle_hooks() builds the default stack from the environment on first
use: ledger at FULFILLMENT_LEDGER_URL, gate knobs under MARKET_FULFILLMENT_,
dispatcher limits from OUTBOUND_*, the active credential provider, the
repository route table and the active order source. set_lifecycle_hooks()
overrides it (useful for tests).
"""

from dispatch.credentials import get_credential_provider
from dispatch.lifecycle.hooks import LifecycleHooks
from dispatch.lifecycle.resolver import FulfillmentResolver
from dispatch.orders import get_order_source
from dispatch.outbound.client import FulfillmentDispatcher
from dispatch.routing.table import RepositoryRouteTable
from shared.ledger.gate import RunGate
from shared.ledger.store import SqlAlchemyFulfillmentRunStore
from shared.settings import DispatchSettings, RunGateSettings, ledger_url

GATE_ENV_PREFIX = "MARKET_FULFILLMENT_"

_current_hooks: LifecycleHooks | None = None


def build_lifecycle_hooks(store: SqlAlchemyFulfillmentRunStore | None = None) -> LifecycleHooks:
    store = store or SqlAlchemyFulfillmentRunStore.from_url(ledger_url())
    resolver = FulfillmentResolver(
        orders=get_order_source(),
        routes=RepositoryRouteTable(),
        gate=RunGate(store, RunGateSettings.from_env(GATE_ENV_PREFIX)),
        dispatcher=FulfillmentDispatcher(get_credential_provider(), DispatchSettings.from_env()),
    )
    return LifecycleHooks(resolver)


def get_lifecycle_hooks() -> LifecycleHooks:
    global _current_hooks
    if _current_hooks is None:
        _current_hooks = build_lifecycle_hooks()
    return _current_hooks


def set_lifecycle_hooks(hooks: LifecycleHooks) -> None:
    global _current_hooks
    _current_hooks = hooks


def reset_lifecycle_hooks() -> None:
    global _current_hooks
    _current_hooks = None
