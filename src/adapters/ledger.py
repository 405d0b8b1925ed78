"""Run Gate factory for the adapter process.

Each adapter kind keeps its own ledger knobs (CODE_FULFILLMENT_*,
ERP_FULFILLMENT_*) over the ledger at FULFILLMENT_LEDGER_URL.
"""

from adapters.fulfillment import LEDGER_PREFIXES, adapter_kind
from shared.ledger.gate import RunGate
from shared.ledger.store import SqlAlchemyFulfillmentRunStore
from shared.settings import RunGateSettings, ledger_url

_current_gate: RunGate | None = None


def get_run_gate() -> RunGate:
    global _current_gate
    if _current_gate is None:
        store = SqlAlchemyFulfillmentRunStore.from_url(ledger_url())
        settings = RunGateSettings.from_env(LEDGER_PREFIXES.get(adapter_kind(), ""))
        _current_gate = RunGate(store, settings)
    return _current_gate


def set_run_gate(gate: RunGate) -> None:
    """Override the active gate (useful for tests)."""
    global _current_gate
    _current_gate = gate


def reset_run_gate() -> None:
    global _current_gate
    _current_gate = None
