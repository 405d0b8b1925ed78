"""Order source factory.

Provides get_order_source() / set_order_source(). Defaults to an
InMemoryOrderSource that the ordering collaborator (or a test) fills.
"""

from dispatch.orders.source import InMemoryOrderSource, OrderSource

_current_source: OrderSource | None = None


def get_order_source() -> OrderSource:
    global _current_source
    if _current_source is None:
        _current_source = InMemoryOrderSource()
    return _current_source


def set_order_source(source: OrderSource) -> None:
    """Override the active order source (useful for tests)."""
    global _current_source
    _current_source = source


def reset_order_source() -> None:
    global _current_source
    _current_source = None
