"""Order source port: how the dispatch side loads orders for a payment."""

from abc import ABC, abstractmethod

from dispatch.orders.snapshot import OrderSnapshot


class OrderSource(ABC):
    @abstractmethod
    async def orders_for_payment(self, payment_reference: str) -> list[OrderSnapshot]:
        """Return every order settled by ``payment_reference``."""
        ...


class InMemoryOrderSource(OrderSource):
    """Order snapshots held in memory, for development and testing."""

    def __init__(self) -> None:
        self._orders: dict[str, list[OrderSnapshot]] = {}

    def add(self, snapshot: OrderSnapshot) -> None:
        self._orders.setdefault(snapshot.payment_reference.strip(), []).append(snapshot)

    def clear(self) -> None:
        self._orders.clear()

    async def orders_for_payment(self, payment_reference: str) -> list[OrderSnapshot]:
        return list(self._orders.get((payment_reference or "").strip(), []))
