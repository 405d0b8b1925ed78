"""OrderOutbox aggregate: append-only record of adapter responses per order."""

import json
from datetime import UTC, datetime
from typing import Any

from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, HasMany, Identifier, String, Text
from protean.utils.globals import current_domain

from dispatch.domain import dispatch


@dispatch.entity(part_of="OrderOutbox")
class OutboxEntry:
    source = String(required=True, max_length=255)
    payload = Text(required=True)  # JSON
    recorded_at = DateTime(required=True)

    @property
    def data(self) -> Any:
        return json.loads(self.payload)


@dispatch.aggregate
class OrderOutbox:
    order_id = Identifier(identifier=True, required=True)
    entries = HasMany(OutboxEntry)

    def append(self, source: str, payload: Any) -> None:
        self.add_entries(
            OutboxEntry(
                source=source,
                payload=json.dumps(payload),
                recorded_at=datetime.now(UTC),
            )
        )


def record_outbox(order_id: str, source: str, payload: Any) -> None:
    """Append ``payload`` to the order's outbox, creating the outbox on first use."""
    repo = current_domain.repository_for(OrderOutbox)
    try:
        outbox = repo.get(order_id)
    except ObjectNotFoundError:
        outbox = OrderOutbox(order_id=order_id)
    outbox.append(source, payload)
    repo.add(outbox)
