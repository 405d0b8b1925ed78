"""Dispatch bounded context for forwarding fulfillment obligations to upstream adapters.

Reacts to payment lifecycle events (confirmed / finalized), resolves which
order lines must be fulfilled, and calls the configured adapter endpoints
behind an idempotency gate, an SSRF guard, and outbound credential injection.
Routes, outbound credentials, and the order outbox are Protean aggregates.
"""

import structlog
from protean.domain import Domain

dispatch = Domain(name="dispatch")

logger = structlog.get_logger(__name__)
