"""Adapters bounded context: the upstream side of the fulfillment boundary.

An adapter deployment exposes ``/fulfill/{chainId}/{seller}`` and
``/inventory/{chainId}/{seller}/{sku}`` to the marketplace. Inbound calls are
authorized by a Trust Authenticator, fulfillment runs behind its own Run Gate,
and the side effect itself is a pluggable capability (code dispenser, ERP).
Trusted callers are Protean aggregates.
"""

import structlog
from protean.domain import Domain

adapters = Domain(name="adapters")

logger = structlog.get_logger(__name__)
