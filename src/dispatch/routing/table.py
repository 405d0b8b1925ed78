"""Route lookup consumed by the Trigger & Line Resolver."""

import asyncio
from abc import ABC, abstractmethod

import structlog
from protean.utils.globals import current_domain

from dispatch.routing.route import MarketRoute, ServiceKind, normalize_seller, normalize_sku

logger = structlog.get_logger(__name__)


def _routes_for(chain_id: int, seller: str, sku: str, service_kind: ServiceKind) -> list[MarketRoute]:
    repo = current_domain.repository_for(MarketRoute)
    return repo._dao.query.filter(
        chain_id=chain_id,
        seller_address=seller,
        sku=sku,
        service_kind=service_kind.value,
    ).all().items


class RouteTable(ABC):
    @abstractmethod
    async def resolve_upstream(
        self,
        chain_id: int,
        seller: str,
        sku: str,
        service_kind: ServiceKind = ServiceKind.FULFILLMENT,
    ) -> str | None:
        """Return the configured endpoint for the line, or None when unrouted."""
        ...


class RepositoryRouteTable(RouteTable):
    """Routes stored as ``MarketRoute`` aggregates in the active domain."""

    async def resolve_upstream(
        self,
        chain_id: int,
        seller: str,
        sku: str,
        service_kind: ServiceKind = ServiceKind.FULFILLMENT,
    ) -> str | None:
        seller = normalize_seller(seller)
        sku = normalize_sku(sku)
        if chain_id <= 0 or not seller or not sku:
            return None

        routes = await asyncio.to_thread(_routes_for, chain_id, seller, sku, service_kind)

        route = next((r for r in routes if r.enabled), None)
        if route is None:
            return None

        try:
            return route.resolved_endpoint()
        except ValueError:
            logger.error("Route endpoint template is invalid", route_id=str(route.id), endpoint=route.endpoint)
            return None
