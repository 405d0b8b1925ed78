"""Route administration: commands and handler."""

from protean import handle
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from dispatch.domain import dispatch
from dispatch.routing.route import MarketRoute, ServiceKind, normalize_seller, normalize_sku


@dispatch.command(part_of="MarketRoute")
class ConfigureRoute:
    """Create the route for (chain, seller, sku, kind), or repoint the existing one."""

    chain_id = Integer(required=True)
    seller_address = String(required=True, max_length=64)
    sku = String(required=True, max_length=100)
    endpoint = String(required=True, max_length=500)
    service_kind = String(max_length=20, default=ServiceKind.FULFILLMENT.value)


@dispatch.command(part_of="MarketRoute")
class DisableRoute:
    route_id = Identifier(required=True)


@dispatch.command_handler(part_of=MarketRoute)
class RouteCommandHandler:
    @handle(ConfigureRoute)
    def configure_route(self, command):
        repo = current_domain.repository_for(MarketRoute)
        existing = repo._dao.query.filter(
            chain_id=command.chain_id,
            seller_address=normalize_seller(command.seller_address),
            sku=normalize_sku(command.sku),
            service_kind=command.service_kind,
        ).all().items

        if existing:
            route = existing[0]
            route.point_to(command.endpoint)
        else:
            route = MarketRoute.configure(
                chain_id=command.chain_id,
                seller_address=command.seller_address,
                sku=command.sku,
                endpoint=command.endpoint,
                service_kind=command.service_kind,
            )
        repo.add(route)
        return str(route.id)

    @handle(DisableRoute)
    def disable_route(self, command):
        repo = current_domain.repository_for(MarketRoute)
        route = repo.get(command.route_id)
        route.disable()
        repo.add(route)
