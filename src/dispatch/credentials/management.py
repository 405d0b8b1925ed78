"""Outbound credential administration: commands and handler."""

from protean import handle
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from dispatch.credentials.credential import OutboundCredential
from dispatch.domain import dispatch
from dispatch.routing.route import ServiceKind


@dispatch.command(part_of="OutboundCredential")
class RegisterOutboundCredential:
    endpoint_origin = String(required=True, max_length=255)
    api_key = String(required=True, max_length=500)
    service_kind = String(max_length=20, default=ServiceKind.FULFILLMENT.value)
    header_name = String(max_length=100)
    path_prefix = String(max_length=255)
    seller_address = String(max_length=64)
    chain_id = Integer()


@dispatch.command(part_of="OutboundCredential")
class RevokeOutboundCredential:
    credential_id = Identifier(required=True)


@dispatch.command_handler(part_of=OutboundCredential)
class OutboundCredentialCommandHandler:
    @handle(RegisterOutboundCredential)
    def register(self, command):
        credential = OutboundCredential.register(
            endpoint_origin=command.endpoint_origin,
            api_key=command.api_key,
            service_kind=command.service_kind,
            header_name=command.header_name,
            path_prefix=command.path_prefix,
            seller_address=command.seller_address,
            chain_id=command.chain_id,
        )
        current_domain.repository_for(OutboundCredential).add(credential)
        return str(credential.id)

    @handle(RevokeOutboundCredential)
    def revoke(self, command):
        repo = current_domain.repository_for(OutboundCredential)
        credential = repo.get(command.credential_id)
        credential.revoke()
        repo.add(credential)
