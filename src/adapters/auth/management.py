"""Trusted caller administration: commands and handler."""

import json

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Integer, String, Text
from protean.utils.globals import current_domain

from adapters.auth.trusted_caller import TrustedCaller
from adapters.domain import adapters


@adapters.command(part_of="TrustedCaller")
class IssueTrustedCaller:
    """Register a caller. The handler returns ``(caller_id, raw_key)``."""

    scopes = Text(required=True)  # JSON list of scope names
    caller_id = String(max_length=100)
    seller_address = String(max_length=64)
    chain_id = Integer()


@adapters.command(part_of="TrustedCaller")
class RevokeTrustedCaller:
    caller_id = String(required=True, max_length=100)


@adapters.command_handler(part_of=TrustedCaller)
class TrustedCallerCommandHandler:
    @handle(IssueTrustedCaller)
    def issue(self, command):
        caller, raw_key = TrustedCaller.issue(
            scopes=json.loads(command.scopes) if isinstance(command.scopes, str) else command.scopes,
            caller_id=command.caller_id,
            seller_address=command.seller_address,
            chain_id=command.chain_id,
        )
        repo = current_domain.repository_for(TrustedCaller)
        if repo._dao.query.filter(caller_id=caller.caller_id).all().items:
            raise ValidationError({"caller_id": [f"Caller {caller.caller_id} already exists"]})
        repo.add(caller)
        return caller.caller_id, raw_key

    @handle(RevokeTrustedCaller)
    def revoke(self, command):
        repo = current_domain.repository_for(TrustedCaller)
        caller = repo.get(command.caller_id)
        caller.revoke()
        repo.add(caller)
