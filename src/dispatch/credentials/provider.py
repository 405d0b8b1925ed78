"""Outbound credential providers.

A provider answers one question for the dispatcher: which header, if any,
pre-authorizes a call to this endpoint. ``None`` means the destination is
untrusted and goes through the private-address guard.
"""

import asyncio
import os
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass

import httpx
import structlog
from protean.utils.globals import current_domain

from dispatch.credentials.credential import (
    DEFAULT_HEADER_NAME,
    OutboundCredential,
    normalize_origin,
)
from dispatch.routing.route import normalize_seller

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OutboundHeader:
    name: str
    value: str


class OutboundCredentialProvider(ABC):
    @abstractmethod
    async def header_for(
        self,
        endpoint: httpx.URL,
        service_kind: str,
        seller: str | None,
        chain_id: int | None,
    ) -> OutboundHeader | None:
        """Return the credential header for ``endpoint``, or None if untrusted."""
        ...


def _credentials_for(service_kind: str, origin: str) -> list[OutboundCredential]:
    # Blocking repository query; callers run it on a worker thread.
    repo = current_domain.repository_for(OutboundCredential)
    return repo._dao.query.filter(service_kind=service_kind, endpoint_origin=origin).all().items


class RegistryCredentialProvider(OutboundCredentialProvider):
    """Credentials stored as ``OutboundCredential`` aggregates.

    The most specific active row wins: seller-bound over unbound, chain-bound
    over unbound, then the longest path prefix. Two rows tied on all three are
    ambiguous and yield no credential.
    """

    async def header_for(
        self,
        endpoint: httpx.URL,
        service_kind: str,
        seller: str | None,
        chain_id: int | None,
    ) -> OutboundHeader | None:
        origin = normalize_origin(endpoint)
        if origin is None:
            return None
        path = endpoint.path or "/"
        seller = normalize_seller(seller) or None

        rows = await asyncio.to_thread(_credentials_for, service_kind, origin)

        candidates = [row for row in rows if row.matches(origin, path, seller, chain_id)]
        if not candidates:
            return None

        candidates.sort(key=lambda row: row.specificity(), reverse=True)
        if len(candidates) > 1 and candidates[0].specificity() == candidates[1].specificity():
            logger.error(
                "Ambiguous outbound credentials",
                origin=origin,
                path=path,
                service_kind=service_kind,
                seller=seller,
                chain_id=chain_id,
                candidates=[str(row.id) for row in candidates[:2]],
            )
            return None

        chosen = candidates[0]
        logger.debug("Outbound credential selected", origin=origin, credential_id=str(chosen.id))
        return OutboundHeader(name=chosen.header_name, value=chosen.api_key)


class EnvCredentialProvider(OutboundCredentialProvider):
    """Fixed credentials for the ERP and code-dispenser adapters."""

    def __init__(
        self,
        header_name: str = DEFAULT_HEADER_NAME,
        tokens_by_origin: Mapping[str, str | None] | None = None,
    ) -> None:
        self.header_name = header_name
        self.tokens_by_origin: dict[str, str | None] = {}
        for origin, token in (tokens_by_origin or {}).items():
            normalized = normalize_origin(origin)
            if normalized is None:
                raise ValueError(f"Invalid adapter origin: {origin!r}")
            self.tokens_by_origin[normalized] = token

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "EnvCredentialProvider":
        def _read(name: str) -> str | None:
            value = (environ.get(name) or "").strip()
            return value or None

        shared_key = _read("CIRCLES_SERVICE_KEY")
        erp_origin = _read("MARKET_ERP_ADAPTER_ORIGIN") or "http://market-adapter-erp:5678"
        code_origin = _read("MARKET_CODE_DISPENSER_ORIGIN") or "http://market-adapter-codedispenser:5680"

        provider = cls(
            header_name=_read("MARKET_OUTBOUND_HEADER_NAME") or DEFAULT_HEADER_NAME,
            tokens_by_origin={
                erp_origin: _read("MARKET_ERP_ADAPTER_TOKEN") or shared_key,
                code_origin: _read("MARKET_CODE_DISPENSER_TOKEN") or shared_key,
            },
        )
        logger.info(
            "Env outbound credentials configured",
            header_name=provider.header_name,
            origins=sorted(provider.tokens_by_origin),
        )
        return provider

    async def header_for(
        self,
        endpoint: httpx.URL,
        service_kind: str,
        seller: str | None,
        chain_id: int | None,
    ) -> OutboundHeader | None:
        origin = normalize_origin(endpoint)
        if origin is None or origin not in self.tokens_by_origin:
            return None

        token = self.tokens_by_origin[origin]
        if not token:
            logger.warning("No outbound token configured", origin=origin, service_kind=service_kind)
            return None
        return OutboundHeader(name=self.header_name, value=token)
