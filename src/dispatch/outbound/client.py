"""Outbound Dispatcher: sends a FulfillmentRequest to an upstream adapter.

Flow:
    1. endpoint must be an absolute http(s) URL
    2. parse (chain_id, seller) from .../fulfill/{chainId}/{seller}
    3. parsed target → look up an outbound credential
    4. credential  → trusted client, header attached, sent once, no redirects
       no credential → private-address guard, public client pinned to the
       checked address, manual redirects re-checked at every hop
    5. non-2xx fails with status + truncated body; body read under a byte
       cap and parsed as JSON, returned as-is

The whole call runs under ``DispatchSettings.timeout_ms``. Cancellation by
the caller propagates unchanged.
"""

import asyncio
import json
from typing import Any

import httpx
import structlog

from dispatch.credentials.provider import OutboundCredentialProvider, OutboundHeader
from dispatch.outbound.errors import (
    BlockedPrivateTargetError,
    DispatchTimeoutError,
    InvalidEndpointError,
    InvalidUpstreamPayloadError,
    PayloadTooLargeError,
    UpstreamStatusError,
    UpstreamTransportError,
)
from dispatch.outbound.guards import (
    HOP_HEADER,
    Resolver,
    is_http_or_https,
    parse_fulfillment_target,
    read_with_limit,
    resolve_host,
    resolve_public_address,
    send_with_redirects,
)
from dispatch.routing.route import ServiceKind
from shared.fulfillment import FulfillmentRequest
from shared.settings import DispatchSettings

logger = structlog.get_logger(__name__)


def parse_endpoint(endpoint: str | None) -> httpx.URL:
    if not endpoint or not endpoint.strip():
        raise InvalidEndpointError("Endpoint is required")
    try:
        url = httpx.URL(endpoint.strip())
    except httpx.InvalidURL as exc:
        raise InvalidEndpointError(f"Invalid endpoint: {endpoint!r}") from exc
    if not is_http_or_https(url):
        raise InvalidEndpointError("Endpoint must be an absolute http/https URI")
    return url


class FulfillmentDispatcher:
    """Adapter-agnostic HTTP dispatcher for fulfillment requests.

    Two connection pools are kept: one for pre-authorized destinations and one
    for public destinations. Neither follows redirects on its own.
    """

    def __init__(
        self,
        credentials: OutboundCredentialProvider,
        settings: DispatchSettings | None = None,
        *,
        resolver: Resolver = resolve_host,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.credentials = credentials
        self.settings = settings or DispatchSettings()
        self._resolver = resolver

        timeout = httpx.Timeout(self.settings.timeout_seconds)
        self._trusted = httpx.AsyncClient(timeout=timeout, follow_redirects=False, transport=transport)
        self._public = httpx.AsyncClient(timeout=timeout, follow_redirects=False, transport=transport)

    async def aclose(self) -> None:
        await self._trusted.aclose()
        await self._public.aclose()

    async def __aenter__(self) -> "FulfillmentDispatcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def dispatch(self, endpoint: str, request: FulfillmentRequest) -> Any:
        """POST ``request`` to ``endpoint`` and return the parsed JSON response.

        Raises a ``DispatchError`` subclass on any failure.
        """
        url = parse_endpoint(endpoint)
        try:
            async with asyncio.timeout(self.settings.timeout_seconds):
                return await self._dispatch(url, request)
        except TimeoutError as exc:
            logger.warning("Fulfillment call timed out", endpoint=str(url), timeout_ms=self.settings.timeout_ms)
            raise DispatchTimeoutError(f"Upstream did not answer within {self.settings.timeout_ms} ms") from exc
        except httpx.TimeoutException as exc:
            raise DispatchTimeoutError(f"Upstream did not answer within {self.settings.timeout_ms} ms") from exc
        except httpx.HTTPError as exc:
            logger.warning("Fulfillment call failed", endpoint=str(url), error=str(exc))
            raise UpstreamTransportError(f"Upstream request failed: {exc}") from exc

    async def _dispatch(self, url: httpx.URL, request: FulfillmentRequest) -> Any:
        body = json.dumps(request.to_wire()).encode("utf-8")

        header = None
        target = parse_fulfillment_target(url)
        if target is not None:
            header = await self.credentials.header_for(
                url,
                service_kind=ServiceKind.FULFILLMENT.value,
                seller=target.seller,
                chain_id=target.chain_id,
            )

        if header is not None:
            response = await self._send_trusted(url, body, header)
        else:
            response = await self._send_public(url, body)

        try:
            return await self._read_json(response, url)
        finally:
            await response.aclose()

    async def _send_trusted(self, url: httpx.URL, body: bytes, header: OutboundHeader) -> httpx.Response:
        logger.info("Sending fulfillment to trusted endpoint", endpoint=str(url), header_name=header.name)
        request = self._build(self._trusted, url, "POST", 1, body)
        request.headers[header.name] = header.value
        return await self._trusted.send(request, stream=True)

    async def _send_public(self, url: httpx.URL, body: bytes) -> httpx.Response:
        address = await resolve_public_address(url, self._resolver)
        if address is None:
            logger.error("Blocked private fulfillment address", endpoint=str(url))
            raise BlockedPrivateTargetError(f"Blocked private fulfillment address: {url.host}")

        logger.info("Sending fulfillment to public endpoint", endpoint=str(url))
        return await send_with_redirects(
            self._public,
            self._build(self._public, url, "POST", 1, body),
            address=address,
            max_redirects=self.settings.max_redirects,
            rebuild=lambda target, method, hop: self._build(self._public, target, method, hop, body),
            resolver=self._resolver,
        )

    @staticmethod
    def _build(client: httpx.AsyncClient, url: httpx.URL, method: str, hop: int, body: bytes) -> httpx.Request:
        headers = {"Accept": "application/json", HOP_HEADER: str(hop)}
        if method == "GET":
            return client.build_request(method, url, headers=headers)
        headers["Content-Type"] = "application/json"
        return client.build_request(method, url, headers=headers, content=body)

    async def _read_json(self, response: httpx.Response, url: httpx.URL) -> Any:
        if not response.is_success:
            try:
                raw = await read_with_limit(response, self.settings.max_response_bytes)
                detail = raw.decode("utf-8", errors="replace")[: self.settings.error_body_chars]
            except PayloadTooLargeError:
                detail = "<response body too large>"
            logger.warning(
                "Fulfillment endpoint returned an error",
                endpoint=str(url),
                status_code=response.status_code,
                body=detail,
            )
            raise UpstreamStatusError(response.status_code, detail)

        raw = await read_with_limit(response, self.settings.max_response_bytes)
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise InvalidUpstreamPayloadError("Upstream response is not valid JSON") from exc
