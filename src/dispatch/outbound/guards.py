"""Network guards for outbound fulfillment calls.

Unauthenticated destinations are treated as attacker-controlled: every hop is
resolved and checked against private, loopback, link-local and reserved
ranges before a request is sent, and the request is then sent to the address
that passed the check. Redirects are followed by hand so each ``Location``
goes through the same check.
"""

import asyncio
import ipaddress
import re
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx
import structlog

from dispatch.outbound.errors import (
    BlockedPrivateTargetError,
    InvalidRedirectError,
    PayloadTooLargeError,
    TooManyRedirectsError,
)

logger = structlog.get_logger(__name__)

HOP_HEADER = "X-Market-Proxy-Hop"
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

Resolver = Callable[[str], Awaitable[list[str]]]
RequestBuilder = Callable[[httpx.URL, str, int], httpx.Request]


@dataclass(frozen=True)
class FulfillmentTarget:
    chain_id: int
    seller: str


def is_http_or_https(url: httpx.URL) -> bool:
    return url.scheme in ("http", "https") and bool(url.host)


def parse_fulfillment_target(url: httpx.URL) -> FulfillmentTarget | None:
    """Extract ``(chain_id, seller)`` from ``.../fulfill/{chainId}/{seller}``.

    Returns None when the path does not follow the convention.
    """
    segments = [segment for segment in url.path.split("/") if segment.strip()]
    for index in range(len(segments) - 2):
        if segments[index].lower() != "fulfill":
            continue
        chain, seller = segments[index + 1], segments[index + 2]
        if chain.isdigit() and int(chain) > 0 and _ADDRESS_RE.match(seller):
            return FulfillmentTarget(chain_id=int(chain), seller=seller.lower())
    return None


async def resolve_host(host: str) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def is_private_or_local(address: str) -> bool:
    """True for any address that is not routable on the public internet."""
    ip = ipaddress.ip_address(address.split("%", 1)[0])
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_loopback
        or ip.is_link_local
        or ip.is_private
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
        or not ip.is_global
    )


async def resolve_public_address(url: httpx.URL, resolver: Resolver = resolve_host) -> str | None:
    """Resolve ``url``'s host and return the address to connect to.

    Every address the host maps to must be public; the first one is returned.
    None means the target is blocked, including hosts that cannot be resolved.
    """
    host = url.host
    if not host:
        return None
    if host.lower() == "localhost" or host.lower().endswith(".localhost"):
        return None

    try:
        return None if is_private_or_local(host) else host
    except ValueError:
        pass  # not an IP literal

    try:
        addresses = await resolver(host)
    except OSError as exc:
        logger.warning("Could not resolve outbound host", host=host, error=str(exc))
        return None

    if not addresses or any(is_private_or_local(address) for address in addresses):
        return None
    return addresses[0]


def pin_address(request: httpx.Request, address: str) -> httpx.Request:
    """Send ``request`` to the already checked ``address`` instead of its host name.

    The ``Host`` header and the TLS server name keep the original host, so the
    transport never resolves the name a second time.
    """
    host = request.url.host
    if address == host:
        return request
    request.url = request.url.copy_with(host=f"[{address}]" if ":" in address else address)
    if request.url.scheme == "https":
        request.extensions["sni_hostname"] = host
    return request


async def read_with_limit(response: httpx.Response, max_bytes: int) -> bytes:
    """Read a streamed response body, failing once it exceeds ``max_bytes``."""
    declared = response.headers.get("content-length")
    if declared is not None and declared.strip().isdigit() and int(declared) > max_bytes:
        raise PayloadTooLargeError(max_bytes)

    buffer = bytearray()
    async for chunk in response.aiter_bytes():
        buffer.extend(chunk)
        if len(buffer) > max_bytes:
            raise PayloadTooLargeError(max_bytes)
    return bytes(buffer)


async def send_with_redirects(
    client: httpx.AsyncClient,
    request: httpx.Request,
    *,
    address: str,
    max_redirects: int,
    rebuild: RequestBuilder,
    resolver: Resolver = resolve_host,
) -> httpx.Response:
    """Send ``request`` and follow up to ``max_redirects`` redirects by hand.

    ``address`` is the checked address of ``request``'s host. Each redirect
    target must be http(s) and must resolve to public addresses only; every
    hop is pinned to the address that passed the check. 303, and 301/302
    answering a POST, switch the method to GET and drop the body; 307/308 keep
    both. ``rebuild(url, method, hop)`` produces the request for the next hop.

    The returned response is streamed; the caller closes it.
    """
    current = request
    url = request.url
    method = request.method
    redirects = 0

    while True:
        response = await client.send(pin_address(current, address), stream=True)
        if response.status_code not in REDIRECT_STATUSES:
            return response

        location = response.headers.get("location")
        if not location:
            return response

        status = response.status_code
        await response.aclose()

        if redirects >= max_redirects:
            raise TooManyRedirectsError(f"Exceeded {max_redirects} redirects")

        try:
            target = url.join(location)
        except httpx.InvalidURL as exc:
            raise InvalidRedirectError(f"Invalid redirect location: {location!r}") from exc

        if not is_http_or_https(target):
            raise InvalidRedirectError(f"Redirect to unsupported scheme: {target.scheme!r}")

        next_address = await resolve_public_address(target, resolver)
        if next_address is None:
            logger.error("Blocked private redirect target", location=str(target), hop=redirects + 1)
            raise BlockedPrivateTargetError(f"Blocked private redirect target: {target.host}")

        redirects += 1
        if status == 303 or (status in (301, 302) and method == "POST"):
            method = "GET"
        current = rebuild(target, method, redirects + 1)
        url, address = target, next_address
