"""OutboundCredential aggregate: pre-authorized upstream destinations.

A destination with a matching, active credential is treated as trusted by the
Outbound Dispatcher: the configured header is attached and the private-address
guard is skipped. Rows are revoked, never deleted.
"""

import re
from datetime import UTC, datetime

import httpx
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Integer, String

from dispatch.domain import dispatch
from dispatch.routing.route import ServiceKind, normalize_seller

DEFAULT_HEADER_NAME = "X-Circles-Service-Key"

_HEADER_TOKEN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_origin(url: httpx.URL | str) -> str | None:
    """``scheme://host:port`` with the default port made explicit.

    Returns None for anything that is not an absolute http(s) URL.
    """
    try:
        url = httpx.URL(url) if isinstance(url, str) else url
    except httpx.InvalidURL:
        return None
    scheme = url.scheme.lower()
    if scheme not in _DEFAULT_PORTS or not url.host:
        return None
    host = url.host.lower()
    if ":" in host:
        host = f"[{host}]"
    port = url.port or _DEFAULT_PORTS[scheme]
    return f"{scheme}://{host}:{port}"


def is_valid_header_name(name: str | None) -> bool:
    return bool(name) and bool(_HEADER_TOKEN.match(name))


def is_valid_header_value(value: str | None) -> bool:
    return bool(value) and "\r" not in value and "\n" not in value


@dispatch.aggregate
class OutboundCredential:
    service_kind = String(
        choices=ServiceKind,
        default=ServiceKind.FULFILLMENT.value,
    )
    endpoint_origin = String(required=True, max_length=255)
    path_prefix = String(max_length=255)
    seller_address = String(max_length=64)
    chain_id = Integer()
    header_name = String(max_length=100, default=DEFAULT_HEADER_NAME)
    api_key = String(required=True, max_length=500)
    enabled = Boolean(default=True)
    created_at = DateTime()
    revoked_at = DateTime()

    @classmethod
    def register(
        cls,
        endpoint_origin: str,
        api_key: str,
        service_kind: str = ServiceKind.FULFILLMENT.value,
        header_name: str | None = None,
        path_prefix: str | None = None,
        seller_address: str | None = None,
        chain_id: int | None = None,
    ):
        origin = normalize_origin(endpoint_origin or "")
        if origin is None:
            raise ValidationError({"endpoint_origin": ["Origin must be an absolute http(s) URL"]})

        header_name = (header_name or DEFAULT_HEADER_NAME).strip()
        if not is_valid_header_name(header_name):
            raise ValidationError({"header_name": ["Header name is not a valid HTTP token"]})
        if not is_valid_header_value(api_key):
            raise ValidationError({"api_key": ["API key must be non-empty and single-line"]})

        prefix = (path_prefix or "").strip() or None
        if prefix is not None and not prefix.startswith("/"):
            raise ValidationError({"path_prefix": ["Path prefix must start with '/'"]})

        return cls(
            service_kind=service_kind,
            endpoint_origin=origin,
            path_prefix=prefix,
            seller_address=normalize_seller(seller_address) or None,
            chain_id=chain_id,
            header_name=header_name,
            api_key=api_key,
            enabled=True,
            created_at=datetime.now(UTC),
        )

    @property
    def is_active(self) -> bool:
        return bool(self.enabled) and self.revoked_at is None

    def revoke(self) -> None:
        if self.revoked_at is not None:
            raise ValidationError({"revoked_at": ["Credential is already revoked"]})
        self.enabled = False
        self.revoked_at = datetime.now(UTC)

    def specificity(self) -> tuple[int, int, int]:
        return (
            1 if self.seller_address else 0,
            1 if self.chain_id is not None else 0,
            len(self.path_prefix or ""),
        )

    def matches(self, origin: str, path: str, seller: str | None, chain_id: int | None) -> bool:
        if not self.is_active or self.endpoint_origin != origin:
            return False
        if self.path_prefix and not path.startswith(self.path_prefix):
            return False
        if self.seller_address and self.seller_address != normalize_seller(seller):
            return False
        if self.chain_id is not None and self.chain_id != chain_id:
            return False
        return is_valid_header_name(self.header_name) and is_valid_header_value(self.api_key)
