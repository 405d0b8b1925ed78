"""Typed failures raised by the Outbound Dispatcher.

Every error carries an ``error_code`` and the HTTP status the marketplace API
answers with. Only ``InvalidEndpointError`` is a caller mistake; the rest are
upstream-side failures that leave the fulfillment run retriable.
"""


class DispatchError(Exception):
    error_code = "dispatch_failed"
    http_status = 502


class InvalidEndpointError(DispatchError):
    """Endpoint is not an absolute http/https URI."""

    error_code = "invalid_endpoint"
    http_status = 400


class BlockedPrivateTargetError(DispatchError):
    """Destination (or a redirect hop) resolves to a private or reserved address."""

    error_code = "blocked_private_target"
    http_status = 502


class InvalidRedirectError(DispatchError):
    error_code = "invalid_redirect"
    http_status = 502


class TooManyRedirectsError(DispatchError):
    error_code = "too_many_redirects"
    http_status = 502


class UpstreamStatusError(DispatchError):
    """Adapter answered with a non-2xx status."""

    error_code = "upstream_status"
    http_status = 502

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Upstream returned {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class PayloadTooLargeError(DispatchError):
    error_code = "upstream_payload_too_large"
    http_status = 502

    def __init__(self, limit: int) -> None:
        super().__init__(f"Response size exceeded limit of {limit} bytes")
        self.limit = limit


class InvalidUpstreamPayloadError(DispatchError):
    error_code = "invalid_upstream_payload"
    http_status = 502


class DispatchTimeoutError(DispatchError):
    error_code = "upstream_timeout"
    http_status = 504


class UpstreamTransportError(DispatchError):
    error_code = "upstream_unreachable"
    http_status = 502
