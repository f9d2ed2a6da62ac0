"""Core module initialization.

``ProxyRouter`` lives in ``core.router`` and is imported from there; it
depends on the lorebook and parser packages, which in turn use the helpers
exported here.
"""

from .backend import (
    build_backend_payload,
    build_outbound_headers,
    format_httpx_error,
    normalize_request_model,
    parse_error_body,
    upstream_error_message,
)
from .exceptions import (
    ConfigurationError,
    InvalidRequestError,
    ProxyError,
    UpstreamError,
    error_envelope,
)
from .models import ModelResolver, fallback_model
from .sse import SSELineBuffer, encode_data_event

__all__ = [
    "ConfigurationError",
    "InvalidRequestError",
    "ModelResolver",
    "ProxyError",
    "SSELineBuffer",
    "UpstreamError",
    "build_backend_payload",
    "build_outbound_headers",
    "encode_data_event",
    "error_envelope",
    "fallback_model",
    "format_httpx_error",
    "normalize_request_model",
    "parse_error_body",
    "upstream_error_message",
]
