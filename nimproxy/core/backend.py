"""Backend request building and HTTP helpers."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence

from ..types.chat import BackendChatRequest, ChatMessage

if TYPE_CHECKING:
    import httpx

    from ..settings import ProxySettings

logger = logging.getLogger("nimproxy")


def format_httpx_error(exc: Any, url: Optional[str] = None, timeout: Optional[float] = None) -> str:
    """Produce a detailed, user-facing description of an httpx error."""
    import httpx

    parts = [exc.__class__.__name__]
    message = str(exc).strip()
    if message:
        parts.append(message)

    try:
        request = exc.request
    except (AttributeError, RuntimeError):
        request = None
    if request is not None:
        parts.append(f"request={request.method} {request.url}")
    elif url:
        parts.append(f"url={url}")

    if isinstance(exc, httpx.TimeoutException) and timeout:
        parts.append(f"timeout={timeout}s")

    return "; ".join(parts)


def build_outbound_headers(backend_api_key: str) -> dict[str, str]:
    """Build headers for outbound requests to the backend.

    Caller headers are never forwarded: the body is always JSON and the
    backend only ever sees the server-held key.
    """
    headers = {"Content-Type": "application/json"}
    if backend_api_key:
        headers["Authorization"] = f"Bearer {backend_api_key}"
    # Explicitly request uncompressed responses
    headers["Accept-Encoding"] = "identity"
    return headers


def normalize_request_model(model_name: Any) -> str:
    """Normalize client-supplied model name for alias lookup."""
    if not isinstance(model_name, str):
        return ""
    stripped = model_name.strip()
    if not stripped:
        return ""
    if "/" in stripped:
        prefix, remainder = stripped.split("/", 1)
        if remainder and prefix.lower() in {"openai"}:
            return remainder
    return stripped


def build_backend_payload(
    payload: Mapping[str, Any],
    backend_model: str,
    settings: "ProxySettings",
    messages: Optional[Sequence[ChatMessage]] = None,
) -> BackendChatRequest:
    """Translate an inbound chat request into the NIM request body.

    ``temperature`` and ``max_tokens`` fall back to the configured defaults
    only when absent or null; ``stream`` is passed through. When thinking
    mode is enabled the chat template is asked to emit reasoning.
    """
    temperature = payload.get("temperature")
    max_tokens = payload.get("max_tokens")
    body: BackendChatRequest = {
        "model": backend_model,
        "messages": list(messages if messages is not None else payload.get("messages") or []),
        "temperature": settings.default_temperature if temperature is None else temperature,
        "max_tokens": settings.default_max_tokens if max_tokens is None else max_tokens,
        "stream": bool(payload.get("stream")),
    }
    if settings.enable_thinking_mode:
        body["chat_template_kwargs"] = {"thinking": True}
        logger.debug(f"Enabled thinking mode for backend model {backend_model}")
    return body


def parse_error_body(data: bytes) -> Optional[Any]:
    """Decode an upstream error body as JSON, or None when it is not JSON."""
    if not data:
        return None
    try:
        return json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def upstream_error_message(resp: "httpx.Response", data: bytes) -> str:
    """Extract a readable message from an upstream error response."""
    default = f"Upstream returned status {resp.status_code}"
    if not data:
        return default
    parsed = parse_error_body(data)
    if parsed is None:
        text = data.decode("utf-8", errors="replace").strip()
        return f"{default}: {text[:500]}" if text else default

    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        for key in ("detail", "message"):
            value = parsed.get(key)
            if isinstance(value, str) and value:
                return value
    return default
