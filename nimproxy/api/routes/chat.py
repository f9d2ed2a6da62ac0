"""OpenAI-compatible chat completions endpoints."""

import json
import logging
from typing import Any, Mapping

from fastapi import Request, Response

from ...core.exceptions import InvalidRequestError
from ...core.router import ProxyRouter

logger = logging.getLogger("nimproxy")


def get_router(request: Request) -> ProxyRouter:
    return request.app.state.router


async def read_payload(request: Request) -> Mapping[str, Any]:
    """Decode a chat completion request body into a JSON object.

    The ``messages`` array itself is validated by ``ProxyRouter``.
    """
    body = await request.body()
    try:
        payload = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.error(f"Invalid JSON payload: {exc}")
        raise InvalidRequestError("Invalid JSON payload", code="invalid_json") from exc

    if not isinstance(payload, Mapping):
        logger.error("Payload must be a JSON object")
        raise InvalidRequestError(
            "Request body must be a JSON object", code="invalid_json_shape"
        )

    return payload


async def handle_openai_request(request: Request) -> Response:
    """Run a chat completion request through the proxy router.

    Args:
        request: The FastAPI request object.

    Returns:
        A JSONResponse, or a StreamingResponse of SSE events when the
        caller asked for ``stream``.
    """
    logger.info(f"Handling {request.method} request to {request.url.path}")
    payload = await read_payload(request)
    router = get_router(request)
    try:
        response = await router.forward_request(payload)
    except Exception as e:
        logger.error(f"Error processing request for model {payload.get('model')}: {e}")
        raise
    logger.info(f"Request for model {payload.get('model')} handed back to caller")
    return response


async def chat_completions(request: Request) -> Response:
    """Chat completions endpoint - OpenAI compatible.

    POST /v1/chat/completions

    Any caller API key is accepted; the backend is always called with the
    server-held key.
    """
    logger.info("Received chat completions request")
    return await handle_openai_request(request)


async def proxy_chat_completions(request: Request) -> Response:
    """Chat completions for chained proxies.

    POST /proxy/v1/chat/completions

    This is the credential trust boundary for upstream proxies that insist
    on sending their own key: whatever ``Authorization`` header arrives is
    discarded before forwarding, and the server-held NIM key is used
    instead. Behaviour is otherwise identical to ``/v1/chat/completions``.
    """
    logger.info("Received proxied chat completions request; caller credentials ignored")
    return await handle_openai_request(request)
