"""Forwarding of chat completion requests to the NIM backend."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence

import httpx
from fastapi import Response
from fastapi.responses import JSONResponse, StreamingResponse

from ..lorebook import inject_lorebook
from ..parsers.response_pipeline import (
    StreamReshaper,
    reshape_completion,
    reshape_stream,
)
from ..types.chat import ChatMessage
from ..types.lorebook import LoreSource
from .backend import (
    build_backend_payload,
    build_outbound_headers,
    format_httpx_error,
    parse_error_body,
    upstream_error_message,
)
from .exceptions import InvalidRequestError, UpstreamError
from .models import ModelResolver

if TYPE_CHECKING:
    from ..settings import ProxySettings

logger = logging.getLogger("nimproxy")

TRANSPORT_FAILURE_STATUS = 500
TIMEOUT_STATUS = 504


def _status_for_transport_error(exc: httpx.HTTPError) -> int:
    if isinstance(exc, httpx.TimeoutException):
        return TIMEOUT_STATUS
    return TRANSPORT_FAILURE_STATUS


class ProxyRouter:
    """Runs one chat request through injection, mapping and forwarding.

    All collaborators are fixed at construction: settings and lore sources
    are read-only for the lifetime of the process, and every request gets
    its own ``StreamReshaper``.
    """

    def __init__(
        self,
        settings: "ProxySettings",
        lore_sources: Optional[Sequence[LoreSource]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.lore_sources: tuple[LoreSource, ...] = tuple(lore_sources or ())
        self.transport = transport
        self.resolver = ModelResolver(settings, transport=transport)

    def prepare_messages(self, messages: Sequence[ChatMessage]) -> list[ChatMessage]:
        """Apply lorebook injection when enabled; runs once per request."""
        if not self.settings.enable_lorebook or not self.lore_sources:
            return list(messages)
        return inject_lorebook(messages, self.lore_sources)

    async def forward_request(self, payload: Mapping[str, Any]) -> Response:
        """Forward one chat request and return the caller-facing response.

        The response echoes the caller's ``model`` value verbatim; only the
        backend request carries the resolved NIM model.
        """
        messages = payload.get("messages")
        if not isinstance(messages, list):
            raise InvalidRequestError(
                "You must provide a messages array", code="missing_parameter"
            )
        if not all(isinstance(message, Mapping) for message in messages):
            raise InvalidRequestError(
                "Each message must be a JSON object", code="invalid_message"
            )

        raw_model = payload.get("model")
        requested_model = raw_model if isinstance(raw_model, str) else ""
        backend_model = await self.resolver.resolve(requested_model)
        body = build_backend_payload(
            payload,
            backend_model,
            self.settings,
            messages=self.prepare_messages(messages),
        )
        outbound_headers = build_outbound_headers(self.settings.api_key)
        url = self.settings.chat_completions_url
        logger.info(
            f"Forwarding model {requested_model} as {backend_model}, stream={body['stream']}"
        )

        if body["stream"]:
            return await self._streaming_request(url, outbound_headers, body)
        return await self._request(url, outbound_headers, body, requested_model)

    async def _request(
        self,
        url: str,
        headers: dict[str, str],
        body: Mapping[str, Any],
        requested_model: str,
    ) -> Response:
        logger.debug(f"Initiating non-streaming request to {url}")
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.timeout, transport=self.transport
            ) as client:
                resp = await client.post(url, headers=headers, json=body)
        except httpx.HTTPError as exc:
            detail = format_httpx_error(exc, url=url, timeout=self.settings.timeout)
            logger.error(f"Request to {url} failed: {detail}")
            raise UpstreamError(str(exc) or detail, _status_for_transport_error(exc)) from exc

        logger.debug(f"Received response from {url}: status {resp.status_code}")
        if resp.status_code >= 400:
            message = upstream_error_message(resp, resp.content)
            logger.warning(f"Upstream returned error status {resp.status_code}: {message}")
            raise UpstreamError(message, resp.status_code, body=parse_error_body(resp.content))

        try:
            upstream = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.error(f"Upstream returned invalid JSON: {exc}")
            raise UpstreamError("Upstream returned an invalid JSON body", 502) from exc
        if not isinstance(upstream, dict):
            raise UpstreamError("Upstream returned an unexpected JSON body", 502)

        completion = reshape_completion(
            upstream, requested_model, self.settings.show_reasoning
        )
        return JSONResponse(content=completion)

    async def _streaming_request(
        self,
        url: str,
        headers: dict[str, str],
        body: Mapping[str, Any],
    ) -> Response:
        timeout = self.settings.timeout
        logger.debug(f"Stream timeout config - connect={timeout}s, read=None, write={timeout}s, pool={timeout}s")
        stream_timeout = httpx.Timeout(connect=timeout, read=None, write=timeout, pool=timeout)
        client = httpx.AsyncClient(timeout=stream_timeout, transport=self.transport)
        try:
            request = client.build_request("POST", url, headers=headers, json=body)
            resp = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            await client.aclose()
            detail = format_httpx_error(exc, url=url, timeout=timeout)
            logger.error(f"Failed to send streaming request to {url}: {detail}")
            raise UpstreamError(str(exc) or detail, _status_for_transport_error(exc)) from exc
        except Exception:
            await client.aclose()
            raise

        stream_closed = False

        async def close_stream() -> None:
            nonlocal stream_closed
            if stream_closed:
                return
            stream_closed = True
            logger.debug(f"Closing stream for {url}")
            await resp.aclose()
            await client.aclose()

        if resp.status_code >= 400:
            try:
                data = await resp.aread()
            except httpx.HTTPError:
                data = b""
            finally:
                await close_stream()
            message = upstream_error_message(resp, data)
            logger.warning(f"Streaming request to {url} returned error status {resp.status_code}: {message}")
            raise UpstreamError(message, resp.status_code, body=parse_error_body(data))

        logger.info(f"Streaming request to {url} successful, status {resp.status_code}")
        reshaper = StreamReshaper(show_reasoning=self.settings.show_reasoning)

        async def iterator():
            try:
                async for event in reshape_stream(resp.aiter_bytes(), reshaper):
                    yield event
            finally:
                await close_stream()

        return StreamingResponse(
            iterator(),
            status_code=resp.status_code,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )
