"""Resolution of caller model names to NIM model identifiers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import httpx

from .backend import build_outbound_headers, normalize_request_model

if TYPE_CHECKING:
    from ..settings import ProxySettings

logger = logging.getLogger("nimproxy")

LARGE_FALLBACK_MODEL = "meta/llama-3.1-405b-instruct"
MEDIUM_FALLBACK_MODEL = "meta/llama-3.1-70b-instruct"
SMALL_FALLBACK_MODEL = "meta/llama-3.1-8b-instruct"

LARGE_MODEL_HINTS = ("gpt-4", "claude-opus", "405b")
MEDIUM_MODEL_HINTS = ("claude", "gemini", "70b")

PROBE_TIMEOUT = 10.0


def fallback_model(model_name: str) -> str:
    """Pick a backend model by size hints in an unknown model name."""
    lower = model_name.lower()
    if any(hint in lower for hint in LARGE_MODEL_HINTS):
        return LARGE_FALLBACK_MODEL
    if any(hint in lower for hint in MEDIUM_MODEL_HINTS):
        return MEDIUM_FALLBACK_MODEL
    return SMALL_FALLBACK_MODEL


class ModelResolver:
    """Maps caller model names onto backend models.

    Resolution order:
    1. The static alias table from settings.
    2. A one-token probe request: if the backend accepts the name as is, it
       is used unchanged (only when ``probe_unknown_models`` is on).
    3. ``fallback_model`` size heuristics.
    """

    def __init__(
        self,
        settings: "ProxySettings",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.transport = transport

    def alias(self, model_name: str) -> Optional[str]:
        return self.settings.model_mapping.get(model_name)

    async def resolve(self, model_name: str) -> str:
        model_name = normalize_request_model(model_name)
        aliased = self.alias(model_name)
        if aliased:
            return aliased
        if not model_name:
            return SMALL_FALLBACK_MODEL

        if self.settings.probe_unknown_models and await self.probe(model_name):
            logger.info(f"Backend accepted unmapped model {model_name} as is")
            return model_name

        chosen = fallback_model(model_name)
        logger.info(f"No mapping for model {model_name}; falling back to {chosen}")
        return chosen

    async def probe(self, model_name: str) -> bool:
        """Return True when the backend answers a minimal request for ``model_name``."""
        body = {
            "model": model_name,
            "messages": [{"role": "user", "content": "test"}],
            "max_tokens": 1,
        }
        headers = build_outbound_headers(self.settings.api_key)
        try:
            async with httpx.AsyncClient(
                timeout=min(self.settings.timeout, PROBE_TIMEOUT),
                transport=self.transport,
            ) as client:
                resp = await client.post(
                    self.settings.chat_completions_url, headers=headers, json=body
                )
        except httpx.HTTPError as exc:
            logger.debug(f"Model probe for {model_name} failed: {exc}")
            return False
        return 200 <= resp.status_code < 300
