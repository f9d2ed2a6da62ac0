"""Inject matched lorebook entries into the outgoing conversation."""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from ..types.chat import ChatMessage
from ..types.lorebook import LoreSource
from .matcher import select_entries

logger = logging.getLogger("nimproxy")

LOREBOOK_HEADER = "[Lorebook Context]"


def build_context_block(contents: Sequence[str]) -> str:
    return "\n\n".join(contents)


def inject_lorebook(
    messages: Sequence[ChatMessage], sources: Sequence[LoreSource]
) -> list[ChatMessage]:
    """Return a copy of ``messages`` augmented with matching lore entries.

    The context block is appended to the first system message under a
    ``[Lorebook Context]`` header, or sent as a new leading system message
    when the conversation has none. The input list and its message dicts are
    left untouched. Without matches the input is returned as is.
    """
    matches = select_entries(sources, messages)
    if not matches:
        return messages if isinstance(messages, list) else list(messages)

    block = build_context_block([match.content for match in matches])
    sources_used = sorted({match.source for match in matches})
    logger.info(f"Injecting {len(matches)} lorebook entries from {sources_used}")

    injected = list(messages)
    for index, message in enumerate(injected):
        if isinstance(message, Mapping) and message.get("role") == "system":
            updated = dict(message)
            existing = updated.get("content")
            addition = f"\n\n{LOREBOOK_HEADER}\n{block}"
            if isinstance(existing, list):
                updated["content"] = existing + [{"type": "text", "text": addition}]
            else:
                updated["content"] = f"{existing or ''}{addition}"
            injected[index] = updated
            return injected

    injected.insert(0, {"role": "system", "content": f"{LOREBOOK_HEADER}\n{block}"})
    return injected
