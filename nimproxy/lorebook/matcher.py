"""Keyword matching of lorebook entries against a conversation.

Directives embedded anywhere in the conversation control which sources are
consulted:

- ``<LOREBOOK:title>`` activates a source. Once any activation directive is
  present, only activated sources are used.
- ``<DISABLE_LOREBOOK:title>`` excludes a source, even if it was activated.

Titles compare case-insensitively after trimming.
"""

from __future__ import annotations

import re
from typing import Iterable, Mapping, Sequence

from ..types.chat import ChatMessage, message_text
from ..types.lorebook import LoreEntry, LoreMatch, LoreSource

ACTIVATE_RE = re.compile(r"<LOREBOOK:([^>]+)>", re.IGNORECASE)
DISABLE_RE = re.compile(r"<DISABLE_LOREBOOK:([^>]+)>", re.IGNORECASE)


def conversation_text(messages: Iterable[ChatMessage]) -> str:
    return " ".join(
        message_text(message.get("content"))
        for message in messages
        if isinstance(message, Mapping)
    )


def _directive_titles(pattern: re.Pattern[str], text: str) -> set[str]:
    return {match.group(1).strip().lower() for match in pattern.finditer(text)}


def active_sources(
    sources: Sequence[LoreSource], text: str
) -> list[LoreSource]:
    """Return the sources enabled by the directives in ``text``, in load order."""
    activated = _directive_titles(ACTIVATE_RE, text)
    disabled = _directive_titles(DISABLE_RE, text)

    selected = []
    for source in sources:
        title = source.title.lower()
        if title in disabled:
            continue
        if activated and title not in activated:
            continue
        selected.append(source)
    return selected


def entry_matches(entry: LoreEntry, text: str, text_lower: str) -> bool:
    if not entry.content:
        return False
    if entry.case_sensitive:
        return any(key in text for key in entry.keys)
    return any(key.lower() in text_lower for key in entry.keys)


def select_entries(
    sources: Sequence[LoreSource], messages: Sequence[ChatMessage]
) -> list[LoreMatch]:
    """Select and order the lore entries triggered by ``messages``.

    Matches are gathered in load order and then sorted by ``order``; the sort
    is stable so equal orders keep their discovery order.
    """
    if not sources:
        return []

    text = conversation_text(messages)
    text_lower = text.lower()

    matches: list[LoreMatch] = []
    for source in active_sources(sources, text):
        for entry in source.entries.values():
            if entry_matches(entry, text, text_lower):
                matches.append(
                    LoreMatch(
                        content=entry.content,
                        order=entry.order,
                        comment=entry.comment,
                        source=source.title,
                    )
                )

    matches.sort(key=lambda match: match.order)
    return matches
