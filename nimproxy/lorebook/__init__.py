"""Lorebook loading, matching and context injection."""

from .injector import LOREBOOK_HEADER, inject_lorebook
from .loader import count_entries, load_lorebook_file, load_lorebooks, parse_lore_source
from .matcher import active_sources, conversation_text, select_entries

__all__ = [
    "LOREBOOK_HEADER",
    "active_sources",
    "conversation_text",
    "count_entries",
    "inject_lorebook",
    "load_lorebook_file",
    "load_lorebooks",
    "parse_lore_source",
    "select_entries",
]
