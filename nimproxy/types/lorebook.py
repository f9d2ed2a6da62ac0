"""Lorebook data model.

A lorebook (``LoreSource``) is a titled collection of keyword-triggered text
snippets (``LoreEntry``). Sources are loaded once at startup and never
mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class LoreEntry:
    keys: tuple[str, ...]
    content: str
    comment: str = ""
    order: int = 0
    case_sensitive: bool = False


@dataclass(frozen=True)
class LoreSource:
    title: str
    author: str = "Unknown"
    entries: Mapping[str, LoreEntry] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        if not isinstance(self.entries, MappingProxyType):
            object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))


@dataclass(frozen=True)
class LoreMatch:
    """An entry selected for injection, tagged with its source title."""

    content: str
    order: int
    comment: str
    source: str
