"""Load lorebook JSON files from disk.

Each ``*.json`` file in the lorebook directory describes one source::

    {
      "title": "Greyhaven",
      "author": "someone",
      "entries": {
        "0": {"keys": ["castle"], "content": "...", "order": 10,
              "comment": "...", "case_sensitive": false}
      }
    }

A file that cannot be read or parsed, or has no ``entries``, is skipped with
a warning; loading never fails as a whole.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from ..types.lorebook import LoreEntry, LoreSource

logger = logging.getLogger("nimproxy")


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _parse_order(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def parse_entry(raw: Any) -> Optional[LoreEntry]:
    """Build a ``LoreEntry`` from its JSON form, or None if it has no key list."""
    if not isinstance(raw, Mapping):
        return None
    keys = raw.get("keys")
    if not isinstance(keys, list):
        return None
    content = raw.get("content")
    comment = raw.get("comment")
    return LoreEntry(
        keys=tuple(key for key in keys if isinstance(key, str) and key),
        content=content if isinstance(content, str) else "",
        comment=comment if isinstance(comment, str) else "",
        order=_parse_order(raw.get("order")),
        case_sensitive=_parse_bool(raw.get("case_sensitive", False)),
    )


def parse_lore_source(data: Any, fallback_title: str) -> Optional[LoreSource]:
    """Build a ``LoreSource`` from a decoded lorebook document."""
    if not isinstance(data, Mapping):
        return None
    raw_entries = data.get("entries")
    if not raw_entries:
        return None
    if isinstance(raw_entries, list):
        raw_entries = {str(i): item for i, item in enumerate(raw_entries)}
    if not isinstance(raw_entries, Mapping):
        return None

    entries: dict[str, LoreEntry] = {}
    for entry_id, raw in raw_entries.items():
        entry = parse_entry(raw)
        if entry is None:
            logger.debug(f"Skipping lorebook entry {entry_id} in {fallback_title}: no key list")
            continue
        entries[str(entry_id)] = entry

    title = data.get("title")
    author = data.get("author")
    return LoreSource(
        title=str(title) if title else fallback_title,
        author=str(author) if author else "Unknown",
        entries=entries,
    )


def load_lorebook_file(path: Path) -> Optional[LoreSource]:
    """Load one lorebook file; returns None (and logs) when it is unusable."""
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning(f"Error loading lorebook {path.name}: {exc}")
        return None

    source = parse_lore_source(data, path.name)
    if source is None:
        logger.warning(f"Skipping lorebook {path.name}: no entries found")
        return None
    logger.info(f"Loaded lorebook: {source.title} ({len(source.entries)} entries)")
    return source


def load_lorebooks(directory: Path) -> list[LoreSource]:
    """Load every ``*.json`` lorebook in ``directory``, sorted by file name."""
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning(f"Lorebooks directory {directory} not found. Create it and add JSON files.")
        return []

    files = sorted(p for p in directory.iterdir() if p.suffix == ".json" and p.is_file())
    logger.info(f"Found {len(files)} lorebook file(s) in {directory}")

    sources: list[LoreSource] = []
    for path in files:
        source = load_lorebook_file(path)
        if source is not None:
            sources.append(source)
    return sources


def count_entries(sources: Iterable[LoreSource]) -> int:
    return sum(len(source.entries) for source in sources)
