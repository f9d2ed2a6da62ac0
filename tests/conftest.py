"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from nimproxy.main import create_app
from nimproxy.settings import ProxySettings
from nimproxy.testing import FakeUpstream
from nimproxy.types.lorebook import LoreEntry, LoreSource

TEST_API_BASE = "http://nim.local/v1"
TEST_API_KEY = "server-key"


def make_settings(**overrides: Any) -> ProxySettings:
    """Settings pointing at the fake backend, with probing disabled."""
    base = ProxySettings(
        api_base=TEST_API_BASE,
        api_key=TEST_API_KEY,
        probe_unknown_models=False,
    )
    return replace(base, **overrides)


def make_source(title: str, *entries: LoreEntry, author: str = "Tester") -> LoreSource:
    return LoreSource(
        title=title,
        author=author,
        entries={str(i): entry for i, entry in enumerate(entries)},
    )


def parse_sse(text: str) -> list[Any]:
    """Split an SSE body into decoded payloads; ``[DONE]`` stays a string."""
    events: list[Any] = []
    for block in text.split("\n\n"):
        if not block.strip():
            continue
        assert block.startswith("data: "), block
        data = block[len("data: "):]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def greyhaven() -> LoreSource:
    return make_source(
        "Greyhaven",
        LoreEntry(keys=("harbor",), content="The harbor is fogbound.", order=20),
        LoreEntry(keys=("Mara",), content="Mara runs the docks.", order=10, case_sensitive=True),
    )


@pytest.fixture
def make_client(fake_upstream: FakeUpstream) -> Callable[..., TestClient]:
    """Build a TestClient for the proxy wired to the fake backend."""

    def _make(lore_sources=None, **overrides: Any) -> TestClient:
        app = create_app(
            make_settings(**overrides),
            lore_sources=lore_sources or [],
            transport=fake_upstream.transport(),
        )
        return TestClient(app)

    return _make
