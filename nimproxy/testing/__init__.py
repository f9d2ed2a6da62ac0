"""Testing utilities for in-process proxy simulations."""

from .fake_upstream import (
    FakeUpstream,
    UpstreamResponse,
    build_chat_response,
    build_stream_chunk,
)

__all__ = [
    "FakeUpstream",
    "UpstreamResponse",
    "build_chat_response",
    "build_stream_chunk",
]
