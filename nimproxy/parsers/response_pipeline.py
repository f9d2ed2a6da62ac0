"""Reshaping of NIM chat completion responses into the OpenAI shape.

NIM reasoning models emit their deliberation on a separate
``reasoning_content`` channel. Callers expecting plain OpenAI responses
either never see it (display off) or see it folded into ``content`` between
``<think>`` markers (display on).

Streaming works line by line on the upstream SSE body:

    data: {"choices":[{"index":0,"delta":{"reasoning_content":"hm"}}]}
    data: {"choices":[{"index":0,"delta":{"content":"Hi"}}]}
    data: [DONE]

With display on this becomes::

    data: {"choices": [{"index": 0, "delta": {"content": "<think>\\nhm"}}]}
    data: {"choices": [{"index": 0, "delta": {"content": "</think>\\n\\nHi"}}]}
    data: [DONE]
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping, Optional

import httpx

from ..core.sse import (
    SSELineBuffer,
    data_payload,
    encode_data_event,
    frame_line,
    is_data_line,
    is_done_payload,
)
from ..types.chat import ChatCompletion, ChatCompletionChoice, Usage

logger = logging.getLogger("nimproxy")

THINK_OPEN = "<think>\n"
THINK_CLOSE = "</think>\n\n"

REASONING_FIELDS = ("reasoning_content", "reasoning")


def _pop_reasoning(container: dict[str, Any]) -> Optional[str]:
    """Remove every reasoning field from ``container`` and return the text."""
    text: Optional[str] = None
    for name in REASONING_FIELDS:
        value = container.pop(name, None)
        if text is None and isinstance(value, str) and value:
            text = value
    return text


def _choice_index(choice: Mapping[str, Any]) -> int:
    try:
        return int(choice.get("index", 0) or 0)
    except (TypeError, ValueError):
        return 0


@dataclass
class ReshapeState:
    """Whether a ``<think>`` segment is open in the emitted content."""

    reasoning_open: bool = False


def merge_delta(
    delta: dict[str, Any], state: ReshapeState, show_reasoning: bool
) -> dict[str, Any]:
    """Apply the content-merge policy to one stream delta, in place.

    Display off: reasoning is dropped and ``content`` is always present
    (empty string when the delta carried none).

    Display on: reasoning opens a ``<think>`` segment if none is open;
    content closes an open segment before being appended. The segment state
    only changes on reasoning or content text, never on finish markers.
    """
    reasoning = _pop_reasoning(delta)
    content = delta.get("content")
    if not isinstance(content, str):
        content = None

    if not show_reasoning:
        delta["content"] = content or ""
        return delta

    merged = ""
    if reasoning:
        if not state.reasoning_open:
            merged = THINK_OPEN + reasoning
            state.reasoning_open = True
        else:
            merged = reasoning

    if content:
        if state.reasoning_open:
            merged += THINK_CLOSE + content
            state.reasoning_open = False
        else:
            merged += content

    if merged:
        delta["content"] = merged
    return delta


def merge_message_content(message: Mapping[str, Any], show_reasoning: bool) -> str:
    """Fold a complete message's reasoning into its content."""
    content = message.get("content")
    if not isinstance(content, str):
        content = ""
    if not show_reasoning:
        return content
    reasoning = None
    for name in REASONING_FIELDS:
        value = message.get(name)
        if isinstance(value, str) and value:
            reasoning = value
            break
    if reasoning:
        return f"{THINK_OPEN}{reasoning}\n{THINK_CLOSE}{content}"
    return content


@dataclass
class StreamReshaper:
    """Incremental reshaper for one streamed response.

    ``feed_bytes`` accepts arbitrarily split upstream chunks and returns the
    caller-facing SSE events that became complete. Only ``data:`` lines are
    forwarded; ``[DONE]`` and undecodable payloads pass through unchanged.
    One instance serves exactly one response.
    """

    show_reasoning: bool = False
    states: dict[int, ReshapeState] = field(default_factory=dict)
    decoder: SSELineBuffer = field(default_factory=SSELineBuffer)
    saw_done: bool = False

    def state_for(self, choice_index: int) -> ReshapeState:
        state = self.states.get(choice_index)
        if state is None:
            state = ReshapeState()
            self.states[choice_index] = state
        return state

    @property
    def reasoning_open(self) -> bool:
        return any(state.reasoning_open for state in self.states.values())

    def feed_bytes(self, chunk: bytes) -> list[bytes]:
        output: list[bytes] = []
        for line in self.decoder.feed(chunk):
            event = self._process_line(line)
            if event is not None:
                output.append(event)
        return output

    def finish(self) -> list[bytes]:
        leftover = self.decoder.clear()
        if leftover.strip():
            logger.debug(f"Discarding {len(leftover)} bytes of incomplete stream data")
        return []

    def _process_line(self, line: bytes) -> Optional[bytes]:
        if not is_data_line(line):
            return None

        payload_bytes = data_payload(line)
        if is_done_payload(payload_bytes):
            self.saw_done = True
            return frame_line(line)

        try:
            payload = json.loads(payload_bytes)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.debug(f"Forwarding undecodable stream line unchanged: {exc}")
            return frame_line(line)
        if not isinstance(payload, dict):
            return frame_line(line)

        self.apply_event(payload)
        return encode_data_event(payload)

    def apply_event(self, event: dict[str, Any]) -> dict[str, Any]:
        choices = event.get("choices")
        if not isinstance(choices, list):
            return event
        for choice in choices:
            if not isinstance(choice, dict):
                continue
            delta = choice.get("delta")
            if not isinstance(delta, dict):
                continue
            state = self.state_for(_choice_index(choice))
            merge_delta(delta, state, self.show_reasoning)
        return event


async def reshape_stream(
    chunks: AsyncIterator[bytes], reshaper: StreamReshaper
) -> AsyncIterator[bytes]:
    """Drive ``reshaper`` over an upstream byte stream.

    A transport failure while reading ends the caller-facing stream without
    an error event; whatever was already forwarded stays valid SSE.
    """
    try:
        async for chunk in chunks:
            for event in reshaper.feed_bytes(chunk):
                yield event
    except (httpx.TransportError, httpx.StreamError) as exc:
        logger.warning(f"Upstream stream ended with error: {exc}")
    for event in reshaper.finish():
        yield event


def build_usage(raw: Any) -> Usage:
    if isinstance(raw, Mapping):
        prompt = int(raw.get("prompt_tokens") or 0)
        completion = int(raw.get("completion_tokens") or 0)
        total = raw.get("total_tokens")
        return {
            "prompt_tokens": prompt,
            "completion_tokens": completion,
            "total_tokens": int(total) if total is not None else prompt + completion,
        }
    return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


def reshape_completion(
    upstream: Mapping[str, Any],
    requested_model: str,
    show_reasoning: bool,
) -> ChatCompletion:
    """Build the caller-facing completion from a full NIM response body.

    The response reports the model name the caller asked for, not the
    backend model it was mapped to.
    """
    now = time.time()
    choices: list[ChatCompletionChoice] = []
    raw_choices = upstream.get("choices")
    if not isinstance(raw_choices, list):
        raw_choices = []
    for position, choice in enumerate(raw_choices):
        if not isinstance(choice, Mapping):
            continue
        message = choice.get("message")
        if not isinstance(message, Mapping):
            message = {}
        choices.append(
            {
                "index": choice.get("index", position),
                "message": {
                    "role": message.get("role") or "assistant",
                    "content": merge_message_content(message, show_reasoning),
                },
                "finish_reason": choice.get("finish_reason"),
            }
        )

    return {
        "id": f"chatcmpl-{int(now * 1000)}",
        "object": "chat.completion",
        "created": int(now),
        "model": requested_model,
        "choices": choices,
        "usage": build_usage(upstream.get("usage")),
    }
