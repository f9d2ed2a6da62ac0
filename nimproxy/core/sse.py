"""SSE (Server-Sent Events) line framing utilities."""

import json
from typing import Any

DATA_PREFIX = b"data:"
DONE_SENTINEL = b"[DONE]"
EVENT_TERMINATOR = b"\n\n"


class SSELineBuffer:
    """Accumulates raw stream bytes and yields complete lines.

    The buffer works on bytes rather than decoded text, so a chunk boundary
    that falls inside a multi-byte UTF-8 sequence is simply carried over to
    the next chunk. Whatever follows the last newline is kept until more data
    arrives; it is never returned twice.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> list[bytes]:
        if not chunk:
            return []
        if b"\n" not in chunk:
            self._buffer.extend(chunk)
            return []
        # Only the new chunk is scanned; pending bytes join its first line.
        *lines, tail = chunk.split(b"\n")
        lines[0] = bytes(self._buffer) + lines[0]
        self._buffer = bytearray(tail)
        return [line[:-1] if line.endswith(b"\r") else line for line in lines]

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)

    def clear(self) -> bytes:
        """Drop and return any incomplete trailing data."""
        leftover = bytes(self._buffer)
        self._buffer.clear()
        return leftover


def is_data_line(line: bytes) -> bool:
    return line.startswith(DATA_PREFIX)


def is_done_payload(payload: bytes) -> bool:
    return payload.strip() == DONE_SENTINEL


def data_payload(line: bytes) -> bytes:
    """Strip the ``data:`` prefix (and one optional space) from a data line."""
    payload = line[len(DATA_PREFIX):]
    if payload.startswith(b" "):
        payload = payload[1:]
    return payload


def frame_line(line: bytes) -> bytes:
    """Emit a raw line as one complete SSE event."""
    return line + EVENT_TERMINATOR


def encode_data_event(payload: Any) -> bytes:
    data = json.dumps(payload, ensure_ascii=False)
    return b"data: " + data.encode("utf-8") + EVENT_TERMINATOR


def encode_done_event() -> bytes:
    return b"data: " + DONE_SENTINEL + EVENT_TERMINATOR
