"""Response reshaping for NIM chat completions."""

from .response_pipeline import (
    THINK_CLOSE,
    THINK_OPEN,
    ReshapeState,
    StreamReshaper,
    merge_delta,
    merge_message_content,
    reshape_completion,
    reshape_stream,
)

__all__ = [
    "THINK_CLOSE",
    "THINK_OPEN",
    "ReshapeState",
    "StreamReshaper",
    "merge_delta",
    "merge_message_content",
    "reshape_completion",
    "reshape_stream",
]
