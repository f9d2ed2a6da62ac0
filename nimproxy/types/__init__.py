"""Type definitions shared across the proxy."""

from .chat import (
    BackendChatRequest,
    ChatCompletion,
    ChatCompletionChoice,
    ChatCompletionRequest,
    ChatMessage,
    ResponseMessage,
    Role,
    Usage,
    message_text,
)
from .lorebook import LoreEntry, LoreMatch, LoreSource

__all__ = [
    "BackendChatRequest",
    "ChatCompletion",
    "ChatCompletionChoice",
    "ChatCompletionRequest",
    "ChatMessage",
    "LoreEntry",
    "LoreMatch",
    "LoreSource",
    "ResponseMessage",
    "Role",
    "Usage",
    "message_text",
]
