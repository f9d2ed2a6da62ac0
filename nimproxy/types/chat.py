"""Types for the OpenAI-compatible chat surface and the NIM backend.

Both sides speak the same chat-completions dialect; the NIM side adds a
``reasoning_content`` channel on messages and stream deltas, and accepts
``chat_template_kwargs`` on requests.
"""

from typing import Any, Literal
from typing_extensions import TypedDict


Role = Literal["system", "user", "assistant"]


class ChatMessage(TypedDict, total=False):
    """A single conversation message.

    Attributes:
        role: Who wrote the message.
        content: Message text. Multimodal callers may send a list of
            content parts instead; only their text parts are read.
    """
    role: Role
    content: Any


class ChatCompletionRequest(TypedDict, total=False):
    """Inbound OpenAI chat completion request (fields the proxy reads)."""
    model: str
    messages: list[ChatMessage]
    temperature: float | None
    max_tokens: int | None
    stream: bool | None


class BackendChatRequest(TypedDict, total=False):
    """Outbound NIM chat completion request."""
    model: str
    messages: list[ChatMessage]
    temperature: float
    max_tokens: int
    stream: bool
    chat_template_kwargs: dict[str, Any]


class Usage(TypedDict):
    """Token usage block of a completion."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ResponseMessage(TypedDict):
    role: str
    content: str


class ChatCompletionChoice(TypedDict):
    index: int
    message: ResponseMessage
    finish_reason: str | None


class ChatCompletion(TypedDict):
    """Caller-facing non-streaming response."""
    id: str
    object: str
    created: int
    model: str
    choices: list[ChatCompletionChoice]
    usage: Usage


def message_text(content: Any) -> str:
    """Return the plain text of a message ``content`` value."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict) and part.get("type") == "text":
                text = part.get("text")
                if isinstance(text, str):
                    parts.append(text)
        return " ".join(parts)
    return ""
