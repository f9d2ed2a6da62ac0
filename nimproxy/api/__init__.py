"""API module for the proxy."""

from .routes import (
    chat_completions,
    handle_openai_request,
    health,
    list_models,
    proxy_chat_completions,
)

__all__ = [
    "chat_completions",
    "handle_openai_request",
    "health",
    "list_models",
    "proxy_chat_completions",
]
