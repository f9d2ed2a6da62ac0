"""API routes for the proxy."""

from .chat import chat_completions, handle_openai_request, proxy_chat_completions
from .health import health
from .models import list_models

__all__ = [
    "chat_completions",
    "handle_openai_request",
    "health",
    "list_models",
    "proxy_chat_completions",
]
