"""nimproxy - OpenAI to NVIDIA NIM proxy

Accepts OpenAI-style chat completion requests, injects lorebook context,
forwards them to an NVIDIA NIM backend and reshapes the answers (streamed
or not) back into the OpenAI format, folding or dropping the backend's
reasoning channel.

Example:
    >>> from nimproxy import create_app
    >>> import uvicorn
    >>> uvicorn.run(create_app(), host="0.0.0.0", port=3000)
"""

from .config_loader import load_config
from .core.exceptions import ProxyError, UpstreamError
from .core.router import ProxyRouter
from .logging import logger, setup_logging
from .main import create_app
from .settings import ProxySettings, load_settings

__all__ = [
    "ProxyError",
    "ProxyRouter",
    "ProxySettings",
    "UpstreamError",
    "create_app",
    "load_config",
    "load_settings",
    "logger",
    "setup_logging",
]
