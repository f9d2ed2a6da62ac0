"""Process settings resolved once at startup.

Settings are layered: built-in defaults, then the ``proxy_settings`` section
of the YAML config, then environment variables. The resulting
``ProxySettings`` is immutable and handed to ``create_app``; nothing reads
configuration from module globals after startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .config_loader import config_values
from .core.exceptions import ConfigurationError

DEFAULT_API_BASE = "https://integrate.api.nvidia.com/v1"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_TIMEOUT = 60.0
DEFAULT_TEMPERATURE = 0.6
DEFAULT_MAX_TOKENS = 9024
DEFAULT_LOREBOOK_DIR = "lorebooks"

DEFAULT_MODEL_MAPPING: dict[str, str] = {
    "gpt-3.5-turbo": "meta/llama-3.1-8b-instruct",
    "gpt-4": "deepseek-ai/deepseek-v3.1-terminus",
    "gpt-4-turbo": "xai/grok-4-0709",
    "gpt-4o": "deepseek-ai/deepseek-v3.1",
    "claude-3-opus": "meta/llama-3.1-405b-instruct",
    "claude-3-sonnet": "meta/llama-3.1-70b-instruct",
    "gemini-pro": "mistralai/mistral-large-2-instruct",
}

# Environment variable -> settings field
ENV_OVERRIDES = {
    "NIM_API_BASE": "api_base",
    "NIM_API_KEY": "api_key",
    "HOST": "host",
    "PORT": "port",
    "SHOW_REASONING": "show_reasoning",
    "ENABLE_THINKING_MODE": "enable_thinking_mode",
    "ENABLE_LOREBOOK": "enable_lorebook",
    "LOREBOOK_DIR": "lorebook_dir",
    "PROBE_UNKNOWN_MODELS": "probe_unknown_models",
    "LOG_LEVEL": "log_level",
}


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _parse_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


def _parse_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc


@dataclass(frozen=True)
class ProxySettings:
    """Immutable proxy configuration."""

    api_base: str = DEFAULT_API_BASE
    api_key: str = ""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    timeout: float = DEFAULT_TIMEOUT
    show_reasoning: bool = False
    enable_thinking_mode: bool = True
    enable_lorebook: bool = False
    lorebook_dir: Path = Path(DEFAULT_LOREBOOK_DIR)
    probe_unknown_models: bool = True
    default_temperature: float = DEFAULT_TEMPERATURE
    default_max_tokens: int = DEFAULT_MAX_TOKENS
    log_level: str = "INFO"
    model_mapping: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_MODEL_MAPPING))
    )

    @property
    def chat_completions_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/chat/completions"


def build_settings(values: Mapping[str, Any]) -> ProxySettings:
    """Build settings from a flat mapping of raw (possibly string) values."""
    kwargs: dict[str, Any] = {}
    for key, raw in values.items():
        if raw is None:
            continue
        if key in {"api_base", "api_key", "host"}:
            kwargs[key] = str(raw).strip()
        elif key == "log_level":
            kwargs[key] = str(raw).strip().upper() or "INFO"
        elif key in {"port", "default_max_tokens"}:
            kwargs[key] = _parse_int(key, raw)
        elif key in {"timeout", "default_temperature"}:
            kwargs[key] = _parse_float(key, raw)
        elif key in {
            "show_reasoning",
            "enable_thinking_mode",
            "enable_lorebook",
            "probe_unknown_models",
        }:
            kwargs[key] = _parse_bool(raw)
        elif key == "lorebook_dir":
            kwargs[key] = Path(str(raw))
        elif key == "model_mapping":
            if not isinstance(raw, Mapping):
                raise ConfigurationError("model_mapping must be a mapping of alias -> model")
            kwargs[key] = MappingProxyType({str(k): str(v) for k, v in raw.items()})

    if not kwargs.get("api_base", DEFAULT_API_BASE):
        raise ConfigurationError("api_base must not be empty")
    return ProxySettings(**kwargs)


def load_settings(
    config: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ProxySettings:
    """Resolve settings from a loaded config dict and the environment.

    Args:
        config: Parsed YAML config (see ``config_loader.load_config``).
        environ: Environment mapping, defaults to ``os.environ``.
    """
    environ = os.environ if environ is None else environ
    values = config_values(config or {})

    for env_name, field_name in ENV_OVERRIDES.items():
        env_value = environ.get(env_name)
        if env_value is not None and env_value != "":
            values[field_name] = env_value

    return build_settings(values)
