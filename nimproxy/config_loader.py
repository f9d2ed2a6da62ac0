"""YAML configuration loading for the proxy.

The config file holds a ``proxy_settings`` block and a ``model_mapping``
table::

    proxy_settings:
      server:    {host, port}
      backend:   {api_base, api_key, timeout, probe_unknown_models}
      reasoning: {show_reasoning, enable_thinking_mode}
      lorebook:  {enabled, directory}
      defaults:  {temperature, max_tokens}
      logging:   {level}
    model_mapping:
      gpt-4o: deepseek-ai/deepseek-v3.1

``${VAR}`` and ``$VAR`` placeholders are filled from a ``.env`` file next to
the config file, then from the process environment.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import dotenv_values

from .core.exceptions import ConfigurationError

logger = logging.getLogger("nimproxy")

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = "configs/config.yaml"
CONFIG_PATH_ENV = "NIMPROXY_CONFIG"

ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")

# (section, key) under proxy_settings -> settings field
SECTION_FIELDS = (
    ("server", "host", "host"),
    ("server", "port", "port"),
    ("backend", "api_base", "api_base"),
    ("backend", "api_key", "api_key"),
    ("backend", "timeout", "timeout"),
    ("backend", "probe_unknown_models", "probe_unknown_models"),
    ("reasoning", "show_reasoning", "show_reasoning"),
    ("reasoning", "enable_thinking_mode", "enable_thinking_mode"),
    ("lorebook", "enabled", "enable_lorebook"),
    ("lorebook", "directory", "lorebook_dir"),
    ("defaults", "temperature", "default_temperature"),
    ("defaults", "max_tokens", "default_max_tokens"),
    ("logging", "level", "log_level"),
)


def resolve_project_path(path: str | Path) -> Path:
    """Resolve a relative path against the project root."""
    path = Path(path)
    if path.is_absolute():
        return path
    return PROJECT_ROOT / path


def load_config(path: Optional[str] = None, substitute_env: bool = True) -> dict:
    """Load the YAML config file.

    Args:
        path: Config file path. Defaults to ``$NIMPROXY_CONFIG``, then
              ``configs/config.yaml`` under the project root. Only the
              default file may be absent; a requested file must exist.
        substitute_env: Whether to fill ``${VAR}`` placeholders.

    Returns:
        The parsed config, or an empty dict when the default file is absent.
    """
    requested = path or os.getenv(CONFIG_PATH_ENV)
    config_path = resolve_project_path(requested or DEFAULT_CONFIG_PATH)

    if not config_path.exists():
        if requested:
            logger.error(f"Config file not found: {config_path}")
            raise RuntimeError(f"Config file not found: {config_path}")
        logger.info(f"No config file at {config_path}; using environment and defaults")
        return {}

    logger.info(f"Loading configuration from {config_path}")
    with config_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}

    if not isinstance(data, dict):
        raise RuntimeError(f"Config file {config_path} must contain a mapping")

    if substitute_env:
        env_file = config_path.with_name(".env")
        env_values: dict[str, str] = {}
        if env_file.exists():
            logger.info(f"Loading environment variables from {env_file}")
            env_values = {k: v for k, v in dotenv_values(env_file).items() if v is not None}
        data = _substitute_env_vars(data, env_values)

    return data


def config_values(config: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten a loaded config into settings field values.

    Missing sections and keys are left out, so built-in defaults apply.
    """
    proxy_settings = config.get("proxy_settings") or {}
    if not isinstance(proxy_settings, Mapping):
        raise ConfigurationError("proxy_settings must be a mapping")

    values: dict[str, Any] = {}
    for section_name, key, field_name in SECTION_FIELDS:
        section = proxy_settings.get(section_name) or {}
        if not isinstance(section, Mapping):
            raise ConfigurationError(f"proxy_settings.{section_name} must be a mapping")
        if section.get(key) is not None:
            values[field_name] = section[key]

    if "model_mapping" in config:
        values["model_mapping"] = config["model_mapping"]
    return values


def _substitute_env_vars(obj: Any, env_values: Mapping[str, str]) -> Any:
    """Fill ``${VAR}``/``$VAR`` placeholders in every string of ``obj``.

    ``.env`` values win over the process environment. An unset variable
    keeps its literal placeholder and is logged.
    """
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v, env_values) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item, env_values) for item in obj]
    if not isinstance(obj, str):
        return obj

    def replace_var(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        value = env_values.get(name, os.getenv(name))
        if value is None:
            logger.warning(f"Config placeholder ${name} is not set; keeping it literally")
            return match.group(0)
        return value

    return ENV_VAR_PATTERN.sub(replace_var, obj)
