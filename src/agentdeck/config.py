"""
User configuration loaded from ~/.agentdeck/config.yaml.

Every accessor tolerates a missing or broken file and falls back to
defaults, so a bad config never stops the server from starting.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .settings import TIMING, get_config_path

logger = logging.getLogger(__name__)

CONFIG_PATH: Path = get_config_path()

DEFAULT_AGENT_COMMAND = "claude"
DEFAULT_SUMMARIZER_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_SUMMARIZER_API_MODEL = "gpt-4o-mini"
DEFAULT_SUMMARIZER_API_KEY_VAR = "OPENAI_API_KEY"
DEFAULT_WEB_HOST = "127.0.0.1"
DEFAULT_WEB_PORT = 3001


def load_config() -> Dict[str, Any]:
    """Load the YAML config.

    Returns:
        The config mapping, or {} if the file is missing, invalid, or
        not a mapping.
    """
    if not CONFIG_PATH.exists():
        return {}
    try:
        with open(CONFIG_PATH) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not read config {CONFIG_PATH}: {e}")
        return {}
    if not isinstance(data, dict):
        return {}
    return data


def save_config(config: Dict[str, Any]) -> None:
    """Write the config mapping as YAML, creating parent dirs."""
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    with open(CONFIG_PATH, "w") as f:
        yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)


def _section(config: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = config.get(key)
    return value if isinstance(value, dict) else {}


def get_agent_command() -> str:
    """Command typed into a fresh shell to start the agent."""
    value = load_config().get("agent_command")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return DEFAULT_AGENT_COMMAND


def get_shell() -> List[str]:
    """Login shell argv used for new sessions."""
    value = load_config().get("shell")
    if sys.platform == "win32":
        return [value] if isinstance(value, str) and value else ["cmd.exe"]
    shell = value if isinstance(value, str) and value else os.environ.get("SHELL", "bash")
    return [shell, "-l"]


def get_persistence_enabled() -> bool:
    return bool(_section(load_config(), "persistence").get("enabled", False))


def get_summarizer_config() -> Dict[str, Any]:
    """Summarizer settings, config file first, env vars as fallback.

    Returns:
        Dict with backend, model, timeout, api_url, api_model and the
        resolved api_key (None when the key variable is unset).
    """
    section = _section(load_config(), "summarizer")

    backend = section.get("backend") or os.environ.get(
        "AGENTDECK_SUMMARIZER_BACKEND", "cli"
    )
    api_url = section.get("api_url") or os.environ.get(
        "AGENTDECK_SUMMARIZER_API_URL", DEFAULT_SUMMARIZER_API_URL
    )
    api_model = section.get("api_model") or os.environ.get(
        "AGENTDECK_SUMMARIZER_MODEL", DEFAULT_SUMMARIZER_API_MODEL
    )
    api_key_var = section.get("api_key_var") or os.environ.get(
        "AGENTDECK_SUMMARIZER_API_KEY_VAR", DEFAULT_SUMMARIZER_API_KEY_VAR
    )

    try:
        timeout = float(section.get("timeout", TIMING.summarizer_timeout))
    except (TypeError, ValueError):
        timeout = TIMING.summarizer_timeout

    return {
        "backend": backend if backend in ("cli", "api") else "cli",
        "model": section.get("model") or "haiku",
        "timeout": timeout,
        "api_url": api_url,
        "api_model": api_model,
        "api_key": os.environ.get(api_key_var),
    }


def get_web_config() -> Dict[str, Any]:
    section = _section(load_config(), "web")
    try:
        port = int(section.get("port", DEFAULT_WEB_PORT))
    except (TypeError, ValueError):
        port = DEFAULT_WEB_PORT
    return {
        "host": section.get("host") or DEFAULT_WEB_HOST,
        "port": port,
    }
