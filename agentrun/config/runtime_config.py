"""Runtime configuration for agent runs.

Provides centralized configuration for the streaming client, the LLM
provider and the execution server. Environment variables take precedence
over YAML config.

Usage:
    from agentrun.config.runtime_config import (
        get_base_url,
        get_run_timeout,
        get_provider_mode,
        is_stub_mode,
    )

    url = get_base_url()          # "http://127.0.0.1:5001"
    timeout = get_run_timeout()   # None when disabled
    if is_stub_mode():
        # Use the deterministic stub provider
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).parent / "runtime.yaml"
_cached_config: Optional[Dict[str, Any]] = None

# Valid provider modes
VALID_PROVIDER_MODES = ("stub", "anthropic")

DEFAULT_BASE_URL = "http://127.0.0.1:5001"
DEFAULT_PROVIDER_BASE_URL = "https://api.anthropic.com"
DEFAULT_MODEL = "claude-sonnet-4-5"


def _load_config() -> Dict[str, Any]:
    """Load runtime.yaml configuration, with caching."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH) as f:
            _cached_config = yaml.safe_load(f) or {}
    else:
        _cached_config = _default_config()

    return _cached_config


def _default_config() -> Dict[str, Any]:
    """Return default configuration if runtime.yaml doesn't exist."""
    return {
        "version": "1.0",
        "client": {
            "base_url": DEFAULT_BASE_URL,
            "timeout_seconds": 0,
        },
        "provider": {
            "mode": "stub",
            "model": DEFAULT_MODEL,
            "base_url": DEFAULT_PROVIDER_BASE_URL,
            "request_timeout_seconds": 120,
            "env_keys": ["ANTHROPIC_API_KEY"],
        },
        "server": {
            "host": "127.0.0.1",
            "port": 5001,
            "agents_dir": None,
        },
    }


def reset_config() -> None:
    """Reset cached config (for testing)."""
    global _cached_config
    _cached_config = None


def _section(name: str) -> Dict[str, Any]:
    return _load_config().get(name) or {}


def _parse_seconds(value: Any, source: str) -> Optional[float]:
    """Parse a timeout value; zero or negative disables the timeout."""
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        logger.warning("Invalid timeout %r from %s. Timeout disabled.", value, source)
        return None
    if seconds <= 0:
        return None
    return seconds


# =============================================================================
# Client
# =============================================================================


def get_base_url() -> str:
    """Get the execution service base URL.

    Environment variable precedence (highest to lowest):
    1. AGENTRUN_BASE_URL
    2. Config file value (client.base_url)
    3. Default: http://127.0.0.1:5001

    Returns:
        Base URL without a trailing slash.
    """
    value = os.environ.get("AGENTRUN_BASE_URL")
    if value and value.strip():
        return value.strip().rstrip("/")
    configured = _section("client").get("base_url")
    if configured:
        return str(configured).rstrip("/")
    return DEFAULT_BASE_URL


def get_run_timeout() -> Optional[float]:
    """Get the optional run timeout in seconds.

    Environment variable precedence (highest to lowest):
    1. AGENTRUN_TIMEOUT_SECONDS
    2. Config file value (client.timeout_seconds)
    3. Default: no timeout

    Returns:
        Timeout in seconds, or None when runs may wait indefinitely.
    """
    value = os.environ.get("AGENTRUN_TIMEOUT_SECONDS")
    if value is not None and value.strip():
        return _parse_seconds(value, "AGENTRUN_TIMEOUT_SECONDS")
    configured = _section("client").get("timeout_seconds")
    if configured is None:
        return None
    return _parse_seconds(configured, "runtime.yaml")


# =============================================================================
# Provider
# =============================================================================


def get_provider_mode() -> str:
    """Get the LLM provider mode, respecting environment variable overrides.

    Environment variable precedence (highest to lowest):
    1. AGENTRUN_PROVIDER
    2. Config file value (provider.mode)
    3. Default: "stub"

    Returns:
        "stub" or "anthropic". Logs a warning and returns "stub" if an
        invalid value is configured.
    """
    value = os.environ.get("AGENTRUN_PROVIDER")
    source = "AGENTRUN_PROVIDER"
    if not value:
        value = _section("provider").get("mode")
        source = "runtime.yaml"
    if not value:
        return "stub"

    mode = str(value).lower()
    if mode not in VALID_PROVIDER_MODES:
        logger.warning(
            "Invalid provider mode '%s' from %s (valid: %s). Falling back to 'stub'.",
            value,
            source,
            ", ".join(VALID_PROVIDER_MODES),
        )
        return "stub"
    return mode


def is_stub_mode() -> bool:
    """Check if steps should run against the stub provider."""
    return get_provider_mode() == "stub"


def get_provider_model() -> str:
    """Get the model name (AGENTRUN_MODEL > provider.model > default)."""
    value = os.environ.get("AGENTRUN_MODEL")
    if value:
        return value
    return str(_section("provider").get("model") or DEFAULT_MODEL)


def get_provider_base_url() -> str:
    """Get the provider base URL (ANTHROPIC_BASE_URL > provider.base_url > default)."""
    value = os.environ.get("ANTHROPIC_BASE_URL")
    if value:
        return value.rstrip("/")
    return str(_section("provider").get("base_url") or DEFAULT_PROVIDER_BASE_URL).rstrip("/")


def get_provider_timeout() -> float:
    """Get the per-request timeout for provider calls, in seconds."""
    configured = _section("provider").get("request_timeout_seconds", 120)
    return _parse_seconds(configured, "runtime.yaml") or 120.0


def get_provider_required_env_keys() -> List[str]:
    """Get environment variables the non-stub provider needs."""
    return list(_section("provider").get("env_keys") or [])


# =============================================================================
# Server
# =============================================================================


def get_agents_dir() -> Optional[Path]:
    """Get the directory agent definitions are seeded from, if any.

    Environment variable precedence (highest to lowest):
    1. AGENTRUN_AGENTS_DIR
    2. Config file value (server.agents_dir)
    3. Default: None (start with an empty registry)
    """
    value = os.environ.get("AGENTRUN_AGENTS_DIR") or _section("server").get("agents_dir")
    if not value:
        return None
    return Path(value)


def get_server_host() -> str:
    return str(_section("server").get("host") or "127.0.0.1")


def get_server_port() -> int:
    value = _section("server").get("port", 5001)
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid server port %r in runtime.yaml. Using 5001.", value)
        return 5001
