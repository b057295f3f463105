# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
MCP Host Configuration - Single source of truth.
YAML for settings, env vars for overrides and secrets.

Priority (highest to lowest):
1. Environment variables
2. YAML config file
3. Default values
"""

import os
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


DEFAULT_CONFIG_PATH = "configs/host.yaml"

DEFAULT_REMOTE_MARKERS = ("npx", "uvx", "bunx", "pnpm dlx", "yarn dlx")


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Config:
    """
    Immutable host configuration.
    All values from YAML or env. No hidden state.
    """

    # -- Service --
    service_host: str = "0.0.0.0"
    service_port: int = 3000

    # -- LLM --
    llm_model: str = "gpt-4o"
    llm_max_tokens: int = 1000
    llm_base_url: Optional[str] = None

    # -- Timeouts (seconds) --
    connect_timeout_local: float = 30.0
    connect_timeout_remote: float = 60.0
    discovery_timeout_local: float = 10.0
    discovery_timeout_remote: float = 45.0
    list_timeout: float = 10.0
    tool_call_timeout: float = 60.0
    execute_timeout: float = 30.0
    execute_remote_floor: float = 120.0

    # -- Retry --
    retry_delay: float = 2.0
    max_retry_delay: float = 10.0

    # -- Sessions --
    session_ttl: float = 600.0
    sweep_interval: float = 300.0
    default_session_id: str = "default"

    # -- Launch classification --
    infer_launch_class: bool = True
    remote_markers: Tuple[str, ...] = DEFAULT_REMOTE_MARKERS

    # -- Servers --
    default_server_command: Optional[str] = None
    default_server_args: Tuple[str, ...] = ()
    server_env_file: Optional[str] = None

    # -- Selector --
    selector_rules: Optional[Tuple[Dict[str, Any], ...]] = None

    # -- Logging --
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None

    # -- MCP client identity --
    client_name: str = "mcp-host"
    client_version: str = "1.0.0"

    @property
    def effective_retry_delay(self) -> float:
        return max(0.0, min(self.retry_delay, self.max_retry_delay))

    def get_connect_timeout(self, remote: bool) -> float:
        return self.connect_timeout_remote if remote else self.connect_timeout_local

    def get_discovery_timeout(self, remote: bool) -> float:
        return self.discovery_timeout_remote if remote else self.discovery_timeout_local


# =============================================================================
# SECRETS - The ONLY thing read straight from environment variables
# =============================================================================

def get_openai_api_key() -> Optional[str]:
    """API keys cannot be in version control."""
    return os.getenv("OPENAI_API_KEY") or os.getenv("ENV_OPENAI_API_KEY")


def get_anthropic_api_key() -> Optional[str]:
    """API keys cannot be in version control."""
    return os.getenv("ANTHROPIC_API_KEY")


# =============================================================================
# LOADER
# =============================================================================

def _env(name: str, default: Any) -> Any:
    """Read an env override, converting to the type of the default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    if isinstance(default, bool):
        return value.lower() in ("true", "1", "yes", "on")
    try:
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except ValueError:
        return default
    return value


def _as_tuple(value: Any) -> Tuple[Any, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    return tuple(value)


def load_config(path: str = DEFAULT_CONFIG_PATH) -> Config:
    """
    Load configuration from YAML, then apply env overrides.
    Returns defaults (plus env overrides) if the file doesn't exist.
    """
    y: Dict[str, Any] = {}
    if Path(path).exists():
        with open(path) as f:
            y = yaml.safe_load(f) or {}

    # Helper to safely navigate nested dicts
    def get(d: dict, *keys, default=None):
        for k in keys:
            if not isinstance(d, dict):
                return default
            d = d.get(k, {})
        return d if d != {} and d is not None else default

    defaults = Config()

    rules = get(y, "selector", "rules")
    remote_markers = _as_tuple(
        _env("MCP_REMOTE_MARKERS", None) or get(y, "launch", "remote_markers")
    ) or DEFAULT_REMOTE_MARKERS

    return Config(
        service_host=_env("MCP_HOST_HOST", get(y, "server", "host", default=defaults.service_host)),
        service_port=_env("PORT", int(get(y, "server", "port", default=defaults.service_port))),

        llm_model=_env("MCP_HOST_MODEL", get(y, "llm", "model", default=defaults.llm_model)),
        llm_max_tokens=int(get(y, "llm", "max_tokens", default=defaults.llm_max_tokens)),
        llm_base_url=_env("OPENAI_BASE_URL", get(y, "llm", "base_url")),

        connect_timeout_local=float(get(y, "timeouts", "connect_local", default=defaults.connect_timeout_local)),
        connect_timeout_remote=float(get(y, "timeouts", "connect_remote", default=defaults.connect_timeout_remote)),
        discovery_timeout_local=float(get(y, "timeouts", "discovery_local", default=defaults.discovery_timeout_local)),
        discovery_timeout_remote=float(get(y, "timeouts", "discovery_remote", default=defaults.discovery_timeout_remote)),
        list_timeout=float(get(y, "timeouts", "list", default=defaults.list_timeout)),
        tool_call_timeout=_env("MCP_TIMEOUT_CALL", float(get(y, "timeouts", "tool_call", default=defaults.tool_call_timeout))),
        execute_timeout=_env("MCP_TIMEOUT_EXECUTE", float(get(y, "timeouts", "execute", default=defaults.execute_timeout))),
        execute_remote_floor=float(get(y, "timeouts", "execute_remote_floor", default=defaults.execute_remote_floor)),

        retry_delay=_env("MCP_RETRY_DELAY", float(get(y, "retry", "delay", default=defaults.retry_delay))),
        max_retry_delay=float(get(y, "retry", "max_delay", default=defaults.max_retry_delay)),

        session_ttl=_env("MCP_SESSION_TTL", float(get(y, "sessions", "ttl", default=defaults.session_ttl))),
        sweep_interval=_env("MCP_SWEEP_INTERVAL", float(get(y, "sessions", "sweep_interval", default=defaults.sweep_interval))),
        default_session_id=get(y, "sessions", "default_id", default=defaults.default_session_id),

        infer_launch_class=bool(get(y, "launch", "infer_class", default=defaults.infer_launch_class)),
        remote_markers=remote_markers,

        default_server_command=get(y, "servers", "default_command"),
        default_server_args=_as_tuple(get(y, "servers", "default_args")),
        server_env_file=_env("MCP_SERVER_ENV_FILE", get(y, "servers", "env_file")),

        selector_rules=tuple(rules) if rules else None,

        log_level=_env("LOG_LEVEL", get(y, "logging", "level", default=defaults.log_level)),
        log_format=_env("LOG_FORMAT", get(y, "logging", "format", default=defaults.log_format)),
        log_file=_env("LOG_FILE", get(y, "logging", "file")),
    )


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        config_path = os.getenv("MCP_HOST_CONFIG_PATH", DEFAULT_CONFIG_PATH)
        _config = load_config(config_path)
    return _config


def reload_config() -> Config:
    """Force reload configuration."""
    global _config
    _config = None
    return get_config()
