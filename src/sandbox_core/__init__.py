from __future__ import annotations

from .config import (
    HubConfig,
    SandboxConfig,
    ServerConfig,
    load_hub_config,
    load_hub_config_dict,
)
from .errors import (
    AgentExitError,
    ConfigError,
    InvocationTimeoutError,
    ResumeFailedError,
    SandboxAuthError,
    SandboxUnavailableError,
    TypedSandboxError,
)
from .paths import HubPaths, default_sandbox_hub_data_dir, resolve_hub_paths

__all__ = [
    "AgentExitError",
    "ConfigError",
    "HubConfig",
    "HubPaths",
    "InvocationTimeoutError",
    "ResumeFailedError",
    "SandboxAuthError",
    "SandboxConfig",
    "SandboxUnavailableError",
    "ServerConfig",
    "TypedSandboxError",
    "default_sandbox_hub_data_dir",
    "load_hub_config",
    "load_hub_config_dict",
    "resolve_hub_paths",
]
