from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - Python < 3.11
    import tomli as tomllib

from sandbox_core.errors import ConfigError


_SECTION_KEYS = ("sandbox", "server", "storage", "logging")
SANDBOX_NAME_ENV = "SANDBOX_NAME"
SANDBOX_WORKSPACE_ENV = "SANDBOX_WORKSPACE"
DEFAULT_SANDBOX_NAME = "my-sandbox"
DEFAULT_SANDBOX_WORKSPACE = "/workspace"
DEFAULT_DOCKER_BINARY = "docker"
DEFAULT_AGENT_COMMAND = "claude"
DEFAULT_PROBE_TIMEOUT_SECONDS = 30.0
DEFAULT_INACTIVITY_TIMEOUT_SECONDS = 10 * 60.0
DEFAULT_INACTIVITY_CHECK_INTERVAL_SECONDS = 5.0
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3002
DEFAULT_WEB_ORIGIN = "http://localhost:3000"


def _ensure_dict(value: object, *, label: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{label} must be a table/object.")
    return dict(value)


def _ensure_str(value: object, *, label: str, default: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigError(f"{label} must be a string.")
    resolved = value.strip()
    if not resolved:
        raise ConfigError(f"{label} must not be empty.")
    return resolved


def _ensure_positive_number(value: object, *, label: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{label} must be a number.")
    if value <= 0:
        raise ConfigError(f"{label} must be greater than zero.")
    return float(value)


def _ensure_port(value: object, *, label: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{label} must be an integer.")
    if value <= 0 or value > 65535:
        raise ConfigError(f"{label} must be between 1 and 65535.")
    return value


def _ensure_bool(value: object, *, label: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"{label} must be a boolean.")
    return value


@dataclass(frozen=True)
class SandboxConfig:
    name: str = DEFAULT_SANDBOX_NAME
    workspace: str = DEFAULT_SANDBOX_WORKSPACE
    docker_binary: str = DEFAULT_DOCKER_BINARY
    agent_command: str = DEFAULT_AGENT_COMMAND
    probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS
    inactivity_timeout_seconds: float = DEFAULT_INACTIVITY_TIMEOUT_SECONDS
    inactivity_check_interval_seconds: float = DEFAULT_INACTIVITY_CHECK_INTERVAL_SECONDS


@dataclass(frozen=True)
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    web_origin: str = DEFAULT_WEB_ORIGIN
    probe_on_startup: bool = True


@dataclass(frozen=True)
class StorageConfig:
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LoggingConfig:
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class HubConfig:
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | dict[str, Any]) -> "HubConfig":
        if not isinstance(payload, Mapping):
            raise ConfigError("Config payload root must be a table/object.")

        raw = dict(payload)
        missing_sections = [section for section in _SECTION_KEYS if section not in raw]
        if missing_sections:
            raise ConfigError(
                "Config payload missing required sections: " + ", ".join(missing_sections)
            )

        storage = StorageConfig(values=_ensure_dict(raw.get("storage"), label="section 'storage'"))
        logging = LoggingConfig(values=_ensure_dict(raw.get("logging"), label="section 'logging'"))
        extras = {k: v for k, v in raw.items() if k not in _SECTION_KEYS}
        return cls(
            sandbox=_parse_sandbox(raw),
            server=_parse_server(raw),
            storage=storage,
            logging=logging,
            extras=extras,
        )

    @classmethod
    def from_toml_path(cls, path: str | Path) -> "HubConfig":
        config_path = Path(path)
        try:
            raw = config_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Unable to read config file {config_path}: {exc}") from exc
        try:
            parsed = tomllib.loads(raw)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ConfigError("Config payload root must be a table/object.")
        return cls.from_dict(parsed)


def _parse_sandbox(raw_root: dict[str, Any]) -> SandboxConfig:
    sandbox_raw = _ensure_dict(raw_root.get("sandbox"), label="section 'sandbox'")
    inactivity_timeout = _ensure_positive_number(
        sandbox_raw.get("inactivity_timeout_seconds"),
        label="sandbox.inactivity_timeout_seconds",
        default=DEFAULT_INACTIVITY_TIMEOUT_SECONDS,
    )
    check_interval = _ensure_positive_number(
        sandbox_raw.get("inactivity_check_interval_seconds"),
        label="sandbox.inactivity_check_interval_seconds",
        default=DEFAULT_INACTIVITY_CHECK_INTERVAL_SECONDS,
    )
    return SandboxConfig(
        name=_ensure_str(sandbox_raw.get("name"), label="sandbox.name", default=DEFAULT_SANDBOX_NAME),
        workspace=_ensure_str(
            sandbox_raw.get("workspace"),
            label="sandbox.workspace",
            default=DEFAULT_SANDBOX_WORKSPACE,
        ),
        docker_binary=_ensure_str(
            sandbox_raw.get("docker_binary"),
            label="sandbox.docker_binary",
            default=DEFAULT_DOCKER_BINARY,
        ),
        agent_command=_ensure_str(
            sandbox_raw.get("agent_command"),
            label="sandbox.agent_command",
            default=DEFAULT_AGENT_COMMAND,
        ),
        probe_timeout_seconds=_ensure_positive_number(
            sandbox_raw.get("probe_timeout_seconds"),
            label="sandbox.probe_timeout_seconds",
            default=DEFAULT_PROBE_TIMEOUT_SECONDS,
        ),
        inactivity_timeout_seconds=inactivity_timeout,
        inactivity_check_interval_seconds=min(check_interval, inactivity_timeout),
    )


def _parse_server(raw_root: dict[str, Any]) -> ServerConfig:
    server_raw = _ensure_dict(raw_root.get("server"), label="section 'server'")
    return ServerConfig(
        host=_ensure_str(server_raw.get("host"), label="server.host", default=DEFAULT_HOST),
        port=_ensure_port(server_raw.get("port"), label="server.port", default=DEFAULT_PORT),
        web_origin=_ensure_str(server_raw.get("web_origin"), label="server.web_origin", default=DEFAULT_WEB_ORIGIN),
        probe_on_startup=_ensure_bool(
            server_raw.get("probe_on_startup"),
            label="server.probe_on_startup",
            default=True,
        ),
    )


def apply_environment_overrides(config: HubConfig, environ: Mapping[str, str] | None = None) -> HubConfig:
    env = os.environ if environ is None else environ
    overrides: dict[str, str] = {}
    name = str(env.get(SANDBOX_NAME_ENV) or "").strip()
    if name:
        overrides["name"] = name
    workspace = str(env.get(SANDBOX_WORKSPACE_ENV) or "").strip()
    if workspace:
        overrides["workspace"] = workspace
    if not overrides:
        return config
    return replace(config, sandbox=replace(config.sandbox, **overrides))


def load_hub_config(path: str | Path, *, environ: Mapping[str, str] | None = None) -> HubConfig:
    return apply_environment_overrides(HubConfig.from_toml_path(path), environ)


def load_hub_config_dict(
    payload: Mapping[str, Any] | dict[str, Any],
    *,
    environ: Mapping[str, str] | None = None,
) -> HubConfig:
    return apply_environment_overrides(HubConfig.from_dict(payload), environ)


__all__ = [
    "DEFAULT_INACTIVITY_CHECK_INTERVAL_SECONDS",
    "DEFAULT_INACTIVITY_TIMEOUT_SECONDS",
    "DEFAULT_PROBE_TIMEOUT_SECONDS",
    "HubConfig",
    "LoggingConfig",
    "SANDBOX_NAME_ENV",
    "SANDBOX_WORKSPACE_ENV",
    "SandboxConfig",
    "ServerConfig",
    "StorageConfig",
    "apply_environment_overrides",
    "load_hub_config",
    "load_hub_config_dict",
]
