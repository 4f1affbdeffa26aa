from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping


DEFAULT_STATE_FILE_NAME = "threads.json"


@dataclass(frozen=True)
class HubPaths:
    data_dir: Path
    state_file: Path
    config_file: Path | None = None


def default_sandbox_hub_data_dir(home: Path | None = None) -> Path:
    resolved_home = (home or Path.home()).expanduser()
    return resolved_home / ".local" / "share" / "sandbox_hub"


def resolve_sandbox_hub_data_dir(storage_values: Mapping[str, Any] | None) -> Path:
    if storage_values is not None:
        configured = str(storage_values.get("data_dir") or "").strip()
        if configured:
            return Path(configured).expanduser().resolve()
    return default_sandbox_hub_data_dir()


def resolve_hub_paths(
    storage_values: Mapping[str, Any] | None,
    *,
    data_dir_override: Path | None = None,
    config_file: Path | None = None,
) -> HubPaths:
    data_dir = Path(data_dir_override).expanduser().resolve() if data_dir_override else resolve_sandbox_hub_data_dir(storage_values)
    state_file_name = DEFAULT_STATE_FILE_NAME
    if storage_values is not None:
        state_file_name = str(storage_values.get("state_file_name") or "").strip() or DEFAULT_STATE_FILE_NAME
    return HubPaths(data_dir=data_dir, state_file=data_dir / state_file_name, config_file=config_file)
