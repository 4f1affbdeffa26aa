from __future__ import annotations

from pathlib import Path


CONFIG_FILE_NAME = "hub.config.toml"


def repo_root(start_file: Path) -> Path:
    resolved = start_file.resolve()
    for parent in resolved.parents:
        if (parent / "pyproject.toml").exists():
            return parent
    return resolved.parent


def default_config_file(repo_root: Path) -> Path:
    return repo_root / "config" / CONFIG_FILE_NAME


def output_excerpt(stderr: str, stdout: str, *, limit: int = 500) -> str:
    return (stderr or stdout or "")[:limit]

