from __future__ import annotations

import json
from pathlib import Path

from click.testing import CliRunner

from sandbox_hub import server as hub_server


def _write_config(path: Path, *, docker_binary: str) -> Path:
    path.write_text(
        "\n".join(
            [
                "[sandbox]",
                'name = "cli-box"',
                f'docker_binary = "{docker_binary}"',
                "[server]",
                "[storage]",
                "[logging]",
            ]
        ),
        encoding="utf-8",
    )
    return path


def test_main_rejects_missing_config_file(tmp_path: Path) -> None:
    result = CliRunner().invoke(hub_server.main, ["--config-file", str(tmp_path / "absent.toml")])
    assert result.exit_code == 1
    assert "Missing config file" in result.output


def test_main_reports_invalid_config(tmp_path: Path) -> None:
    config_file = tmp_path / "hub.config.toml"
    config_file.write_text("[sandbox]\n", encoding="utf-8")
    result = CliRunner().invoke(hub_server.main, ["--config-file", str(config_file)])
    assert result.exit_code == 1
    assert "missing required sections" in result.output


def test_check_reports_unavailable_sandbox_and_fails(tmp_path: Path) -> None:
    config_file = _write_config(tmp_path / "hub.config.toml", docker_binary=str(tmp_path / "no-such-docker"))
    result = CliRunner().invoke(
        hub_server.main,
        ["--config-file", str(config_file), "--data-dir", str(tmp_path / "data"), "--check"],
    )

    assert result.exit_code == 1
    payload = json.loads(result.output.strip().splitlines()[-1])
    assert payload["sandbox"] == "cli-box"
    assert payload["status"] == "unavailable"
    assert payload["message"].startswith("Failed to spawn docker process:")


def test_uvicorn_log_level_caps_debug_at_info() -> None:
    assert hub_server._uvicorn_log_level("debug") == "info"
    assert hub_server._uvicorn_log_level("warn") == "warning"
    assert hub_server._uvicorn_log_level("critical") == "critical"
