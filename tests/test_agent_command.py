from __future__ import annotations

from sandbox_core.config import SandboxConfig
from sandbox_hub.runtime.agent_command import build_agent_command, build_probe_command


SANDBOX = SandboxConfig(name="dev-box", workspace="/srv/work")


def test_probe_command_runs_auth_status_inside_sandbox() -> None:
    assert build_probe_command(SANDBOX) == [
        "docker", "sandbox", "exec", "-w", "/srv/work", "dev-box", "claude", "auth", "status", "--json",
    ]


def test_agent_command_for_fresh_session() -> None:
    assert build_agent_command(SANDBOX, "hello there") == [
        "docker", "sandbox", "exec", "-w", "/srv/work", "dev-box", "claude",
        "-p", "hello there",
        "--output-format", "stream-json", "--permission-mode", "bypassPermissions", "--verbose",
    ]


def test_agent_command_resumes_session_before_prompt() -> None:
    cmd = build_agent_command(SANDBOX, "next", "sess-9")
    assert cmd[7:11] == ["--resume", "sess-9", "-p", "next"]


def test_agent_command_passes_prompt_as_single_argument() -> None:
    prompt = "rm -rf / ; echo $(whoami) \"quoted\""
    cmd = build_agent_command(SANDBOX, prompt)
    assert cmd[cmd.index("-p") + 1] == prompt


def test_empty_session_id_starts_fresh() -> None:
    assert "--resume" not in build_agent_command(SANDBOX, "hi", "")
