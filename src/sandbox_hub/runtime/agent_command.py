from __future__ import annotations

from sandbox_core.config import SandboxConfig


AGENT_RESUME_FLAG = "--resume"
AGENT_STREAM_ARGS = (
    "--output-format",
    "stream-json",
    "--permission-mode",
    "bypassPermissions",
    "--verbose",
)
AUTH_STATUS_ARGS = ("auth", "status", "--json")


def sandbox_exec_prefix(sandbox: SandboxConfig) -> list[str]:
    return [
        sandbox.docker_binary,
        "sandbox",
        "exec",
        "-w",
        sandbox.workspace,
        sandbox.name,
        sandbox.agent_command,
    ]


def build_probe_command(sandbox: SandboxConfig) -> list[str]:
    return [*sandbox_exec_prefix(sandbox), *AUTH_STATUS_ARGS]


def build_agent_command(sandbox: SandboxConfig, prompt: str, session_id: str | None = None) -> list[str]:
    cmd = sandbox_exec_prefix(sandbox)
    if session_id:
        cmd.extend([AGENT_RESUME_FLAG, session_id])
    cmd.extend(["-p", prompt, *AGENT_STREAM_ARGS])
    return cmd
