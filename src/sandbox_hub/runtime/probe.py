"""One-shot sandbox health probe built on ``claude auth status --json``."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from sandbox_core.config import SandboxConfig
from sandbox_hub.integrations.command_runner import SpawnFn, kill_process, spawn_command
from sandbox_hub.runtime.agent_command import build_probe_command
from sandbox_hub.runtime.failure_classifier import (
    FAILURE_AUTH_FAILED,
    FAILURE_UNAVAILABLE,
    classify_failure,
    combined_output,
    is_api_key_auth,
)


LOGGER = logging.getLogger("sandbox_hub.probe")

PROBE_STATUS_HEALTHY = "healthy"
PROBE_STATUS_AUTH_FAILED = "auth_failed"
PROBE_STATUS_UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class ProbeResult:
    status: str
    message: str

    def payload(self) -> dict[str, str]:
        return {"status": self.status, "message": self.message}


def evaluate_auth_status(sandbox_name: str, status: Any) -> ProbeResult:
    if not isinstance(status, dict) or not status.get("loggedIn"):
        return ProbeResult(PROBE_STATUS_AUTH_FAILED, f'Sandbox "{sandbox_name}" is not logged in')

    auth_method = status.get("authMethod")
    api_provider = status.get("apiProvider")
    if is_api_key_auth(auth_method, api_provider):
        return ProbeResult(
            PROBE_STATUS_AUTH_FAILED,
            f'Sandbox "{sandbox_name}" is using API key auth '
            f"(authMethod: {auth_method}, apiProvider: {api_provider}). First-party OAuth is required.",
        )
    return ProbeResult(
        PROBE_STATUS_HEALTHY,
        f'Sandbox "{sandbox_name}" is authenticated ({auth_method}, {api_provider})',
    )


def _classify_probe_failure(sandbox_name: str, stderr: str, stdout: str, exit_code: int | None) -> ProbeResult:
    classification = classify_failure(combined_output(stderr, stdout), exit_code=exit_code, resumed=False)
    if classification.category == FAILURE_UNAVAILABLE:
        return ProbeResult(
            PROBE_STATUS_UNAVAILABLE,
            f'Sandbox "{sandbox_name}" is not available: matched "{classification.pattern}"',
        )
    if classification.category == FAILURE_AUTH_FAILED:
        return ProbeResult(
            PROBE_STATUS_AUTH_FAILED,
            f'Sandbox "{sandbox_name}" authentication failed: matched "{classification.pattern}"',
        )
    return ProbeResult(
        PROBE_STATUS_UNAVAILABLE,
        f'Sandbox "{sandbox_name}" probe failed with unknown error (exit code {exit_code})',
    )


async def probe_sandbox(
    sandbox: SandboxConfig,
    *,
    spawn: SpawnFn = spawn_command,
    timeout_seconds: float | None = None,
) -> ProbeResult:
    """Run the auth status command once. Always returns a result, never raises."""
    timeout = sandbox.probe_timeout_seconds if timeout_seconds is None else float(timeout_seconds)
    cmd = build_probe_command(sandbox)
    try:
        process = await spawn(cmd)
    except (OSError, ValueError) as exc:
        return ProbeResult(PROBE_STATUS_UNAVAILABLE, f"Failed to spawn docker process: {exc}")

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        kill_process(process)
        await process.wait()
        return ProbeResult(PROBE_STATUS_UNAVAILABLE, f"Sandbox probe timed out after {timeout:g}s")
    except OSError as exc:
        kill_process(process)
        await process.wait()
        return ProbeResult(PROBE_STATUS_UNAVAILABLE, f"Sandbox probe failed while reading output: {exc}")

    stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
    stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")
    if process.returncode != 0:
        result = _classify_probe_failure(sandbox.name, stderr, stdout, process.returncode)
        LOGGER.debug(
            "Sandbox probe exited with code %s",
            process.returncode,
            extra={"component": "probe", "operation": "auth_status", "result": result.status},
        )
        return result

    try:
        status = json.loads(stdout.strip())
    except json.JSONDecodeError:
        return ProbeResult(
            PROBE_STATUS_UNAVAILABLE,
            f"Sandbox probe returned invalid JSON: {stdout[:200]}",
        )
    return evaluate_auth_status(sandbox.name, status)
