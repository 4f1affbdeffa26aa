from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from sandbox_hub.runtime.probe import ProbeResult


LOGGER = logging.getLogger("sandbox_hub.health")

SANDBOX_STATUS_UNKNOWN = "unknown"


class SandboxHealth:
    """Last known sandbox probe result, owned by the hub process."""

    def __init__(self) -> None:
        self._status = SANDBOX_STATUS_UNKNOWN
        self._message = "Sandbox has not been probed yet"

    @property
    def status(self) -> str:
        return self._status

    def update(self, result: ProbeResult) -> None:
        self._status = result.status
        self._message = result.message

    def payload(self) -> dict[str, Any]:
        return {"status": self._status, "message": self._message}


class HealthService:
    def __init__(self, *, health: SandboxHealth, probe: Callable[[], Awaitable[ProbeResult]]) -> None:
        self._health = health
        self._probe = probe

    def health_payload(self) -> dict[str, Any]:
        return {"status": "ok", "sandbox": self._health.payload()}

    async def refresh(self) -> ProbeResult:
        started = time.monotonic()
        result = await self._probe()
        self._health.update(result)
        log = LOGGER.info if result.status == "healthy" else LOGGER.warning
        log(
            "Sandbox probe: %s",
            result.message,
            extra={
                "component": "health",
                "operation": "probe",
                "result": result.status,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return result
