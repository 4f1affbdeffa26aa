"""Streaming agent invocation inside the Docker sandbox.

``invoke_agent`` yields ``InvocationEvent`` objects with a fixed vocabulary:

* ``text``          - a displayable fragment, in stdout order
* ``result``        - the terminal answer and its continuation token
* ``error``         - the terminal failure (typed ``TypedSandboxError``)
* ``resume_failed`` - the resumed attempt failed and a fresh attempt follows
* ``close``         - always last, exactly once

At most one of ``result``/``error`` precedes ``close``. An attempt that exits
cleanly without a result record yields neither.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncGenerator, AsyncIterator

from sandbox_core.config import SandboxConfig
from sandbox_core.errors import (
    InvocationTimeoutError,
    ResumeFailedError,
    SandboxUnavailableError,
    TypedSandboxError,
)
from sandbox_hub.integrations.command_runner import SpawnFn, kill_process, spawn_command
from sandbox_hub.runtime.agent_command import build_agent_command
from sandbox_hub.runtime.failure_classifier import (
    FailureClassification,
    classify_failure,
    combined_output,
    failure_error,
)
from sandbox_hub.runtime.stream_parser import AgentResult, LineSplitter, classify_stream_line


LOGGER = logging.getLogger("sandbox_hub.invocation")

EVENT_TEXT = "text"
EVENT_RESULT = "result"
EVENT_ERROR = "error"
EVENT_RESUME_FAILED = "resume_failed"
EVENT_CLOSE = "close"

MAX_INVOCATION_ATTEMPTS = 2
READ_CHUNK_SIZE = 8192

_ATTEMPT_CLOSED = object()
_ATTEMPT_TIMED_OUT = object()


@dataclass(frozen=True)
class InvocationEvent:
    kind: str
    text: str = ""
    result: AgentResult | None = None
    error: TypedSandboxError | None = None


class InvocationAttempt:
    """A single agent process: spawn, stream, watch for inactivity, classify the exit."""

    def __init__(
        self,
        prompt: str,
        *,
        sandbox: SandboxConfig,
        session_id: str | None = None,
        spawn: SpawnFn = spawn_command,
        inactivity_timeout: float | None = None,
        check_interval: float | None = None,
    ) -> None:
        self.prompt = prompt
        self.session_id = session_id or None
        self._sandbox = sandbox
        self._spawn = spawn
        self._inactivity_timeout = float(
            sandbox.inactivity_timeout_seconds if inactivity_timeout is None else inactivity_timeout
        )
        interval = sandbox.inactivity_check_interval_seconds if check_interval is None else check_interval
        self._check_interval = min(float(interval), self._inactivity_timeout)
        self._splitter = LineSplitter()
        self._stdout = bytearray()
        self._stderr = bytearray()
        self._last_activity = time.monotonic()
        self._finished = False
        self.result: AgentResult | None = None
        self.error: TypedSandboxError | None = None
        self.failure: FailureClassification | None = None
        self.exit_code: int | None = None
        self.timed_out = False

    @property
    def resumed(self) -> bool:
        return self.session_id is not None

    @property
    def stdout_text(self) -> str:
        return self._stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self._stderr.decode("utf-8", errors="replace")

    def _finish(self) -> bool:
        if self._finished:
            return False
        self._finished = True
        return True

    def _touch(self) -> None:
        self._last_activity = time.monotonic()

    def _dispatch_line(self, line: str, queue: asyncio.Queue[object]) -> None:
        if self._finished:
            return
        effect = classify_stream_line(line)
        if effect.text:
            queue.put_nowait(InvocationEvent(EVENT_TEXT, text=effect.text))
        if effect.result is not None and self.result is None:
            self.result = effect.result
            queue.put_nowait(InvocationEvent(EVENT_RESULT, result=effect.result))

    async def _pump_stdout(self, stream: asyncio.StreamReader, queue: asyncio.Queue[object]) -> None:
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self._touch()
            self._stdout.extend(chunk)
            for line in self._splitter.feed(chunk):
                self._dispatch_line(line, queue)
        for line in self._splitter.flush():
            self._dispatch_line(line, queue)

    async def _pump_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self._touch()
            self._stderr.extend(chunk)

    async def _await_close(
        self,
        process: asyncio.subprocess.Process,
        pumps: list[asyncio.Task[None]],
        queue: asyncio.Queue[object],
    ) -> None:
        for outcome in await asyncio.gather(*pumps, return_exceptions=True):
            if isinstance(outcome, Exception):
                LOGGER.warning(
                    "Agent output reader failed: %s",
                    outcome,
                    extra={"component": "invocation", "operation": "read_output", "error_class": type(outcome).__name__},
                )
        self.exit_code = await process.wait()
        if self._finish():
            queue.put_nowait(_ATTEMPT_CLOSED)

    async def _watch_inactivity(self, process: asyncio.subprocess.Process, queue: asyncio.Queue[object]) -> None:
        while not self._finished:
            await asyncio.sleep(self._check_interval)
            if time.monotonic() - self._last_activity < self._inactivity_timeout:
                continue
            if self._finish():
                self.timed_out = True
                kill_process(process)
                queue.put_nowait(_ATTEMPT_TIMED_OUT)
            return

    async def events(self) -> AsyncGenerator[InvocationEvent, None]:
        cmd = build_agent_command(self._sandbox, self.prompt, self.session_id)
        started = time.monotonic()
        try:
            process = await self._spawn(cmd)
        except (OSError, ValueError) as exc:
            self._finish()
            self.error = SandboxUnavailableError(f"Failed to spawn docker: {exc}")
            LOGGER.warning(
                "Agent spawn failed: %s",
                exc,
                extra={"component": "invocation", "operation": "spawn", "result": "error", "error_class": type(exc).__name__},
            )
            return

        assert process.stdout is not None and process.stderr is not None
        self._touch()
        queue: asyncio.Queue[object] = asyncio.Queue()
        pumps = [
            asyncio.create_task(self._pump_stdout(process.stdout, queue)),
            asyncio.create_task(self._pump_stderr(process.stderr)),
        ]
        closer = asyncio.create_task(self._await_close(process, pumps, queue))
        watchdog = asyncio.create_task(self._watch_inactivity(process, queue))
        terminal: object = None
        try:
            while True:
                item = await queue.get()
                if item is _ATTEMPT_CLOSED or item is _ATTEMPT_TIMED_OUT:
                    terminal = item
                    break
                assert isinstance(item, InvocationEvent)
                yield item
        finally:
            self._finish()
            watchdog.cancel()
            kill_process(process)
            if not closer.done():
                for task in (*pumps, closer):
                    task.cancel()
            await asyncio.gather(*pumps, closer, watchdog, return_exceptions=True)
            self.exit_code = await process.wait()

        duration_ms = int((time.monotonic() - started) * 1000)
        if terminal is _ATTEMPT_TIMED_OUT:
            if self.result is None:
                self.error = InvocationTimeoutError(
                    f"Agent invocation timed out: no output for {self._inactivity_timeout:g}s"
                )
            LOGGER.warning(
                "Agent process killed after %gs of inactivity",
                self._inactivity_timeout,
                extra={
                    "component": "invocation",
                    "operation": "watchdog",
                    "result": "timeout",
                    "session_id": self.session_id or "",
                    "duration_ms": duration_ms,
                },
            )
            return

        self._finalize_exit()
        LOGGER.info(
            "Agent process exited with code %s",
            self.exit_code,
            extra={
                "component": "invocation",
                "operation": "attempt",
                "result": "ok" if self.error is None else self.error.failure_class,
                "session_id": self.session_id or "",
                "duration_ms": duration_ms,
                "error_class": "" if self.error is None else type(self.error).__name__,
            },
        )

    def _finalize_exit(self) -> None:
        # A parsed result wins over the exit code.
        if self.result is not None:
            return
        # Negative codes mean the process died by signal; treated like a clean close.
        if self.exit_code is None or self.exit_code <= 0:
            return
        stdout = self.stdout_text
        stderr = self.stderr_text
        self.failure = classify_failure(
            combined_output(stderr, stdout),
            exit_code=self.exit_code,
            resumed=self.resumed,
        )
        self.error = failure_error(self.failure, stderr=stderr, stdout=stdout, exit_code=self.exit_code)


async def invoke_agent(
    prompt: str,
    *,
    sandbox: SandboxConfig,
    session_id: str | None = None,
    spawn: SpawnFn = spawn_command,
    inactivity_timeout: float | None = None,
    check_interval: float | None = None,
) -> AsyncIterator[InvocationEvent]:
    resume_session_id = session_id or None
    for attempt_number in range(1, MAX_INVOCATION_ATTEMPTS + 1):
        attempt = InvocationAttempt(
            prompt,
            sandbox=sandbox,
            session_id=resume_session_id,
            spawn=spawn,
            inactivity_timeout=inactivity_timeout,
            check_interval=check_interval,
        )
        events = attempt.events()
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()
        if attempt.error is None:
            break
        if isinstance(attempt.error, ResumeFailedError) and attempt_number < MAX_INVOCATION_ATTEMPTS:
            LOGGER.info(
                "Resume of session %s failed, retrying with a fresh session",
                resume_session_id,
                extra={"component": "invocation", "operation": "resume", "result": "retry", "session_id": resume_session_id or ""},
            )
            yield InvocationEvent(EVENT_RESUME_FAILED, error=attempt.error)
            resume_session_id = None
            continue
        yield InvocationEvent(EVENT_ERROR, error=attempt.error)
        break
    yield InvocationEvent(EVENT_CLOSE)


class AgentInvoker:
    """Binds sandbox settings and the spawn seam so callers only pass prompt and session."""

    def __init__(self, *, sandbox: SandboxConfig, spawn: SpawnFn = spawn_command) -> None:
        self._sandbox = sandbox
        self._spawn = spawn

    def stream(self, prompt: str, *, session_id: str | None = None) -> AsyncIterator[InvocationEvent]:
        return invoke_agent(prompt, sandbox=self._sandbox, session_id=session_id, spawn=self._spawn)
