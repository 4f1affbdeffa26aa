"""Per-connection chat orchestration: one agent turn at a time per WebSocket."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sandbox_hub.runtime.invocation import (
    EVENT_ERROR,
    EVENT_RESULT,
    EVENT_RESUME_FAILED,
    EVENT_TEXT,
    InvocationEvent,
)
from sandbox_hub.store.thread_store import ROLE_ASSISTANT, ROLE_USER, ThreadStore


LOGGER = logging.getLogger("sandbox_hub.chat")

FRAME_TYPE_MESSAGE = "message"
FRAME_TYPE_TOKEN = "token"
FRAME_TYPE_DONE = "done"
FRAME_TYPE_ERROR = "error"
TITLE_MAX_CHARS = 60
TITLE_ELLIPSIS = "..."

InvokeFn = Callable[..., AsyncGenerator[InvocationEvent, None]]
SendFn = Callable[[dict[str, Any]], Awaitable[None]]


def generate_title(content: str) -> str:
    trimmed = content.strip()
    if len(trimmed) <= TITLE_MAX_CHARS:
        return trimmed
    truncated = trimmed[:TITLE_MAX_CHARS]
    last_space = truncated.rfind(" ")
    if last_space > 0:
        return truncated[:last_space] + TITLE_ELLIPSIS
    return truncated + TITLE_ELLIPSIS


class FrameValidationError(ValueError):
    pass


@dataclass(frozen=True)
class ChatFrame:
    thread_id: str
    content: str


def parse_client_frame(raw: str | bytes) -> ChatFrame:
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise FrameValidationError("Invalid JSON") from exc
    if not isinstance(payload, dict) or payload.get("type") != FRAME_TYPE_MESSAGE:
        raise FrameValidationError("Invalid message format")
    thread_id = payload.get("threadId")
    content = payload.get("content")
    if not isinstance(thread_id, str) or not thread_id or not isinstance(content, str) or not content:
        raise FrameValidationError("Invalid message format")
    return ChatFrame(thread_id=thread_id, content=content)


class ChatSession:
    """State for one client connection.

    ``streaming`` is true while this connection's agent turn is outstanding;
    frames arriving meanwhile are dropped, not queued.
    """

    def __init__(self, *, threads: ThreadStore, invoke: InvokeFn, send: SendFn) -> None:
        self._threads = threads
        self._invoke = invoke
        self._send = send
        self._turn: asyncio.Task[None] | None = None
        self._turn_serial = 0
        self._lock_owner: int | None = None

    @property
    def streaming(self) -> bool:
        return self._lock_owner is not None

    def _acquire(self) -> int:
        self._turn_serial += 1
        self._lock_owner = self._turn_serial
        return self._turn_serial

    def _release(self, serial: int) -> None:
        if self._lock_owner == serial:
            self._lock_owner = None

    async def _send_error(self, message: str) -> None:
        await self._send({"type": FRAME_TYPE_ERROR, "message": message})

    async def handle_frame(self, raw: str | bytes) -> asyncio.Task[None] | None:
        """Process one inbound frame; returns the started turn, if any."""
        if self.streaming:
            LOGGER.debug("Dropping frame received while a turn is streaming", extra={"component": "chat", "operation": "receive", "result": "dropped"})
            return None
        try:
            frame = parse_client_frame(raw)
        except FrameValidationError as exc:
            await self._send_error(str(exc))
            return None

        try:
            thread = self._threads.get_thread(frame.thread_id)
        except (OSError, RuntimeError) as exc:
            LOGGER.exception(
                "Failed to load thread",
                extra={"component": "chat", "operation": "load_thread", "thread_id": frame.thread_id, "error_class": type(exc).__name__},
            )
            await self._send_error("Internal server error")
            return None
        if thread is None:
            await self._send_error("Thread not found")
            return None

        try:
            self._threads.add_message(thread.id, ROLE_USER, frame.content)
            if len(self._threads.get_messages(thread.id)) == 1:
                self._threads.update_title(thread.id, generate_title(frame.content))
        except (KeyError, OSError, RuntimeError) as exc:
            LOGGER.exception(
                "Failed to persist user message",
                extra={"component": "chat", "operation": "persist_user_message", "thread_id": thread.id, "error_class": type(exc).__name__},
            )
            await self._send_error("Internal server error")
            return None

        serial = self._acquire()
        self._turn = asyncio.create_task(self._run_turn(serial, thread.id, frame.content, thread.session_id))
        return self._turn

    async def _run_turn(self, serial: int, thread_id: str, content: str, session_id: str | None) -> None:
        started = time.monotonic()
        settled = False
        log_extra = {"component": "chat", "operation": "turn", "thread_id": thread_id, "session_id": session_id or ""}
        stream = self._invoke(content, session_id=session_id)
        try:
            async for event in stream:
                if event.kind == EVENT_TEXT:
                    await self._send({"type": FRAME_TYPE_TOKEN, "text": event.text})
                elif event.kind == EVENT_RESULT and event.result is not None and not settled:
                    try:
                        message = self._threads.add_message(thread_id, ROLE_ASSISTANT, event.result.result)
                        self._threads.update_session_id(thread_id, event.result.session_id)
                    except (KeyError, OSError, RuntimeError) as exc:
                        settled = True
                        LOGGER.exception(
                            "Failed to persist assistant message",
                            extra={**log_extra, "operation": "persist_assistant_message", "result": "error", "error_class": type(exc).__name__},
                        )
                        await self._send_error("Thread not found" if isinstance(exc, KeyError) else "Internal server error")
                        self._release(serial)
                        continue
                    await self._send({"type": FRAME_TYPE_DONE, "messageId": message.id})
                    settled = True
                    self._release(serial)
                    LOGGER.info(
                        "Turn completed",
                        extra={**log_extra, "result": "done", "duration_ms": int((time.monotonic() - started) * 1000)},
                    )
                elif event.kind == EVENT_ERROR and not settled:
                    settled = True
                    error = event.error
                    await self._send_error(error.client_message() if error is not None else "Agent invocation failed")
                    self._release(serial)
                    LOGGER.warning(
                        "Turn failed: %s",
                        error,
                        extra={
                            **log_extra,
                            "result": "error",
                            "error_class": type(error).__name__ if error is not None else "",
                            "duration_ms": int((time.monotonic() - started) * 1000),
                        },
                    )
                elif event.kind == EVENT_RESUME_FAILED:
                    LOGGER.info("Stored session could not be resumed; continuing in a fresh session", extra={**log_extra, "result": "resume_failed"})
        except Exception as exc:
            LOGGER.exception("Turn aborted", extra={**log_extra, "result": "error", "error_class": type(exc).__name__})
            if not settled:
                await self._send_error(str(exc) or "Internal server error")
        finally:
            await stream.aclose()
            self._release(serial)

    async def wait_idle(self) -> None:
        while self._turn is not None and not self._turn.done():
            await asyncio.wait({self._turn})


class ChatService:
    def __init__(self, *, threads: ThreadStore, invoke: InvokeFn) -> None:
        self._threads = threads
        self._invoke = invoke

    def open_session(self, send: SendFn) -> ChatSession:
        return ChatSession(threads=self._threads, invoke=self._invoke, send=send)


__all__ = [
    "ChatFrame",
    "ChatService",
    "ChatSession",
    "FrameValidationError",
    "generate_title",
    "parse_client_frame",
]
