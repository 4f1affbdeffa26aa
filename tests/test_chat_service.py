from __future__ import annotations

import asyncio
import itertools
import json
import tempfile
import unittest
from pathlib import Path
from typing import Any, AsyncIterator

from sandbox_core.errors import InvocationTimeoutError, ResumeFailedError
from sandbox_hub.runtime.invocation import (
    EVENT_CLOSE,
    EVENT_ERROR,
    EVENT_RESULT,
    EVENT_RESUME_FAILED,
    EVENT_TEXT,
    InvocationEvent,
)
from sandbox_hub.runtime.stream_parser import AgentResult
from sandbox_hub.services.chat_service import (
    ChatService,
    FrameValidationError,
    generate_title,
    parse_client_frame,
)
from sandbox_hub.store import ThreadStore


def _frame(thread_id: str, content: str) -> str:
    return json.dumps({"type": "message", "threadId": thread_id, "content": content})


def _answer(text: str, session_id: str) -> list[InvocationEvent]:
    return [
        InvocationEvent(EVENT_TEXT, text=text),
        InvocationEvent(EVENT_RESULT, result=AgentResult(result=text, session_id=session_id)),
        InvocationEvent(EVENT_CLOSE),
    ]


class ScriptedInvoker:
    """Replays canned invocation events; optionally holds the stream open until released."""

    def __init__(self, *turns: list[InvocationEvent], hold: bool = False) -> None:
        self.turns = list(turns)
        self.calls: list[tuple[str, str | None]] = []
        self.release = asyncio.Event() if hold else None

    def __call__(self, prompt: str, *, session_id: str | None = None) -> AsyncIterator[InvocationEvent]:
        self.calls.append((prompt, session_id))
        events = self.turns[min(len(self.calls), len(self.turns)) - 1]
        return self._stream(events)

    async def _stream(self, events: list[InvocationEvent]) -> AsyncIterator[InvocationEvent]:
        if self.release is not None:
            await self.release.wait()
        for event in events:
            yield event


def test_generate_title_keeps_short_content() -> None:
    assert generate_title("  Fix the build  ") == "Fix the build"


def test_generate_title_truncates_on_word_boundary() -> None:
    content = "Explain how the inactivity watchdog interacts with the resume retry in detail please"
    title = generate_title(content)
    assert title == "Explain how the inactivity watchdog interacts with the..."
    assert len(title) <= 63


def test_generate_title_hard_cuts_single_long_word() -> None:
    assert generate_title("x" * 80) == "x" * 60 + "..."


def test_parse_client_frame_validation() -> None:
    assert parse_client_frame(_frame("t-1", "hi")).thread_id == "t-1"
    for raw, message in [
        ("{oops", "Invalid JSON"),
        (json.dumps({"type": "ping"}), "Invalid message format"),
        (json.dumps({"type": "message", "threadId": "t-1", "content": ""}), "Invalid message format"),
        (json.dumps({"type": "message", "content": "hi"}), "Invalid message format"),
        (json.dumps(["message"]), "Invalid message format"),
    ]:
        try:
            parse_client_frame(raw)
        except FrameValidationError as exc:
            assert str(exc) == message
        else:
            raise AssertionError(f"expected {message!r} for {raw!r}")


class ChatSessionTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        ticks = itertools.count(1_000)
        self.state_file = Path(tmp.name) / "threads.json"
        self.store = ThreadStore.from_state_file(self.state_file, clock=lambda: next(ticks))
        self.thread = self.store.create_thread("New conversation")
        self.sent: list[dict[str, Any]] = []

    async def _send(self, frame: dict[str, Any]) -> None:
        self.sent.append(frame)

    def _session(self, invoker: ScriptedInvoker):
        return ChatService(threads=self.store, invoke=invoker).open_session(self._send)

    def test_full_turn_streams_tokens_and_persists_answer(self) -> None:
        invoker = ScriptedInvoker(_answer("Hi there", "sess-1"))

        async def run() -> None:
            session = self._session(invoker)
            turn = await session.handle_frame(_frame(self.thread.id, "Hello"))
            self.assertIsNotNone(turn)
            await session.wait_idle()
            self.assertFalse(session.streaming)

        asyncio.run(run())

        messages = self.store.get_messages(self.thread.id)
        self.assertEqual([(m.role, m.content) for m in messages], [("user", "Hello"), ("assistant", "Hi there")])
        self.assertEqual(
            self.sent,
            [{"type": "token", "text": "Hi there"}, {"type": "done", "messageId": messages[1].id}],
        )
        thread = self.store.get_thread(self.thread.id)
        assert thread is not None
        self.assertEqual(thread.session_id, "sess-1")
        self.assertEqual(thread.title, "Hello")
        self.assertEqual(invoker.calls, [("Hello", None)])

    def test_second_turn_resumes_stored_session_and_keeps_title(self) -> None:
        invoker = ScriptedInvoker(_answer("one", "sess-1"), _answer("two", "sess-2"))

        async def run() -> None:
            session = self._session(invoker)
            await session.handle_frame(_frame(self.thread.id, "First question"))
            await session.wait_idle()
            await session.handle_frame(_frame(self.thread.id, "Second question"))
            await session.wait_idle()

        asyncio.run(run())

        self.assertEqual(invoker.calls, [("First question", None), ("Second question", "sess-1")])
        thread = self.store.get_thread(self.thread.id)
        assert thread is not None
        self.assertEqual(thread.title, "First question")
        self.assertEqual(thread.session_id, "sess-2")

    def test_frames_received_while_streaming_are_dropped(self) -> None:
        invoker = ScriptedInvoker(_answer("only once", "sess-1"), hold=True)

        async def run() -> None:
            session = self._session(invoker)
            first = await session.handle_frame(_frame(self.thread.id, "first"))
            self.assertTrue(session.streaming)
            second = await session.handle_frame(_frame(self.thread.id, "second"))
            self.assertIsNone(second)
            assert invoker.release is not None
            invoker.release.set()
            assert first is not None
            await first

        asyncio.run(run())

        self.assertEqual(invoker.calls, [("first", None)])
        self.assertEqual([m.content for m in self.store.get_messages(self.thread.id)], ["first", "only once"])
        self.assertEqual([frame["type"] for frame in self.sent], ["token", "done"])

    def test_invalid_frames_report_errors_without_invoking(self) -> None:
        invoker = ScriptedInvoker(_answer("unused", "sess-1"))

        async def run() -> None:
            session = self._session(invoker)
            await session.handle_frame("{oops")
            await session.handle_frame(json.dumps({"type": "message", "threadId": self.thread.id}))
            await session.handle_frame(_frame("missing-thread", "hi"))

        asyncio.run(run())

        self.assertEqual(
            self.sent,
            [
                {"type": "error", "message": "Invalid JSON"},
                {"type": "error", "message": "Invalid message format"},
                {"type": "error", "message": "Thread not found"},
            ],
        )
        self.assertEqual(invoker.calls, [])
        self.assertEqual(self.store.get_messages(self.thread.id), [])

    def test_error_event_releases_lock_and_skips_assistant_message(self) -> None:
        timeout = InvocationTimeoutError("Agent invocation timed out: no output for 600s")
        invoker = ScriptedInvoker(
            [InvocationEvent(EVENT_ERROR, error=timeout), InvocationEvent(EVENT_CLOSE)],
            _answer("recovered", "sess-2"),
        )

        async def run() -> None:
            session = self._session(invoker)
            await session.handle_frame(_frame(self.thread.id, "hello"))
            await session.wait_idle()
            self.assertFalse(session.streaming)
            await session.handle_frame(_frame(self.thread.id, "again"))
            await session.wait_idle()

        asyncio.run(run())

        self.assertEqual(
            self.sent[0],
            {"type": "error", "message": "timeout: Agent invocation timed out: no output for 600s"},
        )
        self.assertEqual(self.sent[-1]["type"], "done")
        roles = [m.role for m in self.store.get_messages(self.thread.id)]
        self.assertEqual(roles, ["user", "user", "assistant"])

    def test_resume_failure_notice_is_not_forwarded_to_client(self) -> None:
        self.store.update_session_id(self.thread.id, "sess-stale")
        invoker = ScriptedInvoker(
            [InvocationEvent(EVENT_RESUME_FAILED, error=ResumeFailedError("Resume failed: gone")), *_answer("fresh", "sess-new")]
        )

        async def run() -> None:
            session = self._session(invoker)
            await session.handle_frame(_frame(self.thread.id, "continue"))
            await session.wait_idle()

        asyncio.run(run())

        self.assertEqual(invoker.calls, [("continue", "sess-stale")])
        self.assertEqual([frame["type"] for frame in self.sent], ["token", "done"])
        thread = self.store.get_thread(self.thread.id)
        assert thread is not None
        self.assertEqual(thread.session_id, "sess-new")

    def test_close_without_result_still_releases_lock(self) -> None:
        invoker = ScriptedInvoker([InvocationEvent(EVENT_TEXT, text="partial"), InvocationEvent(EVENT_CLOSE)])

        async def run() -> None:
            session = self._session(invoker)
            await session.handle_frame(_frame(self.thread.id, "hello"))
            await session.wait_idle()
            self.assertFalse(session.streaming)

        asyncio.run(run())

        self.assertEqual(self.sent, [{"type": "token", "text": "partial"}])

    def test_sessions_on_different_connections_are_independent(self) -> None:
        invoker = ScriptedInvoker(_answer("a", "sess-a"), hold=True)
        other = self.store.create_thread("other")

        async def run() -> None:
            service = ChatService(threads=self.store, invoke=invoker)
            first = service.open_session(self._send)
            second = service.open_session(self._send)
            await first.handle_frame(_frame(self.thread.id, "one"))
            await second.handle_frame(_frame(other.id, "two"))
            await asyncio.sleep(0.01)
            self.assertEqual(len(invoker.calls), 2)
            assert invoker.release is not None
            invoker.release.set()
            await first.wait_idle()
            await second.wait_idle()

        asyncio.run(run())

        self.assertEqual([frame["type"] for frame in self.sent].count("done"), 2)

    def test_thread_deleted_mid_turn_reports_error_frame(self) -> None:
        store = self.store
        thread_id = self.thread.id

        class DeletingInvoker:
            def __call__(self, prompt: str, *, session_id: str | None = None) -> AsyncIterator[InvocationEvent]:
                return self._stream()

            async def _stream(self) -> AsyncIterator[InvocationEvent]:
                yield InvocationEvent(EVENT_TEXT, text="hi")
                store.delete_thread(thread_id)
                yield InvocationEvent(EVENT_RESULT, result=AgentResult(result="hi", session_id="sess-1"))
                yield InvocationEvent(EVENT_CLOSE)

        async def run() -> None:
            session = ChatService(threads=store, invoke=DeletingInvoker()).open_session(self._send)
            await session.handle_frame(_frame(thread_id, "hello"))
            await session.wait_idle()
            self.assertFalse(session.streaming)

        asyncio.run(run())

        self.assertEqual(
            self.sent,
            [{"type": "token", "text": "hi"}, {"type": "error", "message": "Thread not found"}],
        )
        self.assertIsNone(store.get_thread(thread_id))

    def test_unreadable_state_reports_error_frame(self) -> None:
        invoker = ScriptedInvoker(_answer("unused", "sess-1"))
        self.state_file.write_text("{corrupt", encoding="utf-8")

        async def run() -> None:
            session = self._session(invoker)
            self.assertIsNone(await session.handle_frame(_frame(self.thread.id, "hello")))

        asyncio.run(run())

        self.assertEqual(self.sent, [{"type": "error", "message": "Internal server error"}])
        self.assertEqual(invoker.calls, [])


if __name__ == "__main__":
    unittest.main()
