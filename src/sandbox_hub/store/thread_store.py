"""Thread and message persistence on top of the JSON hub state file."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Callable

from sandbox_hub.store.state_store import HubStateStore


STATE_VERSION = 1
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
SUPPORTED_MESSAGE_ROLES = {ROLE_USER, ROLE_ASSISTANT}


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_thread_state() -> dict[str, Any]:
    return {"version": STATE_VERSION, "threads": {}, "messages": {}}


@dataclass(frozen=True)
class Thread:
    id: str
    title: str
    session_id: str | None
    created_at: int
    updated_at: int

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Thread":
        session_id = record.get("session_id")
        return cls(
            id=str(record["id"]),
            title=str(record.get("title") or ""),
            session_id=str(session_id) if session_id else None,
            created_at=int(record.get("created_at") or 0),
            updated_at=int(record.get("updated_at") or 0),
        )

    def payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "sessionId": self.session_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class Message:
    id: str
    thread_id: str
    role: str
    content: str
    created_at: int

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Message":
        return cls(
            id=str(record["id"]),
            thread_id=str(record["thread_id"]),
            role=str(record["role"]),
            content=str(record.get("content") or ""),
            created_at=int(record.get("created_at") or 0),
        )

    def payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at,
        }


def normalize_thread_state(loaded: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    normalized = dict(loaded)
    changed = False
    if not isinstance(normalized.get("threads"), dict):
        normalized["threads"] = {}
        changed = True
    if not isinstance(normalized.get("messages"), dict):
        normalized["messages"] = {}
        changed = True
    if normalized.get("version") != STATE_VERSION:
        normalized["version"] = STATE_VERSION
        changed = True
    return normalized, changed


class ThreadStore:
    """Storage collaborator used by the chat orchestrator and the thread routes.

    Every mutation is a read-modify-write of the whole state file guarded by
    ``_mutation_lock``; REST handlers run on FastAPI's threadpool while chat
    turns run on the event loop.
    """

    def __init__(self, state_store: HubStateStore, *, clock: Callable[[], int] = _now_ms) -> None:
        self._state_store = state_store
        self._clock = clock
        self._mutation_lock = Lock()

    @classmethod
    def from_state_file(cls, state_file: Path, *, clock: Callable[[], int] = _now_ms) -> "ThreadStore":
        return cls(
            HubStateStore(state_file=state_file, lock=Lock(), new_state_factory=new_thread_state),
            clock=clock,
        )

    def _load(self) -> dict[str, Any]:
        return self._state_store.load(normalizer=normalize_thread_state)

    def _save(self, state: dict[str, Any]) -> None:
        self._state_store.save_raw(state)

    def create_thread(self, title: str) -> Thread:
        now = self._clock()
        record = {
            "id": str(uuid.uuid4()),
            "title": str(title),
            "session_id": None,
            "created_at": now,
            "updated_at": now,
        }
        with self._mutation_lock:
            state = self._load()
            state["threads"][record["id"]] = record
            state["messages"][record["id"]] = []
            self._save(state)
        return Thread.from_record(record)

    def get_thread(self, thread_id: str) -> Thread | None:
        record = self._load()["threads"].get(str(thread_id))
        if not isinstance(record, dict):
            return None
        return Thread.from_record(record)

    def list_threads(self) -> list[Thread]:
        threads = [Thread.from_record(record) for record in self._load()["threads"].values() if isinstance(record, dict)]
        return sorted(threads, key=lambda thread: thread.updated_at, reverse=True)

    def get_messages(self, thread_id: str) -> list[Message]:
        records = self._load()["messages"].get(str(thread_id)) or []
        messages = [Message.from_record(record) for record in records if isinstance(record, dict)]
        return sorted(messages, key=lambda message: message.created_at)

    def add_message(self, thread_id: str, role: str, content: str) -> Message:
        if role not in SUPPORTED_MESSAGE_ROLES:
            raise ValueError(f"Unsupported message role: {role!r}")
        now = self._clock()
        record = {
            "id": str(uuid.uuid4()),
            "thread_id": str(thread_id),
            "role": role,
            "content": str(content),
            "created_at": now,
        }
        with self._mutation_lock:
            state = self._load()
            thread = state["threads"].get(str(thread_id))
            if not isinstance(thread, dict):
                raise KeyError(f"Unknown thread: {thread_id}")
            state["messages"].setdefault(str(thread_id), []).append(record)
            thread["updated_at"] = now
            self._save(state)
        return Message.from_record(record)

    def _update_thread(self, thread_id: str, **fields: Any) -> None:
        with self._mutation_lock:
            state = self._load()
            thread = state["threads"].get(str(thread_id))
            if not isinstance(thread, dict):
                raise KeyError(f"Unknown thread: {thread_id}")
            thread.update(fields)
            thread["updated_at"] = self._clock()
            self._save(state)

    def update_session_id(self, thread_id: str, session_id: str) -> None:
        self._update_thread(thread_id, session_id=str(session_id))

    def update_title(self, thread_id: str, title: str) -> None:
        self._update_thread(thread_id, title=str(title))

    def delete_thread(self, thread_id: str) -> bool:
        with self._mutation_lock:
            state = self._load()
            if str(thread_id) not in state["threads"]:
                return False
            del state["threads"][str(thread_id)]
            state["messages"].pop(str(thread_id), None)
            self._save(state)
        return True
