from __future__ import annotations

from typing import Any

from fastapi import HTTPException

from sandbox_hub.store.thread_store import Thread, ThreadStore


DEFAULT_THREAD_TITLE = "New conversation"


class ThreadDomain:
    def __init__(self, *, store: ThreadStore) -> None:
        self._store = store

    def list_threads(self) -> list[Thread]:
        return self._store.list_threads()

    def create_thread(self, title: Any = None) -> Thread:
        resolved = str(title).strip() if isinstance(title, str) else ""
        return self._store.create_thread(resolved or DEFAULT_THREAD_TITLE)

    def require_thread(self, thread_id: str) -> Thread:
        thread = self._store.get_thread(thread_id)
        if thread is None:
            raise HTTPException(status_code=404, detail="Thread not found")
        return thread

    def thread_messages(self, thread_id: str) -> list[dict[str, Any]]:
        self.require_thread(thread_id)
        return [message.payload() for message in self._store.get_messages(thread_id)]

    def delete_thread(self, thread_id: str) -> None:
        if not self._store.delete_thread(thread_id):
            raise HTTPException(status_code=404, detail="Thread not found")
