from __future__ import annotations

from typing import Any


class ThreadService:
    def __init__(self, *, domain: Any) -> None:
        self._domain = domain

    def list_threads(self) -> dict[str, Any]:
        return {"threads": [thread.payload() for thread in self._domain.list_threads()]}

    def create_thread(self, title: Any = None) -> dict[str, Any]:
        return {"thread": self._domain.create_thread(title).payload()}

    def thread_messages(self, thread_id: str) -> dict[str, Any]:
        return {"messages": self._domain.thread_messages(thread_id)}

    def delete_thread(self, thread_id: str) -> dict[str, Any]:
        self._domain.delete_thread(thread_id)
        return {"success": True}


__all__ = ["ThreadService"]
