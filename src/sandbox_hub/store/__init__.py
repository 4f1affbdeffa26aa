from sandbox_hub.store.state_store import HubStateStore
from sandbox_hub.store.thread_store import Message, Thread, ThreadStore

__all__ = ["HubStateStore", "Message", "Thread", "ThreadStore"]
