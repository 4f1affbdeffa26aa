"""Sandbox Hub service modules."""

__all__ = [
    "chat_service",
    "health_service",
    "thread_service",
]
