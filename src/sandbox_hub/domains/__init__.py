from sandbox_hub.domains.thread_domain import ThreadDomain

__all__ = ["ThreadDomain"]
