from __future__ import annotations

import asyncio
import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import Mock

from fastapi import HTTPException

import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from sandbox_hub.domains.thread_domain import DEFAULT_THREAD_TITLE, ThreadDomain
from sandbox_hub.runtime.probe import PROBE_STATUS_AUTH_FAILED, PROBE_STATUS_HEALTHY, ProbeResult
from sandbox_hub.services.health_service import HealthService, SandboxHealth
from sandbox_hub.services.thread_service import ThreadService
from sandbox_hub.store import ThreadStore


class ThreadServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.store = ThreadStore.from_state_file(Path(tmp.name) / "threads.json")
        self.service = ThreadService(domain=ThreadDomain(store=self.store))

    def test_create_thread_defaults_title(self) -> None:
        self.assertEqual(self.service.create_thread()["thread"]["title"], DEFAULT_THREAD_TITLE)
        self.assertEqual(self.service.create_thread("   ")["thread"]["title"], DEFAULT_THREAD_TITLE)
        self.assertEqual(self.service.create_thread(42)["thread"]["title"], DEFAULT_THREAD_TITLE)
        self.assertEqual(self.service.create_thread(" Planning ")["thread"]["title"], "Planning")

    def test_list_threads_wraps_payloads(self) -> None:
        created = self.service.create_thread("Planning")["thread"]
        listed = self.service.list_threads()
        self.assertEqual(listed, {"threads": [created]})
        self.assertEqual(set(created), {"id", "title", "sessionId", "createdAt", "updatedAt"})

    def test_thread_messages_requires_existing_thread(self) -> None:
        with self.assertRaises(HTTPException) as raised:
            self.service.thread_messages("missing")
        self.assertEqual(raised.exception.status_code, 404)
        self.assertEqual(raised.exception.detail, "Thread not found")

    def test_thread_messages_returns_payloads(self) -> None:
        thread_id = self.service.create_thread("Planning")["thread"]["id"]
        self.store.add_message(thread_id, "user", "hello")
        messages = self.service.thread_messages(thread_id)["messages"]
        self.assertEqual([m["content"] for m in messages], ["hello"])
        self.assertEqual(messages[0]["threadId"], thread_id)

    def test_delete_thread_reports_success_then_not_found(self) -> None:
        thread_id = self.service.create_thread("Planning")["thread"]["id"]
        self.assertEqual(self.service.delete_thread(thread_id), {"success": True})
        with self.assertRaises(HTTPException) as raised:
            self.service.delete_thread(thread_id)
        self.assertEqual(raised.exception.status_code, 404)

    def test_thread_domain_delegates_to_store(self) -> None:
        store = SimpleNamespace(get_thread=Mock(return_value=None), delete_thread=Mock(return_value=False))
        domain = ThreadDomain(store=store)
        with self.assertRaises(HTTPException):
            domain.require_thread("t-1")
        store.get_thread.assert_called_once_with("t-1")


class HealthServiceTests(unittest.TestCase):
    def test_health_payload_starts_unknown(self) -> None:
        service = HealthService(health=SandboxHealth(), probe=Mock())
        self.assertEqual(
            service.health_payload(),
            {"status": "ok", "sandbox": {"status": "unknown", "message": "Sandbox has not been probed yet"}},
        )

    def test_refresh_caches_latest_probe_result(self) -> None:
        results = [
            ProbeResult(PROBE_STATUS_HEALTHY, "ready"),
            ProbeResult(PROBE_STATUS_AUTH_FAILED, "logged out"),
        ]

        async def probe() -> ProbeResult:
            return results.pop(0)

        health = SandboxHealth()
        service = HealthService(health=health, probe=probe)

        self.assertEqual(asyncio.run(service.refresh()).status, PROBE_STATUS_HEALTHY)
        self.assertEqual(health.status, PROBE_STATUS_HEALTHY)
        asyncio.run(service.refresh())
        self.assertEqual(service.health_payload()["sandbox"], {"status": "auth_failed", "message": "logged out"})


if __name__ == "__main__":
    unittest.main()
