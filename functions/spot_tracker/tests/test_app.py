import os
import tempfile
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient

from spot_tracker.app import create_app
from spot_tracker.backup import BackupScheduler
from spot_tracker.clock import FixedClock
from spot_tracker.coordinator import FetchCoordinator
from spot_tracker.db import InMemoryEventStore, SqlEventStore
from spot_tracker.dependencies import (
    get_backup_scheduler,
    get_coordinator,
    get_event_store,
)
from spot_tracker.errors import HttpError
from spot_tracker.mailer import InMemoryMailer
from spot_tracker.spot_api import InMemoryFeedClient
from spot_tracker.types import Event, MessageType


def debug_settings(password="hunter2"):
    return type("Settings", (), {"debug_password": password})()


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        # 13:30 UTC is 06:30 in Los Angeles, inside the default backup window.
        self.clock = FixedClock(datetime(2026, 7, 1, 13, 30, tzinfo=timezone.utc))
        self.store = InMemoryEventStore(clock=self.clock)
        self.feed = InMemoryFeedClient(
            events=[
                Event("A", MessageType.UNLIMITED_TRACK, None, 100, 34.0, -118.0),
                Event("B", MessageType.CUSTOM, "Resupply", 200, 34.1, -118.1),
            ]
        )
        self.coordinator = FetchCoordinator(
            store=self.store, client=self.feed, clock=self.clock
        )
        self.mailer = InMemoryMailer()
        self.scheduler = BackupScheduler(
            store=self.store,
            coordinator=self.coordinator,
            mailer=self.mailer,
            recipients=["backup@example.com"],
            clock=self.clock,
        )

        self.app = app = create_app()
        app.dependency_overrides[get_event_store] = lambda: self.store
        app.dependency_overrides[get_coordinator] = lambda: self.coordinator
        app.dependency_overrides[get_backup_scheduler] = lambda: self.scheduler
        self.client = TestClient(app)

    def test_messages_then_cache(self):
        response = self.client.get("/api/messages")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertFalse(payload["fromCache"])
        self.assertEqual([m["id"] for m in payload["messages"]], ["B", "A"])
        self.assertEqual(payload["lastApiResponseStatus"], 200)
        self.assertEqual(
            payload["lastApiRequestTime"], int(self.clock.now().timestamp() * 1000)
        )

        cached = self.client.get("/api/messages").json()
        self.assertTrue(cached["fromCache"])
        self.assertEqual(cached["messages"], payload["messages"])
        self.assertEqual(self.feed.calls, 1)

    def test_messages_upstream_failure_is_502(self):
        self.feed.error = HttpError("SPOT feed answered HTTP 503", status_code=503)

        response = self.client.get("/api/messages")

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["detail"]["statusCode"], 503)
        self.assertEqual(self.store.last_api_call_info().status, 503)

    def test_backup_runs_once(self):
        first = self.client.get("/api/backup")
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()["reason"], "backed-up")
        self.assertEqual(len(first.json()["messages"]), 2)

        second = self.client.get("/api/backup")
        self.assertEqual(second.status_code, 200)
        self.assertEqual(
            second.json(), {"ran": False, "reason": "already-backed-up-today"}
        )
        self.assertEqual(len(self.mailer.sent), 1)

    def test_backup_failure_is_structured(self):
        self.mailer.fail_with = "quota exceeded"

        response = self.client.get("/api/backup")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["reason"], "failed")
        self.assertEqual(response.json()["error"], "quota exceeded")
        self.assertNotIn("messages", response.json())

    def test_download_returns_attachment(self):
        self.client.get("/api/messages")

        response = self.client.get("/api/download")

        self.assertEqual(response.status_code, 200)
        self.assertIn("attachment;", response.headers["content-disposition"])
        self.assertIn("whereiscurtis_backup_", response.headers["content-disposition"])
        self.assertEqual([m["id"] for m in response.json()], ["B", "A"])

    def test_download_raw_without_database_file_is_404(self):
        response = self.client.get("/api/download", params={"raw": 1})
        self.assertEqual(response.status_code, 404)

    def test_download_raw_returns_sqlite_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = SqlEventStore(
                f"sqlite:///{os.path.join(tmp, 'spot.sqlite3')}", clock=self.clock
            )
            store.upsert_events(self.feed.events)
            self.app.dependency_overrides[get_event_store] = lambda: store

            response = self.client.get("/api/download", params={"raw": 1})

            self.assertEqual(response.status_code, 200)
            self.assertTrue(response.content.startswith(b"SQLite format 3\x00"))
            disposition = response.headers["content-disposition"]
            self.assertIn("whereiscurtis_backup_", disposition)
            self.assertIn(".sqlite3", disposition)
            store.engine.dispose()

    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    @patch("spot_tracker.routes.get_settings")
    def test_debug_requires_password(self, mock_settings):
        mock_settings.return_value = debug_settings()

        missing = self.client.get("/api/debug/replay")
        wrong = self.client.get("/api/debug/replay", params={"password": "nope"})

        self.assertEqual(missing.status_code, 401)
        self.assertEqual(wrong.status_code, 401)

    @patch("spot_tracker.routes.get_settings")
    def test_debug_disabled_without_password(self, mock_settings):
        mock_settings.return_value = debug_settings(password=None)
        response = self.client.post("/api/debug/reset", params={"password": "x"})
        self.assertEqual(response.status_code, 404)

    @patch("spot_tracker.routes.get_settings")
    def test_debug_replay(self, mock_settings):
        mock_settings.return_value = debug_settings()
        params = {"password": "hunter2"}

        self.assertEqual(self.client.get("/api/debug/replay", params=params).status_code, 404)

        self.client.get("/api/messages")
        self.store.events.clear()
        response = self.client.get("/api/debug/replay", params=params)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["messages"]), 2)
        self.assertEqual(len(self.store.query_events()), 2)

    @patch("spot_tracker.routes.get_settings")
    def test_debug_upload_and_reset(self, mock_settings):
        mock_settings.return_value = debug_settings()
        params = {"password": "hunter2"}
        body = {
            "messages": [
                {
                    "id": "X",
                    "messageType": "OK",
                    "unixTime": 500,
                    "latitude": 1.5,
                    "longitude": 2.5,
                    "batteryState": "LOW",
                }
            ]
        }

        uploaded = self.client.post("/api/debug/upload", params=params, json=body)
        self.assertEqual(uploaded.status_code, 200)
        self.assertEqual(uploaded.json(), {"stored": 1})
        self.assertEqual([e.id for e in self.store.query_events()], ["X"])

        invalid = self.client.post(
            "/api/debug/upload",
            params=params,
            json={"messages": [{"id": "Y", "messageType": "OK"}]},
        )
        self.assertEqual(invalid.status_code, 422)

        reset = self.client.post("/api/debug/reset", params=params)
        self.assertEqual(reset.status_code, 200)
        self.assertEqual(self.store.query_events(), [])


if __name__ == "__main__":
    unittest.main()
