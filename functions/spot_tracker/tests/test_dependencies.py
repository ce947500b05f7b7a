import threading
import time
import unittest
from unittest.mock import patch

from spot_tracker import dependencies
from spot_tracker.db import InMemoryEventStore


def in_memory_settings():
    return type(
        "Settings",
        (),
        {
            "use_in_memory_backends": True,
            "spot_feed_url": None,
            "request_timeout_seconds": 30,
            "freshness_window_seconds": 300,
            "api_call_retention": 100,
            "sendgrid_configured": False,
            "sendgrid_api_key": None,
            "sendgrid_from_email": None,
            "sendgrid_from_name": "Where is Curtis",
            "backup_recipients": [],
            "backup_timezone": "America/Los_Angeles",
            "backup_window_start_hour": 6,
            "backup_window_end_hour": 8,
        },
    )()


class DependencySingletonTests(unittest.TestCase):
    def setUp(self):
        dependencies.reset_dependencies()
        self.addCleanup(dependencies.reset_dependencies)

    @patch("spot_tracker.dependencies.get_settings")
    def test_concurrent_first_requests_share_one_coordinator(self, mock_settings):
        mock_settings.return_value = in_memory_settings()
        built = []

        def slow_store(**kwargs):
            time.sleep(0.05)
            store = InMemoryEventStore(**kwargs)
            built.append(store)
            return store

        coordinators = []
        with patch("spot_tracker.dependencies.InMemoryEventStore", side_effect=slow_store):
            threads = [
                threading.Thread(
                    target=lambda: coordinators.append(dependencies.get_coordinator())
                )
                for _ in range(2)
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        self.assertEqual(len(built), 1)
        self.assertEqual(len(coordinators), 2)
        self.assertIs(coordinators[0], coordinators[1])
        self.assertIs(coordinators[0].store, built[0])

    @patch("spot_tracker.dependencies.get_settings")
    def test_scheduler_reuses_shared_store_and_coordinator(self, mock_settings):
        mock_settings.return_value = in_memory_settings()

        scheduler = dependencies.get_backup_scheduler()

        self.assertIs(scheduler.store, dependencies.get_event_store())
        self.assertIs(scheduler.coordinator, dependencies.get_coordinator())
        self.assertIs(scheduler.mailer, dependencies.get_mailer())

    @patch("spot_tracker.dependencies.get_settings")
    def test_missing_feed_id_without_in_memory_backends(self, mock_settings):
        settings = in_memory_settings()
        settings.use_in_memory_backends = False
        settings.database_url = "sqlite+pysqlite:///:memory:"
        mock_settings.return_value = settings

        with self.assertRaises(RuntimeError):
            dependencies.get_coordinator()


if __name__ == "__main__":
    unittest.main()
