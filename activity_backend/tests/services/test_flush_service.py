import tempfile
import time
import unittest
from pathlib import Path
from types import SimpleNamespace

from activity_backend.config import ActivitySettings
from activity_backend.services import flush_service
from activity_backend.storage.json_store import JsonDocumentStore
from activity_backend.storage.player_store import PlayerStore


class TestFlushScheduler(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.documents = JsonDocumentStore(base_dir=Path(self._tmp.name))
        self.store = PlayerStore(self.documents)

    def tearDown(self):
        flush_service.stop_activity_flush()
        self._tmp.cleanup()

    def test_background_thread_flushes_dirty_records(self):
        scheduler = flush_service.FlushScheduler(self.store, interval_s=0.5)
        self.store.get("p1", create_if_missing=True)

        scheduler.start()
        try:
            deadline = time.monotonic() + 5
            while self.store.is_dirty("p1") and time.monotonic() < deadline:
                time.sleep(0.05)
        finally:
            scheduler.stop(final_flush=False)

        self.assertFalse(self.store.is_dirty("p1"))
        self.assertTrue(self.documents.exists("p1"))
        self.assertFalse(scheduler.running)

    def test_stop_runs_final_flush(self):
        scheduler = flush_service.FlushScheduler(self.store, interval_s=60)
        scheduler.start()
        self.store.get("p2", create_if_missing=True)

        scheduler.stop()

        self.assertTrue(self.documents.exists("p2"))

    def test_run_once_survives_store_errors(self):
        scheduler = flush_service.FlushScheduler(self.store, interval_s=60)

        def broken():
            raise RuntimeError("boom")

        self.store.flush_dirty = broken
        with self.assertLogs("activity_backend.services.flush_service", level="ERROR"):
            result = scheduler.run_once()

        self.assertFalse(result["ok"])

    def test_disabled_flush_does_not_start(self):
        config = SimpleNamespace(activity=ActivitySettings(flush_enabled=False))

        self.assertIsNone(flush_service.start_activity_flush(self.store, config))

    def test_start_is_idempotent(self):
        config = SimpleNamespace(activity=ActivitySettings(flush_interval_s=60))

        first = flush_service.start_activity_flush(self.store, config)
        second = flush_service.start_activity_flush(self.store, config)

        self.assertIs(first, second)
        self.assertTrue(first.running)


if __name__ == "__main__":
    unittest.main()
