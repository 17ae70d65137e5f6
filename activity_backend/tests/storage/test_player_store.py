import copy
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from activity_backend.records import Ping, PlayerRecord, Session
from activity_backend.storage.json_store import CorruptDocumentError, JsonDocumentStore
from activity_backend.storage.player_store import PlayerStore


def _populated_record() -> PlayerRecord:
    record = PlayerRecord.new()
    record.real_name = "Alice Example"
    record.count_username("Alice")
    record.count_username("Alice")
    record.count_username("Ally")
    record.count_region("EU")
    record.first_seen = 1_000
    record.last_seen = 400_000
    record.last_seen_activity = 400_000
    record.sessions = [Session(start=1_000, end=50_000), Session(start=300_000, end=400_000)]
    record.pings = [Ping(ts=1_000, username="Alice", region="EU"), Ping(ts=400_000, username="Ally", region=None)]
    return record


class TestPlayerStore(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.base_dir = Path(self._tmp.name)
        self.documents = JsonDocumentStore(base_dir=self.base_dir)
        self.store = PlayerStore(self.documents, capacity=3)

    def tearDown(self):
        self._tmp.cleanup()

    def test_get_missing_without_create_returns_none(self):
        self.assertIsNone(self.store.get("ghost", create_if_missing=False))
        self.assertIsNone(self.store.peek("ghost"))
        self.assertFalse(self.store.exists("ghost"))

    def test_create_marks_dirty_and_flush_persists(self):
        record = self.store.get("p1", create_if_missing=True)
        self.assertEqual(record, PlayerRecord.new())
        self.assertTrue(self.store.is_dirty("p1"))

        result = self.store.flush_dirty()

        self.assertTrue(result["ok"])
        self.assertEqual(result["flushed"], 1)
        self.assertFalse(self.store.is_dirty("p1"))
        self.assertTrue(self.documents.path_for("p1").is_file())

    def test_round_trip_through_disk_after_eviction(self):
        record = self.store.get("p1", create_if_missing=True)
        populated = _populated_record()
        record.__dict__.update(copy.deepcopy(populated.__dict__))
        self.store.mark_dirty("p1")
        before = copy.deepcopy(record)
        self.store.flush_dirty()

        for other in ("a", "b", "c"):
            self.store.get(other, create_if_missing=True)
        self.assertIsNone(self.store.peek("p1"))

        loaded = self.store.get("p1", create_if_missing=False)
        self.assertEqual(loaded, before)

    def test_lru_evicts_least_recently_used(self):
        for player_id in ("a", "b", "c"):
            self.store.get(player_id, create_if_missing=True)
        self.store.get("a")
        self.store.get("d", create_if_missing=True)

        self.assertIsNotNone(self.store.peek("a"))
        self.assertIsNone(self.store.peek("b"))
        self.assertEqual(self.store.stats()["cached"], 3)

    def test_evicting_unflushed_entry_drops_pending_changes(self):
        for player_id in ("a", "b", "c", "d"):
            self.store.get(player_id, create_if_missing=True)

        self.assertFalse(self.store.is_dirty("a"))
        self.assertFalse(self.documents.exists("a"))
        self.assertEqual(self.store.stats()["droppedDirty"], 1)
        self.assertIsNone(self.store.get("a"))

    def test_delete_removes_cache_and_file(self):
        self.store.get("p1", create_if_missing=True)
        self.store.flush_dirty()

        self.assertTrue(self.store.delete("p1"))
        self.assertIsNone(self.store.peek("p1"))
        self.assertFalse(self.documents.exists("p1"))
        self.assertFalse(self.store.delete("p1"))

    def test_corrupt_file_is_treated_as_absent_and_moved_aside(self):
        self.documents.path_for("bad").write_text("{not json", encoding="utf-8")

        self.assertIsNone(self.store.get("bad"))
        self.assertFalse(self.documents.exists("bad"))
        self.assertEqual(len(list(self.base_dir.glob("*.corrupt.*"))), 1)

        fresh = self.store.get("bad", create_if_missing=True)
        self.assertEqual(fresh, PlayerRecord.new())

    def test_wrong_shaped_documents_are_treated_as_absent(self):
        self.documents.path_for("lists").write_text('{"sessions": 5}', encoding="utf-8")
        self.documents.path_for("pings").write_text('{"pings": {"ts": 1}}', encoding="utf-8")
        self.documents.path_for("array").write_text("[1, 2, 3]", encoding="utf-8")

        for player_id in ("lists", "pings", "array"):
            self.assertIsNone(self.store.get(player_id))
            self.assertFalse(self.documents.exists(player_id))
        self.assertEqual(len(list(self.base_dir.glob("*.corrupt.*"))), 3)

    def test_non_finite_numbers_are_dropped_not_raised(self):
        self.documents.path_for("inf").write_text(
            '{"firstSeen": Infinity, "lastSeen": NaN, "usernames": {"Alice": 1e400},'
            ' "sessions": [{"start": Infinity, "end": 5}, {"start": 10, "end": 20}]}',
            encoding="utf-8",
        )

        record = self.store.get("inf")

        self.assertIsNotNone(record)
        self.assertIsNone(record.first_seen)
        self.assertIsNone(record.last_seen)
        self.assertEqual(record.usernames, {})
        self.assertEqual(record.sessions, [Session(start=10, end=20)])

    def test_read_uncached_does_not_touch_recency(self):
        for player_id in ("a", "b", "c"):
            self.store.get(player_id, create_if_missing=True)
        self.store.flush_dirty()
        cold = JsonDocumentStore(base_dir=self.base_dir)
        cold.write("cold", _populated_record().to_dict())

        record = self.store.read_uncached("cold")

        self.assertEqual(record, _populated_record())
        self.assertIsNone(self.store.peek("cold"))
        self.assertEqual(self.store.stats()["evictions"], 0)

    def test_write_through_persists_cold_and_marks_cached_dirty(self):
        self.store.get("hot", create_if_missing=True)
        self.store.flush_dirty()
        self.documents.write("cold", PlayerRecord.new().to_dict())

        cold = self.store.read_uncached("cold")
        cold.real_name = "Cold"
        self.store.write_through("cold", cold)
        hot = self.store.read_uncached("hot")
        hot.real_name = "Hot"
        self.store.write_through("hot", hot)

        self.assertEqual(self.documents.read("cold")["realName"], "Cold")
        self.assertIsNone(self.store.peek("cold"))
        self.assertTrue(self.store.is_dirty("hot"))

    def test_failed_write_keeps_record_dirty_and_continues(self):
        self.store.get("a", create_if_missing=True)
        self.store.get("b", create_if_missing=True)
        real_write = self.documents.write
        calls = []

        def flaky_write(player_id, data):
            calls.append(player_id)
            if player_id == "a":
                raise OSError("disk full")
            real_write(player_id, data)

        with patch.object(self.documents, "write", side_effect=flaky_write):
            result = self.store.flush_dirty()

        self.assertEqual(calls, ["a", "b"])
        self.assertFalse(result["ok"])
        self.assertEqual(result["failed"], ["a"])
        self.assertTrue(self.store.is_dirty("a"))
        self.assertFalse(self.store.is_dirty("b"))

        retry = self.store.flush_dirty()
        self.assertTrue(retry["ok"])
        self.assertTrue(self.documents.exists("a"))

    def test_list_ids_survives_unusual_characters(self):
        ids = ["did:privy:abc", "../escape", "a.b", "name with spaces"]
        for player_id in ids:
            self.store.get(player_id, create_if_missing=True)
            self.store.flush_dirty()

        reopened = PlayerStore(JsonDocumentStore(base_dir=self.base_dir), capacity=3)
        self.assertEqual(reopened.list_ids(), sorted(ids))
        for path in self.base_dir.iterdir():
            self.assertEqual(path.parent, self.base_dir)

    def test_long_ids_get_hashed_file_names(self):
        ids = ["/" * 80, "é" * 80, "did:privy:" + "x" * 70]
        for player_id in ids:
            record = self.store.get(player_id, create_if_missing=True)
            record.count_username("Alice")
            result = self.store.flush_dirty()
            self.assertTrue(result["ok"], result)

        for path in self.base_dir.iterdir():
            self.assertLess(len(path.name.encode("utf-8")), 255)
            self.assertEqual(path.parent, self.base_dir)

        reopened = PlayerStore(JsonDocumentStore(base_dir=self.base_dir), capacity=3)
        self.assertEqual(reopened.list_ids(), sorted(ids))
        for player_id in ids:
            self.assertEqual(reopened.get(player_id).usernames, {"Alice": 1})

        self.assertTrue(reopened.delete("/" * 80))
        self.assertNotIn("/" * 80, reopened.list_ids())

    def test_reset_removes_everything(self):
        for player_id in ("a", "b"):
            self.store.get(player_id, create_if_missing=True)
        self.store.flush_dirty()
        self.store.get("c", create_if_missing=True)

        self.assertEqual(self.store.reset(), 3)
        self.assertEqual(self.store.list_ids(), [])
        self.assertEqual(self.store.stats()["dirty"], 0)


class TestEncryptedDocuments(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.base_dir = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_encrypted_round_trip(self):
        documents = JsonDocumentStore(base_dir=self.base_dir, encryption_secret="s3cret")
        payload = _populated_record().to_dict()

        documents.write("p1", payload)

        raw = documents.path_for("p1").read_text(encoding="utf-8")
        self.assertIn('"payload"', raw)
        self.assertNotIn("Alice", raw)
        self.assertEqual(documents.read("p1"), payload)

    def test_encrypted_file_without_key_is_corrupt(self):
        JsonDocumentStore(base_dir=self.base_dir, encryption_secret="s3cret").write("p1", {"usernames": {}})

        with self.assertRaises(CorruptDocumentError):
            JsonDocumentStore(base_dir=self.base_dir).read("p1")

    def test_plaintext_documents_stay_readable_with_key(self):
        JsonDocumentStore(base_dir=self.base_dir).write("p1", {"realName": "Bob"})

        documents = JsonDocumentStore(base_dir=self.base_dir, encryption_secret="s3cret")
        self.assertEqual(documents.read("p1"), {"realName": "Bob"})


if __name__ == "__main__":
    unittest.main()
