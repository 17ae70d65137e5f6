import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from activity_backend.errors import BadRequestError
from activity_backend.services import activity_service, admin_service
from activity_backend.storage.json_store import JsonDocumentStore
from activity_backend.storage.player_store import PlayerStore

BASE = 1_700_000_000_000


class TestAdminService(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.documents = JsonDocumentStore(base_dir=Path(self._tmp.name))
        self.store = PlayerStore(self.documents, capacity=2)

    def tearDown(self):
        self._tmp.cleanup()

    def seed(self, player_id, *names):
        for index, name in enumerate(names):
            activity_service.record_observation(self.store, player_id, BASE + index * 1_000, name, "US")
        self.store.flush_dirty()

    def test_delete_player(self):
        self.seed("p1", "Alice")

        self.assertEqual(admin_service.delete_player(self.store, "p1"), {"ok": True, "deleted": True})
        self.assertEqual(admin_service.delete_player(self.store, "p1"), {"ok": True, "deleted": False})
        self.assertFalse(self.store.exists("p1"))

    def test_delete_requires_id(self):
        with self.assertRaises(BadRequestError):
            admin_service.delete_player(self.store, "  ")

    def test_flush_now_persists_dirty_records(self):
        activity_service.record_observation(self.store, "p1", BASE, "Alice", "EU")

        result = admin_service.flush_now(self.store)

        self.assertEqual(result["flushed"], 1)
        self.assertEqual(self.documents.read("p1")["usernames"], {"Alice": 1})

    def test_reset_all(self):
        self.seed("p1", "Alice")
        self.seed("p2", "Bob")

        self.assertEqual(admin_service.reset_all(self.store), {"ok": True, "removed": 2})
        self.assertEqual(self.store.list_ids(), [])

    def test_set_real_name_creates_and_clears(self):
        result = admin_service.set_real_name(self.store, "p9", "  Jane Doe  ")
        self.assertEqual(result, {"ok": True, "playerId": "p9", "realName": "Jane Doe"})
        self.assertTrue(self.store.is_dirty("p9"))

        cleared = admin_service.set_real_name(self.store, "p9", "")
        self.assertIsNone(cleared["realName"])

    def test_cleanup_records(self):
        self.seed("pending:abc", "Someone")
        self.seed("p1", "Anonymous Player", "Alice")
        self.seed("p2", "anonymous  player")
        self.seed("p3", "Bob")

        result = admin_service.cleanup_records(self.store)

        self.assertEqual(
            result,
            {"removedPending": 1, "removedAnonymousUsernames": 2, "prunedEmptyPlayers": 1},
        )
        self.assertEqual(self.store.list_ids(), ["p1", "p3"])
        self.assertEqual(self.documents.read("p1")["usernames"], {"Alice": 1})
        self.assertEqual(self.documents.read("p1")["topUsernames"], [{"name": "Alice", "count": 1}])

    def test_cleanup_scan_keeps_hot_records_and_flushes_once(self):
        for player_id in ("a", "b", "c"):
            self.documents.write(player_id, {"usernames": {"Anonymous Player": 2, player_id: 1}})
        activity_service.record_observation(self.store, "hot", BASE, "Anonymous Player", "US")
        activity_service.record_observation(self.store, "hot", BASE + 1_000, "Hot", "US")

        with patch.object(self.store, "flush_dirty", wraps=self.store.flush_dirty) as flush:
            result = admin_service.cleanup_records(self.store)

        self.assertEqual(flush.call_count, 1)
        self.assertEqual(result["removedAnonymousUsernames"], 4)
        self.assertEqual(self.store.stats()["droppedDirty"], 0)
        self.assertEqual(self.store.stats()["cached"], 1)
        for player_id in ("a", "b", "c"):
            self.assertEqual(self.documents.read(player_id)["usernames"], {player_id: 1})
        self.assertEqual(self.documents.read("hot")["usernames"], {"Hot": 1})

    def test_cleanup_keeps_players_with_real_name(self):
        self.seed("p1", "Anonymous Player")
        admin_service.set_real_name(self.store, "p1", "Known")
        self.store.flush_dirty()

        result = admin_service.cleanup_records(self.store)

        self.assertEqual(result["prunedEmptyPlayers"], 0)
        self.assertEqual(self.documents.read("p1")["usernames"], {})


if __name__ == "__main__":
    unittest.main()
