from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Set

from ..records import PlayerRecord
from .json_store import CorruptDocumentError, JsonDocumentStore

logger = logging.getLogger(__name__)

DEFAULT_CACHE_CAPACITY = 200


class PlayerStore:
    """
    Bounded LRU cache of PlayerRecords in front of one durable file per player.

    The durable copy is authoritative for anything not in the cache. Evicting a
    dirty entry drops its pending changes: the next observation for that id
    reloads the last flushed copy and keeps accumulating from there.
    """

    def __init__(self, documents: JsonDocumentStore, *, capacity: int = DEFAULT_CACHE_CAPACITY) -> None:
        self._documents = documents
        self._capacity = max(1, int(capacity))
        self._cache: "OrderedDict[str, PlayerRecord]" = OrderedDict()
        self._dirty: Set[str] = set()
        self._lock = threading.RLock()
        self._evictions = 0
        self._dropped_dirty = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @contextmanager
    def locked(self) -> Iterator["PlayerStore"]:
        """Hold the store lock across a read-modify-write of one record."""
        with self._lock:
            yield self

    def get(self, player_id: str, create_if_missing: bool = False) -> Optional[PlayerRecord]:
        with self._lock:
            record = self._cache.get(player_id)
            if record is not None:
                self._cache.move_to_end(player_id)
                return record

            record = self._load(player_id)
            if record is not None:
                self._insert(player_id, record)
                return record

            if not create_if_missing:
                return None

            record = PlayerRecord.new()
            self._insert(player_id, record)
            self._dirty.add(player_id)
            return record

    def peek(self, player_id: str) -> Optional[PlayerRecord]:
        """Cached record without touching recency or disk."""
        with self._lock:
            return self._cache.get(player_id)

    def read_uncached(self, player_id: str) -> Optional[PlayerRecord]:
        """
        Cached record if present, else the durable copy decoded without being
        inserted into the cache. Full scans go through here so they never evict
        hot entries.
        """
        with self._lock:
            record = self._cache.get(player_id)
            if record is not None:
                return record
            return self._load(player_id)

    def write_through(self, player_id: str, record: PlayerRecord) -> None:
        """Persist a record obtained from `read_uncached`; cached ids are only marked dirty."""
        with self._lock:
            if player_id in self._cache:
                self._cache[player_id] = record
                self._dirty.add(player_id)
                return
            self._documents.write(player_id, record.to_dict())

    def exists(self, player_id: str) -> bool:
        with self._lock:
            return player_id in self._cache or self._documents.exists(player_id)

    def is_dirty(self, player_id: str) -> bool:
        with self._lock:
            return player_id in self._dirty

    def mark_dirty(self, player_id: str) -> None:
        with self._lock:
            if player_id in self._cache:
                self._dirty.add(player_id)

    def flush_dirty(self) -> Dict[str, Any]:
        flushed = 0
        failed: List[str] = []
        with self._lock:
            for player_id in sorted(self._dirty):
                record = self._cache.get(player_id)
                if record is None:
                    self._dirty.discard(player_id)
                    continue
                try:
                    self._documents.write(player_id, record.to_dict())
                except Exception:
                    logger.exception("Failed to persist player record %s; will retry", player_id)
                    failed.append(player_id)
                    continue
                self._dirty.discard(player_id)
                flushed += 1
            self._evict_overflow()
            pending = len(self._dirty)
        if flushed or failed:
            logger.debug("Flushed %s player records (%s failed, %s pending)", flushed, len(failed), pending)
        return {"ok": not failed, "flushed": flushed, "failed": failed, "pending": pending}

    def delete(self, player_id: str) -> bool:
        with self._lock:
            cached = self._cache.pop(player_id, None) is not None
            self._dirty.discard(player_id)
            try:
                removed = self._documents.delete(player_id)
            except OSError:
                logger.exception("Failed to delete player record %s", player_id)
                removed = False
            return cached or removed

    def reset(self) -> int:
        with self._lock:
            ids = set(self._cache) | set(self._documents.list_ids())
            self._cache.clear()
            self._dirty.clear()
            self._documents.clear()
            logger.warning("Player store reset (%s records removed)", len(ids))
            return len(ids)

    def list_ids(self) -> List[str]:
        with self._lock:
            return sorted(set(self._cache) | set(self._documents.list_ids()))

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "cached": len(self._cache),
                "capacity": self._capacity,
                "dirty": len(self._dirty),
                "evictions": self._evictions,
                "droppedDirty": self._dropped_dirty,
            }

    # Internal helpers -------------------------------------------------

    def _load(self, player_id: str) -> Optional[PlayerRecord]:
        try:
            document = self._documents.read(player_id)
        except CorruptDocumentError:
            logger.warning("Player record %s is corrupted; treating as absent", player_id, exc_info=True)
            self._documents.quarantine(player_id)
            return None
        except OSError:
            logger.warning("Failed to read player record %s; treating as absent", player_id, exc_info=True)
            return None
        if document is None:
            return None
        try:
            return PlayerRecord.from_dict(document)
        except (ValueError, TypeError):
            logger.warning("Player record %s has an invalid shape; treating as absent", player_id, exc_info=True)
            self._documents.quarantine(player_id)
            return None

    def _insert(self, player_id: str, record: PlayerRecord) -> None:
        self._cache[player_id] = record
        self._cache.move_to_end(player_id)
        self._evict_overflow()

    def _evict_overflow(self) -> None:
        while len(self._cache) > self._capacity:
            evicted_id, _ = self._cache.popitem(last=False)
            self._evictions += 1
            if evicted_id in self._dirty:
                self._dirty.discard(evicted_id)
                self._dropped_dirty += 1
                logger.info("Evicted unflushed player record %s", evicted_id)
