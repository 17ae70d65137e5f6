from __future__ import annotations

import logging
import threading
from typing import Optional

from ..storage.player_store import PlayerStore

logger = logging.getLogger(__name__)


class FlushScheduler:
    """Periodically persists dirty player records from a daemon thread."""

    def __init__(self, store: PlayerStore, *, interval_s: float = 15.0) -> None:
        self._store = store
        self._interval_s = max(0.5, float(interval_s))
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> dict:
        try:
            return self._store.flush_dirty()
        except Exception:
            logger.exception("Player record flush failed")
            return {"ok": False, "flushed": 0, "failed": [], "pending": None}

    def _worker(self) -> None:
        while not self._stop.wait(self._interval_s):
            self.run_once()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._worker, name="activity-flush", daemon=True)
            self._thread.start()
            logger.info("Activity flush scheduler started (every %.1fs)", self._interval_s)

    def stop(self, *, final_flush: bool = True) -> None:
        with self._lock:
            self._stop.set()
            thread = self._thread
            self._thread = None
        if thread is not None:
            thread.join(timeout=self._interval_s + 5)
        if final_flush:
            self.run_once()


_SCHEDULER: Optional[FlushScheduler] = None
_SCHEDULER_LOCK = threading.Lock()


def start_activity_flush(store: PlayerStore, config) -> Optional[FlushScheduler]:
    global _SCHEDULER
    if not config.activity.flush_enabled:
        return None
    with _SCHEDULER_LOCK:
        if _SCHEDULER is None:
            _SCHEDULER = FlushScheduler(store, interval_s=config.activity.flush_interval_s)
        _SCHEDULER.start()
        return _SCHEDULER


def stop_activity_flush() -> None:
    global _SCHEDULER
    with _SCHEDULER_LOCK:
        scheduler, _SCHEDULER = _SCHEDULER, None
    if scheduler is not None:
        scheduler.stop()
