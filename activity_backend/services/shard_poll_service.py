from __future__ import annotations

import logging
import math
import re
import threading
from typing import Any, Dict, List, Optional

import requests

from ..config import ActivitySettings
from ..records import now_ms
from ..storage.player_store import PlayerStore
from ..utils import http_client
from . import activity_service

logger = logging.getLogger(__name__)

_SHARD_RE = re.compile(r"^(us|eu)-(\d+)$", re.IGNORECASE)


def parse_shard(shard_key: str) -> Optional[Dict[str, str]]:
    match = _SHARD_RE.match((shard_key or "").strip())
    if not match:
        return None
    region, amount = match.group(1).lower(), match.group(2)
    return {"region": region, "amount": amount, "serverKey": f"{region}-{amount}"}


def _first(entry: Dict[str, Any], fields) -> Any:
    for name in fields:
        value = entry.get(name)
        if value is not None:
            return value
    return None


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _entries(body: Any) -> List[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in ("entries", "players"):
            if isinstance(body.get(key), list):
                return body[key]
    return []


def normalize_entries(body: Any, *, region: str) -> List[Dict[str, Any]]:
    """
    Turn a shard leaderboard payload into observations, keeping only live
    players (size above 2 and a positive monetary value).
    """
    observations: List[Dict[str, Any]] = []
    for entry in _entries(body):
        if not isinstance(entry, dict):
            continue
        size = _number(_first(entry, ("size", "snakeSize", "length")))
        value = _number(_first(entry, ("monetaryValue", "value", "money", "cash")))
        if not (value > 0 and size > 2):
            continue
        observations.append(
            {
                "id": _first(entry, ("privyId", "id", "playerId")),
                "displayName": _first(entry, ("name", "username", "playerName")),
                "region": region.upper(),
                "joinTime": _first(entry, ("joinedAt", "joinTime")),
            }
        )
    return observations


def fetch_shard(template: str, shard_key: str) -> List[Dict[str, Any]]:
    shard = parse_shard(shard_key)
    if shard is None:
        raise ValueError(f"Invalid shard key: {shard_key!r}")
    url = template.format(**shard)
    response = http_client.get(url)
    response.raise_for_status()
    return normalize_entries(response.json(), region=shard["region"])


def poll_once(
    store: PlayerStore,
    settings: ActivitySettings,
    *,
    now: Optional[int] = None,
) -> Dict[str, Any]:
    """Poll every shard once and ingest what comes back. A failing shard is skipped."""
    if not settings.shard_url_template:
        return {"ok": False, "skipped": True, "reason": "not_configured"}

    timestamp = now if now is not None else now_ms()
    accepted = 0
    dropped = 0
    failed: List[str] = []
    for shard_key in settings.shards:
        try:
            observations = fetch_shard(settings.shard_url_template, shard_key)
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Shard poll failed for %s: %s", shard_key, exc)
            failed.append(shard_key)
            continue
        result = activity_service.ingest(store, observations, now=timestamp, settings=settings)
        accepted += result["accepted"]
        dropped += result["dropped"]

    return {"ok": not failed, "accepted": accepted, "dropped": dropped, "failed": failed}


class ShardPoller:
    def __init__(self, store: PlayerStore, settings: ActivitySettings) -> None:
        self._store = store
        self._settings = settings
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _worker(self) -> None:
        while not self._stop.is_set():
            try:
                poll_once(self._store, self._settings)
            except Exception:
                logger.exception("Shard poll loop failed")
            self._stop.wait(self._settings.poll_interval_s)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._worker, name="shard-poller", daemon=True)
        self._thread.start()
        logger.info(
            "Shard poller started for %s (every %.1fs)",
            ", ".join(self._settings.shards),
            self._settings.poll_interval_s,
        )

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self._settings.poll_interval_s + 5)
            self._thread = None


_POLLER: Optional[ShardPoller] = None
_POLLER_LOCK = threading.Lock()


def start_shard_poller(store: PlayerStore, config) -> Optional[ShardPoller]:
    global _POLLER
    settings = config.activity
    if not settings.poll_enabled:
        return None
    if not settings.shard_url_template:
        logger.warning("ACTIVITY_POLL_ENABLED is set but ACTIVITY_SHARD_URL_TEMPLATE is empty; poller not started")
        return None
    with _POLLER_LOCK:
        if _POLLER is None:
            _POLLER = ShardPoller(store, settings)
        _POLLER.start()
        return _POLLER
