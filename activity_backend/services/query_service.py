from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from ..records import PlayerRecord, normalize_player_id, now_ms
from ..storage.player_store import PlayerStore
from . import timeline_service

DEFAULT_BATCH_LIMIT = 50


def coerce_ids(raw: Any, *, limit: int = DEFAULT_BATCH_LIMIT) -> List[str]:
    """
    Accept whatever the client sent and keep the usable part: strings only,
    de-duplicated in order, truncated to `limit`. Malformed ids are kept so
    they answer as "never seen" rather than failing the whole request.
    """
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        return []
    ids: List[str] = []
    seen = set()
    for item in raw:
        if not isinstance(item, str):
            continue
        text = item.strip()
        if not text or text in seen:
            continue
        seen.add(text)
        ids.append(text)
        if len(ids) >= limit:
            break
    return ids


def _lookup(store: PlayerStore, player_id: str) -> Optional[PlayerRecord]:
    normalized = normalize_player_id(player_id)
    if normalized is None:
        return None
    return store.get(normalized, create_if_missing=False)


def query_timeline(
    store: PlayerStore,
    player_id: str,
    window_class: Any = None,
    tz_offset_minutes: Any = 0,
    *,
    now: Optional[int] = None,
) -> Dict[str, Any]:
    window_key = timeline_service.resolve_window_class(window_class)
    offset = timeline_service.normalize_tz_offset(tz_offset_minutes)
    window = timeline_service.compute_window(window_key, offset, now if now is not None else now_ms())
    with store.locked():
        return timeline_service.bins_for_window(_lookup(store, player_id), window)


def query_batch(
    store: PlayerStore,
    ids: Any,
    window_class: Any = None,
    tz_offset_minutes: Any = 0,
    *,
    now: Optional[int] = None,
    limit: int = DEFAULT_BATCH_LIMIT,
) -> Dict[str, Any]:
    window_key = timeline_service.resolve_window_class(window_class)
    offset = timeline_service.normalize_tz_offset(tz_offset_minutes)
    window = timeline_service.compute_window(window_key, offset, now if now is not None else now_ms())

    data: Dict[str, str] = {}
    meta: Dict[str, List[Dict[str, Any]]] = {}
    with store.locked():
        for player_id in coerce_ids(ids, limit=limit):
            result = timeline_service.bins_for_window(_lookup(store, player_id), window)
            data[player_id] = result["bitmap"]
            meta[player_id] = result["meta"]

    return {
        "startTimestamp": window.start,
        "binWidth": window.bin_width,
        "window": window_key,
        "data": data,
        "meta": meta,
    }


def snapshot(record: PlayerRecord) -> Dict[str, Any]:
    """Public view of a record; sessions and pings stay internal."""
    return {
        "realName": record.real_name,
        "usernames": dict(record.usernames),
        "topUsernames": [dict(entry) for entry in record.top_usernames],
        "regionCounts": dict(record.region_counts),
        "topRegion": record.top_region,
    }


def mapping(store: PlayerStore, ids: Optional[Iterable[str]] = None) -> Dict[str, Dict[str, Any]]:
    players: Dict[str, Dict[str, Any]] = {}
    with store.locked():
        candidates = list(ids) if ids is not None else store.list_ids()
        for player_id in candidates:
            normalized = normalize_player_id(player_id)
            record = store.read_uncached(normalized) if normalized is not None else None
            if record is not None:
                players[player_id] = snapshot(record)
    return players
