from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from ..config import ActivitySettings
from ..records import (
    Ping,
    PlayerRecord,
    Session,
    normalize_player_id,
    normalize_region,
    normalize_username,
    now_ms,
    parse_timestamp_ms,
)
from ..storage.player_store import PlayerStore

logger = logging.getLogger(__name__)

_ID_FIELDS = ("id", "privyId", "playerId")
_NAME_FIELDS = ("displayName", "name", "username", "playerName")
_TS_FIELDS = ("ts", "timestamp")
_JOIN_FIELDS = ("joinTime", "joinedAt")


@dataclass(frozen=True)
class Observation:
    player_id: str
    display_name: str
    region: Optional[str]
    ts: int
    join_time: Optional[int] = None


def _first(raw: Dict[str, Any], fields: Iterable[str]) -> Any:
    for name in fields:
        value = raw.get(name)
        if value is not None and value != "":
            return value
    return None


def normalize_observation(raw: Any, *, now: Optional[int] = None) -> Optional[Observation]:
    """
    Validate one inbound observation. Returns None when it must be dropped
    (no usable id or display name).
    """
    if not isinstance(raw, dict):
        return None
    player_id = normalize_player_id(_first(raw, _ID_FIELDS))
    display_name = normalize_username(_first(raw, _NAME_FIELDS))
    if player_id is None or display_name is None:
        return None
    ts = parse_timestamp_ms(_first(raw, _TS_FIELDS))
    if ts is None:
        ts = now if now is not None else now_ms()
    return Observation(
        player_id=player_id,
        display_name=display_name,
        region=normalize_region(raw.get("region")),
        ts=ts,
        join_time=parse_timestamp_ms(_first(raw, _JOIN_FIELDS)),
    )


def prune(record: PlayerRecord, now: int, *, retention_ms: int) -> int:
    """Drop sessions and pings older than the retention horizon. Returns how many were removed."""
    cutoff = now - retention_ms
    before = len(record.sessions) + len(record.pings)
    record.sessions = [session for session in record.sessions if session.end >= cutoff]
    record.pings = [ping for ping in record.pings if ping.ts >= cutoff]
    return before - len(record.sessions) - len(record.pings)


def _plausible_join(join_time: Optional[int], ts: int, settings: ActivitySettings) -> bool:
    if join_time is None or join_time <= 0 or join_time > ts:
        return False
    return ts - join_time <= settings.join_backdate_max_ms


def _compact_tail(sessions, threshold_ms: int) -> None:
    if len(sessions) < 2:
        return
    previous, last = sessions[-2], sessions[-1]
    if last.start - previous.end <= threshold_ms:
        previous.start = min(previous.start, last.start)
        previous.end = max(previous.end, last.end)
        sessions.pop()


def apply_observation(
    record: PlayerRecord,
    ts: int,
    display_name: str,
    region: Optional[str],
    *,
    join_time: Optional[int] = None,
    settings: ActivitySettings,
) -> None:
    """Fold one observation into a record's sessions and counters."""
    threshold = settings.inactivity_threshold_ms
    first_ever = record.is_fresh
    prune(record, ts, retention_ms=settings.retention_ms)

    last_activity = record.last_seen_activity
    if last_activity is None and record.sessions:
        last_activity = record.sessions[-1].end

    if not record.sessions or last_activity is None or ts - last_activity > threshold:
        start = ts
        if first_ever and _plausible_join(join_time, ts, settings):
            start = int(join_time)
        record.sessions.append(Session(start=start, end=ts))
    else:
        last = record.sessions[-1]
        # Late observations never shrink or reopen history.
        last.end = max(last.end, ts)

    _compact_tail(record.sessions, threshold)

    record.last_seen_activity = ts if last_activity is None else max(last_activity, ts)
    record.last_seen = ts if record.last_seen is None else max(record.last_seen, ts)
    first_start = record.sessions[0].start if record.sessions else ts
    record.first_seen = first_start if record.first_seen is None else min(record.first_seen, first_start)
    record.count_username(display_name)
    record.count_region(region)


def record_observation(
    store: PlayerStore,
    player_id: str,
    ts: int,
    display_name: str,
    region: Optional[str] = None,
    *,
    join_time: Optional[int] = None,
    settings: Optional[ActivitySettings] = None,
) -> PlayerRecord:
    settings = settings or ActivitySettings()
    with store.locked():
        record = store.get(player_id, create_if_missing=True)
        apply_observation(record, ts, display_name, region, join_time=join_time, settings=settings)
        store.mark_dirty(player_id)
        return record


def record_ping(
    store: PlayerStore,
    player_id: str,
    display_name: str,
    region: Optional[str],
    ts: int,
    *,
    settings: Optional[ActivitySettings] = None,
) -> PlayerRecord:
    settings = settings or ActivitySettings()
    with store.locked():
        record = store.get(player_id, create_if_missing=True)
        record.pings.append(Ping(ts=ts, username=display_name, region=region))
        prune(record, ts, retention_ms=settings.retention_ms)
        store.mark_dirty(player_id)
        return record


def ingest(
    store: PlayerStore,
    observations: Any,
    *,
    now: Optional[int] = None,
    settings: Optional[ActivitySettings] = None,
) -> Dict[str, int]:
    """
    Ingestion boundary for presence observations from the shard poller or the
    HTTP ingest route. Malformed entries, and entries stamped further ahead of
    `now` than the allowed clock skew, are dropped and counted, never raised.
    """
    settings = settings or ActivitySettings()
    if isinstance(observations, dict):
        observations = [observations]
    if not isinstance(observations, (list, tuple)):
        return {"accepted": 0, "dropped": 0}

    current = now if now is not None else now_ms()
    accepted = 0
    dropped = 0
    for raw in observations:
        observation = normalize_observation(raw, now=current)
        if observation is None or observation.ts - current > settings.max_future_skew_ms:
            dropped += 1
            continue
        record_observation(
            store,
            observation.player_id,
            observation.ts,
            observation.display_name,
            observation.region,
            join_time=observation.join_time,
            settings=settings,
        )
        record_ping(
            store,
            observation.player_id,
            observation.display_name,
            observation.region,
            observation.ts,
            settings=settings,
        )
        accepted += 1

    if dropped:
        logger.debug("Dropped %s malformed observations", dropped)
    return {"accepted": accepted, "dropped": dropped}
