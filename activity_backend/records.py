from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

REGIONS = ("US", "EU")
MAX_USERNAME_LENGTH = 48
MAX_PLAYER_ID_LENGTH = 80
TOP_USERNAMES_LIMIT = 3


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_timestamp_ms(value: Any) -> Optional[int]:
    """
    Coerce an epoch (ms or s) or ISO-8601 string into epoch milliseconds.

    Returns None for anything that cannot be interpreted as a positive instant.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        if not math.isfinite(number) or number <= 0:
            return None
        # Values this small are epoch seconds, not milliseconds.
        if number < 100_000_000_000:
            number *= 1000.0
        return int(number)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return parse_timestamp_ms(float(text))
        except ValueError:
            pass
        normalized = text[:-1] + "+00:00" if text.endswith("Z") else text
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    return None


def normalize_player_id(value: Any) -> Optional[str]:
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text or len(text) > MAX_PLAYER_ID_LENGTH:
        return None
    if any(ord(ch) < 32 for ch in text):
        return None
    return text


def normalize_username(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    return text[:MAX_USERNAME_LENGTH]


def normalize_region(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value in REGIONS else None


def most_frequent(counts: Mapping[str, int]) -> Optional[Tuple[str, int]]:
    """Highest count wins; ties go to the lexicographically smallest key."""
    best: Optional[Tuple[str, int]] = None
    for key, count in counts.items():
        if count <= 0:
            continue
        if best is None or count > best[1] or (count == best[1] and key < best[0]):
            best = (key, count)
    return best


def rank_usernames(usernames: Mapping[str, int], limit: int = TOP_USERNAMES_LIMIT) -> List[Dict[str, Any]]:
    entries = [(name, count) for name, count in usernames.items() if count > 0]
    entries.sort(key=lambda item: (-item[1], item[0]))
    return [{"name": name, "count": count} for name, count in entries[:limit]]


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number


def _list_field(raw: Dict[str, Any], name: str) -> List[Any]:
    value = raw.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"player record field '{name}' must be a list")
    return value


@dataclass
class Session:
    start: int
    end: int

    def to_dict(self) -> Dict[str, int]:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["Session"]:
        if not isinstance(raw, dict):
            return None
        start = _to_int(raw.get("start"))
        end = _to_int(raw.get("end"))
        if start is None:
            return None
        if end is None or end < start:
            end = start
        return cls(start=start, end=end)


@dataclass
class Ping:
    ts: int
    username: str
    region: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"ts": self.ts, "username": self.username, "region": self.region}

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["Ping"]:
        if not isinstance(raw, dict):
            return None
        ts = _to_int(raw.get("ts"))
        username = normalize_username(raw.get("username"))
        if ts is None or username is None:
            return None
        return cls(ts=ts, username=username, region=normalize_region(raw.get("region")))


@dataclass
class PlayerRecord:
    """Durable activity state for one player."""

    real_name: Optional[str] = None
    usernames: Dict[str, int] = field(default_factory=dict)
    top_usernames: List[Dict[str, Any]] = field(default_factory=list)
    region_counts: Dict[str, int] = field(default_factory=lambda: {region: 0 for region in REGIONS})
    top_region: str = "US"
    first_seen: Optional[int] = None
    last_seen: Optional[int] = None
    last_seen_activity: Optional[int] = None
    sessions: List[Session] = field(default_factory=list)
    pings: List[Ping] = field(default_factory=list)

    @classmethod
    def new(cls) -> "PlayerRecord":
        return cls()

    @property
    def is_fresh(self) -> bool:
        return self.first_seen is None and not self.sessions and not self.pings

    def count_username(self, username: str) -> None:
        self.usernames[username] = self.usernames.get(username, 0) + 1
        self.top_usernames = rank_usernames(self.usernames)

    def count_region(self, region: Optional[str]) -> None:
        if region in REGIONS:
            self.region_counts[region] = self.region_counts.get(region, 0) + 1
        self._rank_regions()

    def _rank_regions(self) -> None:
        # Ties go to US.
        self.top_region = "EU" if self.region_counts.get("EU", 0) > self.region_counts.get("US", 0) else "US"

    def refresh_derived(self) -> None:
        self.top_usernames = rank_usernames(self.usernames)
        self._rank_regions()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "realName": self.real_name,
            "usernames": dict(self.usernames),
            "topUsernames": [dict(entry) for entry in self.top_usernames],
            "regionCounts": dict(self.region_counts),
            "topRegion": self.top_region,
            "firstSeen": self.first_seen,
            "lastSeen": self.last_seen,
            "lastSeenActivity": self.last_seen_activity,
            "sessions": [session.to_dict() for session in self.sessions],
            "pings": [ping.to_dict() for ping in self.pings],
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "PlayerRecord":
        if not isinstance(raw, dict):
            raise ValueError("player record document must be an object")
        record = cls.new()
        real_name = raw.get("realName")
        record.real_name = str(real_name) if real_name else None

        usernames = raw.get("usernames")
        if isinstance(usernames, dict):
            for name, count in usernames.items():
                parsed = _to_int(count)
                if isinstance(name, str) and parsed and parsed > 0:
                    record.usernames[name] = parsed

        region_counts = raw.get("regionCounts")
        if isinstance(region_counts, dict):
            for region in REGIONS:
                record.region_counts[region] = max(0, _to_int(region_counts.get(region)) or 0)

        record.first_seen = _to_int(raw.get("firstSeen"))
        record.last_seen = _to_int(raw.get("lastSeen"))
        record.last_seen_activity = _to_int(raw.get("lastSeenActivity"))
        record.sessions = [s for s in map(Session.from_dict, _list_field(raw, "sessions")) if s is not None]
        record.pings = [p for p in map(Ping.from_dict, _list_field(raw, "pings")) if p is not None]
        record.refresh_derived()
        return record
