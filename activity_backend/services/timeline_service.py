"""
Time-binned activity timelines.

A window is right-aligned to the most recent bin boundary in the caller's local
time, so a "1d" window always starts on a local hour and a "1m" window on a
local midnight. `tz_offset_minutes` follows the JavaScript
`Date#getTimezoneOffset` sign: positive when local time is behind UTC.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import InvalidWindowError
from ..records import PlayerRecord, most_frequent

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

MAX_TZ_OFFSET_MINUTES = 14 * 60


@dataclass(frozen=True)
class WindowSpec:
    bin_width: int
    count: int

    @property
    def span(self) -> int:
        return self.bin_width * self.count


WINDOWS: Dict[str, WindowSpec] = {
    "1h": WindowSpec(bin_width=5 * MINUTE_MS, count=12),
    "1d": WindowSpec(bin_width=HOUR_MS, count=24),
    "1w": WindowSpec(bin_width=12 * HOUR_MS, count=14),
    "1m": WindowSpec(bin_width=DAY_MS, count=30),
}

DEFAULT_WINDOW = "1d"


@dataclass(frozen=True)
class Window:
    start: int
    bin_width: int
    count: int

    @property
    def end(self) -> int:
        return self.start + self.bin_width * self.count

    def index_of(self, ts: int) -> int:
        return (ts - self.start) // self.bin_width


def resolve_window_class(value: Any) -> str:
    if value is None or value == "":
        return DEFAULT_WINDOW
    key = str(value).strip().lower()
    if key not in WINDOWS:
        raise InvalidWindowError(f"Unknown window '{value}'; expected one of {', '.join(WINDOWS)}")
    return key


def normalize_tz_offset(value: Any) -> int:
    """Clamp to +/-14h; anything non-numeric is treated as UTC."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return int(max(-MAX_TZ_OFFSET_MINUTES, min(MAX_TZ_OFFSET_MINUTES, round(number))))


def compute_window(window_class: str, tz_offset_minutes: int, now: int) -> Window:
    spec = WINDOWS[resolve_window_class(window_class)]
    offset_ms = int(tz_offset_minutes) * MINUTE_MS
    local_now = now - offset_ms
    aligned_right = (local_now // spec.bin_width) * spec.bin_width
    start_local = aligned_right - (spec.count - 1) * spec.bin_width
    return Window(start=start_local + offset_ms, bin_width=spec.bin_width, count=spec.count)


def empty_bins(window: Window) -> Dict[str, Any]:
    return {
        "startTimestamp": window.start,
        "binWidth": window.bin_width,
        "bitmap": "0" * window.count,
        "meta": [{} for _ in range(window.count)],
    }


def build_bitmap(record: PlayerRecord, window: Window) -> str:
    bits = ["0"] * window.count
    last_ms = window.end - 1
    for session in record.sessions:
        if session.end < window.start or session.start > last_ms:
            continue
        first_bin = window.index_of(max(session.start, window.start))
        last_bin = window.index_of(min(session.end, last_ms))
        for index in range(first_bin, last_bin + 1):
            bits[index] = "1"
    return "".join(bits)


def build_meta(record: PlayerRecord, window: Window) -> List[Dict[str, Any]]:
    names: List[Optional[Dict[str, int]]] = [None] * window.count
    regions: List[Dict[str, int]] = [{} for _ in range(window.count)]
    totals = [0] * window.count

    for ping in record.pings:
        if ping.ts < window.start or ping.ts >= window.end:
            continue
        index = window.index_of(ping.ts)
        bucket = names[index]
        if bucket is None:
            bucket = names[index] = {}
        bucket[ping.username] = bucket.get(ping.username, 0) + 1
        totals[index] += 1
        if ping.region:
            regions[index][ping.region] = regions[index].get(ping.region, 0) + 1

    meta: List[Dict[str, Any]] = []
    for index in range(window.count):
        bucket = names[index]
        if not bucket:
            meta.append({})
            continue
        top_name = most_frequent(bucket)
        top_region = most_frequent(regions[index])
        entry: Dict[str, Any] = {"topUsername": top_name[0], "pings": totals[index]}
        if top_region:
            entry["topRegion"] = top_region[0]
        entry["topRegionPingCount"] = top_region[1] if top_region else 0
        meta.append(entry)
    return meta


def compute_bins(record: PlayerRecord, window_class: str, tz_offset_minutes: int, now: int) -> Dict[str, Any]:
    """Pure: reads the record, never mutates it."""
    window = compute_window(window_class, tz_offset_minutes, now)
    return bins_for_window(record, window)


def bins_for_window(record: Optional[PlayerRecord], window: Window) -> Dict[str, Any]:
    if record is None:
        return empty_bins(window)
    return {
        "startTimestamp": window.start,
        "binWidth": window.bin_width,
        "bitmap": build_bitmap(record, window),
        "meta": build_meta(record, window),
    }
