from __future__ import annotations

import os
import threading
from typing import Any, Tuple, Union

import requests


def _env_float(name: str, fallback: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    try:
        return float(raw) if raw else fallback
    except ValueError:
        return fallback


# Shards are polled every few seconds; a slow shard must not stall the next round.
SHARD_TIMEOUT: Tuple[float, float] = (
    _env_float("SHARD_HTTP_CONNECT_TIMEOUT_SECONDS", 2.0),
    _env_float("SHARD_HTTP_READ_TIMEOUT_SECONDS", 4.0),
)

_MAX_IN_FLIGHT = max(1, min(int(_env_float("SHARD_HTTP_CONCURRENCY", 6)), 16))
_in_flight = threading.BoundedSemaphore(_MAX_IN_FLIGHT)
_SLOT_WAIT_SECONDS = _env_float("SHARD_HTTP_SLOT_WAIT_SECONDS", 5.0)

_local = threading.local()

TimeoutArg = Union[None, float, int, Tuple[float, float]]


def _thread_session() -> requests.Session:
    session = getattr(_local, "session", None)
    if session is None:
        session = requests.Session()
        session.headers.update({"Accept": "application/json", "Cache-Control": "no-store"})
        _local.session = session
    return session


def get(url: str, *, timeout: TimeoutArg = None, **kwargs: Any) -> requests.Response:
    """
    GET through a per-thread keep-alive session, with short shard timeouts and
    a process-wide cap on requests in flight.
    """
    if not _in_flight.acquire(timeout=_SLOT_WAIT_SECONDS):
        raise requests.Timeout("Too many shard requests in flight")
    try:
        return _thread_session().get(url, timeout=timeout or SHARD_TIMEOUT, **kwargs)
    finally:
        _in_flight.release()
