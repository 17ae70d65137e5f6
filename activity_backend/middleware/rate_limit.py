from __future__ import annotations

import os
import threading
import time
from collections import deque
from typing import Deque, Dict, Tuple

from flask import Flask, jsonify, request


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, fallback: int, low: int, high: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        value = int(raw) if raw else fallback
    except ValueError:
        value = fallback
    return max(low, min(value, high))


_lock = threading.Lock()
_hits: Dict[Tuple[str, str], Deque[float]] = {}


def _is_exempt(path: str) -> bool:
    return not path.startswith("/api") or path.startswith("/api/health") or path.startswith("/api/admin")


def _bucket_for_path(path: str) -> str:
    # Per-player timeline lookups share one bucket so id-walking is bounded.
    if path.startswith("/api/activity/") and path not in ("/api/activity/batch", "/api/activity/ingest"):
        return "/api/activity/<id>"
    return path


def _client_ip() -> str:
    ip = request.headers.get("CF-Connecting-IP") or request.headers.get("X-Forwarded-For") or request.remote_addr
    return ip.split(",")[0].strip() if ip else "unknown"


def init_rate_limit(app: Flask) -> None:
    """
    Small in-memory sliding-window limiter for the public /api routes.
    """
    if not _truthy(os.environ.get("RATE_LIMIT_ENABLED", "true")):
        return

    window_s = _env_int("RATE_LIMIT_WINDOW_SECONDS", 60, 10, 600)
    default_max = _env_int("RATE_LIMIT_MAX_REQUESTS", 120, 10, 5000)
    ingest_max = _env_int("RATE_LIMIT_MAX_INGEST_REQUESTS", 600, 10, 10000)

    @app.before_request
    def _rate_limit():  # type: ignore[return-value]
        if request.method == "OPTIONS" or _is_exempt(request.path):
            return None

        bucket_path = _bucket_for_path(request.path)
        limit = ingest_max if bucket_path == "/api/activity/ingest" else default_max
        key = (_client_ip(), bucket_path)
        now = time.time()
        cutoff = now - window_s

        with _lock:
            bucket = _hits.setdefault(key, deque())
            while bucket and bucket[0] < cutoff:
                bucket.popleft()

            if len(bucket) >= limit:
                retry_after = max(1, int(window_s - (now - bucket[0])))
                response = jsonify(
                    {
                        "error": "too_many_attempts",
                        "message": "Too many requests. Please wait a moment and try again.",
                        "retryAfterSeconds": retry_after,
                    }
                )
                response.status_code = 429
                response.headers["Retry-After"] = str(retry_after)
                return response

            bucket.append(now)
        return None
