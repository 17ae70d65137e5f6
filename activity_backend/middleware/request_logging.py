from __future__ import annotations

import logging
import time

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

logger = logging.getLogger("activity.http")


def _should_track(path: str) -> bool:
    return path.startswith("/api")


def init_request_logging(app: Flask) -> None:
    """
    Log one line per /api request and answer framework errors on /api with JSON.
    """

    @app.before_request
    def _log_start() -> None:  # type: ignore[return-value]
        if _should_track(request.path):
            g._request_started_at = time.perf_counter()

    @app.after_request
    def _log_response(response):  # type: ignore[return-value]
        if _should_track(request.path):
            started = getattr(g, "_request_started_at", None)
            duration_ms = (time.perf_counter() - started) * 1000 if isinstance(started, float) else -1.0
            level = logging.WARNING if response.status_code >= 500 else logging.INFO
            logger.log(
                level,
                "HTTP %s %s -> %s (%.1f ms)",
                request.method,
                request.path,
                response.status_code,
                duration_ms,
            )
        return response

    @app.errorhandler(HTTPException)
    def _http_error(error: HTTPException):  # type: ignore[return-value]
        if not _should_track(request.path):
            return error
        code = (error.name or "error").upper().replace(" ", "_")
        if error.code == 413:
            logger.warning(
                "Payload too large: %s %s (max=%s)",
                request.method,
                request.path,
                app.config.get("MAX_CONTENT_LENGTH"),
            )
        return jsonify({"error": code, "message": error.description}), error.code
