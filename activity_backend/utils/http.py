from __future__ import annotations

import logging
from typing import Any, Callable

from flask import Response, jsonify, request

logger = logging.getLogger("activity.api")


def json_success(data: Any, status: int = 200) -> Response:
    return jsonify(data), status


def json_error(error: Exception) -> Response:
    status = getattr(error, "status", 500)
    message = getattr(error, "message", None) or str(error) or "Internal server error"
    if status >= 500:
        message = "Internal server error"
    return jsonify({"error": message}), status


def handle_action(action: Callable[[], Any], status: int = 200) -> Response:
    try:
        payload = action()
        return json_success(payload, status=status)
    except Exception as exc:
        error_status = getattr(exc, "status", 500)
        if error_status >= 500:
            logger.exception(
                "Unhandled API error",
                extra={"method": request.method, "path": request.path, "status": error_status},
            )
        else:
            logger.info("API error %s on %s %s: %s", error_status, request.method, request.path, exc)
        return json_error(exc)
