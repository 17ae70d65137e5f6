from __future__ import annotations

import hmac
from functools import wraps
from typing import Callable, Iterable, TypeVar

from flask import Response, jsonify, request

from ..services import get_config

F = TypeVar("F", bound=Callable)

ADMIN_HEADERS = ("x-admin-token", "admin-token")
INGEST_HEADERS = ("x-ingest-token",)


def _presented_token(headers: Iterable[str]) -> str:
    for header in headers:
        value = request.headers.get(header)
        if value:
            return value.strip()
    return ""


def _matches(presented: str, expected: str) -> bool:
    if not expected or not presented:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def require_admin(func: F) -> F:
    @wraps(func)
    def wrapper(*args, **kwargs):
        if not _matches(_presented_token(ADMIN_HEADERS), get_config().admin_token):
            return _unauthorized("unauthorized")
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


def require_ingest(func: F) -> F:
    """Ingest accepts the dedicated feed token or the admin token; neither configured means closed."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        config = get_config()
        if not (
            _matches(_presented_token(INGEST_HEADERS), config.ingest_token)
            or _matches(_presented_token(ADMIN_HEADERS), config.admin_token)
        ):
            return _unauthorized("unauthorized")
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


def _unauthorized(message: str) -> Response:
    return jsonify({"error": message}), 401
