from __future__ import annotations

from flask import Blueprint, jsonify

from ..records import now_ms
from ..services import get_config

blueprint = Blueprint("system", __name__, url_prefix="/api")


@blueprint.get("/health")
def health():
    return jsonify({"ok": True, "now": now_ms(), "version": get_config().backend_build})
