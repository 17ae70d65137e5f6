from __future__ import annotations

from flask import Blueprint, request

from ..middleware.auth import require_admin
from ..services import admin_service
from ..storage import get_player_store
from ..utils.http import handle_action

blueprint = Blueprint("admin", __name__, url_prefix="/api/admin")


@blueprint.post("/flush")
@require_admin
def flush():
    return handle_action(lambda: admin_service.flush_now(get_player_store()))


@blueprint.post("/reset")
@require_admin
def reset():
    return handle_action(lambda: admin_service.reset_all(get_player_store()))


@blueprint.delete("/players/<path:player_id>")
@require_admin
def delete_player(player_id: str):
    return handle_action(lambda: admin_service.delete_player(get_player_store(), player_id))


@blueprint.post("/real-name")
@require_admin
def update_real_name():
    payload = request.get_json(silent=True) or {}
    return handle_action(
        lambda: admin_service.set_real_name(get_player_store(), payload.get("playerId"), payload.get("realName"))
    )


@blueprint.post("/cleanup")
@require_admin
def cleanup():
    def action():
        return {"ok": True, **admin_service.cleanup_records(get_player_store())}

    return handle_action(action)


@blueprint.get("/stats")
@require_admin
def stats():
    def action():
        store = get_player_store()
        return {"ok": True, **store.stats(), "players": len(store.list_ids())}

    return handle_action(action)
