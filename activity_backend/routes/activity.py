from __future__ import annotations

from flask import Blueprint, request

from ..middleware.auth import require_ingest
from ..services import activity_service, get_settings, query_service
from ..storage import get_player_store
from ..utils.http import handle_action

blueprint = Blueprint("activity", __name__, url_prefix="/api")


def _tz_arg(payload: dict | None = None):
    if payload and payload.get("tz") is not None:
        return payload.get("tz")
    return request.args.get("tz", request.args.get("tzOffset", 0))


def _window_arg(payload: dict | None = None):
    if payload and payload.get("window"):
        return payload.get("window")
    return request.args.get("window")


@blueprint.post("/activity/ingest")
@require_ingest
def ingest():
    payload = request.get_json(silent=True)
    observations = payload.get("observations") if isinstance(payload, dict) else payload

    def action():
        result = activity_service.ingest(get_player_store(), observations, settings=get_settings())
        return {"ok": True, **result}

    return handle_action(action)


@blueprint.get("/activity/batch")
def batch_query_get():
    def action():
        return query_service.query_batch(
            get_player_store(),
            request.args.get("ids", ""),
            _window_arg(),
            _tz_arg(),
            limit=get_settings().batch_limit,
        )

    return handle_action(action)


@blueprint.post("/activity/batch")
def batch_query():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {"ids": payload}

    def action():
        return query_service.query_batch(
            get_player_store(),
            payload.get("ids"),
            _window_arg(payload),
            _tz_arg(payload),
            limit=get_settings().batch_limit,
        )

    return handle_action(action)


@blueprint.get("/activity/<path:player_id>")
def player_timeline(player_id: str):
    def action():
        result = query_service.query_timeline(get_player_store(), player_id, _window_arg(), _tz_arg())
        return {"playerId": player_id, **result}

    return handle_action(action)


@blueprint.get("/mapping")
def mapping():
    raw_ids = request.args.get("ids")

    def action():
        store = get_player_store()
        ids = query_service.coerce_ids(raw_ids, limit=get_settings().batch_limit) if raw_ids else None
        return {"ok": True, "players": query_service.mapping(store, ids)}

    return handle_action(action)
