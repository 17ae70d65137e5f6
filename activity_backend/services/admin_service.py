from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from ..errors import BadRequestError
from ..records import normalize_player_id
from ..storage.player_store import PlayerStore

logger = logging.getLogger(__name__)

PENDING_PREFIX = "pending:"
_ANONYMOUS_RE = re.compile(r"^anonymous\s+player$", re.IGNORECASE)
MAX_REAL_NAME_LENGTH = 120


def _require_id(player_id: Any) -> str:
    normalized = normalize_player_id(player_id)
    if normalized is None:
        raise BadRequestError("playerId is required")
    return normalized


def delete_player(store: PlayerStore, player_id: Any) -> Dict[str, Any]:
    normalized = _require_id(player_id)
    removed = store.delete(normalized)
    if removed:
        logger.info("Deleted player record %s", normalized)
    return {"ok": True, "deleted": removed}


def flush_now(store: PlayerStore) -> Dict[str, Any]:
    return store.flush_dirty()


def reset_all(store: PlayerStore) -> Dict[str, Any]:
    return {"ok": True, "removed": store.reset()}


def set_real_name(store: PlayerStore, player_id: Any, real_name: Any) -> Dict[str, Any]:
    normalized = _require_id(player_id)
    name: Optional[str] = str(real_name).strip()[:MAX_REAL_NAME_LENGTH] if real_name is not None else None
    with store.locked():
        record = store.get(normalized, create_if_missing=True)
        record.real_name = name or None
        store.mark_dirty(normalized)
        return {"ok": True, "playerId": normalized, "realName": record.real_name}


def cleanup_records(store: PlayerStore) -> Dict[str, int]:
    """
    Drop placeholder `pending:*` players and "Anonymous Player" usernames, then
    delete records left with neither a username nor a real name.
    """
    removed_pending = 0
    removed_anonymous = 0
    pruned_empty = 0

    with store.locked():
        for player_id in store.list_ids():
            if player_id.startswith(PENDING_PREFIX):
                store.delete(player_id)
                removed_pending += 1
                continue

            record = store.read_uncached(player_id)
            if record is None:
                continue

            anonymous = [name for name in record.usernames if _ANONYMOUS_RE.match(name)]
            for name in anonymous:
                del record.usernames[name]
            removed_anonymous += len(anonymous)

            if not record.usernames and not (record.real_name or "").strip():
                store.delete(player_id)
                pruned_empty += 1
            elif anonymous:
                record.refresh_derived()
                store.write_through(player_id, record)

        store.flush_dirty()

    logger.info(
        "Cleanup removed %s pending players, %s anonymous usernames, %s empty records",
        removed_pending,
        removed_anonymous,
        pruned_empty,
    )
    return {
        "removedPending": removed_pending,
        "removedAnonymousUsernames": removed_anonymous,
        "prunedEmptyPlayers": pruned_empty,
    }
