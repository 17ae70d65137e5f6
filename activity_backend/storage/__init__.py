from __future__ import annotations

from typing import Optional

from .json_store import JsonDocumentStore
from .player_store import PlayerStore


player_store: Optional[PlayerStore] = None


def _make_store(config) -> PlayerStore:
    secret = (config.encryption.get("key") or "").strip() if config.encryption else ""
    algorithm = config.encryption.get("algorithm", "aes-256-gcm") if config.encryption else "aes-256-gcm"
    documents = JsonDocumentStore(
        base_dir=config.players_dir,
        encryption_secret=secret or None,
        encryption_algorithm=algorithm,
    )
    documents.init()
    return PlayerStore(documents, capacity=config.activity.cache_capacity)


def init_storage(config) -> PlayerStore:
    global player_store
    player_store = _make_store(config)
    return player_store


def get_player_store() -> PlayerStore:
    if player_store is None:
        raise RuntimeError("player_store is not initialised")
    return player_store


__all__ = [
    "JsonDocumentStore",
    "PlayerStore",
    "init_storage",
    "get_player_store",
    "player_store",
]
