from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

DEFAULT_SHARDS = "us-1,us-5,us-20,eu-1,eu-5,eu-20"


def _load_dotenv() -> None:
    env_path = os.environ.get("DOTENV_CONFIG_PATH")
    if env_path:
        candidate = Path(env_path).expanduser()
    else:
        candidate = BASE_DIR / ".env"
    load_dotenv(candidate)


def _to_int(value: Optional[str], fallback: int) -> int:
    try:
        if value is None or value == "":
            return fallback
        return int(float(value))
    except (TypeError, ValueError):
        return fallback


def _to_float(value: Optional[str], fallback: float) -> float:
    try:
        if value is None or value == "":
            return fallback
        return float(value)
    except (TypeError, ValueError):
        return fallback


def _clamp(value, low, high):
    return max(low, min(value, high))


def _parse_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _resolve_path(value: Optional[str], fallback: str) -> Path:
    candidate = Path(value or fallback)
    if candidate.is_absolute():
        return candidate
    return BASE_DIR / candidate


def _to_bool(value: Optional[str], fallback: bool = False) -> bool:
    if value is None:
        return fallback
    text = str(value).strip().lower()
    if text == "":
        return fallback
    return text in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ActivitySettings:
    """Tunables for session coalescing, retention, caching and polling."""

    cache_capacity: int = 200
    flush_interval_s: float = 15.0
    flush_enabled: bool = True
    inactivity_threshold_ms: int = 3 * 60 * 1000
    retention_ms: int = 31 * 24 * 60 * 60 * 1000
    join_backdate_max_ms: int = 12 * 60 * 60 * 1000
    max_future_skew_ms: int = 60 * 1000
    batch_limit: int = 50
    poll_enabled: bool = False
    poll_interval_s: float = 5.0
    shards: List[str] = field(default_factory=lambda: _parse_list(DEFAULT_SHARDS))
    shard_url_template: str = ""


@dataclass
class AppConfig:
    node_env: str
    port: int
    data_dir: Path
    players_dir: Path
    cors_allow_list: List[str]
    backend_build: str
    log_level: str
    admin_token: str
    encryption: Dict[str, Any]
    activity: ActivitySettings
    flask_settings: Dict[str, Any] = field(default_factory=dict)
    ingest_token: str = ""

    @property
    def is_production(self) -> bool:
        return self.node_env.lower() == "production"


def _load_activity_settings() -> ActivitySettings:
    return ActivitySettings(
        cache_capacity=_clamp(_to_int(os.environ.get("ACTIVITY_CACHE_CAPACITY"), 200), 1, 100_000),
        flush_interval_s=_clamp(_to_float(os.environ.get("ACTIVITY_FLUSH_INTERVAL_SECONDS"), 15.0), 1.0, 3600.0),
        flush_enabled=_to_bool(os.environ.get("ACTIVITY_FLUSH_ENABLED"), True),
        inactivity_threshold_ms=int(
            _clamp(_to_float(os.environ.get("ACTIVITY_INACTIVITY_SECONDS"), 180.0), 10.0, 3600.0) * 1000
        ),
        retention_ms=int(
            _clamp(_to_float(os.environ.get("ACTIVITY_RETENTION_DAYS"), 31.0), 1.0, 366.0) * 24 * 60 * 60 * 1000
        ),
        join_backdate_max_ms=int(
            _clamp(_to_float(os.environ.get("ACTIVITY_JOIN_BACKDATE_MAX_HOURS"), 12.0), 0.0, 72.0) * 60 * 60 * 1000
        ),
        max_future_skew_ms=int(
            _clamp(_to_float(os.environ.get("ACTIVITY_MAX_FUTURE_SKEW_SECONDS"), 60.0), 0.0, 3600.0) * 1000
        ),
        batch_limit=_clamp(_to_int(os.environ.get("ACTIVITY_BATCH_LIMIT"), 50), 1, 500),
        poll_enabled=_to_bool(os.environ.get("ACTIVITY_POLL_ENABLED"), False),
        poll_interval_s=_clamp(_to_float(os.environ.get("ACTIVITY_POLL_INTERVAL_SECONDS"), 5.0), 1.0, 600.0),
        shards=_parse_list(os.environ.get("ACTIVITY_SHARDS") or DEFAULT_SHARDS),
        shard_url_template=(os.environ.get("ACTIVITY_SHARD_URL_TEMPLATE") or "").strip(),
    )


def load_config() -> AppConfig:
    _load_dotenv()

    node_env = os.environ.get("NODE_ENV", "development")
    cors_allow_list = _parse_list(os.environ.get("CORS_ALLOW_ORIGINS") or "*")

    data_dir = _resolve_path(os.environ.get("DATA_DIR"), "server-data")
    config = AppConfig(
        node_env=node_env,
        port=_to_int(os.environ.get("PORT"), 3000),
        data_dir=data_dir,
        players_dir=_resolve_path(os.environ.get("PLAYERS_DIR"), str(data_dir / "players")),
        cors_allow_list=cors_allow_list,
        backend_build=os.environ.get("BACKEND_BUILD", "v1.0.0"),
        log_level=os.environ.get("LOG_LEVEL", "info" if node_env == "production" else "debug"),
        admin_token=(os.environ.get("ADMIN_TOKEN") or "").strip(),
        ingest_token=(os.environ.get("INGEST_TOKEN") or "").strip(),
        encryption={
            "key": os.environ.get("DATA_ENCRYPTION_KEY", ""),
            "algorithm": os.environ.get("DATA_ENCRYPTION_ALGO", "aes-256-gcm"),
        },
        activity=_load_activity_settings(),
        flask_settings={
            "JSON_SORT_KEYS": False,
            "MAX_CONTENT_LENGTH": 256 * 1024,
        },
    )

    config.data_dir.mkdir(parents=True, exist_ok=True)
    config.players_dir.mkdir(parents=True, exist_ok=True)
    return config


_CONFIG_CACHE: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Shared accessor for scripts that run outside the Flask app factory.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is None:
        _CONFIG_CACHE = load_config()
    return _CONFIG_CACHE
