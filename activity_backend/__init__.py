from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from flask import Flask

    from .config import AppConfig


def create_app(config: Optional["AppConfig"] = None) -> "Flask":
    """
    Application factory used by the WSGI entry point and the tests.
    """
    from .config import load_config
    from .logging_config import configure_logging
    from .middleware.rate_limit import init_rate_limit
    from .middleware.request_logging import init_request_logging
    from .routes import register_blueprints
    from .services import configure_services
    from .services.flush_service import start_activity_flush
    from .services.shard_poll_service import start_shard_poller
    from .storage import init_storage

    if config is None:
        config = load_config()

    configure_logging(config)

    from flask import Flask

    app = Flask(__name__)
    app.config.update(config.flask_settings)
    app.config["PORT"] = config.port
    app.config["DEBUG"] = not config.is_production
    app.config["APP_CONFIG"] = config

    configure_services(config)
    store = init_storage(config)
    app.extensions["player_store"] = store

    start_activity_flush(store, config)
    start_shard_poller(store, config)

    init_request_logging(app)
    init_rate_limit(app)
    register_blueprints(app, config)

    return app
