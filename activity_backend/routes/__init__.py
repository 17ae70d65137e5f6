from __future__ import annotations

from flask import Flask
from flask_cors import CORS

from . import activity, admin, system


def register_blueprints(app: Flask, config) -> None:
    origins = config.cors_allow_list or ["*"]
    cors_config = {
        r"/api/*": {
            "origins": "*" if "*" in origins else origins,
            "supports_credentials": False,
        }
    }
    CORS(app, resources=cors_config)

    app.register_blueprint(activity.blueprint)
    app.register_blueprint(admin.blueprint)
    app.register_blueprint(system.blueprint)
