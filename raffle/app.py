from __future__ import annotations

from typing import Callable, Optional

from flask import Flask, jsonify
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from .config import load_settings
from .db import init_engine
from .exceptions import RaffleError, UpkeepNotNeeded
from .routes.admin import bp as admin_bp
from .routes.config import bp as config_bp
from .routes.raffle import bp as raffle_bp
from .services.runtime import RaffleRuntime


def create_app(clock: Optional[Callable[[], int]] = None) -> Flask:
    settings = load_settings()
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.flask.secret_key
    init_engine(settings.database_url)
    app.extensions["chainraffle"] = RaffleRuntime(settings, clock=clock, logger=app.logger)

    app.register_blueprint(raffle_bp, url_prefix="/raffle")
    app.register_blueprint(admin_bp, url_prefix="/admin/api")
    app.register_blueprint(config_bp)

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        return jsonify({"error": "ValidationError", "message": str(exc)}), 400

    @app.errorhandler(RaffleError)
    def handle_raffle_error(exc: RaffleError):
        if isinstance(exc, UpkeepNotNeeded):
            app.logger.info("Rejected upkeep: %s", exc)
        elif exc.status_code >= 500:
            app.logger.error("Raffle error: %s", exc)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(Exception)
    def handle_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        app.logger.exception("Unhandled error: %s", exc)
        return jsonify({"error": str(exc)}), 500

    return app
