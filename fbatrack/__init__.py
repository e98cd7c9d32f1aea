# fbatrack/__init__.py
import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .config import get_config
from .extensions import register_extensions
from .api import register_blueprints
from .errors import (
    AllocationError, AllocationSaveError, BackupFormatError,
    ExportValidationError, PackGroupCsvError, StorageError,
)

logger = logging.getLogger(__name__)

JSON_ERROR_CODES = (400, 401, 403, 404, 409, 413, 422, 500)


def _configure_logging(app: Flask):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("fbatrack").setLevel(level)
    app.logger.setLevel(level)


def _register_error_handlers(app: Flask):
    def http_error(e: HTTPException):
        return jsonify({"error": e.description or e.name}), e.code

    for code in JSON_ERROR_CODES:
        app.register_error_handler(code, http_error)

    @app.errorhandler(ExportValidationError)
    def export_invalid(e):
        return jsonify({"error": str(e), "errors": e.errors}), 422

    @app.errorhandler(PackGroupCsvError)
    @app.errorhandler(BackupFormatError)
    def bad_upload(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(AllocationSaveError)
    def save_failed(e):
        return jsonify({"error": str(e), "pending_items": e.pending_items}), 500

    @app.errorhandler(AllocationError)
    def bad_allocation(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(StorageError)
    def storage_failed(e):
        logger.error("Receipt storage failure: %s", e)
        return jsonify({"error": "receipt storage unavailable"}), 502


def create_app(env_name: str | None = None, config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__)

    cfg = get_config(env_name)
    app.config.from_object(cfg)

    # tests pass their SQLALCHEMY_DATABASE_URI / receipt store here
    if config_overrides:
        app.config.update(config_overrides)

    _configure_logging(app)
    register_extensions(app)
    register_blueprints(app)
    _register_error_handlers(app)

    @app.cli.command("init-db")
    def init_db_command():
        """Create every table defined in the models."""
        from .models import db
        with app.app_context():
            db.create_all()
        print("Tables created")

    return app
