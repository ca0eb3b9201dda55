"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time — this enables:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, push notifier) via init_app()
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Register a custom JSON provider to serialise Decimal as string
     (monetary amounts are transmitted as strings, never JS numbers)

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before db.create_all() inspects it.
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError as SchemaValidationError

from groupledger.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# Flask's default JSON encoder does not handle Decimal.

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Extends Flask's default JSON provider to serialise Decimal as str.

    Example: Decimal("10.50") → "10.50" (not 10.5 or 10.500000001)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from groupledger.app.extensions import db, notifier
    db.init_app(app)
    notifier.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # Imported for the side effect of populating SQLAlchemy's MetaData.
    with app.app_context():
        from groupledger.app.models import (  # noqa: F401
            device_token,
            expense,
            expense_participant,
            group,
            join_request,
            membership,
            user,
        )

    # ── Blueprints ─────────────────────────────────────────────────────────
    _register_blueprints(app)

    # ── Error handlers ─────────────────────────────────────────────────────
    _register_error_handlers(app)
    _register_cors(app)

    app.logger.info("GroupLedger app created (config=%s)", config_name)
    return app


def _configure_logging(app: Flask) -> None:
    """
    Applies LOG_LEVEL to the app logger and the groupledger package loggers.

    Module loggers (logging.getLogger(__name__)) propagate to the root
    logger; a basic handler is installed only if none exists yet.
    """
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    if not logging.getLogger().handlers:
        logging.basicConfig(
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )

    logging.getLogger("groupledger").setLevel(level)
    app.logger.setLevel(level)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    The url_prefix is set here so individual route files only specify
    the path relative to their resource (e.g. "/" and "/<int:id>").
    """
    from groupledger.app.routes.auth import auth_bp
    from groupledger.app.routes.balances import balances_bp
    from groupledger.app.routes.expenses import expenses_bp
    from groupledger.app.routes.groups import groups_bp
    from groupledger.app.routes.join_requests import join_requests_bp
    from groupledger.app.routes.settlements import settlements_bp
    from groupledger.app.routes.users import users_bp

    app.register_blueprint(auth_bp,          url_prefix="/api/v1/auth")
    app.register_blueprint(users_bp,         url_prefix="/api/v1/users")
    app.register_blueprint(groups_bp,        url_prefix="/api/v1/groups")
    app.register_blueprint(join_requests_bp, url_prefix="/api/v1/requests")
    # expenses_bp owns both /groups/<id>/expenses and /expenses/<id>.
    app.register_blueprint(expenses_bp,      url_prefix="/api/v1")
    app.register_blueprint(balances_bp,      url_prefix="/api/v1/groups")
    app.register_blueprint(settlements_bp,   url_prefix="/api/v1/groups")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError            → structured JSON error envelope with its HTTP status
      SchemaValidationError → marshmallow errors as MISSING_FIELD / INVALID_FIELD (400)
      Exception           → generic INTERNAL_ERROR (500); traceback logged

    Stack traces never leave the server.
    """
    from werkzeug.exceptions import HTTPException

    from groupledger.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service, route) into the standard error envelope.

        Routes never catch AppError — they let it propagate here.
        """
        if error.http_status >= 500:
            app.logger.error("%r on %s %s", error, request.method, request.path)
        else:
            app.logger.info("%s %s -> %s %s", request.method, request.path, error.http_status, error.code)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(SchemaValidationError)
    def handle_validation_error(error: SchemaValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Returns the FIRST error only. If the message is one of the ErrorCode
        constants it is used as the code; otherwise INVALID_FIELD.
        """
        messages = error.messages  # e.g. {"total_amount": ["INVALID_AMOUNT_PRECISION"]}
        known_codes = set(vars(ErrorCode).values())

        field = None
        raw_message = "Invalid input."

        if isinstance(messages, dict):
            field_name, field_errors = _first_error(messages)
            field = field_name if field_name != "_schema" else None
            raw_message = field_errors
        elif isinstance(messages, list):
            raw_message = messages[0] if messages else "Invalid input."

        raw_message = str(raw_message)
        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif raw_message.startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        response_body = {"error": {"code": code, "message": message}}
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        """404 for unknown routes, 405 for wrong methods, etc. in the same envelope."""
        return jsonify({
            "error": {
                "code": error.name.upper().replace(" ", "_"),
                "message": error.description,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.
        The full traceback is logged to the application logger.
        """
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _first_error(messages: dict, prefix: str = "") -> tuple[str, str]:
    """
    Walks a nested marshmallow messages dict to its first leaf.

    {"participants": {0: {"share_amount": ["..."]}}} → ("participants.0.share_amount", "...")
    """
    for key, value in messages.items():
        name = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            return _first_error(value, name)
        if isinstance(value, list):
            return name, (value[0] if value else "Invalid value.")
        return name, str(value)
    return prefix or "_schema", "Invalid input."


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development.

    Enabled when DEBUG or TESTING is true so a frontend served from another
    local port can call the API with Authorization headers.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """
    Returns a human-readable default message for a known error code.
    Used when a schema ValidationError message IS the error code constant.
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "NOTHING_TO_UPDATE": "Provide at least one field to update.",
    }
    return _messages.get(code, "Invalid input.")
