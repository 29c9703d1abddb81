# backend/pharmapos/__init__.py
import logging
import secrets

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import DomainError
from .extensions import db, migrate, stock_locks
from .locks import StockLockTimeout
from .responses import error_body


REQUEST_ID_HEADER = "X-Request-Id"


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    stock_locks.init_app(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.stores import stores_bp
    from .routes.users import users_bp
    from .routes.products import products_bp
    from .routes.customers import customers_bp
    from .routes.discounts import discounts_bp
    from .routes.inventory import inventory_bp
    from .routes.transfers import transfers_bp
    from .routes.reservations import reservations_bp
    from .routes.sales import sales_bp
    from .routes.cash import cash_bp
    from .routes.license import license_bp
    from .routes.notifications import notifications_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(stores_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(discounts_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(reservations_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(cash_bp)
    app.register_blueprint(license_bp)
    app.register_blueprint(notifications_bp)

    @app.before_request
    def assign_request_id():
        incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
        g.request_id = incoming[:64] if incoming else secrets.token_hex(8)

    @app.after_request
    def add_common_headers(response):
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers[REQUEST_ID_HEADER] = request_id

        origin = request.headers.get("Origin")
        if origin in set(app.config.get("CORS_ALLOWED_ORIGINS", [])):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, X-Store-Id, X-Request-Id"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    @app.errorhandler(DomainError)
    def handle_domain_error(exc: DomainError):
        db.session.rollback()
        if exc.status_code >= 500:
            app.logger.error("request_id=%s %s: %s", getattr(g, "request_id", None), exc.code, exc.message)
        return jsonify(error_body(exc.code, exc.message, exc.details or None)), exc.status_code

    @app.errorhandler(StockLockTimeout)
    def handle_lock_timeout(exc):
        db.session.rollback()
        app.logger.warning("request_id=%s %s", getattr(g, "request_id", None), exc)
        return jsonify(error_body("STOCK_BUSY", "Stock is busy, try again")), 503

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        code = (exc.name or "HTTP_ERROR").upper().replace(" ", "_")
        return jsonify(error_body(code, exc.description or exc.name)), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        db.session.rollback()
        app.logger.exception("Unhandled error request_id=%s path=%s", getattr(g, "request_id", None), request.path)
        return jsonify(error_body("INTERNAL_ERROR", "Internal server error")), 500

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
