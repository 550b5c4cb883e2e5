# backend/clicksilog/__init__.py
import logging

from flask import Flask, jsonify, request

from .config import Config
from .extensions import db, migrate
from .rate_limit import RateLimiter


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)

    logging.basicConfig(level=app.config["LOG_LEVEL"])
    app.logger.setLevel(app.config["LOG_LEVEL"])
    logging.getLogger("clicksilog").setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Payment provider and rate limiter are chosen once here
    from .services.paymongo import build_provider
    app.extensions["payment_provider"] = build_provider(app.config)
    app.extensions["rate_limiter"] = RateLimiter(
        app.config["RATE_LIMIT_MAX_REQUESTS"],
        app.config["RATE_LIMIT_WINDOW_SECONDS"],
    )

    # Register blueprints
    from .routes.functions import functions_bp
    from .routes.orders import orders_bp
    from .routes.discounts import discounts_bp
    from .routes.payments import payments_bp

    app.register_blueprint(functions_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(discounts_bp)
    app.register_blueprint(payments_bp)

    @app.before_request
    def handle_preflight():
        if request.method == "OPTIONS":
            return app.make_response(("", 204))

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = app.config["CORS_ALLOWED_ORIGINS"]
        if "*" in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = "*"
        elif origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Paymongo-Signature"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,OPTIONS"
        return response

    @app.errorhandler(413)
    def request_too_large(_error):
        return jsonify({"error": "Request too large"}), 413

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return jsonify({"error": "Method not allowed"}), 405

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
