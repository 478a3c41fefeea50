# backend/checkout_engine/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def _engine_options(app: Flask) -> dict:
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        # Busy timeout: how long BEGIN IMMEDIATE waits for another writer
        connect_args = dict(options.get("connect_args") or {})
        connect_args.setdefault("timeout", app.config["CHECKOUT_LOCK_TIMEOUT_SECONDS"])
        options["connect_args"] = connect_args
    return options


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.payment_service import init_payment_gateway
    from .services.permission_service import init_permission_cache
    init_payment_gateway(app)
    init_permission_cache(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
