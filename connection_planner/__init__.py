"""
Connection Planner
Flask Application Factory.

Usage:
    from connection_planner import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from connection_planner.config import config
from connection_planner.middleware.logging_config import configure_logging
from connection_planner.middleware.rate_limiter import init_rate_limits
from connection_planner.middleware.timing import init_request_timing
from connection_planner.models import db
from connection_planner.utils.errors import http_error, internal_error

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
# Storage comes from RATELIMIT_STORAGE_URI in the app config at init_app.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per blueprint
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Models (registered on db.metadata before create_all) ─────────────
    from connection_planner.models import connection as _connection_models    # noqa: F401
    from connection_planner.models import master_data as _master_data_models  # noqa: F401
    from connection_planner.models import planner as _planner_models          # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
        if uri.startswith("sqlite:///") and ":memory:" not in uri:
            os.makedirs(os.path.dirname(uri[len("sqlite:///"):]), exist_ok=True)
        db.create_all()
        app.logger.debug("db.create_all() completed")

    # ── Blueprints ───────────────────────────────────────────────────────
    from connection_planner.blueprints.connection_bp import connection_bp
    from connection_planner.blueprints.health_bp import health_bp
    from connection_planner.blueprints.master_data_bp import master_data_bp
    from connection_planner.blueprints.planner_bp import planner_bp

    app.register_blueprint(connection_bp)
    app.register_blueprint(master_data_bp)
    app.register_blueprint(planner_bp)
    app.register_blueprint(health_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return http_error(e, details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return http_error(e, details={"method": request.method})

    @app.errorhandler(429)
    def rate_limited(e):
        logger.warning("Rate limit hit on %s %s: %s", request.method, request.path, e.description)
        return http_error(e)

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error on %s %s", request.method, request.path, exc_info=True)
        return internal_error()

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
