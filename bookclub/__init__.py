"""
Book Club Reading Events
Flask Application Factory.

Usage:
    from bookclub import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
    app = create_app("testing", clock=FixedClock(date(2026, 3, 1)))
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from bookclub.config import config
from bookclub.core.clock import SystemClock
from bookclub.middleware.logging_config import configure_logging
from bookclub.middleware.rate_limiter import init_rate_limits
from bookclub.middleware.timing import init_request_timing
from bookclub.models import db

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None, clock=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        clock: Source of "today" for every date rule. Defaults to the
               UTC wall clock; tests pass a FixedClock.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    app.extensions["clock"] = clock or SystemClock()

    init_request_timing(app)

    # ── Models (register tables on db.metadata) ──────────────────────────
    from bookclub.models import user as _user_models                # noqa: F401
    from bookclub.models import reading_event as _event_models      # noqa: F401
    from bookclub.models import enrollment as _enrollment_models    # noqa: F401
    from bookclub.models import check_in as _check_in_models        # noqa: F401

    with app.app_context():
        db_path = db.engine.url.database
        if db.engine.url.drivername.startswith("sqlite") and db_path and db_path != ":memory:":
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    from bookclub.blueprints.events_bp import events_bp

    app.register_blueprint(events_bp)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Book Club Reading Events"}

    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
