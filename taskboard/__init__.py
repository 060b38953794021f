"""
Taskboard Platform
Flask Application Factory.

Usage:
    from taskboard import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine, event as _sa_event

from taskboard.config import config
from taskboard.middleware.jwt_auth import init_jwt_middleware
from taskboard.middleware.logging_config import configure_logging
from taskboard.middleware.rate_limiter import init_rate_limits, rate_limit_key
from taskboard.middleware.timing import init_request_timing
from taskboard.models import db
from taskboard.utils.errors import E, api_error

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[],  # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to the APP_ENV env var, or "development".
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and ":memory:" not in app.config[
        "SQLALCHEMY_DATABASE_URI"
    ]:
        os.makedirs(os.path.join(os.path.dirname(os.path.dirname(__file__)), "instance"), exist_ok=True)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request middleware ───────────────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)

    @app.before_request
    def _guard_content_type():
        from flask import abort

        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            if request.data and "json" not in (request.content_type or ""):
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic and create_all see them ─────────────
    from taskboard.models import auth as _auth_models  # noqa: F401
    from taskboard.models import automation as _automation_models  # noqa: F401
    from taskboard.models import board as _board_models  # noqa: F401
    from taskboard.models import directory as _directory_models  # noqa: F401
    from taskboard.models import integration as _integration_models  # noqa: F401
    from taskboard.models import notification as _notification_models  # noqa: F401
    from taskboard.models import planning as _planning_models  # noqa: F401
    from taskboard.models import scheduling as _scheduling_models  # noqa: F401

    if app.config.get("AUTO_CREATE_TABLES", True):
        with app.app_context():
            try:
                db.create_all()
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from taskboard.blueprints.auth_bp import auth_bp
    from taskboard.blueprints.automation_bp import automation_bp
    from taskboard.blueprints.board_bp import boards_bp
    from taskboard.blueprints.card_bp import cards_bp
    from taskboard.blueprints.directory_bp import directory_bp
    from taskboard.blueprints.health_bp import health_bp
    from taskboard.blueprints.integration_bp import integration_bp
    from taskboard.blueprints.notification_bp import notification_bp
    from taskboard.blueprints.planning_bp import planning_bp
    from taskboard.blueprints.report_bp import report_bp
    from taskboard.blueprints.scheduler_bp import scheduler_bp
    from taskboard.blueprints.time_bp import time_bp

    for bp in (auth_bp, boards_bp, cards_bp, time_bp, planning_bp, report_bp, automation_bp, integration_bp,
               notification_bp, directory_bp, scheduler_bp, health_bp):
        app.register_blueprint(bp)

    init_rate_limits(app, limiter)

    # ── Scheduler ────────────────────────────────────────────────────────
    from taskboard.services import scheduled_jobs  # noqa: F401  (registers jobs)
    from taskboard.services.scheduler_service import SchedulerService

    SchedulerService.init_app(app)
    if app.config.get("SCHEDULER_ENABLED"):
        SchedulerService.start(poll_seconds=app.config.get("SCHEDULER_POLL_SECONDS", 60))

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(415)
    def unsupported_media(e):
        return api_error(E.UNSUPPORTED_MEDIA, e.description)

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    return app
