"""
Fire-safety contract management
Flask Application Factory.

Usage:
    from firesafe import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from firesafe.auth import init_identity
from firesafe.config import config
from firesafe.middleware.logging_config import configure_logging
from firesafe.middleware.rate_limiter import init_rate_limits
from firesafe.middleware.timing import init_request_timing
from firesafe.models import db

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
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
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

    # ── Identity headers and request timing ──────────────────────────────
    init_identity(app)
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from firesafe.models import party as _party_models              # noqa: F401
    from firesafe.models import project as _project_models          # noqa: F401
    from firesafe.models import negotiation as _negotiation_models  # noqa: F401
    from firesafe.models import billing as _billing_models          # noqa: F401
    from firesafe.models import certificate as _certificate_models  # noqa: F401
    from firesafe.models import notification as _notification_models  # noqa: F401
    from firesafe.models import scheduling as _scheduling_models    # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if config_name != "production":
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from firesafe.blueprints.billing_bp import billing_bp
    from firesafe.blueprints.jobs_bp import jobs_bp
    from firesafe.blueprints.notification_bp import notification_bp
    from firesafe.blueprints.projects_bp import projects_bp
    from firesafe.blueprints.work_orders_bp import work_orders_bp

    app.register_blueprint(projects_bp)
    app.register_blueprint(work_orders_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(jobs_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("reconcile")
    @click.option("--job", "job_name", default=None, help="Run a single registered job.")
    def reconcile_cmd(job_name):
        """Run the daily reconciliation jobs once."""
        from firesafe.services.scheduler_service import SchedulerService

        results = [SchedulerService.run_job(job_name)] if job_name else SchedulerService.run_all()
        for result in results:
            click.echo(f"{result['job_name']}: {result['status']} {result.get('result') or result.get('error')}")

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Fire-safety contract management"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    importlib.import_module("firesafe.services.scheduled_jobs")  # registers @register_job handlers
    from firesafe.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    return app
