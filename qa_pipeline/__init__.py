"""
QA Verification Pipeline
Flask application factory.

Usage:
    from qa_pipeline import create_app
    app = create_app()           # APP_ENV, default "development"
    app = create_app("testing")

CLI:
    flask --app wsgi resume-workflows   # resume in_progress workflows after a crash
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event as _sa_event, engine as _sa_engine

from qa_pipeline.config import config
from qa_pipeline.models import db
from qa_pipeline.middleware.logging_config import configure_logging
from qa_pipeline.middleware.rate_limiter import init_rate_limits
from qa_pipeline.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """fix_attempts.workflow_id must be enforced on SQLite too."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _create_tables(app, config_name):
    # registers every table on db.metadata (create_all + Alembic autogenerate)
    from qa_pipeline.models import evidence, fixing, red_flags, verification, workflow  # noqa: F401

    if config_name == "production":
        return
    os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)


def _register_blueprints(app):
    from qa_pipeline.blueprints.evidence_bp import evidence_bp
    from qa_pipeline.blueprints.health_bp import health_bp
    from qa_pipeline.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(workflow_bp)
    app.register_blueprint(evidence_bp)
    app.register_blueprint(health_bp)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "QA Verification Pipeline"}


def _register_error_handlers(app):
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed", "method": request.method}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error on %s %s: %s", request.method, request.path, e, exc_info=True)
        return {"error": "Internal server error"}, 500


def _register_cli(app):
    @app.cli.command("resume-workflows")
    def resume_workflows_cmd():
        """Resume every in_progress test workflow from its recorded stage."""
        from qa_pipeline.blueprints import get_orchestrator

        orchestrator = get_orchestrator()
        try:
            ids = orchestrator.resume_in_progress()
        finally:
            orchestrator.shutdown()
        logger.info("Resumed %d workflow(s): %s", len(ids), ids)


def create_app(config_name=None):
    """
    Build the pipeline app.

    Args:
        config_name: "development", "testing" or "production"; defaults to
                     the APP_ENV env var, then "development".
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    _create_tables(app, config_name)
    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cli(app)
    init_rate_limits(app, limiter)

    if app.config.get("RESUME_ON_STARTUP"):
        with app.app_context():
            from qa_pipeline.blueprints import get_orchestrator
            try:
                resumed = get_orchestrator().resume_in_progress(background=True)
                app.logger.info("Queued %d interrupted workflow(s) for resume", len(resumed))
            except Exception as e:
                app.logger.warning("Workflow resume on startup failed: %s", e)

    return app
