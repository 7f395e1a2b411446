"""
Audit-to-Upgrade Pipeline
Flask application factory.

Usage:
    from upgrade_pipeline import create_app
    app = create_app()                                   # APP_ENV or "development"
    app = create_app("testing", pipeline_service=svc)    # stubbed collaborators
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS

from upgrade_pipeline.config import config
from upgrade_pipeline.middleware.logging_config import configure_logging
from upgrade_pipeline.models import db
from upgrade_pipeline.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def _ensure_sqlite_dir(uri: str) -> None:
    prefix = "sqlite:///"
    if uri.startswith(prefix) and ":memory:" not in uri:
        os.makedirs(os.path.dirname(uri[len(prefix):]), exist_ok=True)


def _init_cors(app: Flask) -> None:
    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _init_pipeline(app: Flask, pipeline_service):
    from upgrade_pipeline.pipeline.service import PipelineService
    from upgrade_pipeline.services.record_store import PipelineRecordStore

    service = pipeline_service or PipelineService.from_config(app.config)
    # Archive every pipeline event; the service itself stays DB-free
    PipelineRecordStore(app).attach(service.events)
    app.extensions["upgrade_pipeline"] = service
    return service


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405,
                         details={"method": request.method})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 on %s: %s", request.path, e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def create_app(config_name=None, pipeline_service=None):
    """
    Build the Pipeline API application.

    Args:
        config_name: "development", "testing" or "production";
                     APP_ENV (then "development") when omitted.
        pipeline_service: pre-built PipelineService. Without one the
                     service is wired from the app config.

    Returns:
        Flask app with the archive tables created, the pipeline service in
        ``app.extensions["upgrade_pipeline"]`` and the scheduler initialised.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # Logging first so extension setup is captured
    configure_logging(app)

    db.init_app(app)
    _init_cors(app)

    # Table registration must precede create_all
    from upgrade_pipeline.models import pipeline as _pipeline_models      # noqa: F401
    from upgrade_pipeline.models import scheduling as _scheduling_models  # noqa: F401

    _ensure_sqlite_dir(app.config["SQLALCHEMY_DATABASE_URI"])
    with app.app_context():
        db.create_all()

    service = _init_pipeline(app, pipeline_service)

    from upgrade_pipeline.blueprints.health_bp import health_bp
    from upgrade_pipeline.blueprints.pipeline_bp import pipeline_bp

    app.register_blueprint(pipeline_bp)
    app.register_blueprint(health_bp)
    _register_error_handlers(app)

    # Jobs register themselves on import
    from upgrade_pipeline.services import scheduled_jobs as _scheduled_jobs  # noqa: F401
    from upgrade_pipeline.services.scheduler_service import SchedulerService

    SchedulerService.init_app(app)

    logger.info("Pipeline API ready (%s): %d categories, backends=%s", config_name,
                len(service.categories), ",".join(service.registry.list_ids()))
    return app
