"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        readiness; 200 whenever the app is up
    GET /api/v1/health/live   archive DB, pipeline service, scheduler timers
                              and which outbound integrations are configured
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from upgrade_pipeline.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")

# config key -> integration name reported under checks["integrations"]
_INTEGRATION_KEYS = {
    "AUDIT_ENDPOINT_URL": "audit_tool",
    "ISSUE_TRACKER_URL": "issue_tracker",
    "DEPLOYMENT_API_URL": "deployment",
}


def _check_archive() -> dict:
    started = time.perf_counter()
    db.session.execute(db.text("SELECT 1"))
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _check_scheduler() -> dict:
    scheduler = current_app.extensions.get("scheduler")
    if scheduler is None:
        return {"status": "skipped", "detail": "scheduler not initialised"}
    return {"status": "ok", "timers": scheduler.running_timers()}


@health_bp.route("", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Dependency report; 503 when the archive or the pipeline service is unusable."""
    checks = {}
    healthy = True

    try:
        checks["database"] = _check_archive()
    except Exception as exc:
        logger.error("Archive database unreachable: %s", exc)
        checks["database"] = {"status": "error", "detail": str(exc)}
        healthy = False

    service = current_app.extensions.get("upgrade_pipeline")
    if service is None:
        checks["pipeline"] = {"status": "error", "detail": "pipeline not initialised"}
        healthy = False
    else:
        checks["pipeline"] = {"status": "ok", **service.status()}

    # Informational only; an unreachable scheduler never fails the probe
    checks["scheduler"] = _check_scheduler()
    checks["integrations"] = {
        name: "configured" if current_app.config.get(key) else "disabled"
        for key, name in _INTEGRATION_KEYS.items()
    }

    body = {"status": "ok" if healthy else "degraded", "checks": checks}
    return jsonify(body), 200 if healthy else 503
