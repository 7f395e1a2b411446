"""
Pipeline blueprint — the Pipeline API over HTTP.

Endpoints (/api/v1):
    POST /audits                               run an audit → AuditRunSummary
    GET  /audits                               retained history, most recent first
    GET  /audits/<run_id>                      full audit run
    GET  /proposals?status=                    list proposals
    GET  /proposals/<id>                       one proposal
    POST /proposals/<id>/approve               approve + hand off to executor
    POST /proposals/<id>/reject                reject
    POST /proposals/<id>/cancel                cancel an approved/implementing run
    POST /proposals/approve-batch              {"ids": [...]}
    GET  /proposals/<id>/execution-log         ExecutionStep list
    GET  /scheduler/jobs                       registered jobs + run history
    POST /scheduler/jobs/<name>/run            trigger a job now
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from upgrade_pipeline.core.exceptions import (
    InvalidStateError,
    NotFoundError,
    OrchestrationError,
    ValidationError,
)
from upgrade_pipeline.services.scheduler_service import SchedulerService, get_registered_jobs
from upgrade_pipeline.utils.errors import E, api_error, exception_response

logger = logging.getLogger(__name__)

pipeline_bp = Blueprint("pipeline_bp", __name__, url_prefix="/api/v1")


def _service():
    return current_app.extensions["upgrade_pipeline"]


def _reviewer() -> str:
    data = request.get_json(silent=True) or {}
    return data.get("reviewer") or request.headers.get("X-Reviewer") or "api"


# ── Error handlers ───────────────────────────────────────────────────────

@pipeline_bp.errorhandler(NotFoundError)
@pipeline_bp.errorhandler(InvalidStateError)
@pipeline_bp.errorhandler(ValidationError)
@pipeline_bp.errorhandler(OrchestrationError)
def _handle_pipeline_error(error: Exception):
    logger.info("Refused %s: %s", request.endpoint, error)
    return exception_response(error)


@pipeline_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in pipeline_bp endpoint=%s", request.endpoint)
    return exception_response(error)


# ═════════════════════════════════════════════════════════════════════════
# Audits
# ═════════════════════════════════════════════════════════════════════════

@pipeline_bp.route("/audits", methods=["POST"])
def run_audit():
    data = request.get_json(silent=True) or {}
    categories = data.get("categories")
    if categories is not None and not isinstance(categories, list):
        return api_error(E.VALIDATION_INVALID, "categories must be a list")
    summary = _service().run_audit(categories)
    return jsonify(summary), 201


@pipeline_bp.route("/audits", methods=["GET"])
def list_audits():
    service = _service()
    return jsonify([service.summarize(run) for run in service.list_audit_runs()])


@pipeline_bp.route("/audits/<run_id>", methods=["GET"])
def get_audit(run_id):
    service = _service()
    run = service.get_audit_run(run_id)
    data = run.to_dict()
    data["proposal_ids"] = service.summarize(run)["proposal_ids"]
    return jsonify(data)


# ═════════════════════════════════════════════════════════════════════════
# Proposals
# ═════════════════════════════════════════════════════════════════════════

@pipeline_bp.route("/proposals", methods=["GET"])
def list_proposals():
    proposals = _service().list_proposals(request.args.get("status") or None)
    return jsonify([p.to_dict() for p in proposals])


@pipeline_bp.route("/proposals/<proposal_id>", methods=["GET"])
def get_proposal(proposal_id):
    return jsonify(_service().get_proposal(proposal_id).to_dict())


@pipeline_bp.route("/proposals/<proposal_id>/approve", methods=["POST"])
def approve_proposal(proposal_id):
    proposal = _service().approve(proposal_id, reviewer=_reviewer())
    return jsonify(proposal.to_dict()), 202


@pipeline_bp.route("/proposals/<proposal_id>/reject", methods=["POST"])
def reject_proposal(proposal_id):
    data = request.get_json(silent=True) or {}
    proposal = _service().reject(proposal_id, reviewer=_reviewer(), note=data.get("note", ""))
    return jsonify(proposal.to_dict())


@pipeline_bp.route("/proposals/<proposal_id>/cancel", methods=["POST"])
def cancel_proposal(proposal_id):
    proposal = _service().cancel(proposal_id)
    return jsonify(proposal.to_dict()), 202


@pipeline_bp.route("/proposals/approve-batch", methods=["POST"])
def approve_batch():
    data = request.get_json(silent=True) or {}
    ids = data.get("ids")
    if not isinstance(ids, list) or not ids:
        return api_error(E.VALIDATION_REQUIRED, "ids must be a non-empty list")
    results = _service().approve_many([str(i) for i in ids], reviewer=_reviewer())
    return jsonify({
        "results": results,
        "approved": sum(1 for r in results if r["ok"]),
        "failed": sum(1 for r in results if not r["ok"]),
    })


@pipeline_bp.route("/proposals/<proposal_id>/execution-log", methods=["GET"])
def execution_log(proposal_id):
    steps = _service().get_execution_log(proposal_id)
    return jsonify([s.to_dict() for s in steps])


# ═════════════════════════════════════════════════════════════════════════
# Scheduler
# ═════════════════════════════════════════════════════════════════════════

@pipeline_bp.route("/scheduler/jobs", methods=["GET"])
def list_jobs():
    return jsonify(SchedulerService.list_jobs())


@pipeline_bp.route("/scheduler/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    if job_name not in get_registered_jobs():
        raise NotFoundError("ScheduledJob", job_name)
    return jsonify(SchedulerService.run_job(job_name))
