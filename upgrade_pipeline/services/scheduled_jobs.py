"""
Audit-to-Upgrade Pipeline
Scheduled Jobs.

Concrete job implementations run by the SchedulerService.

Jobs:
    - audit_scan: periodic audit run; a no-op while another audit is in flight
"""

from __future__ import annotations

import logging
from typing import Any

from upgrade_pipeline.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Audit Scan
# ═══════════════════════════════════════════════════════════════════════════

@register_job("audit_scan")
def run_audit_scan(app) -> dict[str, Any]:
    """Run a full audit and queue the resulting upgrade proposals."""
    service = app.extensions["upgrade_pipeline"]
    summary = service.try_run_audit()
    if summary is None:
        logger.info("Audit scan skipped: audit already in flight",
                    extra={"job_name": "audit_scan"})
        return {"skipped": True, "reason": "audit in flight"}

    results = {
        "audit_run_id": summary["id"],
        "overall_risk_score": summary["overall_risk_score"],
        "priority": summary["priority"],
        "proposals_created": len(summary["proposal_ids"]),
    }
    logger.info("Audit scan: %s", results, extra={"job_name": "audit_scan"})
    return results
