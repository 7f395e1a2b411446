"""
Audit tool service gateway.

The remote audit tool exposes one endpoint per category:

    POST <AUDIT_ENDPOINT_URL>/audit/<category>
    body:     {"category": str, "weight": float, "name": str}
    response: {"score": float, "findings": [...], "recommendations": [...]}

No retries: each call already runs under the orchestrator's per-category
timeout, and a failed category is converted into a synthetic finding.
"""

from __future__ import annotations

import logging

from upgrade_pipeline.integrations.base_gateway import BaseGateway, GatewayResult

logger = logging.getLogger(__name__)


class AuditToolGateway(BaseGateway):
    name = "audit_tool"
    retry_max = 0

    def run_category(self, category: str, payload: dict) -> GatewayResult:
        logger.debug("Requesting remote audit for category=%s", category,
                     extra={"category": category})
        return self.request("POST", f"audit/{category}", json_body=payload)
