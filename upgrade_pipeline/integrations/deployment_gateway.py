"""
Deployment control-plane gateway.

Implements the DeploymentTarget the executor drives through validate,
test, stage and production steps:

    GET  /api/files/exists/<path>      {"exists": bool}
    POST /api/tests/run/<test_id>      {"passed": bool, "output": str}
    POST /api/deployment/staging       {"success": bool, "error": str}
    POST /api/tests/staging            {"passed": bool, "output": str}
    POST /api/deployment/production    {"success": bool, "error": str}

Deploy calls are never retried: a repeated production deploy is not
safe without idempotent deploy tooling.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from upgrade_pipeline.integrations.base_gateway import BaseGateway, GatewayResult
from upgrade_pipeline.pipeline.executor import DeploymentTarget
from upgrade_pipeline.pipeline.types import StepOutcome, UpgradeProposal

logger = logging.getLogger(__name__)


def _proposal_payload(proposal: UpgradeProposal) -> dict:
    return {
        "proposal_id": proposal.id,
        "title": proposal.title,
        "category": proposal.category,
        "files": list(proposal.files),
        "tests": list(proposal.tests),
    }


class _ReadGateway(BaseGateway):
    name = "deployment"


class _WriteGateway(BaseGateway):
    name = "deployment"
    retry_max = 0


class DeploymentGateway(DeploymentTarget):

    def __init__(self, base_url: str, *, session=None, timeout: float = 120) -> None:
        self._read = _ReadGateway(base_url, session=session, timeout=timeout)
        self._write = _WriteGateway(base_url, session=session, timeout=timeout)

    @staticmethod
    def _outcome(result: GatewayResult, flag: str, detail_key: str) -> StepOutcome:
        if not result.ok:
            return StepOutcome(ok=False, detail=result.error or "request failed")
        data = result.data if isinstance(result.data, dict) else {}
        ok = bool(data.get(flag))
        return StepOutcome(ok=ok, detail=str(data.get(detail_key) or ""))

    def check_resource(self, path: str) -> bool:
        result = self._read.request("GET", f"api/files/exists/{quote(path, safe='')}")
        if not result.ok:
            logger.warning("Resource check failed for %s: %s", path, result.error)
            return False
        return bool((result.data or {}).get("exists"))

    def run_test(self, test_id: str, proposal: UpgradeProposal) -> StepOutcome:
        result = self._read.request(
            "POST", f"api/tests/run/{quote(test_id, safe='')}",
            json_body=_proposal_payload(proposal),
        )
        return self._outcome(result, "passed", "output")

    def deploy_staging(self, proposal: UpgradeProposal) -> StepOutcome:
        result = self._write.request("POST", "api/deployment/staging",
                                     json_body=_proposal_payload(proposal))
        return self._outcome(result, "success", "error")

    def run_staging_tests(self, proposal: UpgradeProposal) -> StepOutcome:
        result = self._read.request("POST", "api/tests/staging",
                                    json_body=_proposal_payload(proposal))
        return self._outcome(result, "passed", "output")

    def deploy_production(self, proposal: UpgradeProposal) -> StepOutcome:
        result = self._write.request("POST", "api/deployment/production",
                                     json_body=_proposal_payload(proposal))
        return self._outcome(result, "success", "error")


class UnconfiguredDeploymentTarget(DeploymentTarget):
    """Stand-in when DEPLOYMENT_API_URL is unset: every check fails, nothing deploys."""

    REASON = "deployment target not configured"

    def check_resource(self, path: str) -> bool:
        logger.warning("Cannot check %s: %s", path, self.REASON)
        return False

    def run_test(self, test_id: str, proposal: UpgradeProposal) -> StepOutcome:
        return StepOutcome(ok=False, detail=self.REASON)

    def deploy_staging(self, proposal: UpgradeProposal) -> StepOutcome:
        return StepOutcome(ok=False, detail=self.REASON)

    def run_staging_tests(self, proposal: UpgradeProposal) -> StepOutcome:
        return StepOutcome(ok=False, detail=self.REASON)

    def deploy_production(self, proposal: UpgradeProposal) -> StepOutcome:
        return StepOutcome(ok=False, detail=self.REASON)
