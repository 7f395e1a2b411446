"""
Audit-to-Upgrade Pipeline
Pipeline Service — the single entry point callers use.

Owns the audit history (through the orchestrator) and the proposal queue
(through the approval workflow), and exposes the pipeline operations:

    run_audit / try_run_audit        audit → map findings → enqueue proposals
    list_audit_runs / get_audit_run
    list_proposals / get_proposal
    approve / reject / approve_many / cancel
    get_execution_log
    subscribe                        in-process event channel

Usage:
    service = PipelineService.from_config(app.config)
    summary = service.run_audit()
    service.approve(summary["proposal_ids"][0])
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping

from upgrade_pipeline.core.exceptions import ValidationError
from upgrade_pipeline.integrations.audit_tool_gateway import AuditToolGateway
from upgrade_pipeline.integrations.deployment_gateway import (
    DeploymentGateway,
    UnconfiguredDeploymentTarget,
)
from upgrade_pipeline.integrations.issue_tracker_gateway import IssueTrackerGateway
from upgrade_pipeline.pipeline.approval import ApprovalWorkflow
from upgrade_pipeline.pipeline.backends import (
    CategoryRoutingPolicy,
    ExecutorBackendRegistry,
    HttpAgentBackend,
)
from upgrade_pipeline.pipeline.events import AUDIT_COMPLETED, PipelineEvents
from upgrade_pipeline.pipeline.executor import DeploymentTarget, IssueTracker, UpgradeExecutor
from upgrade_pipeline.pipeline.mapper import map_findings
from upgrade_pipeline.pipeline.orchestrator import AuditOrchestrator
from upgrade_pipeline.pipeline.templates import TemplateKey, UpgradeTemplate
from upgrade_pipeline.pipeline.types import (
    AuditRun,
    CategoryConfig,
    ExecutionStep,
    ProposalStatus,
    UpgradeProposal,
)
from upgrade_pipeline.pipeline.validators import CategoryValidator, RemoteCategoryValidator

logger = logging.getLogger(__name__)


def build_category_configs(raw: Mapping[str, dict]) -> list[CategoryConfig]:
    return [CategoryConfig.from_dict(name, data) for name, data in raw.items()]


class PipelineService:
    """Facade over orchestrator, mapper, workflow and executor."""

    def __init__(
        self,
        *,
        validators: dict[str, CategoryValidator],
        categories: list[CategoryConfig],
        registry: ExecutorBackendRegistry,
        deploy_target: DeploymentTarget,
        issue_tracker: IssueTracker | None = None,
        routing_policy: CategoryRoutingPolicy | None = None,
        templates: dict[TemplateKey, UpgradeTemplate] | None = None,
        history_limit: int = 10,
        validator_timeout: float = 30.0,
        max_workers: int = 4,
        synchronous: bool = False,
    ) -> None:
        self.categories = list(categories)
        self.templates = templates
        self.events = PipelineEvents()
        self.registry = registry
        self.orchestrator = AuditOrchestrator(
            validators, history_limit=history_limit, validator_timeout=validator_timeout
        )
        self.executor = UpgradeExecutor(
            registry,
            deploy_target,
            routing_policy=routing_policy,
            issue_tracker=issue_tracker,
            events=self.events,
        )
        self.workflow = ApprovalWorkflow(
            self.executor, events=self.events, max_workers=max_workers, synchronous=synchronous
        )
        self._run_proposals: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    # ── Construction from Flask config ───────────────────────────────────

    @classmethod
    def from_config(cls, config: Mapping[str, Any], **overrides) -> PipelineService:
        """Wire gateways, validators and backends from a Flask config mapping."""
        categories = build_category_configs(config.get("AUDIT_CATEGORIES") or {})

        validators: dict[str, CategoryValidator] = {}
        audit_url = config.get("AUDIT_ENDPOINT_URL")
        if audit_url:
            gateway = AuditToolGateway(audit_url, timeout=config.get("VALIDATOR_TIMEOUT_SECONDS", 30))
            validators = {c.category: RemoteCategoryValidator(gateway) for c in categories}

        registry = ExecutorBackendRegistry([
            HttpAgentBackend(
                backend_id, url,
                task_timeout=config.get("BACKEND_TASK_TIMEOUT_SECONDS", 600),
            )
            for backend_id, url in (config.get("EXECUTOR_BACKENDS") or {}).items()
        ])

        deploy_url = config.get("DEPLOYMENT_API_URL")
        deploy_target = DeploymentGateway(deploy_url) if deploy_url else UnconfiguredDeploymentTarget()

        tracker_url = config.get("ISSUE_TRACKER_URL")
        tracker = (
            IssueTrackerGateway(tracker_url, token=config.get("ISSUE_TRACKER_TOKEN", ""))
            if tracker_url else None
        )

        kwargs = dict(
            validators=validators,
            categories=categories,
            registry=registry,
            deploy_target=deploy_target,
            issue_tracker=tracker,
            routing_policy=CategoryRoutingPolicy(
                config.get("EXECUTOR_ROUTES") or {},
                default=config.get("EXECUTOR_DEFAULT_BACKEND", "cursor"),
            ),
            history_limit=config.get("AUDIT_HISTORY_LIMIT", 10),
            validator_timeout=config.get("VALIDATOR_TIMEOUT_SECONDS", 30.0),
            max_workers=config.get("EXECUTOR_MAX_WORKERS", 4),
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    # ── Audits ───────────────────────────────────────────────────────────

    def _resolve_categories(self, names: list[str] | None) -> list[CategoryConfig]:
        if not names:
            return self.categories
        known = {c.category: c for c in self.categories}
        unknown = [n for n in names if n not in known]
        if unknown:
            raise ValidationError("Unknown audit categories", details={"categories": unknown})
        return [known[n] for n in names]

    def run_audit(self, categories: list[str] | None = None) -> dict:
        """Run an audit, waiting for any in-flight run, and return its summary."""
        return self._audit(categories, blocking=True)

    def try_run_audit(self, categories: list[str] | None = None) -> dict | None:
        """Like run_audit, but returns None immediately if an audit is in flight."""
        return self._audit(categories, blocking=False)

    def _audit(self, categories: list[str] | None, *, blocking: bool) -> dict | None:
        run = self.orchestrator.run_audit(self._resolve_categories(categories), blocking=blocking)
        if run is None:
            logger.info("Audit skipped: another audit is in flight")
            return None

        proposals = map_findings(run.findings, templates=self.templates, audit_run_id=run.id)
        retained = {r.id for r in self.orchestrator.history()}
        with self._lock:
            self._run_proposals[run.id] = [p.id for p in proposals]
            # Follow the orchestrator's bounded history
            for run_id in [k for k in self._run_proposals if k not in retained]:
                del self._run_proposals[run_id]
        self.events.publish(AUDIT_COMPLETED, run)
        self.workflow.enqueue(proposals)
        logger.info("Audit %s produced %d proposal(s)", run.id, len(proposals),
                    extra={"audit_run_id": run.id})
        return self.summarize(run)

    def summarize(self, run: AuditRun) -> dict:
        with self._lock:
            proposal_ids = list(self._run_proposals.get(run.id, ()))
        return run.summary(proposal_ids)

    def list_audit_runs(self) -> list[AuditRun]:
        return self.orchestrator.history()

    def get_audit_run(self, run_id: str) -> AuditRun:
        return self.orchestrator.get_run(run_id)

    @property
    def audit_in_flight(self) -> bool:
        return self.orchestrator.in_flight

    # ── Proposals ────────────────────────────────────────────────────────

    def list_proposals(self, status: ProposalStatus | str | None = None) -> list[UpgradeProposal]:
        if isinstance(status, str):
            try:
                status = ProposalStatus(status)
            except ValueError:
                raise ValidationError(
                    f"Unknown proposal status '{status}'",
                    details={"allowed": [s.value for s in ProposalStatus]},
                )
        return self.workflow.list_proposals(status)

    def get_proposal(self, proposal_id: str) -> UpgradeProposal:
        return self.workflow.get(proposal_id)

    def approve(self, proposal_id: str, reviewer: str = "system") -> UpgradeProposal:
        return self.workflow.approve(proposal_id, reviewer=reviewer)

    def reject(self, proposal_id: str, reviewer: str = "system", note: str = "") -> UpgradeProposal:
        return self.workflow.reject(proposal_id, reviewer=reviewer, note=note)

    def approve_many(self, proposal_ids: list[str], reviewer: str = "system") -> list[dict]:
        return self.workflow.approve_many(proposal_ids, reviewer=reviewer)

    def cancel(self, proposal_id: str) -> UpgradeProposal:
        return self.workflow.cancel(proposal_id)

    def get_execution_log(self, proposal_id: str) -> list[ExecutionStep]:
        self.workflow.get(proposal_id)
        return self.executor.get_execution_log(proposal_id)

    # ── Misc ─────────────────────────────────────────────────────────────

    def subscribe(self, callback):
        return self.events.subscribe(callback)

    def status(self) -> dict:
        return {
            "audit_in_flight": self.audit_in_flight,
            "audit_runs_retained": len(self.orchestrator.history()),
            "pending_proposals": self.workflow.pending_count(),
            "backends": self.registry.list_ids(),
            "categories": [c.category for c in self.categories if c.enabled],
        }

    def shutdown(self, wait: bool = True) -> None:
        self.workflow.shutdown(wait=wait)
