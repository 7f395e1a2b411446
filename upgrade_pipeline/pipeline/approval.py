"""
Audit-to-Upgrade Pipeline
Approval Workflow — Upgrade proposal lifecycle.

    pending → approved → implementing → completed
            ↘ rejected               ↘ failed

A proposal leaves ``pending`` exactly once. Approval hands the proposal
to the UpgradeExecutor through a bounded worker pool (or inline when
``synchronous=True``). Proposals are never deleted: rejected and failed
ones stay queryable for the audit trail.

Usage:
    workflow = ApprovalWorkflow(executor, max_workers=4)
    workflow.enqueue(map_findings(run.findings))
    workflow.approve(proposal_id, reviewer="ops")
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from upgrade_pipeline.core.exceptions import (
    InvalidStateError,
    PipelineStepError,
    ProposalNotFoundError,
    WorkflowStateError,
)
from upgrade_pipeline.pipeline.events import (
    PROPOSAL_APPROVED,
    PROPOSAL_COMPLETED,
    PROPOSAL_CREATED,
    PROPOSAL_FAILED,
    PROPOSAL_REJECTED,
    PipelineEvents,
)
from upgrade_pipeline.pipeline.executor import UpgradeExecutor
from upgrade_pipeline.pipeline.types import (
    ExecutionResult,
    ProposalStatus,
    StepName,
    UpgradeProposal,
    utcnow,
)

logger = logging.getLogger(__name__)


# ── Transition table ─────────────────────────────────────────────────────

PROPOSAL_TRANSITIONS: dict[ProposalStatus, list[ProposalStatus]] = {
    ProposalStatus.PENDING: [ProposalStatus.APPROVED, ProposalStatus.REJECTED],
    ProposalStatus.APPROVED: [ProposalStatus.IMPLEMENTING, ProposalStatus.FAILED],
    ProposalStatus.IMPLEMENTING: [ProposalStatus.COMPLETED, ProposalStatus.FAILED],
    ProposalStatus.REJECTED: [],
    ProposalStatus.COMPLETED: [],
    ProposalStatus.FAILED: [],
}

CANCELLABLE_STATUSES = {ProposalStatus.APPROVED, ProposalStatus.IMPLEMENTING}


def validate_proposal_transition(current: ProposalStatus, target: ProposalStatus) -> bool:
    return target in PROPOSAL_TRANSITIONS.get(current, [])


class ApprovalWorkflow:
    """Proposal queue plus the approve/reject/cancel state machine."""

    def __init__(
        self,
        executor: UpgradeExecutor,
        *,
        events: PipelineEvents | None = None,
        max_workers: int = 4,
        synchronous: bool = False,
    ) -> None:
        self.executor = executor
        self.events = events or PipelineEvents()
        self.synchronous = synchronous
        self._proposals: dict[str, UpgradeProposal] = {}
        self._pending: list[str] = []
        self._tokens: dict[str, threading.Event] = {}
        self._futures: dict[str, Future] = {}
        self._lock = threading.Lock()
        self._pool = None if synchronous else ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="upgrade"
        )

    # ── Queue ────────────────────────────────────────────────────────────

    def enqueue(self, proposals: list[UpgradeProposal]) -> None:
        with self._lock:
            for proposal in proposals:
                self._proposals[proposal.id] = proposal
                self._pending.append(proposal.id)
        for proposal in proposals:
            logger.info("Proposal created: %s", proposal.title,
                        extra={"proposal_id": proposal.id, "category": proposal.category})
            self.events.publish(PROPOSAL_CREATED, proposal)

    def get(self, proposal_id: str) -> UpgradeProposal:
        with self._lock:
            proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)
        return proposal

    def list_proposals(self, status: ProposalStatus | None = None) -> list[UpgradeProposal]:
        with self._lock:
            proposals = list(self._proposals.values())
        if status is not None:
            proposals = [p for p in proposals if p.status is status]
        return proposals

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _transition(self, proposal: UpgradeProposal, target: ProposalStatus, action: str) -> None:
        """Apply a transition; caller holds ``self._lock``."""
        if not validate_proposal_transition(proposal.status, target):
            raise InvalidStateError(
                "UpgradeProposal", proposal.id, current=proposal.status.value, action=action
            )
        proposal.status = target
        proposal.updated_at = utcnow()

    def _leave_pending(self, proposal_id: str, target: ProposalStatus, action: str,
                       token: threading.Event | None = None) -> UpgradeProposal:
        with self._lock:
            proposal = self._proposals.get(proposal_id)
            if proposal is None:
                raise ProposalNotFoundError(proposal_id)
            self._transition(proposal, target, action)
            self._pending.remove(proposal_id)
            if token is not None:
                self._tokens[proposal_id] = token
            return proposal

    # ── Approve / Reject ─────────────────────────────────────────────────

    def approve(self, proposal_id: str, reviewer: str = "system") -> UpgradeProposal:
        """Approve a pending proposal and hand it to the executor.

        Raises:
            ProposalNotFoundError: unknown id.
            InvalidStateError: proposal is not pending.
        """
        token = threading.Event()
        proposal = self._leave_pending(proposal_id, ProposalStatus.APPROVED, "approve", token)
        logger.info("Proposal %s approved by %s", proposal_id, reviewer,
                    extra={"proposal_id": proposal_id})
        self.events.publish(PROPOSAL_APPROVED, proposal)

        if self._pool is None:
            self._run(proposal, token)
        else:
            future = self._pool.submit(self._run, proposal, token)
            with self._lock:
                self._futures[proposal_id] = future
        return proposal

    def reject(self, proposal_id: str, reviewer: str = "system", note: str = "") -> UpgradeProposal:
        proposal = self._leave_pending(proposal_id, ProposalStatus.REJECTED, "reject")
        logger.info("Proposal %s rejected by %s%s", proposal_id, reviewer,
                    f": {note}" if note else "", extra={"proposal_id": proposal_id})
        self.events.publish(PROPOSAL_REJECTED, proposal)
        return proposal

    def approve_many(self, proposal_ids: list[str], reviewer: str = "system") -> list[dict]:
        """Approve each id independently; one refusal does not stop the rest."""
        outcomes = []
        for proposal_id in proposal_ids:
            try:
                proposal = self.approve(proposal_id, reviewer=reviewer)
            except WorkflowStateError as exc:
                outcomes.append({"id": proposal_id, "ok": False,
                                 "error": str(exc), "details": exc.to_dict()})
            else:
                outcomes.append({"id": proposal_id, "ok": True, "status": proposal.status.value})
        return outcomes

    # ── Cancellation ─────────────────────────────────────────────────────

    def cancel(self, proposal_id: str) -> UpgradeProposal:
        """Request cancellation of an approved or implementing proposal.

        Takes effect before the next step starts. Once production deploy
        has begun the run can no longer be stopped and the request is
        refused with InvalidStateError.
        """
        with self._lock:
            proposal = self._proposals.get(proposal_id)
            if proposal is None:
                raise ProposalNotFoundError(proposal_id)
            if proposal.status not in CANCELLABLE_STATUSES:
                raise InvalidStateError(
                    "UpgradeProposal", proposal_id, current=proposal.status.value, action="cancel"
                )
            if not self.executor.request_cancel(proposal_id, self._tokens[proposal_id]):
                raise InvalidStateError(
                    "UpgradeProposal", proposal_id,
                    current=f"{proposal.status.value}:{StepName.PRODUCTION_DEPLOY.value}",
                    action="cancel",
                )
        logger.info("Cancellation requested for proposal %s", proposal_id,
                    extra={"proposal_id": proposal_id})
        return proposal

    # ── Execution hand-off ───────────────────────────────────────────────

    def _run(self, proposal: UpgradeProposal, token: threading.Event) -> ExecutionResult | None:
        with self._lock:
            self._transition(proposal, ProposalStatus.IMPLEMENTING, "implement")

        try:
            result = self.executor.execute(proposal, token)
        except PipelineStepError as exc:
            self._finish(proposal, ProposalStatus.FAILED, failure=exc.to_dict())
            return exc.result
        except Exception as exc:
            logger.exception("Executor crashed for proposal %s", proposal.id,
                             extra={"proposal_id": proposal.id})
            self._finish(proposal, ProposalStatus.FAILED,
                         failure={"step": None, "detail": str(exc) or type(exc).__name__})
            return None

        self._finish(proposal, ProposalStatus.COMPLETED)
        return result

    def _finish(self, proposal: UpgradeProposal, status: ProposalStatus,
                failure: dict | None = None) -> None:
        with self._lock:
            self._transition(proposal, status, status.value)
            proposal.failure = failure
            self._tokens.pop(proposal.id, None)
        event = PROPOSAL_COMPLETED if status is ProposalStatus.COMPLETED else PROPOSAL_FAILED
        logger.info("Proposal %s %s", proposal.id, status.value,
                    extra={"proposal_id": proposal.id})
        self.events.publish(event, proposal)

    def wait(self, proposal_id: str, timeout: float | None = None) -> ExecutionResult | None:
        """Block until the proposal's pipeline finishes (no-op when synchronous)."""
        with self._lock:
            future = self._futures.get(proposal_id)
        if future is not None:
            return future.result(timeout=timeout)
        return self.executor.get_result(proposal_id)

    def shutdown(self, wait: bool = True) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=wait)
