"""
Audit-to-Upgrade Pipeline
Upgrade Executor — staged rollout of one approved proposal.

    validate → implement → test → stage_deploy → production_deploy

Steps run strictly in order and each appends one ExecutionStep to the
proposal's log. The first failing step aborts the run. Production deploy
is only reached when staging tests report success, and a production
failure is terminal: it is never retried and never rolled back here.

Collaborators:
    ExecutorBackendRegistry  implement step, one sub-task per required change
    DeploymentTarget         resource checks, tests, staging and production deploys
    IssueTracker             optional ticket for traceability; its failures are
                             logged and never change the pipeline outcome
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod

from upgrade_pipeline.core.exceptions import (
    BackendError,
    PipelineCancelledError,
    PipelineStepError,
    ProductionDeployError,
)
from upgrade_pipeline.middleware.logging_config import log_context
from upgrade_pipeline.pipeline.backends import CategoryRoutingPolicy, ExecutorBackendRegistry
from upgrade_pipeline.pipeline.events import STEP_FINISHED, PipelineEvents
from upgrade_pipeline.pipeline.types import (
    STEP_ORDER,
    ExecutionResult,
    ExecutionStep,
    ImplementationTask,
    StepName,
    StepOutcome,
    TicketRef,
    UpgradeProposal,
    utcnow,
)

logger = logging.getLogger(__name__)

ISSUE_LABELS = ("agentic-ai", "auto-generated")


# ── Collaborator interfaces ──────────────────────────────────────────────

class DeploymentTarget(ABC):
    """Where changes are verified and rolled out."""

    @abstractmethod
    def check_resource(self, path: str) -> bool:
        """True if the file/directory the upgrade needs is present."""

    @abstractmethod
    def run_test(self, test_id: str, proposal: UpgradeProposal) -> StepOutcome:
        ...

    @abstractmethod
    def deploy_staging(self, proposal: UpgradeProposal) -> StepOutcome:
        ...

    @abstractmethod
    def run_staging_tests(self, proposal: UpgradeProposal) -> StepOutcome:
        ...

    @abstractmethod
    def deploy_production(self, proposal: UpgradeProposal) -> StepOutcome:
        ...


class IssueTracker(ABC):
    """External ticketing. Implementations raise TicketingError on failure;
    the executor logs any exception a tracker raises and carries on.
    """

    @abstractmethod
    def create_issue(self, title: str, body: str, labels: list[str]) -> TicketRef:
        ...

    @abstractmethod
    def close_issue(self, ref: TicketRef, summary: str) -> TicketRef:
        ...

    @abstractmethod
    def reopen_or_annotate(self, ref: TicketRef, detail: str) -> TicketRef:
        ...


def issue_body(proposal: UpgradeProposal) -> str:
    return (
        f"## {proposal.title}\n\n"
        f"{proposal.description}\n\n"
        f"**Category:** {proposal.category}\n"
        f"**Priority:** {proposal.priority.value}\n"
        f"**Estimated Time:** {proposal.estimated_effort}"
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Executor
# ═══════════════════════════════════════════════════════════════════════════


class UpgradeExecutor:
    """Runs the five-step pipeline for one proposal at a time per call.

    Different proposals may execute concurrently on different threads;
    the per-proposal logs are guarded by a lock.
    """

    def __init__(
        self,
        registry: ExecutorBackendRegistry,
        deploy_target: DeploymentTarget,
        *,
        routing_policy: CategoryRoutingPolicy | None = None,
        issue_tracker: IssueTracker | None = None,
        events: PipelineEvents | None = None,
    ) -> None:
        self.registry = registry
        self.deploy_target = deploy_target
        self.routing_policy = routing_policy or CategoryRoutingPolicy()
        self.issue_tracker = issue_tracker
        self.events = events or PipelineEvents()
        self._logs: dict[str, list[ExecutionStep]] = {}
        self._results: dict[str, ExecutionResult] = {}
        self._current: dict[str, StepName] = {}
        self._lock = threading.Lock()

    # ── Read side ────────────────────────────────────────────────────────

    def get_execution_log(self, proposal_id: str) -> list[ExecutionStep]:
        with self._lock:
            return list(self._logs.get(proposal_id, ()))

    def get_result(self, proposal_id: str) -> ExecutionResult | None:
        with self._lock:
            return self._results.get(proposal_id)

    def current_step(self, proposal_id: str) -> StepName | None:
        with self._lock:
            return self._current.get(proposal_id)

    def request_cancel(self, proposal_id: str, cancel_token: threading.Event) -> bool:
        """Set the token unless production deploy has already begun.

        Checked under the same lock the run loop uses to enter a step, so
        a run cannot slip into production deploy between check and set.
        """
        with self._lock:
            if self._current.get(proposal_id) is StepName.PRODUCTION_DEPLOY:
                return False
            cancel_token.set()
            return True

    # ── Run ──────────────────────────────────────────────────────────────

    def execute(
        self,
        proposal: UpgradeProposal,
        cancel_token: threading.Event | None = None,
    ) -> ExecutionResult:
        """Run the staged pipeline.

        Returns:
            ExecutionResult with success=True.

        Raises:
            PipelineStepError: a step failed (``exc.result`` holds the partial result).
            PipelineCancelledError: cancelled before a step started.
            ProductionDeployError: production deploy failed; manual intervention needed.
        """
        result = ExecutionResult(proposal_id=proposal.id, success=False)
        with self._lock:
            self._logs[proposal.id] = []
            self._results[proposal.id] = result

        extra = log_context(proposal_id=proposal.id, category=proposal.category)
        logger.info("Execution started: %s", proposal.title, extra=extra)
        result.ticket = self._open_ticket(proposal)

        handlers = {
            StepName.VALIDATE: self._validate,
            StepName.IMPLEMENT: self._implement,
            StepName.TEST: self._test,
            StepName.STAGE_DEPLOY: self._stage_deploy,
            StepName.PRODUCTION_DEPLOY: self._production_deploy,
        }

        try:
            self._run_steps(proposal, result, cancel_token, handlers, extra)
        finally:
            with self._lock:
                self._current.pop(proposal.id, None)

        result.success = True
        logger.info("Execution completed: %s (%d changes)", proposal.title,
                    len(result.changes_applied), extra=extra)
        self._close_ticket(proposal, result)
        return result

    def _run_steps(self, proposal, result, cancel_token, handlers, extra) -> None:
        for step in STEP_ORDER:
            with self._lock:
                cancelled = cancel_token is not None and cancel_token.is_set()
                if not cancelled:
                    self._current[proposal.id] = step
            if cancelled:
                now = utcnow()
                self._record(result, step, False, "cancelled", now, now)
                error = PipelineCancelledError(
                    step.value, proposal_id=proposal.id, category=proposal.category
                )
                self._fail(proposal, result, step, error)

            started = utcnow()
            try:
                detail, backend = handlers[step](proposal, result)
            except PipelineStepError as exc:
                error = exc
            except BackendError as exc:
                error = self._step_error(step, proposal, str(exc), backend=exc.backend)
            except Exception as exc:
                logger.exception("Unexpected error in step %s", step.value,
                                 extra={**extra, "step": step.value})
                error = self._step_error(step, proposal, str(exc) or type(exc).__name__)
            else:
                self._record(result, step, True, detail, started, utcnow(), backend)
                logger.info("Step %s ok: %s", step.value, detail,
                            extra={**extra, "step": step.value})
                continue

            self._record(result, step, False, error.detail, started, utcnow(), error.backend)
            self._fail(proposal, result, step, error)

    # ── Steps ────────────────────────────────────────────────────────────

    def _step_error(
        self,
        step: StepName,
        proposal: UpgradeProposal,
        detail: str,
        *,
        backend: str | None = None,
    ) -> PipelineStepError:
        cls = ProductionDeployError if step is StepName.PRODUCTION_DEPLOY else PipelineStepError
        return cls(step.value, detail, proposal_id=proposal.id,
                   backend=backend, category=proposal.category)

    def _validate(self, proposal, result):
        missing = [path for path in proposal.files if not self.deploy_target.check_resource(path)]
        if missing:
            raise self._step_error(
                StepName.VALIDATE, proposal, f"missing resources: {', '.join(missing)}"
            )
        return f"{len(proposal.files)} resource(s) present", None

    def _implement(self, proposal, result):
        backend_id = self.routing_policy.select(proposal.category)
        changes = proposal.changes or (proposal.title,)
        for index, change in enumerate(changes, start=1):
            task = ImplementationTask(
                id=f"{proposal.id}-{index}",
                proposal_id=proposal.id,
                category=proposal.category,
                title=change,
                description=f"{change} for {proposal.title}",
                priority=proposal.priority,
                files=proposal.files,
            )
            try:
                outcome = self.registry.dispatch(task, backend_id)
            except BackendError as exc:
                raise self._step_error(
                    StepName.IMPLEMENT, proposal,
                    f"sub-task {index}/{len(changes)} '{change}' failed: {exc}",
                    backend=exc.backend,
                ) from exc
            result.changes_applied.extend(outcome.changes_applied or (change,))
        return f"{len(changes)} change(s) applied via {backend_id}", backend_id

    def _test(self, proposal, result):
        failed = []
        for test_id in proposal.tests:
            outcome = self.deploy_target.run_test(test_id, proposal)
            if not outcome.ok:
                failed.append(f"{test_id} ({outcome.detail})" if outcome.detail else test_id)
        if failed:
            raise self._step_error(StepName.TEST, proposal, f"tests failed: {', '.join(failed)}")
        return f"{len(proposal.tests)} test(s) passed", None

    def _stage_deploy(self, proposal, result):
        deployed = self.deploy_target.deploy_staging(proposal)
        if not deployed.ok:
            raise self._step_error(
                StepName.STAGE_DEPLOY, proposal, f"staging deploy failed: {deployed.detail}"
            )
        verified = self.deploy_target.run_staging_tests(proposal)
        if not verified.ok:
            raise self._step_error(
                StepName.STAGE_DEPLOY, proposal, f"staging tests failed: {verified.detail}"
            )
        return "deployed to staging; staging tests passed", None

    def _production_deploy(self, proposal, result):
        outcome = self.deploy_target.deploy_production(proposal)
        if not outcome.ok:
            raise self._step_error(
                StepName.PRODUCTION_DEPLOY, proposal,
                f"production deploy failed: {outcome.detail}",
            )
        return "deployed to production", None

    # ── Bookkeeping ──────────────────────────────────────────────────────

    def _record(self, result, step, success, detail, started, finished, backend=None):
        entry = ExecutionStep(
            name=step, success=success, detail=detail,
            started_at=started, finished_at=finished, backend=backend,
        )
        with self._lock:
            self._logs[result.proposal_id].append(entry)
            result.steps.append(entry)
        self.events.publish(STEP_FINISHED, {"proposal_id": result.proposal_id, "step": entry})

    def _fail(self, proposal, result, step, error: PipelineStepError):
        result.failed_step = step
        result.error = error.to_dict()
        error.result = result
        extra = log_context(proposal_id=proposal.id, step=step.value, category=proposal.category)
        if isinstance(error, ProductionDeployError):
            logger.error("Production deploy failed for %s: %s; manual intervention required",
                         proposal.title, error.detail, extra=extra)
        else:
            logger.info("Step %s failed: %s", step.value, error.detail, extra=extra)
        self._annotate_ticket(proposal, result, f"Step '{step.value}' failed: {error.detail}")
        raise error

    # ── Ticketing ────────────────────────────────────────────────────────

    def _open_ticket(self, proposal: UpgradeProposal) -> TicketRef | None:
        if self.issue_tracker is None:
            return None
        labels = [proposal.category, proposal.priority.value, *ISSUE_LABELS]
        try:
            ref = self.issue_tracker.create_issue(proposal.title, issue_body(proposal), labels)
        except Exception as exc:
            logger.warning("Ticket creation failed: %s", exc, extra={"proposal_id": proposal.id})
            return None
        proposal.ticket = ref
        logger.info("Ticket %s created", ref.external_id, extra={"proposal_id": proposal.id})
        return ref

    def _close_ticket(self, proposal: UpgradeProposal, result: ExecutionResult) -> None:
        if self.issue_tracker is None or result.ticket is None:
            return
        changes = "\n".join(f"- {c}" for c in result.changes_applied)
        summary = f"Upgrade completed successfully.\n\nChanges applied:\n{changes}"
        try:
            ref = self.issue_tracker.close_issue(result.ticket, summary)
        except Exception as exc:
            logger.warning("Ticket close failed: %s", exc, extra={"proposal_id": proposal.id})
            return
        result.ticket = proposal.ticket = ref
        logger.info("Ticket %s closed", ref.external_id, extra={"proposal_id": proposal.id})

    def _annotate_ticket(self, proposal: UpgradeProposal, result: ExecutionResult,
                         detail: str) -> None:
        if self.issue_tracker is None or result.ticket is None:
            return
        try:
            ref = self.issue_tracker.reopen_or_annotate(result.ticket, detail)
        except Exception as exc:
            logger.warning("Ticket annotation failed: %s", exc, extra={"proposal_id": proposal.id})
            return
        result.ticket = proposal.ticket = ref
        logger.info("Ticket %s annotated", ref.external_id, extra={"proposal_id": proposal.id})
