"""
Pipeline-wide exception hierarchy.

Every layer raises the canonical types defined here. Blueprints register
handlers against them once and get consistent HTTP status codes, and the
pipeline types carry enough structured detail (step, category, backend,
proposal id) for a UI to render without log inspection.

Usage:
    from upgrade_pipeline.core.exceptions import NotFoundError, InvalidStateError

    raise NotFoundError(resource="AuditRun", resource_id="audit_1f2e")
    raise InvalidStateError("proposal", "abc123", current="approved", action="approve")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "AuditRun", "UpgradeProposal").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)

    def to_dict(self) -> dict:
        return {"resource": self.resource, "resource_id": self.resource_id}


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ═══════════════════════════════════════════════════════════════════════════
#  Audit orchestration
# ═══════════════════════════════════════════════════════════════════════════


class OrchestrationError(Exception):
    """Raised when an audit cannot start at all (e.g. zero enabled categories).

    Maps to HTTP 400.
    """

    def to_dict(self) -> dict:
        return {"reason": str(self)}


class ValidatorError(Exception):
    """A single category check failed or timed out.

    Never propagated out of the orchestrator: it is converted into a
    synthetic high-severity finding for that category.
    """

    def __init__(self, category: str, reason: str) -> None:
        self.category = category
        self.reason = reason
        super().__init__(f"Validator '{category}' failed: {reason}")

    def to_dict(self) -> dict:
        return {"category": self.category, "reason": self.reason}


# ═══════════════════════════════════════════════════════════════════════════
#  Approval workflow
# ═══════════════════════════════════════════════════════════════════════════


class WorkflowStateError(Exception):
    """Base for approve/reject/cancel calls the workflow must refuse.

    The proposal's state is unchanged whenever one of these is raised.
    """

    def to_dict(self) -> dict:
        return {"reason": str(self)}


class InvalidStateError(WorkflowStateError):
    """The proposal exists but is not in a status that allows the action.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, resource_id: str, *, current: str, action: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.current = current
        self.action = action
        super().__init__(
            f"Cannot {action} {resource} {resource_id}: status is '{current}'"
        )

    def to_dict(self) -> dict:
        return {
            "resource": self.resource,
            "resource_id": self.resource_id,
            "current_status": self.current,
            "action": self.action,
        }


class ProposalNotFoundError(WorkflowStateError, NotFoundError):
    """Unknown proposal id. Both a workflow error and a 404."""

    def __init__(self, proposal_id: str) -> None:
        NotFoundError.__init__(self, "UpgradeProposal", proposal_id)

    def to_dict(self) -> dict:
        return NotFoundError.to_dict(self)


# ═══════════════════════════════════════════════════════════════════════════
#  Staged execution
# ═══════════════════════════════════════════════════════════════════════════


class PipelineStepError(Exception):
    """A pipeline step failed; the remaining steps for that proposal are skipped.

    Attributes:
        step:        Failing step name (validate, implement, test, ...).
        detail:      Human-readable failure detail.
        proposal_id: Proposal whose pipeline aborted.
        backend:     Backend that serviced the failing sub-task, if any.
        category:    Proposal category.
        result:      ExecutionResult snapshot, attached by the executor.
    """

    def __init__(
        self,
        step: str,
        detail: str,
        *,
        proposal_id: str | None = None,
        backend: str | None = None,
        category: str | None = None,
    ) -> None:
        self.step = step
        self.detail = detail
        self.proposal_id = proposal_id
        self.backend = backend
        self.category = category
        self.result = None
        super().__init__(f"Step '{step}' failed: {detail}")

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "detail": self.detail,
            "proposal_id": self.proposal_id,
            "backend": self.backend,
            "category": self.category,
        }


class ProductionDeployError(PipelineStepError):
    """Production deploy failed. Terminal; needs manual operator intervention."""

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["manual_intervention_required"] = True
        return data


class PipelineCancelledError(PipelineStepError):
    """The caller cancelled the pipeline before the named step started."""

    def __init__(self, step: str, *, proposal_id: str | None = None,
                 category: str | None = None) -> None:
        super().__init__(step, "cancelled", proposal_id=proposal_id, category=category)


# ═══════════════════════════════════════════════════════════════════════════
#  Executor backends
# ═══════════════════════════════════════════════════════════════════════════


class BackendError(Exception):
    """Base for failures dispatching an implementation task to a backend."""

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"backend": self.backend, "reason": str(self)}


class BackendUnavailableError(BackendError):
    """The backend is not registered or cannot be reached."""

    def __init__(self, backend: str, reason: str = "not registered") -> None:
        super().__init__(backend, f"Backend '{backend}' unavailable: {reason}")


class BackendExecutionError(BackendError):
    """The backend accepted the task but it did not succeed."""

    def __init__(self, backend: str, detail: str) -> None:
        self.detail = detail
        super().__init__(backend, f"Backend '{backend}' failed: {detail}")


class TicketingError(Exception):
    """The issue tracker rejected or could not process a request.

    Ticketing is traceability only: the executor logs these and carries on.
    """
