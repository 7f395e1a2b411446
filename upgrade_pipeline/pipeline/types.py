"""
Audit-to-Upgrade Pipeline
Core value types shared by the orchestrator, mapper, workflow and executor.

Findings, recommendations, category results, audit runs and execution
steps are frozen once produced. UpgradeProposal is the one mutable type:
its status moves only through the ApprovalWorkflow state machine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from upgrade_pipeline.core.exceptions import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# Enums
# ═════════════════════════════════════════════════════════════════════════════

class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}

# Suggested when an audit raises no high-priority recommendation
MAINTENANCE_STEPS = ("Continue monitoring", "Plan future enhancements", "Maintain current quality")


class AuditStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    IMPLEMENTING = "implementing"
    COMPLETED = "completed"
    FAILED = "failed"


class StepName(str, Enum):
    VALIDATE = "validate"
    IMPLEMENT = "implement"
    TEST = "test"
    STAGE_DEPLOY = "stage_deploy"
    PRODUCTION_DEPLOY = "production_deploy"


STEP_ORDER = (
    StepName.VALIDATE,
    StepName.IMPLEMENT,
    StepName.TEST,
    StepName.STAGE_DEPLOY,
    StepName.PRODUCTION_DEPLOY,
)

# Risk score thresholds (strictly greater-than)
HIGH_RISK_THRESHOLD = 0.7
MEDIUM_RISK_THRESHOLD = 0.4


def classify_priority(score: float) -> Priority:
    """Map a risk score to a priority band.

    >>> classify_priority(0.70)
    <Priority.MEDIUM: 'medium'>
    """
    if score > HIGH_RISK_THRESHOLD:
        return Priority.HIGH
    if score > MEDIUM_RISK_THRESHOLD:
        return Priority.MEDIUM
    return Priority.LOW


# ═════════════════════════════════════════════════════════════════════════════
# Audit
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CategoryConfig:
    """One audit category as configured for a run."""
    category: str
    weight: float
    enabled: bool = True
    name: str = ""
    description: str = ""

    def __post_init__(self):
        if not self.category:
            raise ValidationError("category is required")
        if not 0.0 <= self.weight <= 1.0:
            raise ValidationError(
                f"weight for '{self.category}' must be within [0, 1]",
                details={"weight": self.weight},
            )

    @classmethod
    def from_dict(cls, category: str, data: dict) -> CategoryConfig:
        return cls(
            category=category,
            weight=float(data.get("weight", 0.0)),
            enabled=bool(data.get("enabled", True)),
            name=data.get("name") or category.title(),
            description=data.get("description", ""),
        )

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "weight": self.weight,
            "enabled": self.enabled,
            "name": self.name,
            "description": self.description,
        }


@dataclass(frozen=True)
class Finding:
    """A single reported issue from one category check."""
    category: str
    title: str
    severity: Severity
    description: str = ""
    impact: str = ""

    @property
    def ref(self) -> str:
        return f"{self.category}:{self.title}"

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "title": self.title,
            "severity": self.severity.value,
            "description": self.description,
            "impact": self.impact,
        }


@dataclass(frozen=True)
class Recommendation:
    category: str
    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    estimated_effort: str = ""

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "estimated_effort": self.estimated_effort,
        }


@dataclass(frozen=True)
class ValidationOutcome:
    """What a CategoryValidator returns."""
    score: float
    findings: tuple[Finding, ...] = ()
    recommendations: tuple[Recommendation, ...] = ()


@dataclass(frozen=True)
class CategoryResult:
    category: str
    weight: float
    score: float
    findings: tuple[Finding, ...] = ()
    recommendations: tuple[Recommendation, ...] = ()
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "weight": self.weight,
            "score": self.score,
            "findings": [f.to_dict() for f in self.findings],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "error": self.error,
        }


@dataclass(frozen=True)
class AuditRun:
    """One execution of all enabled category checks plus the aggregated score."""
    id: str
    started_at: datetime
    status: AuditStatus = AuditStatus.RUNNING
    category_results: dict[str, CategoryResult] = field(default_factory=dict)
    overall_risk_score: float = 0.0
    priority: Priority = Priority.LOW
    completed_at: datetime | None = None
    findings: tuple[Finding, ...] = ()
    recommendations: tuple[Recommendation, ...] = ()

    def severity_counts(self) -> dict[str, int]:
        counts = {s.value: 0 for s in Severity}
        for finding in self.findings:
            counts[finding.severity.value] += 1
        return counts

    def next_steps(self, limit: int = 3) -> list[str]:
        """Titles of the first ``limit`` high-priority recommendations."""
        urgent = [r.title for r in self.recommendations if r.priority is Priority.HIGH]
        return urgent[:limit] or list(MAINTENANCE_STEPS)

    def summary(self, proposal_ids: list[str] | tuple[str, ...] = ()) -> dict:
        """Compact view returned by the Pipeline API after RunAudit."""
        return {
            "id": self.id,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "overall_risk_score": round(self.overall_risk_score, 4),
            "priority": self.priority.value,
            "category_scores": {
                name: result.score for name, result in self.category_results.items()
            },
            "errored_categories": sorted(
                name for name, result in self.category_results.items() if result.error
            ),
            "finding_counts": self.severity_counts(),
            "next_steps": self.next_steps(),
            "proposal_ids": list(proposal_ids),
        }

    def to_dict(self) -> dict:
        data = self.summary()
        data.pop("proposal_ids")
        data["category_results"] = {
            name: result.to_dict() for name, result in self.category_results.items()
        }
        data["findings"] = [f.to_dict() for f in self.findings]
        data["recommendations"] = [r.to_dict() for r in self.recommendations]
        return data


# ═════════════════════════════════════════════════════════════════════════════
# Proposals & execution
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TicketRef:
    """Handle into the external issue tracker. The pipeline never owns the ticket."""
    external_id: str
    url: str = ""
    state: str = "open"

    def to_dict(self) -> dict:
        return {"external_id": self.external_id, "url": self.url, "state": self.state}


@dataclass
class UpgradeProposal:
    """An approvable unit of work derived from a Finding."""
    id: str
    source_finding_ref: str
    title: str
    description: str
    category: str
    priority: Priority
    estimated_effort: str
    audit_run_id: str | None = None
    upgrade_type: str = ""
    files: tuple[str, ...] = ()
    changes: tuple[str, ...] = ()
    tests: tuple[str, ...] = ()
    status: ProposalStatus = ProposalStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    ticket: TicketRef | None = None
    failure: dict | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_finding_ref": self.source_finding_ref,
            "audit_run_id": self.audit_run_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority.value,
            "estimated_effort": self.estimated_effort,
            "type": self.upgrade_type,
            "files": list(self.files),
            "changes": list(self.changes),
            "tests": list(self.tests),
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "ticket": self.ticket.to_dict() if self.ticket else None,
            "failure": self.failure,
        }


@dataclass(frozen=True)
class ExecutionStep:
    name: StepName
    success: bool
    detail: str
    started_at: datetime
    finished_at: datetime
    backend: str | None = None

    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict:
        return {
            "name": self.name.value,
            "success": self.success,
            "detail": self.detail,
            "backend": self.backend,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class StepOutcome:
    """What a deployment target reports for one check, test run or deploy."""
    ok: bool
    detail: str = ""


@dataclass(frozen=True)
class ImplementationTask:
    """One required change, dispatched to a single backend."""
    id: str
    proposal_id: str
    category: str
    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    files: tuple[str, ...] = ()
    task_type: str = "code_change"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "type": self.task_type,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "files": list(self.files),
        }


@dataclass(frozen=True)
class BackendResult:
    success: bool
    changes_applied: tuple[str, ...] = ()
    duration_estimate: str = ""
    backend: str = ""
    handle: str = ""
    detail: str = ""


@dataclass
class ExecutionResult:
    proposal_id: str
    success: bool
    steps: list[ExecutionStep] = field(default_factory=list)
    ticket: TicketRef | None = None
    changes_applied: list[str] = field(default_factory=list)
    failed_step: StepName | None = None
    error: dict[str, Any] | None = None

    def to_dict(self) -> dict:
        return {
            "proposal_id": self.proposal_id,
            "success": self.success,
            "steps": [s.to_dict() for s in self.steps],
            "ticket": self.ticket.to_dict() if self.ticket else None,
            "changes_applied": list(self.changes_applied),
            "failed_step": self.failed_step.value if self.failed_step else None,
            "error": self.error,
        }
