"""
Audit-to-Upgrade Pipeline
Pipeline archive models.

Write-only snapshots of what the in-memory pipeline produced. The core
never reads these back; they exist for reporting and the audit trail.

Models:
    - AuditRunRecord: one row per completed audit run
    - UpgradeProposalRecord: latest snapshot of each proposal
    - ExecutionStepRecord: one row per executed pipeline step
"""

from datetime import datetime, timezone

from upgrade_pipeline.models import db


class AuditRunRecord(db.Model):
    __tablename__ = "audit_run_records"

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False)
    overall_risk_score = db.Column(db.Float, nullable=False, default=0.0)
    priority = db.Column(db.String(10), nullable=False)
    category_scores = db.Column(db.JSON, default=dict)
    finding_counts = db.Column(db.JSON, default=dict)
    payload = db.Column(db.JSON, nullable=True, comment="Full AuditRun snapshot")
    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    archived_at = db.Column(db.DateTime(timezone=True),
                            default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "run_id": self.run_id,
            "status": self.status,
            "overall_risk_score": self.overall_risk_score,
            "priority": self.priority,
            "category_scores": self.category_scores,
            "finding_counts": self.finding_counts,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<AuditRunRecord {self.run_id} [{self.priority}]>"


class UpgradeProposalRecord(db.Model):
    __tablename__ = "upgrade_proposal_records"

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    audit_run_id = db.Column(db.String(64), nullable=True, index=True)
    source_finding_ref = db.Column(db.String(255), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(50), nullable=False, index=True)
    priority = db.Column(db.String(10), nullable=False)
    status = db.Column(db.String(20), nullable=False, index=True,
                       comment="pending, approved, rejected, implementing, completed, failed")
    ticket_id = db.Column(db.String(64), nullable=True)
    ticket_url = db.Column(db.String(500), nullable=True)
    failure = db.Column(db.JSON, nullable=True)
    payload = db.Column(db.JSON, nullable=True, comment="Full UpgradeProposal snapshot")
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "audit_run_id": self.audit_run_id,
            "title": self.title,
            "category": self.category,
            "priority": self.priority,
            "status": self.status,
            "ticket_id": self.ticket_id,
            "failure": self.failure,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<UpgradeProposalRecord {self.proposal_id} [{self.status}]>"


class ExecutionStepRecord(db.Model):
    __tablename__ = "execution_step_records"

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(db.String(64), nullable=False, index=True)
    step = db.Column(db.String(30), nullable=False)
    success = db.Column(db.Boolean, nullable=False)
    detail = db.Column(db.Text, default="")
    backend = db.Column(db.String(50), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "step": self.step,
            "success": self.success,
            "detail": self.detail,
            "backend": self.backend,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

    def __repr__(self):
        return f"<ExecutionStepRecord {self.proposal_id}:{self.step} ok={self.success}>"
