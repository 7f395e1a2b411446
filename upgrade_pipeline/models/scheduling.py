"""
Audit-to-Upgrade Pipeline
Scheduling models.

Models:
    - ScheduledJob: one row per registered job; timer period, enable flag
      and the outcome of its most recent run (manual or timer-triggered)
"""

from datetime import datetime, timezone

from upgrade_pipeline.models import db


def _now():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

JOB_STATES = ("active", "paused")
RUN_OUTCOMES = ("success", "failed", "skipped")
TRIGGERS = ("manual", "timer")


class ScheduledJob(db.Model):
    """Persisted schedule entry for a registered pipeline job (e.g. audit_scan)."""

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False, index=True)
    description = db.Column(db.String(500), default="")
    interval_seconds = db.Column(db.Integer, nullable=True,
                                 comment="Timer period in seconds; null = manual trigger only")
    status = db.Column(db.String(20), default="active", comment="active, paused")
    is_enabled = db.Column(db.Boolean, default=True)

    # Last run
    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_trigger = db.Column(db.String(10), nullable=True, comment="manual, timer")
    last_run_status = db.Column(db.String(20), nullable=True, comment="success, failed, skipped")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    last_error = db.Column(db.Text, nullable=True)

    # Counters
    run_count = db.Column(db.Integer, default=0)
    skip_count = db.Column(db.Integer, default=0,
                           comment="Ticks that found an audit already in flight")
    error_count = db.Column(db.Integer, default=0)

    created_at = db.Column(db.DateTime(timezone=True), default=_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    def record_run(self, *, status, trigger="manual", duration_ms=0, result=None, error=None):
        self.last_run_at = _now()
        self.last_trigger = trigger
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "skipped":
            self.skip_count = (self.skip_count or 0) + 1
        elif status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def set_enabled(self, enabled: bool) -> None:
        self.is_enabled = enabled
        self.status = "active" if enabled else "paused"

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "interval_seconds": self.interval_seconds,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": _iso(self.last_run_at),
            "last_trigger": self.last_trigger,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "skip_count": self.skip_count,
            "error_count": self.error_count,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.status}]>"
