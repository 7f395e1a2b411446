"""
Audit-to-Upgrade Pipeline
Pipeline Record Store.

Subscribes to the pipeline event channel and archives audit runs,
proposal snapshots and execution steps into the database. Writes happen
inside the Flask app context of whichever thread published the event,
serialised by a lock.

Usage:
    store = PipelineRecordStore(app)
    store.attach(service.events)
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from flask import Flask
from sqlalchemy.exc import SQLAlchemyError

from upgrade_pipeline.models import db
from upgrade_pipeline.models.pipeline import (
    AuditRunRecord,
    ExecutionStepRecord,
    UpgradeProposalRecord,
)
from upgrade_pipeline.pipeline import events as ev
from upgrade_pipeline.pipeline.types import AuditRun, UpgradeProposal

logger = logging.getLogger(__name__)


class PipelineRecordStore:

    def __init__(self, app: Flask) -> None:
        self._app = app
        self._lock = threading.Lock()
        self._handlers = {
            ev.AUDIT_COMPLETED: self._store_audit_run,
            ev.PROPOSAL_CREATED: self._store_proposal,
            ev.PROPOSAL_APPROVED: self._store_proposal,
            ev.PROPOSAL_REJECTED: self._store_proposal,
            ev.PROPOSAL_COMPLETED: self._store_proposal,
            ev.PROPOSAL_FAILED: self._store_proposal,
            ev.STEP_FINISHED: self._store_step,
        }

    def attach(self, events: ev.PipelineEvents):
        return events.subscribe(self)

    def __call__(self, event: str, payload: Any) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            return
        with self._lock, self._app.app_context():
            try:
                handler(payload)
                db.session.commit()
            except SQLAlchemyError:
                db.session.rollback()
                raise

    # ── Handlers ─────────────────────────────────────────────────────────

    @staticmethod
    def _store_audit_run(run: AuditRun) -> None:
        summary = run.summary()
        db.session.add(AuditRunRecord(
            run_id=run.id,
            status=run.status.value,
            overall_risk_score=run.overall_risk_score,
            priority=run.priority.value,
            category_scores=summary["category_scores"],
            finding_counts=summary["finding_counts"],
            payload=run.to_dict(),
            started_at=run.started_at,
            completed_at=run.completed_at,
        ))

    @staticmethod
    def _store_proposal(proposal: UpgradeProposal) -> None:
        record = UpgradeProposalRecord.query.filter_by(proposal_id=proposal.id).first()
        if record is None:
            record = UpgradeProposalRecord(
                proposal_id=proposal.id,
                audit_run_id=proposal.audit_run_id,
                source_finding_ref=proposal.source_finding_ref,
                title=proposal.title,
                category=proposal.category,
                priority=proposal.priority.value,
            )
            db.session.add(record)
        record.status = proposal.status.value
        record.failure = proposal.failure
        record.payload = proposal.to_dict()
        if proposal.ticket:
            record.ticket_id = proposal.ticket.external_id
            record.ticket_url = proposal.ticket.url

    @staticmethod
    def _store_step(payload: dict) -> None:
        step = payload["step"]
        db.session.add(ExecutionStepRecord(
            proposal_id=payload["proposal_id"],
            step=step.name.value,
            success=step.success,
            detail=step.detail,
            backend=step.backend,
            started_at=step.started_at,
            finished_at=step.finished_at,
        ))
