"""Tests for upgrade_pipeline.services.record_store — DB archive of pipeline events."""

from upgrade_pipeline.models.pipeline import (
    AuditRunRecord,
    ExecutionStepRecord,
    UpgradeProposalRecord,
)
from upgrade_pipeline.pipeline.types import StepOutcome


class TestPipelineRecordStore:

    def test_audit_run_is_archived(self, app, pipeline_service):
        summary = pipeline_service.run_audit()

        with app.app_context():
            record = AuditRunRecord.query.filter_by(run_id=summary["id"]).one()
            assert record.priority == "medium"
            assert round(record.overall_risk_score, 2) == 0.56
            assert record.finding_counts["high"] == 1
            assert record.payload["category_results"]["security"]["score"] == 0.9

    def test_proposal_snapshot_is_upserted(self, app, pipeline_service):
        pid = pipeline_service.run_audit()["proposal_ids"][0]

        with app.app_context():
            record = UpgradeProposalRecord.query.filter_by(proposal_id=pid).one()
            assert record.status == "pending"

        pipeline_service.approve(pid)

        with app.app_context():
            assert UpgradeProposalRecord.query.filter_by(proposal_id=pid).count() == 1
            record = UpgradeProposalRecord.query.filter_by(proposal_id=pid).one()
            assert record.status == "completed"
            assert record.ticket_id == "42"

    def test_execution_steps_are_archived(self, app, pipeline_service, deploy_target):
        deploy_target.run_staging_tests.return_value = StepOutcome(ok=False, detail="smoke")
        pid = pipeline_service.run_audit()["proposal_ids"][0]

        pipeline_service.approve(pid)

        with app.app_context():
            steps = (ExecutionStepRecord.query.filter_by(proposal_id=pid)
                     .order_by(ExecutionStepRecord.id).all())
            assert [s.step for s in steps] == ["validate", "implement", "test", "stage_deploy"]
            assert [s.success for s in steps] == [True, True, True, False]
            record = UpgradeProposalRecord.query.filter_by(proposal_id=pid).one()
            assert record.status == "failed"
            assert record.failure["step"] == "stage_deploy"

    def test_failing_subscriber_does_not_break_pipeline(self, app, pipeline_service):
        def _broken(event, payload):
            raise RuntimeError("subscriber down")

        pipeline_service.subscribe(_broken)
        summary = pipeline_service.run_audit()

        assert summary["status"] == "completed"
        with app.app_context():
            assert AuditRunRecord.query.count() == 1

    def test_unsubscribe(self, pipeline_service):
        seen = []
        unsubscribe = pipeline_service.subscribe(lambda e, p: seen.append(e))
        unsubscribe()
        pipeline_service.run_audit()
        assert seen == []
