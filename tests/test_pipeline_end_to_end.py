"""
End-to-end pipeline scenarios through PipelineService.

Three categories {security: 0.5, performance: 0.3, business: 0.2} scoring
{0.9, 0.3, 0.1} give an overall risk of 0.56 (Medium). The one High
severity security finding maps to a single proposal.
"""

import pytest

from conftest import StubValidator, security_headers_finding

from upgrade_pipeline.pipeline.types import Priority, ProposalStatus, StepName, StepOutcome


class TestAuditToUpgrade:

    def test_audit_scores_and_maps_one_proposal(self, pipeline_service):
        summary = pipeline_service.run_audit()

        assert summary["overall_risk_score"] == pytest.approx(0.56)
        assert summary["priority"] == Priority.MEDIUM.value
        assert summary["status"] == "completed"
        assert summary["finding_counts"]["high"] == 1
        assert len(summary["proposal_ids"]) == 1

        proposal = pipeline_service.get_proposal(summary["proposal_ids"][0])
        assert proposal.status == ProposalStatus.PENDING
        assert proposal.title == "Security Headers Implementation"
        assert proposal.audit_run_id == summary["id"]

    def test_failing_test_step_stops_pipeline(self, pipeline_service, deploy_target,
                                              issue_tracker):
        deploy_target.run_test.return_value = StepOutcome(ok=False, detail="CSP header missing")
        pid = pipeline_service.run_audit()["proposal_ids"][0]

        pipeline_service.approve(pid)

        proposal = pipeline_service.get_proposal(pid)
        assert proposal.status == ProposalStatus.FAILED
        log = pipeline_service.get_execution_log(pid)
        assert [(s.name, s.success) for s in log] == [
            (StepName.VALIDATE, True),
            (StepName.IMPLEMENT, True),
            (StepName.TEST, False),
        ]
        assert issue_tracker.close_issue.call_count == 0
        issue_tracker.reopen_or_annotate.assert_called_once()
        deploy_target.deploy_staging.assert_not_called()

    def test_stage_failure_never_reaches_production(self, pipeline_service, deploy_target):
        deploy_target.deploy_staging.return_value = StepOutcome(ok=False, detail="cluster busy")
        pid = pipeline_service.run_audit()["proposal_ids"][0]

        pipeline_service.approve(pid)

        assert deploy_target.deploy_production.call_count == 0
        assert pipeline_service.get_proposal(pid).status == ProposalStatus.FAILED
        assert pipeline_service.get_proposal(pid).failure["step"] == "stage_deploy"

    def test_successful_rollout_closes_ticket(self, pipeline_service, issue_tracker):
        pid = pipeline_service.run_audit()["proposal_ids"][0]

        proposal = pipeline_service.approve(pid)

        assert proposal.status == ProposalStatus.COMPLETED
        assert [s.name for s in pipeline_service.get_execution_log(pid)][-1] \
            is StepName.PRODUCTION_DEPLOY
        issue_tracker.close_issue.assert_called_once()
        assert proposal.ticket.external_id == "42"

    def test_errored_category_still_yields_completed_run(self, make_service):
        service = make_service(validators={
            "security": StubValidator(0.9, [security_headers_finding()]),
            "performance": StubValidator(error=RuntimeError("lighthouse unreachable")),
            "business": StubValidator(0.1),
        })

        summary = service.run_audit()

        assert summary["errored_categories"] == ["performance"]
        # 0.45 + 0.3 + 0.02
        assert summary["overall_risk_score"] == pytest.approx(0.77)
        assert summary["priority"] == "high"
        assert len(summary["proposal_ids"]) == 1

    def test_subset_of_categories(self, pipeline_service):
        summary = pipeline_service.run_audit(["performance", "business"])
        assert set(summary["category_scores"]) == {"performance", "business"}
        assert summary["proposal_ids"] == []

    def test_run_bookkeeping_follows_bounded_history(self, make_service):
        service = make_service(history_limit=3)

        summaries = [service.run_audit() for _ in range(5)]

        retained = [run.id for run in service.list_audit_runs()]
        assert retained == [s["id"] for s in reversed(summaries[-3:])]
        assert set(service._run_proposals) == set(retained)
        newest = service.list_audit_runs()[0]
        assert service.summarize(newest)["proposal_ids"] == summaries[-1]["proposal_ids"]
