"""Tests for upgrade_pipeline.pipeline.orchestrator — concurrent weighted audits.

Coverage
--------
    - weighted aggregation (equal weights, zero weight, all-zero weights)
    - priority band boundaries
    - failure isolation: raised error, timeout, bad score, missing validator
    - zero enabled categories → OrchestrationError; disabled categories skipped
    - bounded history with FIFO eviction
    - in-flight guard: non-blocking run returns None instead of queueing
    - validators fan out in parallel under one deadline
    - recommendation ordering and next steps
"""

import threading
import time

import pytest

from conftest import StubValidator
from upgrade_pipeline.core.exceptions import NotFoundError, OrchestrationError
from upgrade_pipeline.pipeline.orchestrator import AuditOrchestrator, aggregate_risk_score
from upgrade_pipeline.pipeline.types import (
    AuditStatus,
    CategoryConfig,
    CategoryResult,
    MAINTENANCE_STEPS,
    Finding,
    Priority,
    Recommendation,
    Severity,
    classify_priority,
)


def _run(scores_weights, **kwargs):
    validators = {name: StubValidator(score) for name, (score, _w) in scores_weights.items()}
    configs = [CategoryConfig(name, w) for name, (_s, w) in scores_weights.items()]
    return AuditOrchestrator(validators, validator_timeout=2.0, **kwargs).run_audit(configs)


# ═════════════════════════════════════════════════════════════════════════════
# Weighted aggregation
# ═════════════════════════════════════════════════════════════════════════════

class TestWeightedAggregation:

    def test_equal_weights_average_scores(self):
        run = _run({"a": (0.2, 0.5), "b": (0.8, 0.5)})
        assert run.overall_risk_score == pytest.approx(0.5)

    def test_zero_weight_category_is_excluded(self):
        run = _run({"a": (0.2, 1.0), "b": (0.8, 0.0)})
        assert run.overall_risk_score == pytest.approx(0.2)

    def test_all_zero_weights_yield_zero_without_dividing(self):
        run = _run({"a": (0.9, 0.0), "b": (0.8, 0.0)})
        assert run.overall_risk_score == 0.0
        assert run.priority == Priority.LOW

    def test_weights_need_not_sum_to_one(self):
        results = [
            CategoryResult("a", weight=0.2, score=1.0),
            CategoryResult("b", weight=0.2, score=0.0),
        ]
        assert aggregate_risk_score(results) == pytest.approx(0.5)

    def test_empty_result_list_is_zero(self):
        assert aggregate_risk_score([]) == 0.0


# ═════════════════════════════════════════════════════════════════════════════
# Priority classification
# ═════════════════════════════════════════════════════════════════════════════

class TestPriorityBoundaries:

    @pytest.mark.parametrize("score, expected", [
        (0.70, Priority.MEDIUM),
        (0.71, Priority.HIGH),
        (0.40, Priority.LOW),
        (0.41, Priority.MEDIUM),
        (0.0, Priority.LOW),
        (1.0, Priority.HIGH),
    ])
    def test_band(self, score, expected):
        assert classify_priority(score) == expected

    def test_run_priority_follows_overall_score(self):
        run = _run({"a": (0.9, 0.5), "b": (0.9, 0.5)})
        assert run.priority == Priority.HIGH


# ═════════════════════════════════════════════════════════════════════════════
# Failure isolation
# ═════════════════════════════════════════════════════════════════════════════

class TestIsolation:

    def _configs(self):
        return [CategoryConfig("ethical", 0.2), CategoryConfig("legal", 0.2),
                CategoryConfig("technical", 0.25)]

    def test_one_raising_validator_does_not_abort_run(self):
        validators = {
            "ethical": StubValidator(0.1),
            "legal": StubValidator(error=RuntimeError("tool crashed")),
            "technical": StubValidator(0.3),
        }
        run = AuditOrchestrator(validators).run_audit(self._configs())

        assert run.status == AuditStatus.COMPLETED
        assert set(run.category_results) == {"ethical", "legal", "technical"}
        failed = run.category_results["legal"]
        assert failed.score == 1.0
        assert failed.weight == 0.2
        assert failed.error == "tool crashed"
        assert failed.findings[0].title == "Audit Error: legal"
        assert failed.findings[0].severity == Severity.HIGH
        assert run.category_results["ethical"].error is None
        assert run.category_results["technical"].score == 0.3

    def test_error_result_counts_in_aggregate(self):
        validators = {"a": StubValidator(0.0), "b": StubValidator(error=ValueError("x"))}
        configs = [CategoryConfig("a", 0.5), CategoryConfig("b", 0.5)]
        run = AuditOrchestrator(validators).run_audit(configs)
        assert run.overall_risk_score == pytest.approx(0.5)

    def test_timeout_is_treated_like_an_error(self):
        validators = {"slow": StubValidator(0.1, delay=1.0), "fast": StubValidator(0.2)}
        configs = [CategoryConfig("slow", 0.5), CategoryConfig("fast", 0.5)]
        orchestrator = AuditOrchestrator(validators, validator_timeout=0.1)

        started = time.monotonic()
        run = orchestrator.run_audit(configs)

        assert time.monotonic() - started < 0.9
        assert run.status == AuditStatus.COMPLETED
        assert run.category_results["slow"].score == 1.0
        assert "timed out" in run.category_results["slow"].error
        assert run.category_results["fast"].score == 0.2

    def test_score_outside_range_is_a_validator_error(self):
        run = AuditOrchestrator({"a": StubValidator(1.5)}).run_audit([CategoryConfig("a", 1.0)])
        assert run.category_results["a"].score == 1.0
        assert "outside" in run.category_results["a"].error

    def test_missing_validator_is_a_validator_error(self):
        run = AuditOrchestrator({}).run_audit([CategoryConfig("legal", 1.0)])
        assert run.category_results["legal"].error == "no validator registered"


# ═════════════════════════════════════════════════════════════════════════════
# Enabled categories
# ═════════════════════════════════════════════════════════════════════════════

class TestConcurrency:

    def test_validators_run_in_parallel(self):
        # Serially these would need 1.5 s against a 0.9 s budget
        validators = {name: StubValidator(0.2, delay=0.5) for name in ("a", "b", "c")}
        configs = [CategoryConfig(name, 1.0) for name in validators]
        orchestrator = AuditOrchestrator(validators, validator_timeout=0.9)

        started = time.monotonic()
        run = orchestrator.run_audit(configs)
        elapsed = time.monotonic() - started

        assert all(r.error is None for r in run.category_results.values())
        assert all(v.calls == 1 for v in validators.values())
        assert run.overall_risk_score == pytest.approx(0.2)
        assert elapsed < 1.2


class TestEnabledCategories:

    def test_zero_enabled_categories_raises(self):
        orchestrator = AuditOrchestrator({"a": StubValidator(0.1)})
        with pytest.raises(OrchestrationError):
            orchestrator.run_audit([CategoryConfig("a", 1.0, enabled=False)])
        with pytest.raises(OrchestrationError):
            orchestrator.run_audit([])

    def test_disabled_category_is_not_run(self):
        skipped = StubValidator(0.9)
        orchestrator = AuditOrchestrator({"a": StubValidator(0.1), "b": skipped})
        run = orchestrator.run_audit([CategoryConfig("a", 1.0), CategoryConfig("b", 1.0, enabled=False)])
        assert skipped.calls == 0
        assert list(run.category_results) == ["a"]


# ═════════════════════════════════════════════════════════════════════════════
# History
# ═════════════════════════════════════════════════════════════════════════════

class TestHistory:

    def test_history_is_bounded_and_most_recent_first(self):
        orchestrator = AuditOrchestrator({"a": StubValidator(0.1)}, history_limit=10)
        runs = [orchestrator.run_audit([CategoryConfig("a", 1.0)]) for _ in range(12)]

        history = orchestrator.history()
        assert len(history) == 10
        assert history[0].id == runs[-1].id
        assert runs[0].id not in {r.id for r in history}
        assert runs[1].id not in {r.id for r in history}

    def test_get_run_unknown_id_raises_not_found(self):
        orchestrator = AuditOrchestrator({"a": StubValidator(0.1)})
        with pytest.raises(NotFoundError):
            orchestrator.get_run("audit_missing")

    def test_get_run_returns_retained_run(self):
        orchestrator = AuditOrchestrator({"a": StubValidator(0.1)})
        run = orchestrator.run_audit([CategoryConfig("a", 1.0)])
        assert orchestrator.get_run(run.id) is run


# ═════════════════════════════════════════════════════════════════════════════
# In-flight guard
# ═════════════════════════════════════════════════════════════════════════════

class _GatedValidator(StubValidator):

    def __init__(self):
        super().__init__(0.1)
        self.entered = threading.Event()
        self.release = threading.Event()

    def validate(self, config):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().validate(config)


class TestInFlightGuard:

    def test_non_blocking_run_is_a_noop_while_audit_in_flight(self):
        gated = _GatedValidator()
        orchestrator = AuditOrchestrator({"a": gated}, validator_timeout=5)
        configs = [CategoryConfig("a", 1.0)]
        worker = threading.Thread(target=orchestrator.run_audit, args=(configs,))
        worker.start()
        try:
            assert gated.entered.wait(timeout=5)
            assert orchestrator.in_flight
            assert orchestrator.run_audit(configs, blocking=False) is None
        finally:
            gated.release.set()
            worker.join(timeout=5)

        assert gated.calls == 1
        assert len(orchestrator.history()) == 1
        assert not orchestrator.in_flight


# ═════════════════════════════════════════════════════════════════════════════
# Findings & recommendations
# ═════════════════════════════════════════════════════════════════════════════

class TestCombinedLists:

    def test_findings_and_sorted_recommendations_are_combined(self):
        low = Recommendation("a", "Tidy up", priority=Priority.LOW)
        high = Recommendation("b", "Patch now", priority=Priority.HIGH)
        medium = Recommendation("a", "Refactor", priority=Priority.MEDIUM)
        finding = Finding("b", "Authentication Issues", Severity.HIGH)
        validators = {
            "a": StubValidator(0.2, recommendations=[low, medium]),
            "b": StubValidator(0.8, findings=[finding], recommendations=[high]),
        }
        run = AuditOrchestrator(validators).run_audit(
            [CategoryConfig("a", 0.5), CategoryConfig("b", 0.5)]
        )

        assert run.findings == (finding,)
        assert [r.title for r in run.recommendations] == ["Patch now", "Refactor", "Tidy up"]

    def test_summary_counts_findings_by_severity(self):
        validators = {"a": StubValidator(error=RuntimeError("boom"))}
        run = AuditOrchestrator(validators).run_audit([CategoryConfig("a", 1.0)])
        summary = run.summary(["p1"])
        assert summary["finding_counts"] == {"low": 0, "medium": 0, "high": 1}
        assert summary["errored_categories"] == ["a"]
        assert summary["proposal_ids"] == ["p1"]
        assert summary["status"] == "completed"

    def test_next_steps_are_top_three_high_priority_titles(self):
        recs = [Recommendation("a", f"Fix {i}", priority=Priority.HIGH) for i in range(4)]
        recs.append(Recommendation("a", "Later", priority=Priority.LOW))
        run = AuditOrchestrator({"a": StubValidator(0.9, recommendations=recs)}).run_audit(
            [CategoryConfig("a", 1.0)]
        )
        assert run.summary()["next_steps"] == ["Fix 0", "Fix 1", "Fix 2"]

    def test_next_steps_fall_back_to_maintenance(self):
        low = Recommendation("a", "Tidy up", priority=Priority.LOW)
        run = AuditOrchestrator({"a": StubValidator(0.1, recommendations=[low])}).run_audit(
            [CategoryConfig("a", 1.0)]
        )
        assert run.next_steps() == list(MAINTENANCE_STEPS)
