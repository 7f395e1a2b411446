"""
Scheduler tests.

Covers:
    - job registry and DB records
    - audit_scan job: success, skipped while an audit is in flight
    - run history on ScheduledJob
    - disabled jobs skip timer ticks
    - PeriodicJob start / stop with its cancellation token
"""

import threading
import time
from unittest.mock import patch

from upgrade_pipeline.models.scheduling import ScheduledJob
from upgrade_pipeline.services.scheduler_service import (
    PeriodicJob,
    SchedulerService,
    get_registered_jobs,
)


# ═════════════════════════════════════════════════════════════════════════════
# Registry & records
# ═════════════════════════════════════════════════════════════════════════════

class TestJobRegistry:

    def test_audit_scan_is_registered(self, app):
        assert "audit_scan" in get_registered_jobs()
        assert app.extensions["scheduler"] is SchedulerService

    def test_db_record_created_with_interval(self, app):
        with app.app_context():
            record = ScheduledJob.query.filter_by(job_name="audit_scan").first()
            assert record is not None
            assert record.interval_seconds == app.config["AUDIT_SCAN_INTERVAL_SECONDS"]
            assert record.is_enabled is True

    def test_no_timers_under_test_config(self, app):
        with app.app_context():
            jobs = SchedulerService.list_jobs()
        assert all(not j["timer_running"] for j in jobs)


# ═════════════════════════════════════════════════════════════════════════════
# audit_scan
# ═════════════════════════════════════════════════════════════════════════════

class TestAuditScanJob:

    def test_run_creates_proposals_and_records_run(self, app, pipeline_service):
        outcome = SchedulerService.run_job("audit_scan")

        assert outcome["status"] == "success"
        assert outcome["result"]["proposals_created"] == 1
        assert outcome["result"]["priority"] == "medium"
        assert len(pipeline_service.list_audit_runs()) == 1
        with app.app_context():
            record = ScheduledJob.query.filter_by(job_name="audit_scan").first()
            assert record.run_count == 1
            assert record.last_run_status == "success"

    def test_tick_is_noop_while_audit_in_flight(self, app, pipeline_service):
        with patch.object(pipeline_service, "try_run_audit", return_value=None):
            outcome = SchedulerService.run_job("audit_scan", trigger="timer")

        assert outcome["status"] == "skipped"
        assert outcome["result"]["reason"] == "audit in flight"
        assert pipeline_service.list_audit_runs() == []
        with app.app_context():
            record = ScheduledJob.query.filter_by(job_name="audit_scan").first()
            assert record.last_run_status == "skipped"
            assert record.skip_count == 1
            assert record.error_count == 0

    def test_try_run_audit_skips_real_in_flight_audit(self, pipeline_service):
        release = threading.Event()
        entered = threading.Event()
        security = pipeline_service.orchestrator.validators["security"]
        real_validate = security.validate

        def _slow(config):
            entered.set()
            release.wait(timeout=5)
            return real_validate(config)

        security.validate = _slow
        worker = threading.Thread(target=pipeline_service.run_audit)
        worker.start()
        try:
            assert entered.wait(timeout=5)
            assert pipeline_service.try_run_audit() is None
        finally:
            release.set()
            worker.join(timeout=5)
        assert len(pipeline_service.list_audit_runs()) == 1

    def test_failing_job_is_recorded(self, app, pipeline_service):
        with patch.object(pipeline_service, "try_run_audit", side_effect=RuntimeError("db gone")):
            outcome = SchedulerService.run_job("audit_scan")

        assert outcome["status"] == "failed"
        assert outcome["error"] == "db gone"
        with app.app_context():
            record = ScheduledJob.query.filter_by(job_name="audit_scan").first()
            assert record.error_count == 1
            assert record.last_error == "db gone"

    def test_disabled_job_skips_timer_tick(self, app, pipeline_service):
        with app.app_context():
            SchedulerService.toggle_job("audit_scan", False)

        outcome = SchedulerService.run_job("audit_scan", trigger="timer")

        assert outcome == {"job_name": "audit_scan", "status": "skipped", "reason": "disabled"}
        assert pipeline_service.list_audit_runs() == []

    def test_unknown_job(self, app):
        assert SchedulerService.run_job("nope")["status"] == "error"


# ═════════════════════════════════════════════════════════════════════════════
# PeriodicJob
# ═════════════════════════════════════════════════════════════════════════════

class TestPeriodicJob:

    def test_ticks_until_stopped(self):
        ticks = []
        job = PeriodicJob("tick", 0.01, lambda: ticks.append(1))

        job.start()
        deadline = time.monotonic() + 5
        while len(ticks) < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        job.stop()

        assert len(ticks) >= 2
        assert not job.running
        count = len(ticks)
        time.sleep(0.05)
        assert len(ticks) == count

    def test_stop_wakes_sleeping_timer(self):
        calls = []
        job = PeriodicJob("slow", 3600, lambda: calls.append(1))
        job.start()

        started = time.monotonic()
        job.stop()

        assert time.monotonic() - started < 1
        assert calls == []
        assert not job.running

    def test_failing_tick_does_not_kill_timer(self):
        ticks = []

        def _tick():
            ticks.append(1)
            raise RuntimeError("tick failed")

        job = PeriodicJob("flaky", 0.01, _tick)
        job.start()
        deadline = time.monotonic() + 5
        while len(ticks) < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        job.stop()
        assert len(ticks) >= 3
