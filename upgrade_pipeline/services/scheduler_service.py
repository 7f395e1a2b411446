"""
Audit-to-Upgrade Pipeline
Scheduler Service.

Timer-driven background work (the periodic audit scan) lives here,
outside the pipeline core, so the core stays testable without clocks.

    register_job("audit_scan")   decorator; the job fn receives the Flask app
    PeriodicJob                  daemon thread + cancellation token per timer
    SchedulerService             DB records, on-demand and timer runs

A job returning ``{"skipped": True, ...}`` is recorded as a skipped run,
which is how a tick that finds an audit already in flight stays a no-op.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from flask import Flask

from upgrade_pipeline.models import db
from upgrade_pipeline.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)

JobFn = Callable[[Flask], Any]


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class JobSpec:
    name: str
    fn: JobFn
    description: str = ""


_job_registry: dict[str, JobSpec] = {}


def register_job(name: str, *, description: str | None = None):
    """Register ``fn(app)`` under ``name``.

    Usage:
        @register_job("audit_scan")
        def run_audit_scan(app):
            ...
    """
    def decorator(fn: JobFn) -> JobFn:
        doc = description or (fn.__doc__ or "").strip() or f"Scheduled job: {name}"
        _job_registry[name] = JobSpec(name, fn, doc)
        return fn
    return decorator


def get_registered_jobs() -> dict[str, JobSpec]:
    return dict(_job_registry)


# ═══════════════════════════════════════════════════════════════════════════
#  Periodic timer
# ═══════════════════════════════════════════════════════════════════════════


class PeriodicJob:
    """Calls ``fn`` every ``interval_seconds`` until stopped.

    ``stop()`` sets the cancellation token, which also wakes a sleeping
    thread. A slow tick delays the next one; ticks never overlap.
    """

    def __init__(self, name: str, interval_seconds: float, fn: Callable[[], object]) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self._fn = fn
        self._cancel = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._cancel.clear()
        self._thread = threading.Thread(target=self._loop, name=f"job-{self.name}", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._cancel.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def _loop(self) -> None:
        while not self._cancel.wait(self.interval_seconds):
            try:
                self._fn()
            except Exception:
                logger.exception("Periodic job %s tick failed", self.name,
                                 extra={"job_name": self.name})


# ═══════════════════════════════════════════════════════════════════════════
#  Service
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class JobRun:
    job_name: str
    status: str
    trigger: str
    duration_ms: int = 0
    result: Any = None
    error: str | None = None
    started: float = field(default_factory=time.monotonic, repr=False)

    def finish(self) -> JobRun:
        self.duration_ms = int((time.monotonic() - self.started) * 1000)
        return self

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("started")
        return data


class SchedulerService:
    """Job records, execution and timers, bound to one Flask app."""

    _app: Flask | None = None
    _timers: dict[str, PeriodicJob] = {}

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls.stop_timers()
        cls._app = app
        app.extensions["scheduler"] = cls
        cls.ensure_jobs_registered()
        if app.config.get("SCHEDULER_ENABLED"):
            cls.start_timers()
        logger.info("Scheduler ready: %d job(s), timers %s", len(_job_registry),
                    "on" if cls._timers else "off")

    @classmethod
    def _interval_for(cls, job_name: str) -> int:
        """Timer period from ``<JOB_NAME>_INTERVAL_SECONDS``; 0 means manual only."""
        if cls._app is None:
            return 0
        return int(cls._app.config.get(f"{job_name.upper()}_INTERVAL_SECONDS") or 0)

    @staticmethod
    def _record(job_name: str) -> ScheduledJob | None:
        return ScheduledJob.query.filter_by(job_name=job_name).first()

    @classmethod
    def ensure_jobs_registered(cls) -> list[str]:
        """Create a ScheduledJob row for each registered job that lacks one."""
        if cls._app is None:
            return []
        with cls._app.app_context():
            missing = [spec for name, spec in _job_registry.items() if cls._record(name) is None]
            for spec in missing:
                db.session.add(ScheduledJob(
                    job_name=spec.name,
                    description=spec.description[:500],
                    interval_seconds=cls._interval_for(spec.name) or None,
                ))
            if missing:
                db.session.commit()
                logger.info("Registered %d scheduled job record(s)", len(missing))
        return [spec.name for spec in missing]

    # ── Timers ───────────────────────────────────────────────────────────

    @classmethod
    def start_timers(cls) -> list[str]:
        started = []
        for name in _job_registry:
            interval = cls._interval_for(name)
            if interval <= 0 or name in cls._timers:
                continue
            timer = PeriodicJob(name, interval, lambda n=name: cls.run_job(n, trigger="timer"))
            timer.start()
            cls._timers[name] = timer
            started.append(name)
            logger.info("Timer started for %s every %ss", name, interval,
                        extra={"job_name": name})
        return started

    @classmethod
    def running_timers(cls) -> list[str]:
        return sorted(name for name, timer in cls._timers.items() if timer.running)

    @classmethod
    def stop_timers(cls) -> None:
        timers, cls._timers = cls._timers, {}
        for name, timer in timers.items():
            timer.stop()
            logger.info("Timer stopped for %s", name, extra={"job_name": name})

    # ── Execution ────────────────────────────────────────────────────────

    @classmethod
    def run_job(cls, job_name: str, trigger: str = "manual") -> dict:
        """Run one job now and record the outcome.

        Timer ticks for a paused job return immediately without running it.

        Returns:
            {"job_name", "status", "trigger", "duration_ms", "result", "error"};
            status is one of success, failed, skipped (or error when the
            job is unknown or the scheduler has no app).
        """
        spec = _job_registry.get(job_name)
        if spec is None:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if cls._app is None:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        app = cls._app
        if trigger == "timer":
            with app.app_context():
                record = cls._record(job_name)
                if record is not None and not record.is_enabled:
                    return {"job_name": job_name, "status": "skipped", "reason": "disabled"}

        run = JobRun(job_name=job_name, status="success", trigger=trigger)
        try:
            with app.app_context():
                run.result = spec.fn(app)
        except Exception as exc:
            run.status, run.error = "failed", str(exc)
            logger.exception("Job %s failed", job_name, extra={"job_name": job_name})
        else:
            if isinstance(run.result, dict) and run.result.get("skipped"):
                run.status = "skipped"
        run.finish()

        cls._persist(run)
        logger.info("Job %s %s (%s)", job_name, run.status, trigger,
                    extra={"job_name": job_name, "duration_ms": run.duration_ms})
        return run.to_dict()

    @classmethod
    def _persist(cls, run: JobRun) -> None:
        try:
            with cls._app.app_context():
                record = cls._record(run.job_name)
                if record is None:
                    return
                result = run.result if isinstance(run.result, dict) else {"output": str(run.result)}
                record.record_run(status=run.status, trigger=run.trigger,
                                  duration_ms=run.duration_ms, result=result, error=run.error)
                db.session.commit()
        except Exception:
            logger.exception("Could not store run of %s", run.job_name,
                             extra={"job_name": run.job_name})

    # ── Admin ────────────────────────────────────────────────────────────

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """Registered jobs with timer state and their stored record (needs app context)."""
        jobs = []
        for name, spec in _job_registry.items():
            record = cls._record(name)
            timer = cls._timers.get(name)
            jobs.append({
                "job_name": name,
                "description": spec.description,
                "timer_running": timer is not None and timer.running,
                "db_record": record.to_dict() if record else None,
            })
        return jobs

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        record = cls._record(job_name)
        if record is None:
            return None
        record.set_enabled(enabled)
        db.session.commit()
        logger.info("Job %s %s", job_name, "enabled" if enabled else "paused",
                    extra={"job_name": job_name})
        return record.to_dict()
