"""
Audit-to-Upgrade Pipeline
Audit Orchestrator.

Runs every enabled category validator concurrently, isolates per-category
failures, and aggregates a weighted risk score plus the combined findings
and recommendations into one AuditRun.

    orchestrator = AuditOrchestrator({"security": SecurityValidator(), ...})
    run = orchestrator.run_audit(category_configs)

Concurrency:
    - fan-out / fan-in over a thread pool sized to the category count
    - each validator call runs under a shared deadline; a timeout is
      handled exactly like a raised error
    - one audit at a time per orchestrator; ``run_audit(blocking=False)``
      returns None instead of queueing when one is already in flight
    - the bounded history is guarded by its own lock
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import replace

from upgrade_pipeline.core.exceptions import NotFoundError, OrchestrationError, ValidatorError
from upgrade_pipeline.middleware.logging_config import log_context
from upgrade_pipeline.pipeline.types import (
    PRIORITY_RANK,
    AuditRun,
    AuditStatus,
    CategoryConfig,
    CategoryResult,
    Finding,
    Severity,
    ValidationOutcome,
    classify_priority,
    utcnow,
)
from upgrade_pipeline.pipeline.validators import CategoryValidator

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10
DEFAULT_VALIDATOR_TIMEOUT = 30.0


def aggregate_risk_score(results: list[CategoryResult]) -> float:
    """Σ(score·weight) / Σ(weight) over the results; 0.0 when every weight is 0."""
    total_weight = sum(r.weight for r in results)
    if total_weight <= 0:
        return 0.0
    return sum(r.score * r.weight for r in results) / total_weight


def error_result(config: CategoryConfig, reason: str) -> CategoryResult:
    """Synthetic high-risk result standing in for a failed or timed-out validator."""
    finding = Finding(
        category=config.category,
        title=f"Audit Error: {config.category}",
        severity=Severity.HIGH,
        description=reason,
        impact="Category could not be assessed; treated as maximum risk",
    )
    return CategoryResult(
        category=config.category,
        weight=config.weight,
        score=1.0,
        findings=(finding,),
        error=reason,
    )


class AuditOrchestrator:
    """Concurrent, failure-isolated multi-category audit runner."""

    def __init__(
        self,
        validators: dict[str, CategoryValidator],
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        validator_timeout: float = DEFAULT_VALIDATOR_TIMEOUT,
    ) -> None:
        self.validators = dict(validators)
        self.validator_timeout = validator_timeout
        self._history: deque[AuditRun] = deque(maxlen=history_limit)
        self._history_lock = threading.Lock()
        self._run_lock = threading.Lock()

    # ── Validators ───────────────────────────────────────────────────────

    def register_validator(self, category: str, validator: CategoryValidator) -> None:
        self.validators[category] = validator

    # ── Running ──────────────────────────────────────────────────────────

    @property
    def in_flight(self) -> bool:
        return self._run_lock.locked()

    def run_audit(
        self,
        configs: list[CategoryConfig],
        *,
        blocking: bool = True,
    ) -> AuditRun | None:
        """Run all enabled categories and return the completed AuditRun.

        Args:
            configs:  Category configs; disabled entries are skipped.
            blocking: When False and another audit is running, return None.

        Raises:
            OrchestrationError: no category is enabled.
        """
        enabled = [c for c in configs if c.enabled]
        if not enabled:
            raise OrchestrationError("No audit categories are enabled")

        if not self._run_lock.acquire(blocking=blocking):
            logger.info("Audit already in flight, skipping")
            return None
        try:
            run = self._execute(enabled)
        finally:
            self._run_lock.release()

        with self._history_lock:
            # deque(maxlen) evicts the oldest run
            self._history.appendleft(run)
        return run

    def _execute(self, enabled: list[CategoryConfig]) -> AuditRun:
        run = AuditRun(id=f"audit_{uuid.uuid4().hex[:12]}", started_at=utcnow())
        log_extra = log_context(audit_run_id=run.id)
        logger.info("Audit started: %d categories (%s)", len(enabled),
                    ", ".join(c.category for c in enabled), extra=log_extra)

        results = self._fan_out(run.id, enabled)

        overall = aggregate_risk_score(list(results.values()))
        findings = tuple(f for r in results.values() for f in r.findings)
        recommendations = tuple(sorted(
            (rec for r in results.values() for rec in r.recommendations),
            key=lambda rec: PRIORITY_RANK[rec.priority],
        ))
        completed = replace(
            run,
            status=AuditStatus.COMPLETED,
            category_results=results,
            overall_risk_score=overall,
            priority=classify_priority(overall),
            completed_at=utcnow(),
            findings=findings,
            recommendations=recommendations,
        )
        logger.info(
            "Audit completed: risk=%.3f priority=%s findings=%d",
            overall, completed.priority.value, len(findings), extra=log_extra,
        )
        return completed

    def _fan_out(self, run_id: str, enabled: list[CategoryConfig]) -> dict[str, CategoryResult]:
        pool = ThreadPoolExecutor(max_workers=len(enabled), thread_name_prefix="audit")
        try:
            futures = {
                cfg.category: (cfg, pool.submit(self._call_validator, cfg))
                for cfg in enabled
            }
            deadline = time.monotonic() + self.validator_timeout
            results: dict[str, CategoryResult] = {}
            for category, (cfg, future) in futures.items():
                remaining = max(0.0, deadline - time.monotonic())
                try:
                    results[category] = future.result(timeout=remaining)
                except FuturesTimeoutError:
                    results[category] = self._isolate(
                        run_id, cfg, f"timed out after {self.validator_timeout}s")
                except Exception as exc:
                    reason = exc.reason if isinstance(exc, ValidatorError) else str(exc) or type(exc).__name__
                    results[category] = self._isolate(run_id, cfg, reason)
            return results
        finally:
            # A hung validator thread is abandoned, never awaited
            pool.shutdown(wait=False, cancel_futures=True)

    def _call_validator(self, cfg: CategoryConfig) -> CategoryResult:
        validator = self.validators.get(cfg.category)
        if validator is None:
            raise ValidatorError(cfg.category, "no validator registered")
        outcome = validator.validate(cfg)
        if not isinstance(outcome, ValidationOutcome):
            raise ValidatorError(cfg.category, f"validator returned {type(outcome).__name__}")
        if not 0.0 <= outcome.score <= 1.0:
            raise ValidatorError(cfg.category, f"score {outcome.score} outside [0, 1]")
        return CategoryResult(
            category=cfg.category,
            weight=cfg.weight,
            score=outcome.score,
            findings=tuple(outcome.findings),
            recommendations=tuple(outcome.recommendations),
        )

    @staticmethod
    def _isolate(run_id: str, cfg: CategoryConfig, reason: str) -> CategoryResult:
        logger.warning("Validator %s failed: %s", cfg.category, reason,
                       extra=log_context(audit_run_id=run_id, category=cfg.category))
        return error_result(cfg, reason)

    # ── History ──────────────────────────────────────────────────────────

    def history(self) -> list[AuditRun]:
        """Retained runs, most recent first."""
        with self._history_lock:
            return list(self._history)

    def get_run(self, run_id: str) -> AuditRun:
        with self._history_lock:
            for run in self._history:
                if run.id == run_id:
                    return run
        raise NotFoundError("AuditRun", run_id)
