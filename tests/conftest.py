"""
Shared pytest fixtures for the Audit-to-Upgrade Pipeline test suite.

Provides:
    - StubValidator / StubBackend: deterministic pipeline collaborators
    - deploy_target: MagicMock DeploymentTarget, every call succeeds by default
    - issue_tracker: MagicMock IssueTracker handing out ticket #42
    - registry: ExecutorBackendRegistry with "cursor" and "devin" stubs
    - make_service: factory for a synchronous PipelineService wired to the stubs
    - app / client: Flask app (testing config) around a stub-wired service
"""

import threading
import time
from unittest.mock import MagicMock

import pytest

from upgrade_pipeline import create_app
from upgrade_pipeline.models import db as _db
from upgrade_pipeline.pipeline.backends import ExecutorBackend, ExecutorBackendRegistry
from upgrade_pipeline.pipeline.executor import DeploymentTarget, IssueTracker
from upgrade_pipeline.pipeline.service import PipelineService
from upgrade_pipeline.pipeline.types import (
    BackendResult,
    CategoryConfig,
    Finding,
    Severity,
    StepOutcome,
    TicketRef,
    ValidationOutcome,
)
from upgrade_pipeline.pipeline.validators import CategoryValidator


# ── Stub collaborators ───────────────────────────────────────────────────


class StubValidator(CategoryValidator):
    """Returns a fixed outcome, raises, or hangs — whatever the test needs."""

    def __init__(self, score=0.0, findings=(), recommendations=(), *, error=None, delay=0.0):
        self.score = score
        self.findings = tuple(findings)
        self.recommendations = tuple(recommendations)
        self.error = error
        self.delay = delay
        self.calls = 0

    def validate(self, config):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ValidationOutcome(
            score=self.score,
            findings=self.findings,
            recommendations=self.recommendations,
        )


class StubBackend(ExecutorBackend):
    """Records submitted tasks; fails the Nth task when ``fail_on`` is set."""

    def __init__(self, backend_id, *, fail_on=None, gate=None):
        self.backend_id = backend_id
        self.fail_on = fail_on
        self.gate = gate
        self.tasks = []
        self._lock = threading.Lock()

    def submit_task(self, task):
        with self._lock:
            self.tasks.append(task)
            return f"{self.backend_id}-{len(self.tasks)}"

    def await_result(self, handle):
        if self.gate is not None:
            self.gate.wait(timeout=5)
        index = int(handle.rsplit("-", 1)[1])
        if self.fail_on is not None and index == self.fail_on:
            return BackendResult(success=False, backend=self.backend_id, handle=handle,
                                 detail="agent reported failure")
        task = self.tasks[index - 1]
        return BackendResult(success=True, changes_applied=(task.title,),
                             duration_estimate="1m", backend=self.backend_id, handle=handle)


def security_headers_finding():
    return Finding(
        category="security",
        title="Missing Security Headers",
        severity=Severity.HIGH,
        description="CSP and HSTS headers are missing",
        impact="XSS and clickjacking exposure",
    )


# ── Collaborator fixtures ────────────────────────────────────────────────


@pytest.fixture()
def deploy_target():
    target = MagicMock(spec=DeploymentTarget)
    target.check_resource.return_value = True
    target.run_test.return_value = StepOutcome(ok=True, detail="passed")
    target.deploy_staging.return_value = StepOutcome(ok=True)
    target.run_staging_tests.return_value = StepOutcome(ok=True)
    target.deploy_production.return_value = StepOutcome(ok=True)
    return target


@pytest.fixture()
def issue_tracker():
    tracker = MagicMock(spec=IssueTracker)
    tracker.create_issue.return_value = TicketRef("42", "https://tracker.local/issues/42", "open")
    tracker.close_issue.return_value = TicketRef("42", "https://tracker.local/issues/42", "closed")
    tracker.reopen_or_annotate.return_value = TicketRef("42", "https://tracker.local/issues/42", "open")
    return tracker


@pytest.fixture()
def backends():
    return {"cursor": StubBackend("cursor"), "devin": StubBackend("devin")}


@pytest.fixture()
def registry(backends):
    return ExecutorBackendRegistry(list(backends.values()))


@pytest.fixture()
def make_service(registry, deploy_target, issue_tracker):
    """Build a synchronous PipelineService; keyword args override the defaults."""
    created = []

    def _make(validators=None, categories=None, **overrides):
        validators = validators if validators is not None else {
            "security": StubValidator(0.9, [security_headers_finding()]),
            "performance": StubValidator(0.3),
            "business": StubValidator(0.1),
        }
        categories = categories if categories is not None else [
            CategoryConfig("security", 0.5),
            CategoryConfig("performance", 0.3),
            CategoryConfig("business", 0.2),
        ]
        kwargs = dict(
            validators=validators,
            categories=categories,
            registry=registry,
            deploy_target=deploy_target,
            issue_tracker=issue_tracker,
            validator_timeout=2.0,
            synchronous=True,
        )
        kwargs.update(overrides)
        service = PipelineService(**kwargs)
        created.append(service)
        return service

    yield _make
    for service in created:
        service.shutdown(wait=False)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def pipeline_service(make_service):
    return make_service()


@pytest.fixture()
def app(pipeline_service):
    """Flask app around a stub-wired pipeline; fresh in-memory DB per test."""
    application = create_app("testing", pipeline_service=pipeline_service)
    yield application
    with application.app_context():
        _db.session.remove()
        _db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()
