"""
Executor backends — external capability providers for the implement step.

    ExecutorBackend            ABC: submit_task / await_result
    HttpAgentBackend           agent REST endpoint (POST /tasks, GET /tasks/<h>)
    ExecutorBackendRegistry    id → backend; dispatch(task, backend_id)
    CategoryRoutingPolicy      category → backend id, with a default

The registry never retries; the executor decides what a failed dispatch
means (it aborts the pipeline).
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod

from upgrade_pipeline.core.exceptions import (
    BackendError,
    BackendExecutionError,
    BackendUnavailableError,
)
from upgrade_pipeline.integrations.base_gateway import BaseGateway
from upgrade_pipeline.pipeline.types import BackendResult, ImplementationTask

logger = logging.getLogger(__name__)

_POLL_INTERVAL_SECONDS = 2.0
_DEFAULT_TASK_TIMEOUT = 600.0


class ExecutorBackend(ABC):
    """Capability set every backend provides."""

    backend_id: str = ""

    @abstractmethod
    def submit_task(self, task: ImplementationTask) -> str:
        """Hand the task over; return an opaque handle."""

    @abstractmethod
    def await_result(self, handle: str) -> BackendResult:
        """Block until the task reaches a terminal state."""


# ═══════════════════════════════════════════════════════════════════════════
#  HTTP agent backend
# ═══════════════════════════════════════════════════════════════════════════


class _AgentGateway(BaseGateway):
    # POSTing a task twice would run it twice
    retry_max = 0

    def __init__(self, backend_id: str, base_url: str, **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.name = f"agent:{backend_id}"


class HttpAgentBackend(ExecutorBackend):
    """Agent reachable over REST.

    POST /tasks            body: task dict        → {"id": "<handle>"}
    GET  /tasks/<handle>                          → {"status": "running"|"completed"|"failed",
                                                     "changes": [...], "duration": "...",
                                                     "error": "..."}
    """

    TERMINAL = {"completed", "failed"}

    def __init__(
        self,
        backend_id: str,
        base_url: str,
        *,
        session=None,
        poll_interval: float = _POLL_INTERVAL_SECONDS,
        task_timeout: float = _DEFAULT_TASK_TIMEOUT,
    ) -> None:
        self.backend_id = backend_id
        self.gateway = _AgentGateway(backend_id, base_url, session=session)
        self.poll_interval = poll_interval
        self.task_timeout = task_timeout

    def submit_task(self, task: ImplementationTask) -> str:
        result = self.gateway.request("POST", "tasks", json_body=task.to_dict())
        if not result.ok:
            if result.status_code is None:
                raise BackendUnavailableError(self.backend_id, result.error or "unreachable")
            raise BackendExecutionError(self.backend_id, result.error or "task rejected")
        handle = (result.data or {}).get("id")
        if not handle:
            raise BackendExecutionError(self.backend_id, "agent returned no task id")
        return str(handle)

    def await_result(self, handle: str) -> BackendResult:
        deadline = time.monotonic() + self.task_timeout
        while True:
            result = self.gateway.request("GET", f"tasks/{handle}")
            if not result.ok:
                if result.status_code is None:
                    raise BackendUnavailableError(self.backend_id, result.error or "unreachable")
                raise BackendExecutionError(self.backend_id, result.error or "status poll failed")

            body = result.data or {}
            status = body.get("status", "running")
            if status in self.TERMINAL:
                return BackendResult(
                    success=status == "completed",
                    changes_applied=tuple(body.get("changes") or ()),
                    duration_estimate=str(body.get("duration", "")),
                    backend=self.backend_id,
                    handle=handle,
                    detail=body.get("error") or "",
                )
            if time.monotonic() >= deadline:
                raise BackendExecutionError(
                    self.backend_id, f"task {handle} not finished after {self.task_timeout}s"
                )
            time.sleep(self.poll_interval)


# ═══════════════════════════════════════════════════════════════════════════
#  Registry & routing
# ═══════════════════════════════════════════════════════════════════════════


class ExecutorBackendRegistry:
    """Routes implementation tasks to registered backends."""

    def __init__(self, backends: list[ExecutorBackend] | None = None) -> None:
        self._backends: dict[str, ExecutorBackend] = {}
        self._lock = threading.Lock()
        for backend in backends or []:
            self.register(backend)

    def register(self, backend: ExecutorBackend) -> None:
        with self._lock:
            self._backends[backend.backend_id] = backend
        logger.info("Executor backend registered: %s", backend.backend_id,
                    extra={"backend": backend.backend_id})

    def unregister(self, backend_id: str) -> None:
        with self._lock:
            self._backends.pop(backend_id, None)

    def get(self, backend_id: str) -> ExecutorBackend | None:
        with self._lock:
            return self._backends.get(backend_id)

    def list_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._backends)

    def dispatch(self, task: ImplementationTask, backend_id: str) -> BackendResult:
        """Submit the task to ``backend_id`` and wait for its result.

        Raises:
            BackendUnavailableError: backend not registered or unreachable.
            BackendExecutionError:   task failed, or the backend raised.
        """
        backend = self.get(backend_id)
        if backend is None:
            raise BackendUnavailableError(backend_id)

        extra = {"backend": backend_id, "proposal_id": task.proposal_id}
        logger.debug("Dispatching task %s to %s", task.id, backend_id, extra=extra)
        try:
            handle = backend.submit_task(task)
            result = backend.await_result(handle)
        except BackendError:
            raise
        except Exception as exc:
            raise BackendExecutionError(backend_id, str(exc) or type(exc).__name__) from exc

        if not result.success:
            raise BackendExecutionError(backend_id, result.detail or f"task '{task.title}' failed")
        return result


class CategoryRoutingPolicy:
    """Pick a backend id for a proposal category."""

    def __init__(self, routes: dict[str, str] | None = None, default: str = "cursor") -> None:
        self.routes = dict(routes or {})
        self.default = default

    def select(self, category: str) -> str:
        return self.routes.get(category, self.default)
