"""
In-process pipeline event channel.

Consumers (record store, UI push, metrics) subscribe instead of polling
shared state. Callbacks run synchronously on the publishing thread;
a failing subscriber is logged and never breaks the pipeline.

    events.subscribe(lambda name, payload: print(name))
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

AUDIT_COMPLETED = "audit.completed"
PROPOSAL_CREATED = "proposal.created"
PROPOSAL_APPROVED = "proposal.approved"
PROPOSAL_REJECTED = "proposal.rejected"
PROPOSAL_COMPLETED = "proposal.completed"
PROPOSAL_FAILED = "proposal.failed"
STEP_FINISHED = "step.finished"

Subscriber = Callable[[str, Any], None]


class PipelineEvents:

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback(event_name, payload)``; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: str, payload: Any) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event, payload)
            except Exception:
                logger.exception("Event subscriber failed for %s", event)
