"""
Issue tracker gateway — GitHub-style issues REST API.

    POST  /issues                      create  → {"number", "html_url", "state"}
    POST  /issues/<n>/comments         comment
    PATCH /issues/<n>                  {"state": "closed" | "open"}

The pipeline only ever holds a TicketRef; it never deletes tickets.
Every failure surfaces as TicketingError so the executor can log it and
carry on.

Usage:
    tracker = IssueTrackerGateway("https://api.github.com/repos/org/app", token="...")
    ref = tracker.create_issue("Bundle Optimization", body, ["performance", "medium"])
"""

from __future__ import annotations

import logging

import requests

from upgrade_pipeline.core.exceptions import TicketingError
from upgrade_pipeline.integrations.base_gateway import BaseGateway, GatewayResult
from upgrade_pipeline.pipeline.executor import IssueTracker
from upgrade_pipeline.pipeline.types import TicketRef

logger = logging.getLogger(__name__)


class IssueTrackerGateway(BaseGateway, IssueTracker):
    name = "issue_tracker"

    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        session: requests.Session | None = None,
        timeout: float = 30,
    ) -> None:
        super().__init__(base_url, session=session, timeout=timeout)
        self.token = token

    def build_headers(self) -> dict[str, str]:
        headers = super().build_headers()
        headers["Accept"] = "application/vnd.github+json"
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @staticmethod
    def _check(result: GatewayResult, action: str) -> dict:
        if not result.ok:
            raise TicketingError(f"{action} failed: {result.error}")
        return result.data if isinstance(result.data, dict) else {}

    # ── IssueTracker ─────────────────────────────────────────────────────

    def create_issue(self, title: str, body: str, labels: list[str]) -> TicketRef:
        data = self._check(
            self.request("POST", "issues",
                         json_body={"title": title, "body": body, "labels": list(labels)}),
            "create issue",
        )
        number = data.get("number")
        if number is None:
            raise TicketingError("create issue failed: response has no issue number")
        return TicketRef(
            external_id=str(number),
            url=data.get("html_url", ""),
            state=data.get("state", "open"),
        )

    def close_issue(self, ref: TicketRef, summary: str) -> TicketRef:
        self._comment(ref, summary)
        data = self._check(
            self.request("PATCH", f"issues/{ref.external_id}", json_body={"state": "closed"}),
            f"close issue #{ref.external_id}",
        )
        return TicketRef(ref.external_id, ref.url, data.get("state", "closed"))

    def reopen_or_annotate(self, ref: TicketRef, detail: str) -> TicketRef:
        self._comment(ref, f"Upgrade failed.\n\n{detail}")
        if ref.state == "open":
            return ref
        data = self._check(
            self.request("PATCH", f"issues/{ref.external_id}", json_body={"state": "open"}),
            f"reopen issue #{ref.external_id}",
        )
        return TicketRef(ref.external_id, ref.url, data.get("state", "open"))

    def _comment(self, ref: TicketRef, body: str) -> None:
        self._check(
            self.request("POST", f"issues/{ref.external_id}/comments", json_body={"body": body}),
            f"comment on issue #{ref.external_id}",
        )
