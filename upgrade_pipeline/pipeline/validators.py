"""
Category validators — the pluggable leaf of the audit.

A validator performs one category's checks and returns a score plus
findings. The orchestrator treats all of them uniformly; what a check
actually inspects is the validator's own business.

    CategoryValidator          ABC: validate(config) -> ValidationOutcome
    CallableValidator          wraps a plain function
    RemoteCategoryValidator    asks the remote audit tool service
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable

from upgrade_pipeline.core.exceptions import ValidatorError
from upgrade_pipeline.integrations.audit_tool_gateway import AuditToolGateway
from upgrade_pipeline.pipeline.types import (
    CategoryConfig,
    Finding,
    Priority,
    Recommendation,
    Severity,
    ValidationOutcome,
)

logger = logging.getLogger(__name__)


class CategoryValidator(ABC):
    """Capability: run one category's checks."""

    @abstractmethod
    def validate(self, config: CategoryConfig) -> ValidationOutcome:
        """Return score in [0, 1] plus findings. May raise; the orchestrator isolates it."""


class CallableValidator(CategoryValidator):
    """Adapter so a plain ``fn(config) -> ValidationOutcome`` can be registered."""

    def __init__(self, fn: Callable[[CategoryConfig], ValidationOutcome]) -> None:
        self._fn = fn

    def validate(self, config: CategoryConfig) -> ValidationOutcome:
        return self._fn(config)


def _parse_enum(enum_cls, value, default):
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return default


def parse_outcome(category: str, data: dict) -> ValidationOutcome:
    """Build a ValidationOutcome from the audit tool's JSON body.

    Raises:
        ValidatorError: score missing, non-numeric or outside [0, 1].
    """
    try:
        score = float(data["score"])
    except (KeyError, TypeError, ValueError):
        raise ValidatorError(category, "response has no numeric score")
    if not 0.0 <= score <= 1.0:
        raise ValidatorError(category, f"score {score} outside [0, 1]")

    findings = tuple(
        Finding(
            category=category,
            title=item.get("title", "Untitled finding"),
            severity=_parse_enum(Severity, item.get("severity"), Severity.MEDIUM),
            description=item.get("description", ""),
            impact=item.get("impact", ""),
        )
        for item in data.get("findings") or []
    )
    recommendations = tuple(
        Recommendation(
            category=category,
            title=item.get("title", ""),
            description=item.get("description", ""),
            priority=_parse_enum(Priority, item.get("priority"), Priority.MEDIUM),
            estimated_effort=item.get("estimated_effort") or item.get("estimatedTime", ""),
        )
        for item in data.get("recommendations") or []
    )
    return ValidationOutcome(score=score, findings=findings, recommendations=recommendations)


class RemoteCategoryValidator(CategoryValidator):
    """Runs a category audit on the remote audit tool service."""

    def __init__(self, gateway: AuditToolGateway) -> None:
        self.gateway = gateway

    def validate(self, config: CategoryConfig) -> ValidationOutcome:
        result = self.gateway.run_category(
            config.category,
            {"category": config.category, "weight": config.weight, "name": config.name},
        )
        if not result.ok:
            raise ValidatorError(config.category, result.error or "audit tool call failed")
        if not isinstance(result.data, dict):
            raise ValidatorError(config.category, "audit tool returned a non-object body")
        return parse_outcome(config.category, result.data)
