"""
Upgrade Mapper — Finding → UpgradeProposal.

Pure mapping with no side effects beyond minting ids and timestamps.
A finding with no template yields no proposal: not every finding is
actionable, so a miss is silent rather than an error.
"""

from __future__ import annotations

import uuid

from upgrade_pipeline.pipeline.templates import TemplateKey, UpgradeTemplate, find_template
from upgrade_pipeline.pipeline.types import Finding, ProposalStatus, UpgradeProposal


def map_finding(
    finding: Finding,
    *,
    templates: dict[TemplateKey, UpgradeTemplate] | None = None,
    audit_run_id: str | None = None,
) -> UpgradeProposal | None:
    template = find_template(finding.category, finding.title, templates)
    if template is None:
        return None
    return UpgradeProposal(
        id=uuid.uuid4().hex,
        source_finding_ref=finding.ref,
        audit_run_id=audit_run_id,
        title=template.title,
        description=template.description,
        category=finding.category,
        priority=template.priority,
        estimated_effort=template.estimated_effort,
        upgrade_type=template.upgrade_type,
        files=template.files,
        changes=template.changes,
        tests=template.tests,
        status=ProposalStatus.PENDING,
    )


def map_findings(
    findings: list[Finding] | tuple[Finding, ...],
    *,
    templates: dict[TemplateKey, UpgradeTemplate] | None = None,
    audit_run_id: str | None = None,
) -> list[UpgradeProposal]:
    """Map each finding through the template table, dropping misses.

    Output order follows input order.
    """
    proposals = []
    for finding in findings:
        proposal = map_finding(finding, templates=templates, audit_run_id=audit_run_id)
        if proposal is not None:
            proposals.append(proposal)
    return proposals
