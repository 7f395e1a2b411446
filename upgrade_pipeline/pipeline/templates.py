"""
Upgrade templates — static (category, finding title) lookup table.

Each entry describes the upgrade that resolves one kind of finding:
what it is, how urgent, which files it touches, which changes the
implementation step dispatches (one backend sub-task per change) and
which test identifiers must pass before staging.
"""

from __future__ import annotations

from dataclasses import dataclass

from upgrade_pipeline.pipeline.types import Priority


@dataclass(frozen=True)
class UpgradeTemplate:
    title: str
    description: str
    upgrade_type: str
    priority: Priority
    estimated_effort: str
    files: tuple[str, ...] = ()
    changes: tuple[str, ...] = ()
    tests: tuple[str, ...] = ()


TemplateKey = tuple[str, str]


UPGRADE_TEMPLATES: dict[TemplateKey, UpgradeTemplate] = {
    # ── Ethical ──────────────────────────────────────────────────────────
    ("ethical", "AI Bias Detected"): UpgradeTemplate(
        title="Implement AI Bias Mitigation",
        description="Add bias detection and mitigation algorithms to AI responses",
        upgrade_type="feature",
        priority=Priority.HIGH,
        estimated_effort="2-4 hours",
        files=("src/services/",),
        changes=(
            "Add bias detection to AI responses",
            "Add bias mitigation algorithms",
        ),
        tests=("ai-bias.test.js",),
    ),
    # ── Legal ────────────────────────────────────────────────────────────
    ("legal", "GDPR Compliance Issues"): UpgradeTemplate(
        title="GDPR Compliance Implementation",
        description="Implement GDPR-compliant data handling and user consent",
        upgrade_type="compliance",
        priority=Priority.HIGH,
        estimated_effort="4-6 hours",
        files=("src/pages/", "src/components/"),
        changes=(
            "Add user consent management",
            "Implement data export and deletion requests",
        ),
        tests=("gdpr.test.js",),
    ),
    # ── Technical ────────────────────────────────────────────────────────
    ("technical", "Dependency Vulnerabilities"): UpgradeTemplate(
        title="Security Updates",
        description="Update vulnerable dependencies to secure versions",
        upgrade_type="security",
        priority=Priority.HIGH,
        estimated_effort="1-2 hours",
        files=("package.json", "package-lock.json"),
        changes=(
            "Update vulnerable dependencies",
            "Run security audit",
            "Update lock file",
            "Test compatibility",
        ),
        tests=("dependency-security.test.js",),
    ),
    ("technical", "Code Quality Issues"): UpgradeTemplate(
        title="Code Quality Improvements",
        description="Raise code quality through linting fixes, typing and tests",
        upgrade_type="refactor",
        priority=Priority.MEDIUM,
        estimated_effort="4 hours",
        files=("src/",),
        changes=(
            "Fix ESLint warnings",
            "Add TypeScript types",
            "Improve error handling",
            "Add unit tests",
        ),
        tests=("code-quality.test.js",),
    ),
    ("technical", "Performance Issues"): UpgradeTemplate(
        title="Performance Monitoring",
        description="Instrument the application with performance metrics and alerts",
        upgrade_type="optimization",
        priority=Priority.MEDIUM,
        estimated_effort="2 hours",
        files=("src/services/monitoringService.js",),
        changes=(
            "Add performance metrics",
            "Implement error tracking",
            "Add user analytics",
            "Configure alerts",
        ),
        tests=("monitoring.test.js",),
    ),
    # ── Security ─────────────────────────────────────────────────────────
    ("security", "Missing Security Headers"): UpgradeTemplate(
        title="Security Headers Implementation",
        description="Add missing security headers to improve security posture",
        upgrade_type="security",
        priority=Priority.HIGH,
        estimated_effort="1 hour",
        files=("nginx.conf", "src/utils/security.js"),
        changes=(
            "Add missing security headers",
            "Implement CSP policies",
            "Add HSTS headers",
            "Configure X-Frame-Options",
        ),
        tests=("security-headers.test.js",),
    ),
    # ── Performance ──────────────────────────────────────────────────────
    ("performance", "Large Bundle Size"): UpgradeTemplate(
        title="Bundle Optimization",
        description="Optimize bundle size through code splitting and tree shaking",
        upgrade_type="optimization",
        priority=Priority.MEDIUM,
        estimated_effort="2-3 hours",
        files=("config/vite.config.js", "src/"),
        changes=(
            "Implement code splitting",
            "Add tree shaking",
            "Optimize chunk sizes",
            "Add lazy loading",
        ),
        tests=("bundle-size.test.js",),
    ),
    ("performance", "Unoptimized Images"): UpgradeTemplate(
        title="Image Optimization",
        description="Serve modern, responsive and lazily loaded images",
        upgrade_type="optimization",
        priority=Priority.LOW,
        estimated_effort="2 hours",
        files=("src/assets/", "public/"),
        changes=(
            "Convert images to WebP",
            "Add responsive images",
            "Implement lazy loading",
            "Optimize file sizes",
        ),
        tests=("image-optimization.test.js",),
    ),
    # ── Business ─────────────────────────────────────────────────────────
    ("business", "Revenue Optimization Opportunities"): UpgradeTemplate(
        title="Revenue Optimization",
        description="Introduce premium tiers and optimise conversion funnels",
        upgrade_type="feature",
        priority=Priority.LOW,
        estimated_effort="6 hours",
        files=("src/pages/", "src/components/"),
        changes=(
            "Add premium features",
            "Implement subscription tiers",
            "Add payment integration",
            "Optimize conversion funnels",
        ),
        tests=("revenue.test.js",),
    ),
    ("business", "User Experience Issues"): UpgradeTemplate(
        title="User Experience Enhancement",
        description="Improve navigation, accessibility and the mobile experience",
        upgrade_type="feature",
        priority=Priority.MEDIUM,
        estimated_effort="4 hours",
        files=("src/components/", "src/pages/"),
        changes=(
            "Improve navigation",
            "Add accessibility features",
            "Optimize mobile experience",
            "Add user feedback system",
        ),
        tests=("ux.test.js",),
    ),
}


def find_template(
    category: str,
    title: str,
    templates: dict[TemplateKey, UpgradeTemplate] | None = None,
) -> UpgradeTemplate | None:
    table = UPGRADE_TEMPLATES if templates is None else templates
    return table.get((category, title))
