"""
Audit-to-Upgrade Pipeline
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())

Every outbound integration is optional: an empty URL disables it and the
pipeline falls back to its offline behaviour (error findings, no tickets,
unconfigured deployment target).
"""

import json
import os

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'upgrade_pipeline_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Default category weights; override with the AUDIT_CATEGORIES env variable (JSON).
DEFAULT_AUDIT_CATEGORIES = {
    "ethical": {"weight": 0.2, "enabled": True, "name": "Ethical Analysis"},
    "legal": {"weight": 0.2, "enabled": True, "name": "Legal Compliance"},
    "technical": {"weight": 0.25, "enabled": True, "name": "Technical Audit"},
    "business": {"weight": 0.15, "enabled": True, "name": "Business Analysis"},
    "security": {"weight": 0.1, "enabled": True, "name": "Security Assessment"},
    "performance": {"weight": 0.1, "enabled": True, "name": "Performance Review"},
}


def _json_env(name: str, default):
    raw = os.getenv(name)
    return json.loads(raw) if raw else default


def _flag_env(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in ("1", "true", "yes")


def _database_url(fallback=None):
    """DATABASE_URL with the legacy ``postgres://`` scheme rewritten for SQLAlchemy 2."""
    url = os.getenv("DATABASE_URL", "")
    if not url:
        return fallback
    return url.replace("postgres://", "postgresql://", 1)


class Config:
    """Shared defaults; environment subclasses override what differs."""

    DEBUG = False
    TESTING = False

    # Archive of audit runs, proposals, execution steps and job runs
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ── Audit orchestration ──────────────────────────────────────────────
    AUDIT_CATEGORIES = _json_env("AUDIT_CATEGORIES", DEFAULT_AUDIT_CATEGORIES)
    AUDIT_HISTORY_LIMIT = int(os.getenv("AUDIT_HISTORY_LIMIT", "10"))
    VALIDATOR_TIMEOUT_SECONDS = float(os.getenv("VALIDATOR_TIMEOUT_SECONDS", "30"))
    AUDIT_ENDPOINT_URL = os.getenv("AUDIT_ENDPOINT_URL", "")

    # ── Upgrade execution ────────────────────────────────────────────────
    EXECUTOR_MAX_WORKERS = int(os.getenv("EXECUTOR_MAX_WORKERS", "4"))
    # backend id -> agent endpoint, e.g. {"devin": "https://agents.local/devin"}
    EXECUTOR_BACKENDS = _json_env("EXECUTOR_BACKENDS", {})
    # category -> backend id; unlisted categories use EXECUTOR_DEFAULT_BACKEND
    EXECUTOR_ROUTES = _json_env("EXECUTOR_ROUTES", {"security": "devin"})
    EXECUTOR_DEFAULT_BACKEND = os.getenv("EXECUTOR_DEFAULT_BACKEND", "cursor")
    BACKEND_TASK_TIMEOUT_SECONDS = float(os.getenv("BACKEND_TASK_TIMEOUT_SECONDS", "600"))
    DEPLOYMENT_API_URL = os.getenv("DEPLOYMENT_API_URL", "")

    # ── Issue tracker ────────────────────────────────────────────────────
    ISSUE_TRACKER_URL = os.getenv("ISSUE_TRACKER_URL", "")
    ISSUE_TRACKER_TOKEN = os.getenv("ISSUE_TRACKER_TOKEN", "")

    # ── Scheduler ────────────────────────────────────────────────────────
    SCHEDULER_ENABLED = _flag_env("SCHEDULER_ENABLED", True)
    AUDIT_SCAN_INTERVAL_SECONDS = int(os.getenv("AUDIT_SCAN_INTERVAL_SECONDS", "3600"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    # Jobs are triggered by hand in tests
    SCHEDULER_ENABLED = False
    VALIDATOR_TIMEOUT_SECONDS = 2.0
    AUDIT_ENDPOINT_URL = ""
    ISSUE_TRACKER_URL = ""
    DEPLOYMENT_API_URL = ""
    EXECUTOR_BACKENDS = {}


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    # No wildcard CORS in production
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
