"""
QA Verification Pipeline
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])

Policy tables (required artifacts, timing floors, confidence weights and
recommendation thresholds) are read-only mappings. Components receive them
as constructor arguments; the Flask config only decides which mapping is
handed over.
"""

import os
import secrets
from types import MappingProxyType

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'qa_pipeline_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


# ── Policy defaults ──────────────────────────────────────────────────────

REQUIRED_ARTIFACTS = MappingProxyType({
    "ui": ("screenshot_before", "screenshot_after", "console_logs"),
    "api": ("http_request", "http_response"),
    "unit": ("coverage_report",),
    "integration": ("coverage_report",),
})

TIMING_FLOORS_MS = MappingProxyType({
    "ui": 500,
    "api": 50,
    "unit": 10,
    "integration": 200,
})

CONFIDENCE_WEIGHTS = MappingProxyType({
    "critical": 50.0,
    "high": 20.0,
    "medium": 10.0,
    "low": 0.0,
    "cross_validation": 15.0,
    "missing_artifact": 25.0,
    "skeptical_high": 20.0,
    "skeptical_other": 10.0,
    "integrity_failure": 30.0,
    "comprehensive_bonus": 10.0,
})

# Cross-validation mismatches are scaled by the severity of the mismatch.
SEVERITY_MULTIPLIERS = MappingProxyType({
    "low": 0.5,
    "medium": 1.0,
    "high": 2.0,
})

RECOMMENDATION_THRESHOLDS = MappingProxyType({
    "accept": 90.0,
    "reject": 60.0,
})

STAGE_TIMEOUTS = MappingProxyType({
    "execution": 300.0,
    "detection": 60.0,
    "verification": 120.0,
    "fixing": 600.0,
    "learning": 30.0,
})


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Evidence & handoffs
    EVIDENCE_ROOT = os.getenv("EVIDENCE_ROOT", os.path.join(basedir, "evidence"))
    HANDOFF_DIR = os.getenv("HANDOFF_DIR", os.path.join(basedir, "docs", "handoffs"))

    # Test dispatch (empty base URL -> replay recorded evidence)
    EXECUTOR_BASE_URL = os.getenv("EXECUTOR_BASE_URL", "")
    EXECUTOR_TIMEOUT = float(os.getenv("EXECUTOR_TIMEOUT", "300"))

    # Orchestration
    WORKFLOW_MAX_WORKERS = int(os.getenv("WORKFLOW_MAX_WORKERS", "4"))
    STAGE_TIMEOUTS = STAGE_TIMEOUTS
    FIX_MAX_ATTEMPTS = int(os.getenv("FIX_MAX_ATTEMPTS", "3"))
    RESUME_ON_STARTUP = _env_bool("RESUME_ON_STARTUP")

    # Models
    LLM_PROVIDER = os.getenv("LLM_PROVIDER", "local")
    VERIFIER_TIER = os.getenv("VERIFIER_TIER", "balanced")
    EXECUTOR_TIER = os.getenv("EXECUTOR_TIER", "fast")

    # Policy tables
    QA_REQUIRED_ARTIFACTS = REQUIRED_ARTIFACTS
    QA_TIMING_FLOORS_MS = TIMING_FLOORS_MS
    QA_CONFIDENCE_WEIGHTS = CONFIDENCE_WEIGHTS
    QA_SEVERITY_MULTIPLIERS = SEVERITY_MULTIPLIERS
    QA_RECOMMENDATION_THRESHOLDS = RECOMMENDATION_THRESHOLDS


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    RESUME_ON_STARTUP = False
    LLM_PROVIDER = "local"
    WORKFLOW_MAX_WORKERS = 1


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
