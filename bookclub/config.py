"""
Book Club Reading Events
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'bookclub_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


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

    # Rate limiter storage (memory:// for single-process dev)
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")

    # ── Reading-event rules ──────────────────────────────────────────────
    # Minimum word count for a check-in to count toward completion
    CHECKIN_MIN_WORD_COUNT = int(os.getenv("CHECKIN_MIN_WORD_COUNT", "50"))
    CHECKIN_MAX_WORD_COUNT = int(os.getenv("CHECKIN_MAX_WORD_COUNT", "2000"))
    # A leader may reward at most this many check-ins per schedule day
    MAX_FLOWERS_PER_GIVER_PER_DAY = int(os.getenv("MAX_FLOWERS_PER_GIVER_PER_DAY", "3"))
    # Voluntary claims per participant per event
    MAX_LEADERSHIP_DAYS_PER_USER = int(os.getenv("MAX_LEADERSHIP_DAYS_PER_USER", "3"))
    DEFAULT_REJECTION_REASON = os.getenv(
        "DEFAULT_REJECTION_REASON",
        "The event does not meet the community guidelines.",
    )


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
    # Short check-ins keep test fixtures readable
    CHECKIN_MIN_WORD_COUNT = 5


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


def setting(name: str):
    """Read a domain setting from the active app, falling back to ``Config``.

    Services call this instead of touching ``current_app`` directly so they
    stay usable outside a request (scripts, unit tests without an app).
    """
    from flask import current_app, has_app_context

    if has_app_context() and name in current_app.config:
        return current_app.config[name]
    return getattr(Config, name)
