"""
Academic Evidence Portfolio Platform
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'evidence_portfolio_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _database_url(default=None):
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else default


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # Rate-limit storage (memory:// when Redis is not configured)
    REDIS_URL = os.getenv("REDIS_URL", "memory://")

    # Logging: "json" for shipped logs, "text" for local runs
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Request guard
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024  # 2 MB of JSON, uploads go to blob storage

    # Portfolio generation
    DEFAULT_GROUP_LABEL = os.getenv("DEFAULT_GROUP_LABEL", "A")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    LOG_FORMAT = "text"
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # In-memory SQLite runs on a StaticPool; queue-pool sizing does not apply
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # Override engine options with PostgreSQL statement timeout
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
