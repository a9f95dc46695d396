"""
Configuration for the print queue core.

Values come from the environment (optionally a .env file next to the app).
Everything the consolidation engine tunes at runtime lives here so tests
can override it through TestingConfig or create_app(overrides=...).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file early so environment variables are available for Config class
# This must happen before the Config class is defined
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent

MB = 1024 * 1024


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"
    TESTING = False

    # Rotating log files are written in production only
    LOG_DIR = os.environ.get("LOG_DIR", str(BASE_DIR / "logs"))

    # Uploads through /api/packages/inspect
    MAX_CONTENT_LENGTH = int(os.environ.get("MAX_UPLOAD_MB", "512")) * MB

    # ==========================================================================
    # Backing stores
    # ==========================================================================
    DATABASE_URL = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'print_queue.db'}"
    )

    # "local" (directory-backed) or "memory"
    STORAGE_BACKEND = os.environ.get("STORAGE_BACKEND", "local")
    STORAGE_ROOT = os.environ.get("STORAGE_ROOT", str(BASE_DIR / "storage"))

    # Prefix under which concatenated artifacts are uploaded
    ARTIFACT_PREFIX = os.environ.get("ARTIFACT_PREFIX", "concatenated")

    # ==========================================================================
    # Consolidation engine
    # ==========================================================================
    # In-memory cap for a single package (uncompressed size of all entries)
    MAX_PACKAGE_BYTES = int(os.environ.get("MAX_PACKAGE_MB", "512")) * MB

    # Ceiling for the concatenated machine-code stream; trailing segments
    # are dropped to stay under it
    MAX_CONCATENATED_BYTES = int(os.environ.get("MAX_CONCATENATED_MB", "500")) * MB

    # Streams larger than this are checksummed from head and tail samples
    CHECKSUM_FULL_HASH_LIMIT = int(os.environ.get("CHECKSUM_FULL_HASH_MB", "64")) * MB
    CHECKSUM_SAMPLE_BYTES = int(os.environ.get("CHECKSUM_SAMPLE_MB", "4")) * MB

    # Raise instead of truncating when replicas do not fit the ceiling
    FAIL_ON_TRUNCATION = _env_bool("FAIL_ON_TRUNCATION", "0")

    # Profile naming convention for pre-approved, operator-independent profiles
    AUTOMATIC_PROFILE_MARKER = os.environ.get("AUTOMATIC_PROFILE_MARKER", "AUTO")

    # Unanalyzed packages re-parsed before grouping, per proposal request
    BACKFILL_BATCH_SIZE = int(os.environ.get("BACKFILL_BATCH_SIZE", "5"))

    # ==========================================================================
    # Caching and deadlines
    # ==========================================================================
    METADATA_CACHE_TTL_SECONDS = float(os.environ.get("METADATA_CACHE_TTL_SECONDS", "300"))
    METADATA_CACHE_MAX_ENTRIES = int(os.environ.get("METADATA_CACHE_MAX_ENTRIES", "256"))
    STORAGE_TIMEOUT_SECONDS = float(os.environ.get("STORAGE_TIMEOUT_SECONDS", "30"))
    CONCATENATION_TIMEOUT_SECONDS = float(os.environ.get("CONCATENATION_TIMEOUT_SECONDS", "600"))


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration: in-memory database and storage."""
    DEBUG = False
    TESTING = True
    ENVIRONMENT = "testing"
    DATABASE_URL = "sqlite://"
    STORAGE_BACKEND = "memory"
    FAIL_ON_TRUNCATION = False
