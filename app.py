"""
Print Queue Core - Flask Application Entry Point.

This is a slim app factory that:
1. Loads configuration and sets up logging
2. Opens the relational store and object storage
3. Builds the consolidation components and services
4. Registers route blueprints
5. Sets up JSON error handlers

ARCHITECTURE:
    Main Thread
    ├── Flask request handling (proposals, inline builds, analysis)
    └── Cleanup on shutdown (join run threads, dispose engine)

    Run Threads (one per background concatenation)
    └── Each resolves its Orders, builds, uploads, stores its run record

Services are kept in app.config so routes can reach them through
current_app without module-level state.
"""

from __future__ import annotations

import atexit
import logging
import os
from typing import Any, Dict, Optional

from flask import Flask
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from logging_config import setup_logging, get_logger
from core.cache import TTLCache
from core.database import Database
from core.exceptions import (
    PrintQueueError,
    ParseError,
    ValidationError,
    NotFoundError,
    RemoteIOError,
    OperationTimeoutError,
    SizeLimitError,
    InvalidTransitionError,
    DatabaseError,
)
from core.repository import JobRepository, OrderRepository
from core.storage import create_storage
from modules.candidate_matcher import CandidateMatcher
from modules.concatenation_engine import ConcatenationEngine
from modules.job_analyzer import JobAnalyzer
from modules.metadata_extractor import MetadataExtractor
from modules.package_reader import PackageReader
from modules.package_validator import PackageValidator
from services.analysis_service import AnalysisService
from services.concatenation_service import ConcatenationService
from services.queue_service import QueueStateMachine
from routes import register_blueprints


# Module logger (configured after setup_logging)
logger = get_logger(__name__)


# Most specific first; the first match decides the status code
ERROR_STATUS = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (ParseError, 422),
    (InvalidTransitionError, 409),
    (SizeLimitError, 413),
    (OperationTimeoutError, 504),
    (RemoteIOError, 502),
    (DatabaseError, 502),
)


def status_for(error: PrintQueueError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def create_app(config_object: str = "config.Config", overrides: Optional[Dict[str, Any]] = None) -> Flask:
    """
    Application factory - creates and configures Flask app.

    Args:
        config_object: Import path of the configuration class
        overrides: Extra config values applied last (tests use this)

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)
    app.config.from_object(config_object)
    if overrides:
        app.config.update(overrides)

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        log_level=log_level,
        log_dir=app.config.get("LOG_DIR"),
        enable_file_logging=enable_file_logging
    )

    # Set Flask's logger to use our configured logger
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting print queue core in {app.config.get('ENVIRONMENT')} mode")

    # =========================================================================
    # BACKING STORES
    # =========================================================================

    database = Database(app.config["DATABASE_URL"])
    database.create_all()
    app.config["DATABASE"] = database

    storage = app.config.get("STORAGE") or create_storage(
        app.config["STORAGE_BACKEND"],
        app.config.get("STORAGE_ROOT"),
    )
    app.config["STORAGE"] = storage

    order_repository = OrderRepository(database)
    job_repository = JobRepository(database)
    app.config["ORDER_REPOSITORY"] = order_repository
    app.config["JOB_REPOSITORY"] = job_repository

    # =========================================================================
    # CONSOLIDATION COMPONENTS
    # =========================================================================

    reader = PackageReader(max_bytes=app.config["MAX_PACKAGE_BYTES"])
    validator = PackageValidator(reader=reader)
    extractor = MetadataExtractor(app.config["AUTOMATIC_PROFILE_MARKER"])
    engine = ConcatenationEngine(
        reader=reader,
        validator=validator,
        max_output_bytes=app.config["MAX_CONCATENATED_BYTES"],
        fail_on_truncation=app.config["FAIL_ON_TRUNCATION"],
        checksum_full_hash_limit=app.config["CHECKSUM_FULL_HASH_LIMIT"],
        checksum_sample_bytes=app.config["CHECKSUM_SAMPLE_BYTES"],
    )
    app.config["PACKAGE_VALIDATOR"] = validator

    # =========================================================================
    # SERVICES INITIALIZATION
    # =========================================================================

    analysis_cache = TTLCache(
        ttl_seconds=app.config["METADATA_CACHE_TTL_SECONDS"],
        max_entries=app.config["METADATA_CACHE_MAX_ENTRIES"],
    )
    analysis_service = AnalysisService(
        job_repository,
        storage,
        analyzer=JobAnalyzer(reader=reader, extractor=extractor),
        cache=analysis_cache,
        storage_timeout_seconds=app.config["STORAGE_TIMEOUT_SECONDS"],
    )
    app.config["ANALYSIS_SERVICE"] = analysis_service

    app.config["QUEUE_SERVICE"] = QueueStateMachine(order_repository)

    concatenation_service = ConcatenationService(
        order_repository,
        job_repository,
        storage,
        engine,
        matcher=CandidateMatcher(app.config["AUTOMATIC_PROFILE_MARKER"]),
        analysis=analysis_service,
        artifact_prefix=app.config["ARTIFACT_PREFIX"],
        backfill_batch_size=app.config["BACKFILL_BATCH_SIZE"],
        storage_timeout_seconds=app.config["STORAGE_TIMEOUT_SECONDS"],
        run_timeout_seconds=app.config["CONCATENATION_TIMEOUT_SECONDS"],
    )
    app.config["CONCATENATION_SERVICE"] = concatenation_service
    logger.info("Services initialized")

    # =========================================================================
    # CLEANUP REGISTRATION
    # =========================================================================

    def cleanup():
        """Cleanup on application shutdown."""
        logger.info("Shutting down...")

        # Wait for run threads
        concatenation_service.shutdown()

        database.dispose()
        logger.info("Shutdown complete")

    # Under test, fixtures tear each app down themselves
    if not app.config.get("TESTING"):
        atexit.register(cleanup)

    # =========================================================================
    # REGISTER BLUEPRINTS
    # =========================================================================

    register_blueprints(app)

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.errorhandler(PrintQueueError)
    def handle_print_queue_error(e: PrintQueueError):
        status = status_for(e)
        if status >= 500:
            logger.error(f"{type(e).__name__}: {e}")
        else:
            logger.info(f"{type(e).__name__}: {e}")
        return {"error": e.message, "type": type(e).__name__, "details": e.details}, status

    @app.errorhandler(RequestEntityTooLarge)
    def handle_file_too_large(e):
        max_mb = app.config.get("MAX_CONTENT_LENGTH", 16 * 1024 * 1024) / (1024 * 1024)
        return {"error": f"File too large. Maximum upload size is {max_mb:.0f} MB."}, 413

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return {"error": e.description, "type": e.name}, e.code

    @app.errorhandler(500)
    def handle_server_error(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return {"error": "An unexpected error occurred."}, 500

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode)
