"""
Service routes.

Handles:
- /health - Health check endpoint with backing-store status
"""

from flask import Blueprint, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint with service status."""
    health_status = {
        "status": "ok",
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
        "checks": {}
    }

    # Check database
    database = current_app.config.get("DATABASE")
    try:
        if database is None:
            raise RuntimeError("database not configured")
        with database.engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "ok"
    except (SQLAlchemyError, RuntimeError) as e:
        logger.warning(f"Health check: database unavailable: {e}")
        health_status["checks"]["database"] = "unavailable"
        health_status["status"] = "degraded"

    # Check storage
    if current_app.config.get("STORAGE") is not None:
        health_status["checks"]["storage"] = current_app.config.get("STORAGE_BACKEND", "unknown")
    else:
        health_status["checks"]["storage"] = "not_available"
        health_status["status"] = "degraded"

    # Check concatenation service
    if current_app.config.get("CONCATENATION_SERVICE"):
        health_status["checks"]["concatenation_service"] = "ok"
    else:
        health_status["checks"]["concatenation_service"] = "not_available"
        health_status["status"] = "degraded"

    status_code = 200 if health_status["status"] == "ok" else 503
    return health_status, status_code
