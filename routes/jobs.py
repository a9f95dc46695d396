"""
Job analysis routes.

Handles:
- POST /api/jobs/<id>/analyze - Re-analyze one Job's package
- POST /api/jobs/reanalyze-missing - Fill every Job still missing values
- GET  /api/jobs/null-stats - How many Jobs miss each value
- POST /api/packages/inspect - Analyze and validate an uploaded file
"""

from flask import Blueprint, current_app, request
from werkzeug.utils import secure_filename

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

jobs_bp = Blueprint("jobs", __name__)

ALLOWED_SUFFIXES = (".gcode.3mf", ".3mf", ".gcode")


def _allowed_file(filename: str) -> bool:
    return filename.lower().endswith(ALLOWED_SUFFIXES)


@jobs_bp.route("/api/jobs/<int:job_id>/analyze", methods=["POST"])
def analyze_job(job_id: int):
    """Analyze one Job; ``?overwrite=1`` replaces values already set."""
    overwrite = request.args.get("overwrite", "0").lower() in ("1", "true", "yes")

    analysis_service = current_app.config["ANALYSIS_SERVICE"]
    job, analysis = analysis_service.analyze_job(job_id, overwrite=overwrite)
    return {"job": job.to_dict(), "analysis": analysis.to_dict()}, 200


@jobs_bp.route("/api/jobs/reanalyze-missing", methods=["POST"])
def reanalyze_missing():
    """Batch re-analysis; failures are counted, not raised."""
    payload = request.get_json(silent=True) or {}

    job_ids = payload.get("job_ids")
    if job_ids is not None and (not isinstance(job_ids, list) or not all(isinstance(i, int) for i in job_ids)):
        return {"error": "job_ids must be a list of integers"}, 400

    limit = payload.get("limit")
    if limit is not None and (not isinstance(limit, int) or limit <= 0):
        return {"error": "limit must be a positive integer"}, 400

    analysis_service = current_app.config["ANALYSIS_SERVICE"]
    result = analysis_service.reanalyze_missing(job_ids=job_ids, limit=limit)
    return result.to_dict(), 200


@jobs_bp.route("/api/jobs/null-stats", methods=["GET"])
def null_stats():
    analysis_service = current_app.config["ANALYSIS_SERVICE"]
    return analysis_service.null_stats(), 200


@jobs_bp.route("/api/packages/inspect", methods=["POST"])
def inspect_package():
    """Analyze and validate an uploaded package without storing it."""
    uploaded = request.files.get("file")
    if uploaded is None or not uploaded.filename:
        return {"error": "No file uploaded (field 'file')"}, 400

    filename = secure_filename(uploaded.filename)
    if not _allowed_file(filename):
        return {"error": f"Unsupported file type, expected one of {', '.join(ALLOWED_SUFFIXES)}"}, 400

    data = uploaded.read()
    logger.info(f"Inspecting upload '{filename}' ({len(data)} bytes)")

    analysis_service = current_app.config["ANALYSIS_SERVICE"]
    validator = current_app.config["PACKAGE_VALIDATOR"]
    return analysis_service.inspect(data, filename, validator=validator), 200
