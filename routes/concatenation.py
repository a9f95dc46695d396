"""
Concatenation routes.

Handles:
- GET  /api/concatenation/proposals - Current proposals over the queue
- POST /api/concatenation/execute - Build a package and download it
- POST /api/concatenation/runs - Start a background build
- GET  /api/concatenation/runs/<run_id> - Poll a background build
- GET  /api/concatenation/runs/<run_id>/download - Download its artifact
"""

import io
import json

from flask import Blueprint, current_app, request, send_file

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

concatenation_bp = Blueprint("concatenation", __name__)

PACKAGE_MIMETYPE = "application/octet-stream"


def _order_ids_from_request():
    """(order_ids, base_job_id, error message)."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return None, None, "Request body must be a JSON object"

    order_ids = payload.get("order_ids")
    if not isinstance(order_ids, list) or not order_ids or not all(isinstance(i, int) for i in order_ids):
        return None, None, "order_ids must be a non-empty list of integers"

    base_job_id = payload.get("base_job_id")
    if base_job_id is not None and not isinstance(base_job_id, int):
        return None, None, "base_job_id must be an integer"

    return order_ids, base_job_id, None


@concatenation_bp.route("/api/concatenation/proposals", methods=["GET"])
def proposals():
    """Concatenation proposals for the current queue."""
    service = current_app.config["CONCATENATION_SERVICE"]
    found = service.find_proposals()
    return {"proposals": [p.to_dict() for p in found], "count": len(found)}, 200


@concatenation_bp.route("/api/concatenation/execute", methods=["POST"])
def execute():
    """
    Build the package for the given Orders and return it as a download.

    The summary and warnings travel in response headers so the body stays
    the raw archive.
    """
    order_ids, base_job_id, error = _order_ids_from_request()
    if error:
        return {"error": error}, 400

    upload = bool((request.get_json(silent=True) or {}).get("upload", False))

    service = current_app.config["CONCATENATION_SERVICE"]
    try:
        result, artifact_path = service.execute(order_ids, base_job_id=base_job_id, upload=upload)
    except ValueError as e:
        return {"error": str(e)}, 400

    response = send_file(
        io.BytesIO(result.package.data),
        mimetype=PACKAGE_MIMETYPE,
        as_attachment=True,
        download_name=service.artifact_name(result),
    )
    response.headers["X-Package-Summary"] = json.dumps(result.summary.to_dict())
    response.headers["X-Package-Warnings"] = json.dumps(result.warnings)
    response.headers["X-Package-Segments"] = f"{result.included_segments}/{result.requested_segments}"
    if artifact_path:
        response.headers["X-Artifact-Path"] = artifact_path
    return response


@concatenation_bp.route("/api/concatenation/runs", methods=["POST"])
def submit_run():
    """Start a background build; poll the returned run."""
    order_ids, base_job_id, error = _order_ids_from_request()
    if error:
        return {"error": error}, 400

    service = current_app.config["CONCATENATION_SERVICE"]
    run_id = service.submit(order_ids, base_job_id=base_job_id)
    return {"run_id": run_id, "status": "pending"}, 202


@concatenation_bp.route("/api/concatenation/runs/<run_id>", methods=["GET"])
def run_status(run_id: str):
    """Status of a background build."""
    service = current_app.config["CONCATENATION_SERVICE"]
    run = service.get_run(run_id)
    body = run.to_dict()
    body["pending"] = service.is_run_pending(run_id)
    return body, 200


@concatenation_bp.route("/api/concatenation/runs/<run_id>/download", methods=["GET"])
def run_download(run_id: str):
    """Artifact of a completed background build."""
    service = current_app.config["CONCATENATION_SERVICE"]
    run = service.get_run(run_id)
    if not run.is_finished:
        return {"error": "Run is still in progress", "status": run.status.value}, 409

    file_name, data = service.download_artifact(run_id)
    return send_file(
        io.BytesIO(data),
        mimetype=PACKAGE_MIMETYPE,
        as_attachment=True,
        download_name=file_name,
    )
