"""
Integration tests for the Flask routes.

Each test gets a fresh app on the TestingConfig: in-memory SQLite and
in-memory object storage.
"""

import io
import json
from unittest.mock import patch

import pytest

from app import create_app
from models.job import Job
from package_builder import corrupt_deflate


@pytest.fixture
def app():
    application = create_app("config.TestingConfig")
    yield application
    application.config["CONCATENATION_SERVICE"].shutdown()
    application.config["DATABASE"].dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def job(app, package_factory):
    """A stored, already analyzed Job."""
    app.config["STORAGE"].upload("jobs/cube.gcode.3mf", package_factory())
    return app.config["JOB_REPOSITORY"].create(Job(
        storage_path="jobs/cube.gcode.3mf",
        printer="X1C",
        material="PLA",
        weight_grams=5.0,
        duration_minutes=30.0,
    ))


@pytest.fixture
def queued(client, job):
    """Submit an Order through the API and move it to the queue."""
    def _create(quantity):
        response = client.post("/api/orders", json={"job_id": job.id, "quantity": quantity})
        order_id = response.get_json()["order"]["id"]
        client.post(f"/api/orders/{order_id}/state", json={"state": "queued"})
        return order_id

    return _create


class TestHealth:
    """Tests for /health."""

    def test_health_ok(self, client):
        response = client.get("/health")
        data = response.get_json()

        assert response.status_code == 200
        assert data["status"] == "ok"
        assert data["checks"]["database"] == "ok"
        assert data["checks"]["storage"] == "memory"

    def test_unknown_url_is_json(self, client):
        response = client.get("/no/such/page")

        assert response.status_code == 404
        assert "error" in response.get_json()


class TestShutdownHook:
    """Tests for the interpreter-exit cleanup."""

    def test_not_registered_when_testing(self):
        with patch("app.atexit.register") as register:
            application = create_app("config.TestingConfig")

        register.assert_not_called()
        application.config["DATABASE"].dispose()

    def test_registered_outside_testing(self):
        with patch("app.atexit.register") as register:
            create_app("config.TestingConfig", overrides={"TESTING": False})

        register.assert_called_once()
        cleanup = register.call_args[0][0]
        assert cleanup.__name__ == "cleanup"
        cleanup()


class TestOrderRoutes:
    """Tests for order submission and lifecycle routes."""

    def test_submit_order(self, client, job):
        response = client.post("/api/orders", json={
            "job_id": job.id,
            "quantity": 2,
            "state": "printing",
            "note": "<b>rush</b> please",
        })
        order = response.get_json()["order"]

        assert response.status_code == 201
        assert order["state"] == "processing"
        assert order["quantity"] == 2
        assert order["note"] == "rush please"

    @pytest.mark.parametrize("payload", [
        {"quantity": 2},
        {"job_id": "abc", "quantity": 2},
        {"job_id": 1, "quantity": 0},
        {"job_id": 1, "quantity": 2, "requested_delivery": "not-a-date"},
    ])
    def test_submit_rejects_bad_input(self, client, job, payload):
        response = client.post("/api/orders", json=payload)

        assert response.status_code == 400

    def test_submit_unknown_job(self, client):
        response = client.post("/api/orders", json={"job_id": 999, "quantity": 1})

        assert response.status_code == 404
        assert response.get_json()["type"] == "NotFoundError"

    def test_queue_listing(self, client, queued):
        order_id = queued(2)

        data = client.get("/api/queue").get_json()

        assert data["count"] == 1
        assert data["orders"][0]["id"] == order_id
        assert client.get("/api/queue?state=processing").get_json()["count"] == 0

    def test_queue_bad_state_filter(self, client):
        assert client.get("/api/queue?state=bogus").status_code == 400

    def test_invalid_transition_is_conflict(self, client, queued):
        order_id = queued(1)

        response = client.post(f"/api/orders/{order_id}/state", json={"state": "delivered"})

        assert response.status_code == 409
        assert response.get_json()["details"]["current"] == "queued"

    def test_unknown_state_value(self, client, queued):
        order_id = queued(1)

        response = client.post(f"/api/orders/{order_id}/state", json={"state": "lost"})

        assert response.status_code == 400

    def test_error_returns_reprint(self, client, queued):
        order_id = queued(3)

        response = client.post(f"/api/orders/{order_id}/state", json={"state": "error"})
        data = response.get_json()

        assert response.status_code == 200
        assert data["order"]["state"] == "error"
        assert data["reprint"]["state"] == "queued"
        assert data["reprint"]["quantity"] == 3
        assert data["reprint"]["note"] == "reprint"


class TestConcatenationRoutes:
    """Tests for proposals, inline builds and background runs."""

    def test_proposals(self, client, queued, job):
        queued(2)
        queued(3)

        data = client.get("/api/concatenation/proposals").get_json()
        ids = [p["id"] for p in data["proposals"]]

        assert f"same_gcode_{job.id}_x1c" in ids
        assert data["count"] == len(ids)

    def test_execute_returns_package(self, client, queued):
        order_ids = [queued(2), queued(3)]

        response = client.post("/api/concatenation/execute", json={"order_ids": order_ids})

        assert response.status_code == 200
        assert response.data[:2] == b"PK"
        assert response.headers["X-Package-Segments"] == "5/5"
        summary = json.loads(response.headers["X-Package-Summary"])
        assert summary["totalLayers"] == 50
        assert "attachment" in response.headers["Content-Disposition"]

    def test_execute_with_upload(self, app, client, queued):
        order_ids = [queued(2)]

        response = client.post("/api/concatenation/execute", json={"order_ids": order_ids, "upload": True})
        artifact_path = response.headers["X-Artifact-Path"]

        assert app.config["STORAGE"].download(artifact_path) == response.data

    @pytest.mark.parametrize("payload", [
        None,
        {},
        {"order_ids": []},
        {"order_ids": ["1"]},
        {"order_ids": [1], "base_job_id": "x"},
    ])
    def test_execute_rejects_bad_input(self, client, payload):
        response = client.post("/api/concatenation/execute", json=payload)

        assert response.status_code == 400

    def test_execute_unknown_order(self, client):
        response = client.post("/api/concatenation/execute", json={"order_ids": [999]})

        assert response.status_code == 404

    def test_background_run(self, app, client, queued):
        order_ids = [queued(2)]

        response = client.post("/api/concatenation/runs", json={"order_ids": order_ids})
        run_id = response.get_json()["run_id"]
        app.config["CONCATENATION_SERVICE"].shutdown(timeout_per_thread=10.0)

        assert response.status_code == 202
        status = client.get(f"/api/concatenation/runs/{run_id}").get_json()
        assert status["status"] == "completed"
        assert status["pending"] is False

        download = client.get(f"/api/concatenation/runs/{run_id}/download")
        assert download.status_code == 200
        assert download.data[:2] == b"PK"

    def test_unknown_run(self, client):
        assert client.get("/api/concatenation/runs/nope").status_code == 404


class TestSizeLimit:
    """Tests for the concatenation ceiling surfaced over HTTP."""

    def test_nothing_fits_is_413(self, package_factory):
        app = create_app("config.TestingConfig", overrides={"MAX_CONCATENATED_BYTES": 10})
        client = app.test_client()
        app.config["STORAGE"].upload("jobs/cube.gcode.3mf", package_factory())
        job = app.config["JOB_REPOSITORY"].create(Job(storage_path="jobs/cube.gcode.3mf", printer="X1C"))
        order_id = client.post("/api/orders", json={"job_id": job.id, "quantity": 2}).get_json()["order"]["id"]

        response = client.post("/api/concatenation/execute", json={"order_ids": [order_id]})

        assert response.status_code == 413
        assert response.get_json()["type"] == "SizeLimitError"
        app.config["DATABASE"].dispose()


class TestJobRoutes:
    """Tests for analysis and inspection routes."""

    def test_analyze_job(self, app, client, package_factory):
        app.config["STORAGE"].upload("jobs/new.gcode.3mf", package_factory())
        job = app.config["JOB_REPOSITORY"].create(Job(storage_path="jobs/new.gcode.3mf"))

        response = client.post(f"/api/jobs/{job.id}/analyze")
        data = response.get_json()

        assert response.status_code == 200
        assert data["job"]["printer"] == "X1C"
        assert data["analysis"]["material"] == "PLA"

    def test_analyze_corrupt_package_is_422(self, app, client, package_factory):
        app.config["STORAGE"].upload("jobs/broken.gcode.3mf", corrupt_deflate(package_factory()))
        job = app.config["JOB_REPOSITORY"].create(Job(storage_path="jobs/broken.gcode.3mf"))

        response = client.post(f"/api/jobs/{job.id}/analyze")

        assert response.status_code == 422
        assert response.get_json()["type"] == "ParseError"

    def test_analyze_unknown_job(self, client):
        assert client.post("/api/jobs/999/analyze").status_code == 404

    def test_reanalyze_missing(self, app, client, package_factory):
        app.config["STORAGE"].upload("jobs/new.gcode.3mf", package_factory())
        app.config["JOB_REPOSITORY"].create(Job(storage_path="jobs/new.gcode.3mf"))

        response = client.post("/api/jobs/reanalyze-missing", json={})

        assert response.status_code == 200
        assert response.get_json()["succeeded"] == 1

    @pytest.mark.parametrize("payload", [{"job_ids": "1"}, {"limit": 0}, {"limit": "5"}])
    def test_reanalyze_rejects_bad_input(self, client, payload):
        assert client.post("/api/jobs/reanalyze-missing", json=payload).status_code == 400

    def test_null_stats(self, client, job):
        data = client.get("/api/jobs/null-stats").get_json()

        assert data["total"] == 1
        assert data["missing_printer"] == 0

    def test_inspect_upload(self, client, package_factory):
        response = client.post(
            "/api/packages/inspect",
            data={"file": (io.BytesIO(package_factory()), "cube.gcode.3mf")},
            content_type="multipart/form-data",
        )
        data = response.get_json()

        assert response.status_code == 200
        assert data["filename"] == "cube.gcode.3mf"
        assert data["validation"]["isValid"] is True

    def test_inspect_rejects_other_types(self, client):
        response = client.post(
            "/api/packages/inspect",
            data={"file": (io.BytesIO(b"%PDF-1.4"), "order.pdf")},
            content_type="multipart/form-data",
        )

        assert response.status_code == 400

    def test_inspect_requires_file(self, client):
        assert client.post("/api/packages/inspect", data={}).status_code == 400
