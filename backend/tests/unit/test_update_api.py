"""
Unit tests for the HTTP update trigger.

A minimal FastAPI app mounts the router with a real UpdateScheduler backed
by FakeRuntimeClient.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api import metrics_routes
from api.update_routes import _parse_images, router
from tests.test_helpers import FakeRuntimeClient, create_container
from updates.scheduler import UpdateScheduler
from updates.types import UpdateParams

TOKEN = "test-token"


@pytest.fixture
def runtime():
    web = create_container("web", image="nginx:1.25")
    cache = create_container("cache", image="redis:7")
    client = FakeRuntimeClient([web, cache])
    client.mark_stale(web)
    return client


@pytest.fixture
def api_client(runtime):
    app = FastAPI()
    app.include_router(router)
    app.include_router(metrics_routes.router)
    app.state.scheduler = UpdateScheduler(runtime, UpdateParams(pull_failure_delay=0), poll_interval=3600)
    app.state.api_token = TOKEN
    return TestClient(app)


def _auth(token=TOKEN):
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.unit
class TestUpdateEndpoint:

    def test_requires_token(self, api_client, runtime):
        response = api_client.post("/v1/update")
        assert response.status_code == 401
        assert runtime.calls == []

    def test_rejects_wrong_token(self, api_client):
        response = api_client.post("/v1/update", headers=_auth("wrong"))
        assert response.status_code == 401

    def test_runs_full_cycle(self, api_client, runtime):
        response = api_client.post("/v1/update", headers=_auth())

        assert response.status_code == 200
        data = response.json()
        assert data["summary"] == {"scanned": 2, "updated": 1, "failed": 0}
        assert data["api_version"] == "v1"
        assert data["error"] is None
        assert data["timing"]["duration_ms"] >= 0
        assert runtime.names_for("stop") == ["web"]

    def test_image_filter_narrows_cycle(self, api_client, runtime):
        response = api_client.post("/v1/update?image=redis", headers=_auth())

        assert response.status_code == 200
        assert response.json()["summary"] == {"scanned": 1, "updated": 0, "failed": 0}
        assert runtime.names_for("probe") == ["cache"]

    def test_comma_separated_images(self, api_client, runtime):
        response = api_client.post("/v1/update?image=redis,nginx:1.25", headers=_auth())

        assert response.json()["summary"]["scanned"] == 2

    def test_cycle_error_is_reported(self, api_client, runtime):
        runtime.list_error = RuntimeError("daemon gone")

        response = api_client.post("/v1/update", headers=_auth())

        assert response.status_code == 200
        data = response.json()
        assert data["summary"] == {"scanned": 0, "updated": 0, "failed": 0}
        assert "list containers failed" in data["error"]

    def test_scheduler_missing(self):
        app = FastAPI()
        app.include_router(router)
        app.state.api_token = TOKEN

        response = TestClient(app).post("/v1/update", headers=_auth())

        assert response.status_code == 503


@pytest.mark.unit
class TestMetricsEndpoint:

    def test_requires_token(self, api_client):
        assert api_client.get("/v1/metrics").status_code == 401

    def test_reports_last_cycle(self, api_client):
        api_client.post("/v1/update", headers=_auth())

        response = api_client.get("/v1/metrics", headers=_auth())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "shipwatch_containers_scanned 2.0" in response.text
        assert "shipwatch_containers_updated 1.0" in response.text
        assert "shipwatch_scans_total 1.0" in response.text


@pytest.mark.unit
def test_parse_images():
    assert _parse_images(["a,b", " c ", ""]) == ["a", "b", "c"]
    assert _parse_images(None) == []
