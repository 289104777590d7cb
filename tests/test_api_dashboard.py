"""
HTTP surface: query parsing, owner resolution and error mapping.
"""
from datetime import datetime
from types import SimpleNamespace

import pytz
from fastapi import FastAPI
from fastapi.testclient import TestClient

from profitfirst.api import dashboard, health
from profitfirst.deps import get_pipeline
from profitfirst.exceptions import TotalFailure
from profitfirst.models.records import OwnerCredentials

NOW = datetime(2024, 10, 8, 6, 0, tzinfo=pytz.UTC)
OWNER = OwnerCredentials(owner_id="owner-1", store_url="demo.myshopify.com")


class StubPipeline:
    def __init__(self, error=None):
        self.error = error
        self.cache = SimpleNamespace(clock=lambda: NOW)
        self.calls = []

    async def run(self, owner, date_range):
        self.calls.append((owner, date_range))
        if self.error:
            raise self.error
        return {"dateRange": date_range.to_dict(), "owner": owner.owner_id}

    async def prediction(self, owner, use_model=False):
        self.calls.append((owner, use_model))
        if self.error:
            raise self.error
        return {"method": "model_assisted" if use_model else "statistical"}


def _client(pipeline, owner=OWNER):
    app = FastAPI()
    app.include_router(health.router)
    app.include_router(dashboard.router)

    @app.middleware("http")
    async def attach_owner(request, call_next):
        if owner is not None:
            request.state.owner = owner
        return await call_next(request)

    app.dependency_overrides[get_pipeline] = lambda: pipeline
    return TestClient(app)


def test_default_range_is_last_thirty_days():
    pipeline = StubPipeline()
    response = _client(pipeline).get("/dashboard")

    assert response.status_code == 200
    assert response.json()["dateRange"] == {"startDate": "2024-09-09", "endDate": "2024-10-08"}


def test_explicit_range():
    pipeline = StubPipeline()
    response = _client(pipeline).get("/dashboard", params={"startDate": "2024-10-01", "endDate": "2024-10-07"})

    assert response.status_code == 200
    assert response.json() == {
        "dateRange": {"startDate": "2024-10-01", "endDate": "2024-10-07"},
        "owner": "owner-1",
    }


def test_invalid_dates_are_rejected():
    client = _client(StubPipeline())
    assert client.get("/dashboard", params={"startDate": "2024-10-40", "endDate": "2024-10-07"}).status_code == 400
    assert client.get("/dashboard", params={"startDate": "2024-10-08", "endDate": "2024-10-07"}).status_code == 400


def test_total_failure_maps_to_502():
    response = _client(StubPipeline(error=TotalFailure("no order data"))).get("/dashboard")

    assert response.status_code == 502
    body = response.json()
    assert body["message"] == "Failed to load dashboard data"
    assert body["error"] == "no order data"


def test_missing_owner_is_unauthorized():
    pipeline = StubPipeline()
    response = _client(pipeline, owner=None).get("/dashboard")

    assert response.status_code == 401
    assert pipeline.calls == []


def test_owner_mapping_from_auth_layer():
    pipeline = StubPipeline()
    owner = {"userId": "u-42", "storeUrl": "demo.myshopify.com", "storeToken": "t"}
    response = _client(pipeline, owner=owner).get("/dashboard")

    assert response.status_code == 200
    assert response.json()["owner"] == "u-42"
    assert pipeline.calls[0][0].store_token == "t"


def test_prediction_passes_use_ai_flag():
    pipeline = StubPipeline()
    client = _client(pipeline)

    assert client.get("/dashboard/prediction").json() == {"method": "statistical"}
    assert client.get("/dashboard/prediction", params={"useAI": "true"}).json() == {"method": "model_assisted"}


def test_health():
    response = _client(StubPipeline()).get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_application_starts_and_serves_status():
    from profitfirst.main import app

    with TestClient(app) as client:
        status = client.get("/status").json()
        assert status["cache"]["backend"] == "memory"
        assert status["version"] == "1.0.0"
        assert app.state.cache_service is not None
