"""
Tests for the HTTP host surface.

The app runs against an InMemoryStore through dependency overrides, so the
lifespan never opens a database pool.
"""

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from intelligence.core.config import get_settings
from intelligence.core.dependencies import get_pipeline
from intelligence.main import app
from intelligence.services.pipeline import IntelligencePipeline
from intelligence.tests.conftest import CLIENT_ID, TENANT_ID


HEADERS = {"X-Tenant-Id": TENANT_ID}

DEAL_WON = {"subscriptionType": "deal.propertyChange", "objectId": 4410}


@pytest.fixture
def client(pipeline: IntelligencePipeline, monkeypatch) -> Iterator[TestClient]:
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    get_settings.cache_clear()
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    get_settings.cache_clear()


class TestHealth:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_root(self, client):
        body = client.get("/").json()
        assert body["name"] == "Agency Intelligence API"
        assert body["docs"] == "/docs"


class TestSignalEndpoints:

    def test_tenant_header_is_required(self, client):
        response = client.post("/signals/crm", json=DEAL_WON)
        assert response.status_code == 400

    def test_ingest_and_duplicate(self, client):
        first = client.post("/signals/hubspot", json=DEAL_WON, headers=HEADERS)
        second = client.post("/signals/crm", json=DEAL_WON, headers=HEADERS)

        assert first.status_code == 200
        assert first.json()["is_duplicate"] is False
        assert first.json()["signal"]["source"] == "crm"
        assert second.json()["is_duplicate"] is True
        assert second.json()["signal"]["id"] == first.json()["signal"]["id"]

    def test_unsupported_source_is_a_client_error(self, client):
        response = client.post("/signals/fax", json={"a": 1}, headers=HEADERS)
        assert response.status_code == 400
        assert "fax" in response.json()["detail"]

    def test_sources(self, client):
        assert "crm" in client.get("/signals/sources").json()

    def test_get_and_retry(self, client):
        signal_id = client.post("/signals/crm", json=DEAL_WON, headers=HEADERS).json()["signal"]["id"]

        fetched = client.get(f"/signals/{signal_id}", headers=HEADERS)
        retried = client.post(f"/signals/{signal_id}/retry", headers=HEADERS)

        assert fetched.json()["id"] == signal_id
        assert retried.status_code == 200
        assert retried.json()["retry_count"] == 1

    def test_unknown_signal_is_404(self, client):
        assert client.get("/signals/missing", headers=HEADERS).status_code == 404
        assert client.post("/signals/missing/retry", headers=HEADERS).status_code == 404

    def test_pending_listing(self, client):
        client.post("/signals/crm", json=DEAL_WON, headers=HEADERS)
        pending = client.get("/signals/pending", headers=HEADERS).json()
        assert len(pending) == 1
        assert client.get("/signals/failed", headers=HEADERS).json() == []


class TestIntelligenceEndpoints:

    def test_run_pipeline(self, client):
        client.post("/signals/crm", json=DEAL_WON, headers=HEADERS)

        body = client.post("/intelligence/run-pipeline", headers=HEADERS).json()

        assert body["aggregation"]["insights_created"] == 1
        assert body["prioritization"]["priorities_created"] == 1
        queue = client.get("/intelligence/priorities", headers=HEADERS).json()
        assert len(queue) == 1
        prioritised = client.get("/intelligence/insights", params={"status": "prioritised"}, headers=HEADERS)
        assert len(prioritised.json()) == 1

    def test_stages_separately(self, client):
        client.post("/signals/crm", json=DEAL_WON, headers=HEADERS)

        aggregation = client.post("/intelligence/process-signals", headers=HEADERS).json()
        scoring = client.post("/intelligence/compute-priorities", headers=HEADERS).json()

        assert aggregation["processed"] == 1
        assert scoring["priorities_created"] == 1

    def test_detect_anomalies(self, client, store, spike_history):
        store.add_daily_metrics(TENANT_ID, spike_history)

        body = client.post(f"/intelligence/anomalies/{CLIENT_ID}/detect", headers=HEADERS).json()

        assert body["signals_created"] == 1
        assert body["anomalies"][0]["anomaly_type"] == "traffic_spike"

    def test_outcome_capture_and_update(self, client):
        created = client.post("/intelligence/outcomes", headers=HEADERS, json={
            "initiative_id": "init-42",
            "client_id": CLIENT_ID,
            "recommendation_type": "seo_content_refresh",
            "accepted": True,
            "predicted_impact": {"sessions": 1200},
        })
        assert created.status_code == 201
        outcome_id = created.json()["id"]
        assert created.json()["tenant_id"] == TENANT_ID

        updated = client.patch(f"/intelligence/outcomes/{outcome_id}", headers=HEADERS, json={
            "outcome_status": "success",
            "actual_impact": {"sessions": 1500},
        })

        assert updated.status_code == 200
        assert updated.json()["variance_direction"] == "overperformed"

    def test_update_unknown_outcome_is_404(self, client):
        response = client.patch("/intelligence/outcomes/missing", headers=HEADERS, json={"notes": "x"})
        assert response.status_code == 404

    def test_quality_dashboard(self, client):
        client.post("/intelligence/outcomes", headers=HEADERS, json={
            "initiative_id": "init-1",
            "recommendation_type": "ppc_bid_adjustment",
            "accepted": False,
        })

        body = client.get("/intelligence/quality", headers=HEADERS).json()

        assert "ppc_bid_adjustment" in body["overall"]
        assert body["calibration_needed"] == []

    def test_quality_periods_are_bounded(self, client):
        response = client.get("/intelligence/quality", params={"periods": 0}, headers=HEADERS)
        assert response.status_code == 422
