"""HTTP surface tests: identity header, ownership, callbacks, credits and the payment webhook."""

import asyncio
import inspect
import json

import pytest
from fastapi.testclient import TestClient

from backend.main import app
from backend.routes import webhooks
from bvg.billing import get_credit_ledger
from bvg.config import Settings
from bvg.orchestrator import get_event_handler, get_orchestrator
from bvg.schemas.models import BaseConfig


@pytest.fixture
def client(orchestrator, handler, ledger):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_event_handler] = lambda: handler
    app.dependency_overrides[get_credit_ledger] = lambda: ledger
    yield TestClient(app)
    app.dependency_overrides.clear()


def _started_job(orchestrator, user="user_1"):
    job = orchestrator.create_job(user, BaseConfig(story_idea="Open house"))
    return orchestrator.run_initial_phase(job.job_id)


class TestIdentity:
    def test_missing_header(self, client):
        assert client.get("/api/credits/balance").status_code == 401

    def test_other_users_job_is_hidden(self, client, orchestrator, fund):
        fund()
        job = _started_job(orchestrator)
        response = client.get(f"/api/jobs/{job.job_id}", headers={"X-User-Id": "someone_else"})
        assert response.status_code == 404

    def test_own_job(self, client, orchestrator, fund):
        fund()
        job = _started_job(orchestrator)
        response = client.get(f"/api/jobs/{job.job_id}", headers={"X-User-Id": "user_1"})
        assert response.status_code == 200
        assert response.json()["overall_status"] == "generating"


class TestJobRoutes:
    def test_retry_without_failure_is_400(self, client, orchestrator, fund):
        fund()
        job = _started_job(orchestrator)
        response = client.post(f"/api/jobs/{job.job_id}/retry", json={}, headers={"X-User-Id": "user_1"})
        assert response.status_code == 400
        assert "No failed generation" in response.json()["detail"]


class TestRenderCallback:
    def test_applies_provider_payload(self, client, orchestrator, fund):
        fund()
        job = _started_job(orchestrator)
        payload = {
            "code": 200,
            "data": {
                "taskId": job.initial_task_id,
                "info": {"successFlag": 1, "resultUrls": ["https://cdn.example.com/final.mp4"]},
            },
        }
        response = client.post("/api/callbacks/render", json=payload)
        assert response.status_code == 200
        assert response.json()["applied"] is True
        stored = orchestrator.store.get(job.job_id)
        assert stored.video_segments[0].url == "https://cdn.example.com/final.mp4"

    def test_missing_task_id(self, client):
        response = client.post("/api/callbacks/render", json={"data": {"successFlag": 1}})
        assert response.status_code == 400

    def test_unknown_task(self, client):
        response = client.post("/api/callbacks/render", json={"data": {"taskId": "nope"}})
        assert response.status_code == 404


class TestCredits:
    def test_balance_and_estimate(self, client, fund):
        fund(credits=2)
        headers = {"X-User-Id": "user_1"}
        assert client.get("/api/credits/balance", headers=headers).json()["available"] == 2

        response = client.post("/api/credits/estimate", json={"number_of_scenes": 3}, headers=headers)
        body = response.json()
        assert body["check"]["required"] == 3
        assert body["check"]["has_enough"] is False


class TestPaymentWebhook:
    def test_grant_is_idempotent(self, client, ledger, monkeypatch, tmp_path):
        monkeypatch.setattr(webhooks, "settings", Settings(_env_file=None, bvg_data_dir=str(tmp_path)))
        event = {"event_id": "evt_1", "user_id": "user_7", "credits": 10}
        first = client.post("/api/webhooks/payment", json=event).json()
        second = client.post("/api/webhooks/payment", json=event).json()
        assert first == {"event_id": "evt_1", "applied": True, "balance": 10}
        assert second["applied"] is False
        assert ledger.get_balance("user_7").balance == 10

    def test_signature_checked_when_secret_set(self, client, ledger, monkeypatch, tmp_path):
        monkeypatch.setattr(
            webhooks,
            "settings",
            Settings(_env_file=None, bvg_data_dir=str(tmp_path), payment_webhook_secret="whsec"),
        )
        body = json.dumps({"event_id": "evt_2", "user_id": "user_7", "credits": 5}).encode()

        bad = client.post("/api/webhooks/payment", content=body, headers={"X-Signature": "nope"})
        assert bad.status_code == 401

        good = client.post(
            "/api/webhooks/payment",
            content=body,
            headers={"X-Signature": webhooks.signature_for(body, "whsec")},
        )
        assert good.status_code == 200
        assert ledger.get_balance("user_7").balance == 5

    def test_rejects_non_positive_credits(self, client, monkeypatch, tmp_path):
        monkeypatch.setattr(webhooks, "settings", Settings(_env_file=None, bvg_data_dir=str(tmp_path)))
        response = client.post("/api/webhooks/payment", json={"event_id": "e", "user_id": "u", "credits": 0})
        assert response.status_code == 400


class TestBlockingHandlers:
    def test_store_backed_routes_run_in_threadpool(self):
        blocking_prefixes = ("/api/credits", "/api/jobs", "/api/batches")
        routes = [r for r in app.routes if getattr(r, "path", "").startswith(blocking_prefixes)]
        assert routes
        for route in routes:
            assert not inspect.iscoroutinefunction(route.endpoint), route.path

    def test_payment_is_applied_off_the_event_loop(self, client, ledger, monkeypatch, tmp_path):
        monkeypatch.setattr(webhooks, "settings", Settings(_env_file=None, bvg_data_dir=str(tmp_path)))
        calls = []
        real_to_thread = asyncio.to_thread

        async def recording_to_thread(fn, *args, **kwargs):
            calls.append(fn)
            return await real_to_thread(fn, *args, **kwargs)

        monkeypatch.setattr(webhooks.asyncio, "to_thread", recording_to_thread)
        response = client.post("/api/webhooks/payment", json={"event_id": "evt_9", "user_id": "user_7", "credits": 3})
        assert response.status_code == 200
        assert webhooks.apply_payment in calls
        assert ledger.get_balance("user_7").balance == 3
