"""
Integration tests for the HTTP API.

Each test runs the full application lifespan against its own SQLite file, so
the marketplace starts seeded with the built-in watcher types. No test
triggers a real executor check or webhook delivery.
"""

import pytest
from fastapi.testclient import TestClient

from src.config import settings
from src.main import app

TOKEN_CONFIG = {"token": "ETH", "threshold": 4000, "direction": "above"}


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "database_url", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setattr(settings, "cron_secret", None)
    with TestClient(app) as test_client:
        yield test_client


def token_type_id(client: TestClient) -> str:
    types = client.get("/marketplace/types", params={"category": "price"}).json()["types"]
    return types[0]["id"]


def create_watcher(client: TestClient, customer: str = "alice", **overrides):
    body = {
        "typeId": token_type_id(client),
        "config": TOKEN_CONFIG,
        "webhook": "https://example.com/hooks/eth",
    }
    body.update(overrides)
    return client.post("/watchers", json=body, headers={"X-Customer-ID": customer})


class TestServiceEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"] == "connected"
        assert body["checks"]["scheduler"] == "external"
        assert "X-Correlation-ID" in response.headers

    def test_root(self, client):
        body = client.get("/").json()
        assert body["service"] == "Sentinel Marketplace"
        assert set(body["modules"]) == {"marketplace", "watchers", "customers"}

    def test_stats_after_seed(self, client):
        body = client.get("/stats").json()
        assert body["operators"] == 1
        assert body["watcherTypes"] == 2
        assert body["totalWatchers"] == 0


class TestMarketplaceEndpoints:
    def test_info(self, client):
        body = client.get("/marketplace").json()
        assert "wallet" in body["categories"]
        assert body["builtInExecutors"] == ["wallet-balance", "token-price"]
        assert body["fees"]["operator"] == "80%"

    def test_seeded_types(self, client):
        body = client.get("/marketplace/types").json()
        assert body["count"] == 2
        assert {t["operator"] for t in body["types"]} == {"Sentinel"}

    def test_register_operator_and_type(self, client):
        response = client.post("/marketplace/operators", json={
            "name": "Acme Watchers",
            "wallet": "0x" + "cd" * 20,
        })
        assert response.status_code == 201
        operator_id = response.json()["operator"]["id"]

        duplicate = client.post("/marketplace/operators", json={"name": "Acme", "wallet": "0x" + "cd" * 20})
        assert duplicate.status_code == 409
        assert duplicate.json()["reason"] == "conflict"

        response = client.post("/marketplace/types", json={
            "operatorId": operator_id,
            "name": "Gas Alert",
            "category": "custom",
            "price": 0.05,
        })
        assert response.status_code == 201
        assert response.json()["message"] == "Watcher type created. Customers pay $0.05, you receive $0.0400."

        type_id = response.json()["type"]["id"]
        described = client.get(f"/marketplace/types/{type_id}").json()
        assert described["operator"]["id"] == operator_id

    def test_invalid_type_category(self, client):
        operator_id = client.get("/marketplace/operators").json()["operators"][0]["id"]
        response = client.post("/marketplace/types", json={
            "operatorId": operator_id,
            "name": "Weather",
            "category": "weather",
            "price": 1,
        })
        assert response.status_code == 400
        body = response.json()
        assert body["reason"] == "invalid_config"
        assert body["details"]["field"] == "category"
        assert "correlation_id" in body

    def test_unknown_type(self, client):
        response = client.get("/marketplace/types/missing")
        assert response.status_code == 404
        assert response.json()["reason"] == "not_found"


class TestWatcherCreation:
    def test_create_replay_and_free_limit(self, client):
        created = create_watcher(client)
        assert created.status_code == 201
        body = created.json()
        assert body["idempotent"] is False
        assert body["payment"] == {"amount": "0.01", "operatorShare": "0.0080", "platformShare": "0.0020"}
        assert body["watcher"]["pollingInterval"] == 30

        replay = create_watcher(client)
        assert replay.status_code == 200
        assert replay.json()["idempotent"] is True
        assert replay.json()["receipt"]["id"] == body["receipt"]["id"]

        limited = create_watcher(client, config={**TOKEN_CONFIG, "threshold": 5000})
        assert limited.status_code == 402
        assert limited.json()["reason"] == "tier_limit_exceeded"
        assert limited.json()["details"]["upgrade"]["endpoint"] == "/customers/alice/upgrade"

        fulfillment_hash = body["receipt"]["fulfillmentHash"]
        verified = client.get(f"/marketplace/receipts/verify/{fulfillment_hash}").json()
        assert verified["verified"] is True
        assert verified["receipt"]["watcherId"] == body["watcher"]["id"]

    def test_invalid_executor_config(self, client):
        response = create_watcher(client, config={"token": "ETH", "direction": "up"})
        assert response.status_code == 400
        body = response.json()
        assert body["details"]["field"] == "config"
        assert len(body["details"]["errors"]) == 2

    def test_invalid_polling_interval(self, client):
        response = create_watcher(client, pollingInterval=7)
        assert response.status_code == 400
        assert response.json()["details"]["allowed"] == [5, 15, 30, 60]

    def test_unknown_type(self, client):
        response = client.post("/watchers", json={
            "typeId": "missing",
            "config": {},
            "webhook": "https://example.com/hook",
        })
        assert response.status_code == 404

    def test_malformed_body(self, client):
        response = client.post(
            "/watchers",
            content="not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["reason"] == "validation_error"

    def test_upgrade_then_batch(self, client):
        upgraded = client.post("/customers/bob/upgrade")
        assert upgraded.status_code == 200
        assert upgraded.json()["customer"]["tier"] == "paid"
        assert client.post("/customers/bob/upgrade").status_code == 409

        type_id = token_type_id(client)
        response = client.post("/watchers/batch", json={
            "customerId": "bob",
            "watchers": [
                {"typeId": type_id, "config": TOKEN_CONFIG, "webhook": "https://a.example.com"},
                {"typeId": type_id, "config": {**TOKEN_CONFIG, "token": "BTC"}, "webhook": "https://b.example.com"},
                {"typeId": "missing", "config": {}, "webhook": "https://c.example.com"},
            ],
        })

        assert response.status_code == 207
        body = response.json()
        assert body["summary"] == {"total": 3, "successful": 2, "failed": 1}
        assert [r["status"] for r in body["results"]] == [201, 201, 404]
        assert body["results"][2]["error"]["reason"] == "not_found"

        listed = client.get("/watchers", params={"customerId": "bob"}).json()
        assert listed["count"] == 2

    def test_batch_all_failed(self, client):
        response = client.post("/watchers/batch", json={
            "watchers": [{"typeId": "missing", "config": {}, "webhook": "https://c.example.com"}],
        })
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_batch_too_large(self, client):
        response = client.post("/watchers/batch", json={"watchers": [{}] * 51})
        assert response.status_code == 400
        assert response.json()["details"]["field"] == "watchers"


class TestWatcherManagement:
    def test_cancel_flow(self, client):
        watcher_id = create_watcher(client).json()["watcher"]["id"]

        detail = client.get(f"/watchers/{watcher_id}").json()
        assert detail["typeName"] == "Token Price Alert"
        assert detail["status"] == "active"

        cancelled = client.delete(f"/watchers/{watcher_id}")
        assert cancelled.status_code == 200
        assert cancelled.json()["watcher"]["status"] == "cancelled"

        again = client.delete(f"/watchers/{watcher_id}")
        assert again.status_code == 400
        assert again.json()["reason"] == "already_cancelled"

        refund = client.get(f"/watchers/{watcher_id}/refund-status").json()
        assert refund["refundEligible"] is True

    def test_billing_and_sla_views(self, client):
        watcher_id = create_watcher(client).json()["watcher"]["id"]

        billing = client.get(f"/watchers/{watcher_id}/billing").json()
        assert billing["billing"]["status"] == "one-time"
        assert billing["billing"]["totalPaid"] == "0.01"

        sla = client.get(f"/watchers/{watcher_id}/sla").json()
        assert sla["sla"]["uptimePercent"] == 100.0
        assert sla["thresholds"]["refundPercent"] == 50.0
        assert sla["violations"] == []

    def test_unknown_watcher(self, client):
        assert client.get("/watchers/missing").status_code == 404
        assert client.delete("/watchers/missing").status_code == 404

    def test_customer_view(self, client):
        create_watcher(client)
        customer = client.get("/customers/alice").json()
        assert customer["freeWatchersUsed"] == 1
        assert client.get("/customers/nobody").status_code == 404

    def test_violations_listing_is_empty(self, client):
        body = client.get("/sla-violations").json()
        assert body == {"count": 0, "violations": []}
        assert client.post("/sla-violations/missing/acknowledge").status_code == 404


class TestCronEndpoints:
    def test_check_tick_without_watchers(self, client):
        response = client.post("/cron/check")
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["checked"] == 0

    def test_billing_tick_without_due(self, client):
        body = client.post("/cron/billing").json()
        assert body["message"] == "No billing due"
        assert body["summary"]["totalDue"] == 0

    def test_cron_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")

        denied = client.post("/cron/billing")
        assert denied.status_code == 401
        assert denied.json()["reason"] == "unauthorized"

        allowed = client.post("/cron/billing", headers={"X-Cron-Secret": "s3cret"})
        assert allowed.status_code == 200


class TestWebhookTester:
    @pytest.mark.parametrize("url", ["ftp://example.com", "https://", 42])
    def test_rejects_invalid_url(self, client, url):
        response = client.post("/test-webhook", json={"webhookUrl": url})
        assert response.status_code == 400
        assert response.json()["details"]["field"] == "webhookUrl"
