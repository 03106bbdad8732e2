import json
from dataclasses import replace
from datetime import datetime, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

import main
from core.config import Settings
from core.context import build_context
from core.limits import STORE_NAME
from core.plans import PRODUCT_IDS, UNLIMITED
from core.storage import InMemoryKeyValueStorage
from services.demo_purchases import DemoEntitlementProvider

NOW = datetime(2025, 6, 15, 9, 0, tzinfo=timezone.utc)


class OracleEndpoint:
    def __init__(self):
        self.status = 200
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.status != 200:
            return httpx.Response(self.status, json={})
        question = json.loads(request.content)["question"]
        return httpx.Response(200, json={"text": f"The Oracle answers: {question}"})


@pytest.fixture
def endpoint():
    return OracleEndpoint()


@pytest.fixture
def storage():
    return InMemoryKeyValueStorage()


@pytest.fixture
def ctx(endpoint, storage):
    return build_context(
        Settings(log_level="WARNING"),
        storage=storage,
        provider=DemoEntitlementProvider(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(endpoint)),
        clock=lambda: NOW,
        time_func=lambda: NOW.timestamp(),
    )


@pytest.fixture
def client(ctx):
    with TestClient(main.create_app(ctx)) as test_client:
        yield test_client


def test_health_ok(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True
    assert "X-Request-Id" in resp.headers


def test_root_reports_demo_mode(client):
    body = client.get("/").json()
    assert body["service"] == "oxalate-oracle"
    assert body["env"]["demo_mode"] is True


def test_usage_status_for_new_free_user(client):
    body = client.get("/v1/usage/status").json()

    assert body["tier"] == "free"
    assert body["oracle_questions"] == {"allowed": True, "remaining": 5, "used": 0, "limit": 5}
    assert body["recipes"]["remaining"] == 1
    assert body["tracking"] == {"allowed": True, "remaining": 7, "used": 0, "limit": 7, "start_date": None}


def test_recipe_gate_denial_is_not_an_error(client, storage):
    first = client.post("/v1/usage/recipes/increment")
    second = client.post("/v1/usage/recipes/increment")

    assert first.json() == {"allowed": True, "remaining": 0}
    assert second.status_code == 200
    assert second.json() == {"allowed": False, "remaining": 0}

    persisted = json.loads(storage._items[STORE_NAME])
    assert persisted["recipes"]["currentCount"] == 1


def test_tracking_start_and_increment(client):
    assert client.post("/v1/usage/tracking/start").json() == {"allowed": True, "remaining": 7}
    assert client.post("/v1/usage/tracking/increment").json()["allowed"] is True

    body = client.get("/v1/usage/status").json()
    assert body["tracking"]["start_date"] == "2025-06-15"
    assert body["tracking"]["used"] == 2


def test_oracle_increment_runs_out(client):
    for remaining in (4, 3, 2, 1, 0):
        assert client.post("/v1/usage/oracle/increment").json() == {"allowed": True, "remaining": remaining}

    assert client.post("/v1/usage/oracle/increment").json() == {"allowed": False, "remaining": 0}


def test_ask_oracle_uses_endpoint_then_cache(client, endpoint):
    resp = client.post("/v1/oracle/ask", json={"question": "Is kale ok?"})
    body = resp.json()

    assert resp.status_code == 200
    assert body["allowed"] is True
    assert body["source"] == "api"
    assert body["text"] == "The Oracle answers: Is kale ok?"
    assert body["remaining"] == 4

    cached = client.post("/v1/oracle/ask", json={"question": "is kale ok?"}).json()
    assert cached["source"] == "cache"
    assert endpoint.calls == 1

    messages = client.get("/v1/oracle/messages").json()
    assert [m["is_user"] for m in messages] == [False, True, False, True, False]


def test_ask_oracle_falls_back_when_endpoint_fails(client, endpoint):
    endpoint.status = 503

    body = client.post("/v1/oracle/ask", json={"question": "What about spinach?"}).json()

    assert body["source"] == "fallback"
    assert "750mg per cup" in body["text"]


def test_ask_oracle_denied_after_daily_limit(client, endpoint):
    for i in range(5):
        client.post("/v1/oracle/ask", json={"question": f"question {i}"})

    body = client.post("/v1/oracle/ask", json={"question": "one more"}).json()

    assert body["allowed"] is False
    assert body["remaining"] == 0
    assert endpoint.calls == 5


def test_ask_oracle_rejects_blank_question(client):
    resp = client.post("/v1/oracle/ask", json={"question": "   "})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "OXA-400"

    assert client.post("/v1/oracle/ask", json={"question": ""}).status_code == 422


def test_clear_messages_and_quick_questions(client):
    client.post("/v1/oracle/ask", json={"question": "hi"})

    assert client.delete("/v1/oracle/messages").json() == {"ok": True}
    assert [m["id"] for m in client.get("/v1/oracle/messages").json()] == ["welcome"]
    assert len(client.get("/v1/oracle/quick-questions").json()["questions"]) == 10


def test_purchase_upgrades_to_premium(client):
    status = client.get("/v1/subscription/status").json()
    assert status["tier"] == "free"
    assert status["demo_mode"] is True

    resp = client.post("/v1/subscription/purchase", json={"product_id": PRODUCT_IDS["YEARLY_PREMIUM"]})
    assert resp.json()["ok"] is True
    assert resp.json()["tier"] == "premium"

    status = client.get("/v1/subscription/status").json()
    assert status["is_premium"] is True
    assert status["product_identifier"] == PRODUCT_IDS["YEARLY_PREMIUM"]

    usage = client.get("/v1/usage/status").json()
    assert usage["oracle_questions"]["remaining"] == UNLIMITED
    assert usage["recipes"]["remaining"] == UNLIMITED


def test_purchase_unknown_product_reports_message(client):
    body = client.post("/v1/subscription/purchase", json={"product_id": "nope"}).json()

    assert body["ok"] is False
    assert body["tier"] == "free"
    assert "temporarily unavailable" in body["message"]


def test_restore_without_purchase(client):
    body = client.post("/v1/subscription/restore").json()

    assert body == {"ok": False, "tier": "free", "message": "No active Premium subscription was found."}


def test_validation_error_becomes_422(client, ctx):
    limits = ctx.usage.snapshot()
    ctx.usage._limits = replace(limits, recipes=replace(limits.recipes, current_count=-3))

    resp = client.post("/v1/usage/recipes/increment")
    body = resp.json()

    assert resp.status_code == 422
    assert body["error"]["code"] == "OXA-422"
    assert body["validation"] == {
        "code": "NEGATIVE_COUNT",
        "message": "recipes.currentCount cannot be negative",
        "field": "recipes.currentCount",
    }


def test_startup_restores_persisted_limits(endpoint):
    record = {
        "oracleQuestions": {"dailyLimit": 5, "todayCount": 5, "lastResetDate": "2025-06-15"},
        "recipes": {"freeLimit": 1, "currentCount": 1},
        "tracking": {"freeDays": 7, "startDate": "2025-06-12", "daysUsed": 3},
    }
    ctx = build_context(
        Settings(),
        storage=InMemoryKeyValueStorage({STORE_NAME: json.dumps(record)}),
        provider=DemoEntitlementProvider(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(endpoint)),
        clock=lambda: NOW,
    )

    with TestClient(main.create_app(ctx)) as client:
        body = client.get("/v1/usage/status").json()

    assert body["oracle_questions"]["allowed"] is False
    assert body["recipes"]["allowed"] is False
    assert body["tracking"]["remaining"] == 4
