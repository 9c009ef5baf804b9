from __future__ import annotations

import time
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import button_reply, edge, make_flow, make_settings, text_message, whatsapp_delivery

from flow_orchestrator.app import create_app
from flow_orchestrator.core.flow_store import InMemoryFlowStore

PHONE = "15550001111"


def _wait_for(predicate, timeout: float = 3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        value = predicate()
        if value:
            return value
        time.sleep(0.01)
    raise AssertionError("condition not met in time")


@pytest.fixture
def flows() -> InMemoryFlowStore:
    survey = make_flow(
        [
            {"id": "t", "type": "on_message"},
            {"id": "ask", "type": "send_button", "config": {"bodyText": "Happy?", "buttons": [{"id": "y", "title": "Yes"}]}},
            {"id": "done", "type": "send_message", "config": {"text": "Thanks, {{button.title}}"}},
        ],
        [edge("t", "ask"), edge("ask", "done")],
        flow_id="survey",
        name="Customer Survey",
        keywords=["survey"],
    )
    orders = make_flow(
        [
            {"id": "hook", "type": "catch_webhook"},
            {"id": "notify", "type": "send_message", "config": {"text": "Order {{webhook.body.order}} shipped"}},
        ],
        [edge("hook", "notify")],
        flow_id="orders",
        name="Order Updates",
        keywords=[],
    )
    return InMemoryFlowStore([survey, orders])


@pytest.fixture
def client(services, flows):
    app = create_app(settings=make_settings(), flow_store=flows, transport=httpx.MockTransport(services))
    with TestClient(app) as test_client:
        yield test_client


def _texts(services):
    return [p["text"]["body"] for p in services.whatsapp_payloads() if p.get("type") == "text"]


def test_webhook_verification(client):
    ok = client.get("/api/whatsapp-webhook", params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "42"})
    assert ok.status_code == 200
    assert ok.text == "42"

    wrong = client.get("/api/whatsapp-webhook", params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "42"})
    assert wrong.status_code == 403

    assert client.get("/api/whatsapp-webhook").status_code == 400


def test_inbound_message_is_acknowledged_then_processed(client, services):
    response = client.post("/api/whatsapp-webhook", json=whatsapp_delivery(text_message("survey")))
    assert response.status_code == 200
    assert response.json() == {"success": True}

    paused = _wait_for(lambda: client.get("/api/paused-executions").json())
    assert paused[0]["flowId"] == "survey"
    assert paused[0]["currentNodeId"] == "ask"
    assert paused[0]["waitingFor"] == "button"

    client.post("/api/whatsapp-webhook", json=whatsapp_delivery(button_reply("y", "Yes")))
    _wait_for(lambda: _texts(services))
    assert _texts(services) == ["Thanks, Yes"]
    assert client.get("/api/paused-executions").json() == []


def test_non_message_deliveries_are_acknowledged(client, services):
    statuses = {"entry": [{"changes": [{"value": {"statuses": [{"status": "delivered"}]}}]}]}
    assert client.post("/api/whatsapp-webhook", json=statuses).json() == {"success": True}
    assert client.post("/api/whatsapp-webhook", content=b"not json").status_code == 200
    assert services.requests == []


def test_custom_webhook_runs_flow_by_slug(client, services):
    response = client.post("/api/custom-webhook/order-updates/hook", json={"phone": PHONE, "order": 7})
    assert response.status_code == 200
    body = response.json()
    assert body["flowId"] == "orders"
    assert body["data"]["body"] == {"phone": PHONE, "order": 7}

    execution_id = body["executionId"]

    def finished():
        record = client.get(f"/api/executions/{execution_id}")
        return record.status_code == 200 and record.json()["status"] == "completed" and record.json()

    record = _wait_for(finished)
    assert record["conversationId"] == PHONE
    assert _texts(services) == ["Order 7 shipped"]


def test_custom_webhook_accepts_query_only_get(client, services):
    response = client.get("/api/custom-webhook/orders/hook", params={"phone": PHONE, "order": "9"})
    assert response.status_code == 200
    assert response.json()["data"]["method"] == "GET"
    _wait_for(lambda: _texts(services))
    # the body is empty, so webhook.body.order stays unresolved
    assert _texts(services) == ["Order {{webhook.body.order}} shipped"]


def test_custom_webhook_unknown_flow_is_404(client):
    assert client.post("/api/custom-webhook/nope/hook", json={}).status_code == 404


def test_health_config_and_lookups(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/readyz").json()["status"] == "ready"

    config = client.get("/config").json()
    assert config["WHATSAPP_ACCESS_TOKEN"] is True
    assert config["MAX_ITERATIONS"] == 50

    assert {f["id"] for f in client.get("/api/flows").json()} == {"survey", "orders"}
    assert client.get("/api/executions/does-not-exist").status_code == 404


def test_sample_flow_directory_loads():
    flows_dir = Path(__file__).resolve().parent.parent / "flows"
    store = InMemoryFlowStore()
    assert store.load_directory(flows_dir) == 2
    assert store.get_flow_by_trigger("MENU").id == "welcome"
    assert store.find_by_identifier("order-updates").name == "Order Updates"
