from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from flow_orchestrator.activities import AdapterRegistry
from flow_orchestrator.core.config import OrchestratorConfig
from flow_orchestrator.core.flow_store import ExecutionStore, InMemoryFlowStore
from flow_orchestrator.core.suspension import SuspensionRegistry
from flow_orchestrator.core.types import FlowRecord
from flow_orchestrator.workflows.flow_engine import FlowEngine

GRAPH_HOST = "graph.facebook.com"

Responder = Callable[[httpx.Request], httpx.Response]


class FakeServices:
    """httpx.MockTransport handler that records every outbound request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, Responder] = {}

    def route(self, host: str, responder: Responder) -> None:
        self.routes[host] = responder

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.routes.get(request.url.host)
        if responder is not None:
            return responder(request)
        if request.url.host == GRAPH_HOST:
            return httpx.Response(200, json={"messages": [{"id": "wamid.test"}]})
        return httpx.Response(200, json={"ok": True})

    def to_host(self, host: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]

    def whatsapp_payloads(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.to_host(GRAPH_HOST)]


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_settings(**overrides: Any) -> OrchestratorConfig:
    settings = OrchestratorConfig(
        WHATSAPP_PHONE_NUMBER_ID="1234567890",
        WHATSAPP_ACCESS_TOKEN="test-token",
        WHATSAPP_VERIFY_TOKEN="verify-me",
    )
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


def build_adapters(services: FakeServices, sleep: RecordingSleep | None = None, **overrides: Any) -> AdapterRegistry:
    client = httpx.AsyncClient(transport=httpx.MockTransport(services))
    adapters = AdapterRegistry.from_config(client, make_settings(**overrides))
    adapters.sleep = sleep or RecordingSleep()
    return adapters


def make_flow(
    nodes: list[dict[str, Any]] | dict[str, Any],
    edges: list[dict[str, Any]] | None = None,
    flow_id: str = "flow-1",
    name: str = "Test Flow",
    status: str = "active",
    keywords: list[str] | None = None,
    **extra: Any,
) -> FlowRecord:
    config: dict[str, Any] = {"nodes": nodes, **extra}
    if edges is not None:
        config["edges"] = edges
    return FlowRecord(
        id=flow_id,
        name=name,
        status=status,
        triggerKeywords=keywords if keywords is not None else ["hi"],
        config=config,
    )


def edge(source: str, target: str, handle: str | None = None) -> dict[str, Any]:
    out: dict[str, Any] = {"id": f"e-{source}-{target}", "source": source, "target": target}
    if handle:
        out["sourceHandle"] = handle
    return out


def make_engine(services: FakeServices, *flows: FlowRecord, sleep: RecordingSleep | None = None, **kwargs: Any) -> FlowEngine:
    return FlowEngine(
        flows=InMemoryFlowStore(list(flows)),
        adapters=build_adapters(services, sleep),
        registry=SuspensionRegistry(),
        executions=ExecutionStore(),
        **kwargs,
    )


def whatsapp_delivery(message: dict[str, Any], name: str = "Ada") -> dict[str, Any]:
    """Wrap one message the way the Cloud API delivers it."""
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "waba-1",
            "changes": [{
                "field": "messages",
                "value": {
                    "messaging_product": "whatsapp",
                    "contacts": [{"profile": {"name": name}, "wa_id": message.get("from")}],
                    "messages": [message],
                },
            }],
        }],
    }


def text_message(body: str, phone: str = "15550001111", message_id: str = "wamid.in1") -> dict[str, Any]:
    return {"from": phone, "id": message_id, "timestamp": "1700000000", "type": "text", "text": {"body": body}}


def button_reply(button_id: str, title: str, phone: str = "15550001111") -> dict[str, Any]:
    return {
        "from": phone,
        "id": "wamid.in2",
        "timestamp": "1700000001",
        "type": "interactive",
        "interactive": {"type": "button_reply", "button_reply": {"id": button_id, "title": title}},
    }


@pytest.fixture
def services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
