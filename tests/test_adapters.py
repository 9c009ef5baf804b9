from __future__ import annotations

import asyncio
import base64
import json

import httpx
import pytest

from conftest import FakeServices

from flow_orchestrator.activities.ai_completion import AiCompletionAdapter
from flow_orchestrator.activities.database_query import build_statement
from flow_orchestrator.activities.google_sheets import GoogleSheetsAdapter
from flow_orchestrator.activities.http_request import HttpRequestAdapter, apply_auth
from flow_orchestrator.activities.persist_state import execution_state_key
from flow_orchestrator.activities.send_email import EmailAdapter
from flow_orchestrator.activities.whatsapp import (
    WhatsAppClient,
    build_cta_payload,
    build_location_payload,
    build_media_payload,
    build_template_payload,
)


def _client(services: FakeServices) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(services))


# --- WhatsApp ---

def test_media_payload_maps_type_and_drops_caption_for_audio():
    assert build_media_payload("1", "Image", "https://x/img.png", "Look") == {
        "messaging_product": "whatsapp",
        "to": "1",
        "type": "image",
        "image": {"link": "https://x/img.png", "caption": "Look"},
    }
    audio = build_media_payload("1", "audio", "https://x/a.mp3", "ignored")
    assert audio["audio"] == {"link": "https://x/a.mp3"}
    doc = build_media_payload("1", "document", "https://x/f.pdf", filename="f.pdf")
    assert doc["document"]["filename"] == "f.pdf"


def test_cta_template_and_location_payloads():
    cta = build_cta_payload("1", "Visit us", "Open", "https://example.com", footer_text="Thanks")
    assert cta["interactive"]["action"] == {
        "name": "cta_url",
        "parameters": {"display_text": "Open", "url": "https://example.com"},
    }
    assert cta["interactive"]["footer"] == {"text": "Thanks"}

    template = build_template_payload("1", "order_update", "en_US", [])
    assert template["template"] == {"name": "order_update", "language": {"code": "en_US"}}

    location = build_location_payload("1", 12.5, 77.25, "Office")
    assert location["location"]["latitude"] == 12.5


def test_whatsapp_client_without_credentials_does_not_call_out(services):
    client = WhatsAppClient(_client(services), phone_number_id="", access_token="")
    result = asyncio.run(client.send_text("1", "hi"))
    assert result["success"] is False
    assert services.requests == []


def test_whatsapp_client_maps_timeouts(services):
    def slow(request):
        raise httpx.ReadTimeout("slow", request=request)

    services.route("graph.facebook.com", slow)
    client = WhatsAppClient(_client(services), phone_number_id="99", access_token="t", api_version="v19.0")
    result = asyncio.run(client.send_text("1", "hi"))

    assert result["success"] is False
    assert result["error"] == "WhatsApp API request timed out"
    assert str(services.requests[0].url) == "https://graph.facebook.com/v19.0/99/messages"


# --- HTTP ---

def test_apply_auth_variants():
    assert apply_auth({}, "bearer", bearer_token="abc") == {"Authorization": "Bearer abc"}
    basic = apply_auth({}, "basic", basic_username="u", basic_password="p")
    assert basic["Authorization"] == "Basic " + base64.b64encode(b"u:p").decode()
    assert apply_auth({}, "api_key", api_key_header="X-Key", api_key_value="k") == {"X-Key": "k"}
    assert apply_auth({"A": "1"}, "none") == {"A": "1"}
    assert apply_auth({}, "bearer") == {}


def test_http_adapter_defaults_json_content_type_and_skips_get_body(services):
    adapter = HttpRequestAdapter(_client(services))

    async def scenario():
        await adapter.request("POST", "https://api.example.com/a", {}, '{"a": 1}')
        await adapter.request("POST", "https://api.example.com/b", {"content-type": "text/plain"}, "raw")
        await adapter.request("GET", "https://api.example.com/c", {}, '{"ignored": true}')

    asyncio.run(scenario())
    post_json, post_text, get = services.requests

    assert post_json.headers["Content-Type"] == "application/json"
    assert post_text.headers["Content-Type"] == "text/plain"
    assert get.content == b""


def test_http_adapter_returns_text_when_body_is_not_json(services):
    services.route("api.example.com", lambda request: httpx.Response(502, text="Bad gateway"))
    adapter = HttpRequestAdapter(_client(services))
    result = asyncio.run(adapter.request("GET", "https://api.example.com/x"))

    assert result["success"] is True
    assert result["status"] == 502
    assert result["data"] == "Bad gateway"


def test_http_adapter_requires_url(services):
    result = asyncio.run(HttpRequestAdapter(_client(services)).request("GET", ""))
    assert result == {"success": False, "error": "URL is required", "duration_ms": 0}


# --- Google Sheets ---

def test_sheets_append_posts_values(services):
    adapter = GoogleSheetsAdapter(_client(services), api_key="sheet-key")
    result = asyncio.run(adapter.write("append", "sheet-1", "Leads", [["Ada", "42"]]))

    assert result["success"] is True
    request = services.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/v4/spreadsheets/sheet-1/values/Leads!A1:append"
    assert request.url.params["key"] == "sheet-key"
    assert request.url.params["valueInputOption"] == "RAW"
    assert json.loads(request.content) == {"values": [["Ada", "42"]]}


def test_sheets_update_uses_range_and_unknown_operation_is_skipped(services):
    adapter = GoogleSheetsAdapter(_client(services), api_key="sheet-key")

    async def scenario():
        return (
            await adapter.write("update", "sheet-1", "Leads", [["x"]], "Leads!B2"),
            await adapter.write("clear", "sheet-1", "Leads", []),
        )

    updated, skipped = asyncio.run(scenario())
    assert updated["success"] is True
    assert services.requests[0].method == "PUT"
    assert skipped == {"success": True, "skipped": True, "duration_ms": 0}
    assert len(services.requests) == 1


# --- AI ---

def test_openai_completion(services):
    def openai(request):
        body = json.loads(request.content)
        assert body["messages"][0] == {"role": "system", "content": "Be brief"}
        assert request.headers["Authorization"] == "Bearer sk-test"
        return httpx.Response(200, json={
            "choices": [{"message": {"content": "Hello!"}}],
            "usage": {"total_tokens": 12},
        })

    services.route("api.openai.com", openai)
    adapter = AiCompletionAdapter(_client(services), openai_api_key="sk-test")
    result = asyncio.run(adapter.complete("openai", "Say hi", system_prompt="Be brief"))

    assert result["success"] is True
    assert result["response"] == "Hello!"
    assert result["tokens_used"] == 12
    assert result["model"] == "gpt-3.5-turbo"


def test_anthropic_completion_and_api_error(services):
    calls = {"n": 0}

    def anthropic(request):
        calls["n"] += 1
        assert request.headers["x-api-key"] == "ak-test"
        if calls["n"] == 1:
            return httpx.Response(200, json={
                "content": [{"type": "text", "text": "Hi there"}],
                "usage": {"input_tokens": 3, "output_tokens": 4},
            })
        return httpx.Response(429, json={"error": {"message": "rate limited"}})

    services.route("api.anthropic.com", anthropic)
    adapter = AiCompletionAdapter(_client(services), anthropic_api_key="ak-test")

    async def scenario():
        return (
            await adapter.complete("Anthropic", "hello", model="claude-test"),
            await adapter.complete("anthropic", "hello again"),
        )

    ok, limited = asyncio.run(scenario())
    assert ok["response"] == "Hi there"
    assert ok["tokens_used"] == 7
    assert limited == {"success": False, "error": "rate limited", "duration_ms": limited["duration_ms"]}


def test_ai_rejects_unknown_provider(services):
    adapter = AiCompletionAdapter(_client(services), openai_api_key="k")
    result = asyncio.run(adapter.complete("llama", "hi"))
    assert result["success"] is False
    assert "Invalid provider" in result["error"]


# --- Email ---

def test_email_sends_through_resend(services):
    services.route("api.resend.com", lambda request: httpx.Response(200, json={"id": "email-1"}))
    adapter = EmailAdapter(_client(services), api_key="re-key", from_email="flows@example.com")
    result = asyncio.run(adapter.send("ada@example.com", "Hi", "<b>Hello</b>", from_name="Flows"))

    assert result["success"] is True
    assert result["message_id"] == "email-1"
    body = json.loads(services.requests[0].content)
    assert body == {"from": "Flows <flows@example.com>", "to": ["ada@example.com"], "subject": "Hi", "html": "<b>Hello</b>"}


def test_email_validates_address(services):
    adapter = EmailAdapter(_client(services), api_key="re-key")
    result = asyncio.run(adapter.send("not-an-email", "Hi", "x"))
    assert result["success"] is False
    assert services.requests == []


# --- Database ---

def test_build_statement_parameters():
    _, params = build_statement("select", "users", {"status": "active", "age": {"$gte": 18, "$lt": 65}})
    assert params == ["active", 18, 65]

    _, params = build_statement("insert", "users", {"name": "Ada", "age": 36})
    assert params == ["Ada", 36]

    _, params = build_statement("update", "users", {"id": 5, "name": "Grace"})
    assert params == ["Grace", 5]

    _, params = build_statement("delete", "users", {"id": 5})
    assert params == [5]


@pytest.mark.parametrize(
    "operation,table,filters",
    [
        ("select", "users; drop table users", {}),
        ("select", "users", {"age": {"$regex": "x"}}),
        ("update", "users", {"name": "x"}),
        ("delete", "users", {}),
        ("truncate", "users", {}),
    ],
)
def test_build_statement_rejects_bad_input(operation, table, filters):
    with pytest.raises(ValueError):
        build_statement(operation, table, filters)


def test_execution_state_key():
    assert execution_state_key("abc") == "flow-execution:abc"
