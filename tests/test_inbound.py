from __future__ import annotations

import json

from conftest import button_reply, text_message, whatsapp_delivery

from flow_orchestrator.core.inbound import build_resume_payload, parse_whatsapp_payload
from flow_orchestrator.core.types import PausedExecution, WaitingFor


def _paused(node_id: str, waiting_for: WaitingFor) -> PausedExecution:
    return PausedExecution(flowId="flow-1", currentNodeId=node_id, conversationId="15550001111", waitingFor=waiting_for)


def test_text_message_seeds_variables():
    message = parse_whatsapp_payload(whatsapp_delivery(text_message("Hello")))

    assert message.phone == "15550001111"
    assert message.body == "Hello"
    assert message.contact_name == "Ada"
    assert message.variables["user.phone"] == "15550001111"
    assert message.variables["user.name"] == "Ada"
    assert message.variables["userMessage"] == "Hello"
    assert message.variables["message.type"] == "text"
    assert message.variables["text.body"] == "Hello"


def test_status_updates_and_garbage_are_ignored():
    statuses = {"entry": [{"changes": [{"value": {"statuses": [{"id": "wamid.x", "status": "read"}]}}]}]}
    assert parse_whatsapp_payload(statuses) is None
    assert parse_whatsapp_payload({"entry": []}) is None
    assert parse_whatsapp_payload("not a dict") is None


def test_button_reply_body_is_the_title():
    message = parse_whatsapp_payload(whatsapp_delivery(button_reply("yes", "Yes please")))
    assert message.body == "Yes please"
    assert message.variables["button.id"] == "yes"
    assert message.variables["button.title"] == "Yes please"


def test_location_message_variables():
    raw = {
        "from": "15550001111",
        "id": "wamid.loc",
        "type": "location",
        "location": {"latitude": 12.97, "longitude": 77.59, "name": "Office"},
    }
    message = parse_whatsapp_payload(whatsapp_delivery(raw))
    assert message.variables["location.latitude"] == 12.97
    assert message.variables["location.address"] == ""

    payload = build_resume_payload(message, _paused("ask-loc", WaitingFor.LOCATION))
    assert payload["location.longitude"] == 77.59
    assert payload["ask-loc"]["type"] == "location"
    assert payload["ask-loc"]["name"] == "Office"


def test_button_resume_payload_keys_reply_under_node_id():
    message = parse_whatsapp_payload(whatsapp_delivery(button_reply("yes", "Yes")))
    payload = build_resume_payload(message, _paused("ask", WaitingFor.BUTTON))

    assert payload["ask"] == {"type": "button", "id": "yes", "title": "Yes"}
    assert payload["button.id"] == "yes"
    assert payload["button.title"] == "Yes"


def test_list_resume_payload():
    raw = {
        "from": "15550001111",
        "id": "wamid.list",
        "type": "interactive",
        "interactive": {"type": "list_reply", "list_reply": {"id": "row_1", "title": "Medium"}},
    }
    message = parse_whatsapp_payload(whatsapp_delivery(raw))
    payload = build_resume_payload(message, _paused("menu", WaitingFor.LIST))

    assert payload["menu"]["id"] == "row_1"
    assert payload["list.title"] == "Medium"
    assert payload["list.description"] == ""


def test_form_reply_populates_node_and_legacy_alias():
    raw = {
        "from": "15550001111",
        "id": "wamid.nfm",
        "type": "interactive",
        "interactive": {
            "type": "nfm_reply",
            "nfm_reply": {"response_json": json.dumps({"email": "ada@example.com", "size": "M"}), "name": "flow"},
        },
    }
    message = parse_whatsapp_payload(whatsapp_delivery(raw))
    payload = build_resume_payload(message, _paused("signup", WaitingFor.FLOW))

    assert payload["signup"] == {"email": "ada@example.com", "size": "M"}
    assert payload["signup.email"] == "ada@example.com"
    assert payload["flow_response"] == {"email": "ada@example.com", "size": "M"}
    assert payload["flow_response.size"] == "M"


def test_text_reply_saves_under_save_as():
    message = parse_whatsapp_payload(whatsapp_delivery(text_message("Ada Lovelace")))
    payload = build_resume_payload(message, _paused("ask-name", WaitingFor.MESSAGE), save_as="customer_name")

    assert payload["ask-name"] == {"type": "text", "text": "Ada Lovelace"}
    assert payload["userMessage"] == "Ada Lovelace"
    assert payload["customer_name"] == "Ada Lovelace"
