"""
Inbound WhatsApp message parsing.

Turns a Cloud API webhook payload into the variables a new run is seeded
with, and into the payload merged into a paused run when it is resumed.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from pydantic import BaseModel, Field

from flow_orchestrator.core.types import PausedExecution

logger = logging.getLogger(__name__)


class InboundMessage(BaseModel):
    """The first message of a WhatsApp webhook delivery."""
    phone: str
    type: str
    body: str = ""
    id: str | None = None
    timestamp: str | None = None
    contact_name: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)

    @property
    def interactive_type(self) -> str | None:
        interactive = self.raw.get("interactive") or {}
        return interactive.get("type")

    @property
    def interactive(self) -> dict[str, Any]:
        return self.raw.get("interactive") or {}


def _parse_flow_response(message: Mapping[str, Any]) -> dict[str, Any] | None:
    """Parse the nfm_reply response_json of a submitted WhatsApp form."""
    nfm = (message.get("interactive") or {}).get("nfm_reply") or {}
    response_json = nfm.get("response_json")
    if not response_json:
        return None
    try:
        data = json.loads(response_json) if isinstance(response_json, str) else response_json
    except (TypeError, ValueError) as e:
        logger.error(f"[Inbound] Failed to parse flow response: {e}")
        return None
    return data if isinstance(data, dict) else None


def _media_variables(kind: str, media: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {
        "media.type": kind,
        "media.id": media.get("id"),
        "media.mime_type": media.get("mime_type"),
        f"{kind}.id": media.get("id"),
    }
    if kind != "audio":
        out["media.caption"] = media.get("caption") or ""
    if kind == "document":
        out["media.filename"] = media.get("filename") or ""
    return out


def message_variables(message: Mapping[str, Any], contact_name: str | None = None) -> dict[str, Any]:
    """Variables that seed a run triggered by this message."""
    message_type = message.get("type", "")
    body = (message.get("text") or {}).get("body") or (
        (message.get("interactive") or {}).get("button_reply") or {}
    ).get("title") or ""

    variables: dict[str, Any] = {
        "userMessage": body,
        "user.phone": message.get("from"),
        "message.type": message_type,
        "message.body": body,
        "message.timestamp": message.get("timestamp"),
        "message.id": message.get("id"),
    }
    if contact_name:
        variables["user.name"] = contact_name

    if message_type == "text":
        variables["text.body"] = (message.get("text") or {}).get("body") or ""
    elif message_type in ("image", "video", "audio", "document") and message.get(message_type):
        variables.update(_media_variables(message_type, message[message_type]))
    elif message_type == "location" and message.get("location"):
        location = message["location"]
        variables["location.latitude"] = location.get("latitude")
        variables["location.longitude"] = location.get("longitude")
        variables["location.name"] = location.get("name") or ""
        variables["location.address"] = location.get("address") or ""
    elif message_type == "interactive":
        interactive = message.get("interactive") or {}
        kind = interactive.get("type")
        if kind == "button_reply":
            reply = interactive.get("button_reply") or {}
            variables["button.id"] = reply.get("id")
            variables["button.title"] = reply.get("title")
        elif kind == "list_reply":
            reply = interactive.get("list_reply") or {}
            variables["list.id"] = reply.get("id")
            variables["list.title"] = reply.get("title")
            variables["list.description"] = reply.get("description") or ""
        elif kind == "nfm_reply":
            flow_data = _parse_flow_response(message)
            if flow_data is not None:
                variables["flow_response"] = flow_data
                for key, value in flow_data.items():
                    variables[f"flow_response.{key}"] = value
    return variables


def parse_whatsapp_payload(payload: Any) -> InboundMessage | None:
    """
    Extract the first message of a webhook delivery.

    Returns None for deliveries without messages (status updates, malformed
    bodies); those are acknowledged and ignored.
    """
    if not isinstance(payload, Mapping):
        return None
    try:
        value = payload["entry"][0]["changes"][0]["value"]
    except (KeyError, IndexError, TypeError):
        logger.info("[Inbound] Ignoring webhook delivery without entry/changes/value")
        return None
    if not isinstance(value, Mapping):
        return None

    messages = value.get("messages") or []
    if not messages or not isinstance(messages[0], Mapping):
        return None
    message = messages[0]
    if not message.get("from"):
        return None

    contact_name = None
    contacts = value.get("contacts") or []
    if contacts and isinstance(contacts[0], Mapping):
        contact_name = (contacts[0].get("profile") or {}).get("name")

    variables = message_variables(message, contact_name)
    return InboundMessage(
        phone=str(message["from"]),
        type=message.get("type", ""),
        body=variables["message.body"],
        id=message.get("id"),
        timestamp=message.get("timestamp"),
        contact_name=contact_name,
        raw=dict(message),
        variables=variables,
    )


def build_resume_payload(
    message: InboundMessage,
    paused: PausedExecution,
    save_as: str | None = None,
) -> dict[str, Any]:
    """
    Variables merged into a paused run when the user replies.

    The reply is stored under the paused node's id as well as under the
    shared `button.*` / `list.*` / `flow_response.*` / `location.*` keys.
    """
    node_id = paused.currentNodeId
    payload: dict[str, Any] = {}

    if message.type == "interactive":
        kind = message.interactive_type
        if kind == "button_reply":
            reply = message.interactive.get("button_reply") or {}
            payload[node_id] = {"type": "button", "id": reply.get("id"), "title": reply.get("title")}
            payload["button.id"] = reply.get("id")
            payload["button.title"] = reply.get("title")
        elif kind == "list_reply":
            reply = message.interactive.get("list_reply") or {}
            payload[node_id] = {
                "type": "list",
                "id": reply.get("id"),
                "title": reply.get("title"),
                "description": reply.get("description") or "",
            }
            payload["list.id"] = reply.get("id")
            payload["list.title"] = reply.get("title")
            payload["list.description"] = reply.get("description") or ""
        elif kind == "nfm_reply":
            flow_data = _parse_flow_response(message.raw)
            if flow_data is not None:
                payload[node_id] = flow_data
                for key, value in flow_data.items():
                    payload[f"{node_id}.{key}"] = value
                payload["flow_response"] = flow_data
                for key, value in flow_data.items():
                    payload[f"flow_response.{key}"] = value
    elif message.type == "location":
        location = {k: v for k, v in message.variables.items() if k.startswith("location.")}
        payload.update(location)
        payload[node_id] = {"type": "location", **{k.split(".", 1)[1]: v for k, v in location.items()}}
    elif message.type == "text":
        payload[node_id] = {"type": "text", "text": message.body}
        payload["message.body"] = message.body
        payload["userMessage"] = message.body
        if save_as:
            payload[save_as] = message.body

    return payload
