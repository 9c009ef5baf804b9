"""
WhatsApp Cloud API Adapter

Sends outbound messages through the Graph API `/{phone_number_id}/messages`
endpoint. Every send returns a result dict instead of raising:

    {"success": bool, "data": <api response>, "error": str | None, "duration_ms": int}

Payload builders are plain functions so the exact wire shape can be checked
without a network.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"

MAX_REPLY_BUTTONS = 3
MAX_LIST_ROWS = 10

MEDIA_TYPES = {
    "image": "image",
    "video": "video",
    "audio": "audio",
    "document": "document",
}


def _interactive_envelope(to: str, interactive: dict[str, Any]) -> dict[str, Any]:
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
        "type": "interactive",
        "interactive": interactive,
    }


def _add_header_footer(interactive: dict[str, Any], header_text: str = "", footer_text: str = "") -> None:
    if header_text:
        interactive["header"] = {"type": "text", "text": header_text}
    if footer_text:
        interactive["footer"] = {"text": footer_text}


def build_text_payload(to: str, text: str) -> dict[str, Any]:
    return {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "text",
        "text": {"body": text},
    }


def build_media_payload(to: str, media_type: str, url: str, caption: str = "", filename: str = "") -> dict[str, Any]:
    kind = MEDIA_TYPES.get((media_type or "").lower(), "image")
    media: dict[str, Any] = {"link": url}
    if caption and kind in ("image", "video", "document"):
        media["caption"] = caption
    if filename and kind == "document":
        media["filename"] = filename
    return {"messaging_product": "whatsapp", "to": to, "type": kind, kind: media}


def build_button_payload(
    to: str,
    body_text: str,
    buttons: list[dict[str, Any]],
    header_text: str = "",
    footer_text: str = "",
) -> dict[str, Any]:
    interactive: dict[str, Any] = {
        "type": "button",
        "body": {"text": body_text},
        "action": {
            "buttons": [
                {
                    "type": "reply",
                    "reply": {
                        "id": btn.get("id") or f"btn_{idx}",
                        "title": btn.get("title") or btn.get("text") or f"Button {idx + 1}",
                    },
                }
                for idx, btn in enumerate(buttons[:MAX_REPLY_BUTTONS])
            ]
        },
    }
    _add_header_footer(interactive, header_text, footer_text)
    return _interactive_envelope(to, interactive)


def build_list_payload(
    to: str,
    body_text: str,
    button_text: str,
    sections: list[dict[str, Any]],
    header_text: str = "",
    footer_text: str = "",
) -> dict[str, Any]:
    interactive: dict[str, Any] = {
        "type": "list",
        "body": {"text": body_text},
        "action": {
            "button": button_text or "View Options",
            "sections": [
                {
                    "title": section.get("title") or "Options",
                    "rows": [
                        {
                            "id": row.get("id") or f"row_{idx}",
                            "title": row.get("title") or row.get("text") or f"Option {idx + 1}",
                            "description": row.get("description") or "",
                        }
                        for idx, row in enumerate((section.get("rows") or section.get("items") or [])[:MAX_LIST_ROWS])
                    ],
                }
                for section in sections
            ],
        },
    }
    _add_header_footer(interactive, header_text, footer_text)
    return _interactive_envelope(to, interactive)


def build_cta_payload(
    to: str,
    body_text: str,
    display_text: str,
    url: str,
    header_text: str = "",
    footer_text: str = "",
) -> dict[str, Any]:
    interactive: dict[str, Any] = {
        "type": "cta_url",
        "body": {"text": body_text},
        "action": {
            "name": "cta_url",
            "parameters": {"display_text": display_text, "url": url},
        },
    }
    _add_header_footer(interactive, header_text, footer_text)
    return _interactive_envelope(to, interactive)


def build_template_payload(to: str, name: str, language_code: str, components: list[dict[str, Any]]) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
        "type": "template",
        "template": {"name": name, "language": {"code": language_code}},
    }
    if components:
        payload["template"]["components"] = components
    return payload


def build_location_payload(to: str, latitude: float, longitude: float, name: str = "", address: str = "") -> dict[str, Any]:
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
        "type": "location",
        "location": {
            "latitude": latitude,
            "longitude": longitude,
            "name": name,
            "address": address,
        },
    }


def build_location_request_payload(to: str, body_text: str) -> dict[str, Any]:
    return _interactive_envelope(to, {
        "type": "location_request_message",
        "body": {"text": body_text},
        "action": {"name": "send_location"},
    })


def build_flow_payload(
    to: str,
    header: str,
    body: str,
    footer: str,
    flow_id: str,
    flow_token: str,
    flow_cta: str,
    screen: str,
    flow_data: Any,
) -> dict[str, Any]:
    interactive: dict[str, Any] = {
        "type": "flow",
        "header": {"type": "text", "text": header},
        "body": {"text": body},
        "action": {
            "name": "flow",
            "parameters": {
                "flow_message_version": "3",
                "flow_token": flow_token,
                "flow_id": flow_id,
                "flow_cta": flow_cta,
                "flow_action": "navigate",
                "flow_action_payload": {"screen": screen, "data": flow_data or {}},
            },
        },
    }
    if footer:
        interactive["footer"] = {"text": footer}
    return _interactive_envelope(to, interactive)


class WhatsAppClient:
    """Async sender bound to one WhatsApp Business phone number."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        phone_number_id: str,
        access_token: str,
        api_version: str = "v17.0",
        timeout: float = 30.0,
    ):
        self._client = client
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    @property
    def messages_url(self) -> str:
        return f"{GRAPH_API_BASE}/{self.api_version}/{self.phone_number_id}/messages"

    async def send(self, payload: dict[str, Any], kind: str = "message") -> dict[str, Any]:
        """POST a prepared payload; never raises."""
        if not self.configured:
            logger.error("[WhatsApp] Credentials not configured")
            return {"success": False, "error": "WhatsApp credentials not configured", "duration_ms": 0}

        start_time = time.time()
        try:
            response = await self._client.post(
                self.messages_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=self.timeout,
            )
            duration_ms = int((time.time() - start_time) * 1000)
            try:
                data = response.json()
            except ValueError:
                data = response.text

            if response.status_code >= 400:
                logger.error(f"[WhatsApp] {kind} rejected ({response.status_code}): {data}")
                return {
                    "success": False,
                    "data": data,
                    "error": f"WhatsApp API returned HTTP {response.status_code}",
                    "duration_ms": duration_ms,
                }

            logger.info(f"[WhatsApp] {kind} sent to {payload.get('to')} ({duration_ms}ms)")
            return {"success": True, "data": data, "error": None, "duration_ms": duration_ms}

        except httpx.TimeoutException:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(f"[WhatsApp] {kind} timed out after {self.timeout}s")
            return {"success": False, "error": "WhatsApp API request timed out", "duration_ms": duration_ms}

        except httpx.HTTPError as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(f"[WhatsApp] Failed to send {kind}: {e}")
            return {"success": False, "error": f"WhatsApp API request failed: {e}", "duration_ms": duration_ms}

    async def send_text(self, to: str, text: str) -> dict[str, Any]:
        return await self.send(build_text_payload(to, text), "text")

    async def send_media(self, to: str, media_type: str, url: str, caption: str = "", filename: str = "") -> dict[str, Any]:
        return await self.send(build_media_payload(to, media_type, url, caption, filename), "media")

    async def send_buttons(self, to: str, body_text: str, buttons: list[dict[str, Any]],
                           header_text: str = "", footer_text: str = "") -> dict[str, Any]:
        return await self.send(build_button_payload(to, body_text, buttons, header_text, footer_text), "buttons")

    async def send_list(self, to: str, body_text: str, button_text: str, sections: list[dict[str, Any]],
                        header_text: str = "", footer_text: str = "") -> dict[str, Any]:
        payload = build_list_payload(to, body_text, button_text, sections, header_text, footer_text)
        return await self.send(payload, "list")

    async def send_cta(self, to: str, body_text: str, display_text: str, url: str,
                       header_text: str = "", footer_text: str = "") -> dict[str, Any]:
        payload = build_cta_payload(to, body_text, display_text, url, header_text, footer_text)
        return await self.send(payload, "cta_url")

    async def send_template(self, to: str, name: str, language_code: str,
                            components: list[dict[str, Any]]) -> dict[str, Any]:
        return await self.send(build_template_payload(to, name, language_code, components), "template")

    async def send_location(self, to: str, latitude: float, longitude: float,
                            name: str = "", address: str = "") -> dict[str, Any]:
        return await self.send(build_location_payload(to, latitude, longitude, name, address), "location")

    async def request_location(self, to: str, body_text: str) -> dict[str, Any]:
        return await self.send(build_location_request_payload(to, body_text), "location_request")

    async def send_flow(self, to: str, header: str, body: str, footer: str, flow_id: str, flow_token: str,
                        flow_cta: str, screen: str, flow_data: Any) -> dict[str, Any]:
        payload = build_flow_payload(to, header, body, footer, flow_id, flow_token, flow_cta, screen, flow_data)
        return await self.send(payload, "flow")
