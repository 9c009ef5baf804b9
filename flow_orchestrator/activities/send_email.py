"""
Send Email Adapter

Sends mail through the Resend API. Without RESEND_API_KEY the send is
simulated and reported as a success with `simulated: True`.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

RESEND_EMAILS_URL = "https://api.resend.com/emails"

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class EmailAdapter:
    def __init__(self, client: httpx.AsyncClient, api_key: str = "", from_email: str = "", timeout: float = 30.0):
        self._client = client
        self.api_key = api_key
        self.from_email = from_email or "noreply@example.com"
        self.timeout = timeout

    async def send(self, to: str, subject: str, body: str, html: bool = True, from_name: str = "") -> dict[str, Any]:
        if not to or not subject or not body:
            return {"success": False, "error": "To, subject, and body are required", "duration_ms": 0}
        if not EMAIL_REGEX.match(to):
            return {"success": False, "error": f"Invalid email address: {to}", "duration_ms": 0}

        if not self.api_key:
            logger.warning("[Send Email] RESEND_API_KEY not configured, simulating email send")
            return {
                "success": True,
                "simulated": True,
                "message_id": f"sim_{int(time.time() * 1000)}",
                "duration_ms": 0,
            }

        from_address = f"{from_name} <{self.from_email}>" if from_name else self.from_email
        payload: dict[str, Any] = {"from": from_address, "to": [to], "subject": subject}
        payload["html" if html else "text"] = body

        start_time = time.time()
        try:
            response = await self._client.post(
                RESEND_EMAILS_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            duration_ms = int((time.time() - start_time) * 1000)
            data = response.json()
            if response.status_code >= 400:
                message = data.get("message") if isinstance(data, dict) else None
                logger.error(f"[Send Email] Resend rejected email to {to}: {message}")
                return {"success": False, "error": message or "Email sending failed", "duration_ms": duration_ms}

            logger.info(f"[Send Email] Sent to {to} ({duration_ms}ms)")
            return {"success": True, "message_id": data.get("id"), "duration_ms": duration_ms}

        except (httpx.HTTPError, ValueError) as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(f"[Send Email] Failed to send to {to}: {e}")
            return {"success": False, "error": str(e), "duration_ms": duration_ms}
