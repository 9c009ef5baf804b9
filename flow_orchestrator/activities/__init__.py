"""Outbound side-effect adapters used by node handlers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from .ai_completion import AiCompletionAdapter
from .database_query import DatabaseAdapter
from .google_sheets import GoogleSheetsAdapter
from .http_request import HttpRequestAdapter
from .send_email import EmailAdapter
from .whatsapp import WhatsAppClient


@dataclass
class AdapterRegistry:
    """The adapters one engine instance talks to."""
    whatsapp: WhatsAppClient
    http: HttpRequestAdapter
    sheets: GoogleSheetsAdapter
    ai: AiCompletionAdapter
    email: EmailAdapter
    database: DatabaseAdapter
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep)

    @classmethod
    def from_config(cls, client: httpx.AsyncClient, cfg: Any) -> "AdapterRegistry":
        timeout = cfg.HTTP_TIMEOUT_SECONDS
        return cls(
            whatsapp=WhatsAppClient(
                client,
                phone_number_id=cfg.WHATSAPP_PHONE_NUMBER_ID,
                access_token=cfg.WHATSAPP_ACCESS_TOKEN,
                api_version=cfg.WHATSAPP_API_VERSION,
                timeout=timeout,
            ),
            http=HttpRequestAdapter(client, timeout=timeout),
            sheets=GoogleSheetsAdapter(client, api_key=cfg.GOOGLE_SHEETS_API_KEY, timeout=timeout),
            ai=AiCompletionAdapter(
                client,
                openai_api_key=cfg.OPENAI_API_KEY,
                anthropic_api_key=cfg.ANTHROPIC_API_KEY,
                timeout=max(timeout, 60.0),
            ),
            email=EmailAdapter(client, api_key=cfg.RESEND_API_KEY, from_email=cfg.FROM_EMAIL, timeout=timeout),
            database=DatabaseAdapter(
                database_url=cfg.DATABASE_URL,
                dapr_host=cfg.DAPR_HOST,
                dapr_http_port=cfg.DAPR_HTTP_PORT,
            ),
        )


__all__ = [
    "AdapterRegistry",
    "AiCompletionAdapter",
    "DatabaseAdapter",
    "EmailAdapter",
    "GoogleSheetsAdapter",
    "HttpRequestAdapter",
    "WhatsAppClient",
]
