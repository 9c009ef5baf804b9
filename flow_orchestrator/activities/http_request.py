"""
HTTP Request Adapter

Outbound HTTP used by `http`/`api` nodes and outbound `webhook` nodes.
Non-2xx responses are returned as data, not failures; only transport
errors (DNS, connect, timeout) produce `success=False`.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_NO_BODY_METHODS = frozenset({"GET", "HEAD"})


def apply_auth(
    headers: dict[str, str],
    auth_type: str,
    bearer_token: str = "",
    basic_username: str = "",
    basic_password: str = "",
    api_key_header: str = "",
    api_key_value: str = "",
) -> dict[str, str]:
    """Add the auth header for `auth_type` (none/bearer/basic/api_key)."""
    out = dict(headers)
    auth_type = (auth_type or "none").lower()
    if auth_type == "bearer" and bearer_token:
        out["Authorization"] = f"Bearer {bearer_token}"
    elif auth_type == "basic" and basic_username and basic_password:
        token = base64.b64encode(f"{basic_username}:{basic_password}".encode()).decode()
        out["Authorization"] = f"Basic {token}"
    elif auth_type == "api_key" and api_key_header and api_key_value:
        out[api_key_header] = api_key_value
    return out


def _has_header(headers: dict[str, str], name: str) -> bool:
    return any(k.lower() == name.lower() for k in headers)


def _parse_body(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


class HttpRequestAdapter:
    def __init__(self, client: httpx.AsyncClient, timeout: float = 30.0):
        self._client = client
        self.timeout = timeout

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        body: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Perform one request.

        Returns:
            {"success", "status", "statusText", "data", "headers", "error", "duration_ms"}
        """
        method = (method or "GET").upper()
        headers = dict(headers or {})
        content: str | None = None
        if body and method not in _NO_BODY_METHODS:
            content = body
            if not _has_header(headers, "Content-Type"):
                headers["Content-Type"] = "application/json"

        if not url:
            return {"success": False, "error": "URL is required", "duration_ms": 0}

        start_time = time.time()
        try:
            response = await self._client.request(
                method,
                url,
                headers=headers,
                content=content,
                timeout=timeout or self.timeout,
            )
            duration_ms = int((time.time() - start_time) * 1000)
            data = _parse_body(response.text)

            logger.info(f"[HTTP Request] {method} {url} -> {response.status_code} ({duration_ms}ms)")
            return {
                "success": True,
                "status": response.status_code,
                "statusText": response.reason_phrase,
                "data": data,
                "headers": dict(response.headers),
                "error": None,
                "duration_ms": duration_ms,
            }

        except httpx.TimeoutException:
            duration_ms = int((time.time() - start_time) * 1000)
            error_msg = f"Request timed out after {timeout or self.timeout} seconds"
            logger.error(f"[HTTP Request] {method} {url}: {error_msg}")
            return {"success": False, "error": error_msg, "duration_ms": duration_ms}

        except httpx.HTTPError as e:
            duration_ms = int((time.time() - start_time) * 1000)
            error_msg = f"Request failed: {e}"
            logger.error(f"[HTTP Request] {method} {url}: {error_msg}")
            return {"success": False, "error": error_msg, "duration_ms": duration_ms}
