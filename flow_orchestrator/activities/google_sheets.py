"""
Google Sheets Adapter

Appends or overwrites rows through the Sheets v4 REST API using an API key.
When no API key is configured the write is skipped and reported as a
success, so flows that log to a sheet still run in development.
"""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"


class GoogleSheetsAdapter:
    def __init__(self, client: httpx.AsyncClient, api_key: str = "", timeout: float = 30.0):
        self._client = client
        self.api_key = api_key
        self.timeout = timeout

    async def write(
        self,
        operation: str,
        spreadsheet_id: str,
        sheet_name: str,
        values: list[list[Any]],
        cell_range: str = "",
    ) -> dict[str, Any]:
        """Run an `append` or `update` operation; unknown operations are a no-op success."""
        if not spreadsheet_id:
            logger.error("[Google Sheets] Spreadsheet ID required")
            return {"success": False, "error": "Spreadsheet ID required", "duration_ms": 0}

        if operation == "append":
            target = f"{sheet_name}!A1"
            url = f"{SHEETS_API_BASE}/{spreadsheet_id}/values/{quote(target, safe='!:')}:append"
            method = "POST"
        elif operation == "update":
            target = cell_range or f"{sheet_name}!A1"
            url = f"{SHEETS_API_BASE}/{spreadsheet_id}/values/{quote(target, safe='!:')}"
            method = "PUT"
        else:
            logger.warning(f"[Google Sheets] Unknown operation: {operation}")
            return {"success": True, "skipped": True, "duration_ms": 0}

        if not self.api_key:
            logger.warning(f"[Google Sheets] API key not configured - skipping {operation}")
            return {"success": True, "skipped": True, "duration_ms": 0}

        start_time = time.time()
        try:
            response = await self._client.request(
                method,
                url,
                params={"valueInputOption": "RAW", "key": self.api_key},
                json={"values": values},
                timeout=self.timeout,
            )
            duration_ms = int((time.time() - start_time) * 1000)
            if response.status_code >= 400:
                logger.error(f"[Google Sheets] API error ({response.status_code}): {response.text[:200]}")
                return {
                    "success": False,
                    "error": f"Google Sheets API returned HTTP {response.status_code}",
                    "duration_ms": duration_ms,
                }

            logger.info(f"[Google Sheets] {operation} to {spreadsheet_id} succeeded ({duration_ms}ms)")
            return {"success": True, "data": response.json(), "duration_ms": duration_ms}

        except (httpx.HTTPError, ValueError) as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(f"[Google Sheets] {operation} failed: {e}")
            return {"success": False, "error": str(e), "duration_ms": duration_ms}
