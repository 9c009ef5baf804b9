"""
Persist State Activity

Mirrors finished or paused execution records into the Dapr state store so
they survive a restart of this process for auditing. Enabled with
PERSIST_EXECUTIONS=true; the in-memory stores stay authoritative.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from dapr.clients import DaprClient

logger = logging.getLogger(__name__)


def execution_state_key(execution_id: str) -> str:
    return f"flow-execution:{execution_id}"


def persist_execution_record(record: dict[str, Any], store_name: str) -> dict[str, Any]:
    """
    Save an execution record to the Dapr state store.

    Args:
        record: ExecutionRecord dumped to a JSON-compatible dict
        store_name: Dapr state store component name

    Returns:
        Dict with success status and key
    """
    key = execution_state_key(record.get("id", ""))

    try:
        with DaprClient() as client:
            client.save_state(
                store_name=store_name,
                key=key,
                value=json.dumps(record, default=str),
            )

        logger.info(f"[Persist State] Saved execution record: {key}")
        return {"success": True, "key": key}

    except Exception as e:
        logger.error(f"[Persist State] Failed to save execution record {key}: {e}")
        return {
            "success": False,
            "key": key,
            "error": f"Failed to persist state: {e}",
        }
