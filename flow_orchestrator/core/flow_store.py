"""
In-memory flow and execution storage.

Flow CRUD is owned by the flow builder; this store only holds the records
the engine reads (loaded from JSON files at startup or saved by tests) and
the execution bookkeeping produced while running them.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import threading
import time
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from flow_orchestrator.core.graph import normalize_flow_document
from flow_orchestrator.core.node_configs import split_keywords
from flow_orchestrator.core.types import (
    ExecutionRecord,
    ExecutionStatus,
    FlowRecord,
    FlowStatus,
    NodeLogEntry,
    NodeType,
)

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify_flow_name(name: str) -> str:
    """URL-friendly flow name used by custom webhook URLs."""
    return _SLUG_RE.sub("-", name.lower())


def _generate_execution_id() -> str:
    """Generate a 21-char lowercase/digit execution ID."""
    alphabet = "0123456789abcdefghijklmnopqrstuvwxyz"
    return "".join(secrets.choice(alphabet) for _ in range(21))


def flow_trigger_keywords(flow: FlowRecord) -> list[str]:
    """All trigger keywords declared by a flow, in matching order."""
    keywords = split_keywords(flow.triggerKeywords)

    config = flow.config
    if isinstance(config, str):
        try:
            config = json.loads(config)
        except ValueError:
            config = {}
    if isinstance(config, dict):
        trigger = config.get("trigger") or {}
        trigger_config = ((trigger.get("data") or {}).get("config") or {}) if isinstance(trigger, dict) else {}
        if isinstance(trigger_config, dict):
            keywords.extend(split_keywords(trigger_config.get("keywords")))

    for node in normalize_flow_document(config).nodes:
        if node.type == NodeType.ON_MESSAGE.value:
            keywords.extend(split_keywords((node.config or {}).get("keywords")))
    return keywords


class InMemoryFlowStore:
    def __init__(self, flows: list[FlowRecord] | None = None):
        self._flows: dict[str, FlowRecord] = {}
        self._lock = threading.Lock()
        for flow in flows or []:
            self.save_flow(flow)

    def save_flow(self, flow: FlowRecord | dict[str, Any]) -> FlowRecord:
        record = flow if isinstance(flow, FlowRecord) else FlowRecord.model_validate(flow)
        with self._lock:
            self._flows[record.id] = record
        return record

    def get_flow(self, flow_id: str) -> FlowRecord | None:
        with self._lock:
            return self._flows.get(flow_id)

    def list_flows(self) -> list[FlowRecord]:
        with self._lock:
            return list(self._flows.values())

    def get_flow_by_trigger(self, keyword: str) -> FlowRecord | None:
        """
        First active flow with a trigger keyword equal to `keyword` (case-insensitive).

        Keywords come from the flow's `triggerKeywords`, then the editor's
        `config.trigger` block, then every `on_message` node in the document.
        """
        wanted = (keyword or "").strip().lower()
        if not wanted:
            return None
        for flow in self.list_flows():
            if flow.status != FlowStatus.ACTIVE:
                continue
            if any(k.lower() == wanted for k in flow_trigger_keywords(flow)):
                logger.info(f"[Flow Store] Flow {flow.name} matched keyword '{keyword}'")
                return flow
        return None

    def find_by_identifier(self, identifier: str) -> FlowRecord | None:
        """Find a flow by id, then by its URL-friendly name."""
        flow = self.get_flow(identifier)
        if flow is not None:
            return flow
        for candidate in self.list_flows():
            if slugify_flow_name(candidate.name) == identifier:
                return candidate
        return None

    def load_directory(self, directory: str | Path) -> int:
        """Load every *.json file in `directory` (one flow or a list of flows per file)."""
        path = Path(directory)
        if not path.is_dir():
            logger.warning(f"[Flow Store] Flow definitions directory not found: {path}")
            return 0

        loaded = 0
        for file in sorted(path.glob("*.json")):
            try:
                payload = json.loads(file.read_text(encoding="utf-8"))
                items = payload if isinstance(payload, list) else [payload]
                for item in items:
                    self.save_flow(item)
                    loaded += 1
            except (OSError, ValueError, ValidationError) as e:
                logger.error(f"[Flow Store] Failed to load {file.name}: {e}")
        logger.info(f"[Flow Store] Loaded {loaded} flow(s) from {path}")
        return loaded


class ExecutionStore:
    """Execution records for runs started by this process."""

    def __init__(self) -> None:
        self._records: dict[str, ExecutionRecord] = {}
        self._lock = threading.Lock()

    def create(self, flow_id: str, conversation_id: str, execution_id: str | None = None) -> ExecutionRecord:
        record = ExecutionRecord(
            id=execution_id or _generate_execution_id(),
            flowId=flow_id,
            conversationId=conversation_id,
        )
        with self._lock:
            self._records[record.id] = record
        return record

    def get(self, execution_id: str | None) -> ExecutionRecord | None:
        if not execution_id:
            return None
        with self._lock:
            return self._records.get(execution_id)

    def list(self, flow_id: str | None = None) -> list[ExecutionRecord]:
        with self._lock:
            records = list(self._records.values())
        if flow_id:
            records = [r for r in records if r.flowId == flow_id]
        return records

    def mark_running(self, execution_id: str) -> ExecutionRecord | None:
        with self._lock:
            record = self._records.get(execution_id)
            if record is not None:
                record.status = ExecutionStatus.RUNNING
                record.completedAt = None
            return record

    def log_node(self, execution_id: str | None, entry: NodeLogEntry) -> None:
        with self._lock:
            record = self._records.get(execution_id or "")
            if record is not None:
                record.currentNode = entry.nodeId
                record.nodeLog.append(entry)

    def finish(
        self,
        execution_id: str | None,
        status: ExecutionStatus,
        error: str | None = None,
    ) -> ExecutionRecord | None:
        with self._lock:
            record = self._records.get(execution_id or "")
            if record is None:
                return None
            record.status = status
            record.error = error
            if status in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED):
                record.completedAt = time.time()
            return record
