"""
Suspension Registry

In-memory record of runs paused at an interactive node, keyed by
conversation id (the user's phone number for WhatsApp). A conversation has
at most one paused run: pausing again overwrites the older entry. Entries
are only removed by an explicit take/remove; there is no expiry.

The lock guards the dict operations only; no node work ever runs under it.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from flow_orchestrator.core.types import PausedExecution, WaitingFor

logger = logging.getLogger(__name__)


class SuspensionRegistry:
    def __init__(self) -> None:
        self._entries: dict[str, PausedExecution] = {}
        self._lock = threading.Lock()

    def pause(
        self,
        conversation_id: str,
        flow_id: str,
        node_id: str,
        variables: dict[str, Any],
        waiting_for: WaitingFor | str,
        execution_id: str | None = None,
    ) -> PausedExecution:
        entry = PausedExecution(
            flowId=flow_id,
            currentNodeId=node_id,
            conversationId=conversation_id,
            variables=variables,
            waitingFor=WaitingFor(waiting_for),
            executionId=execution_id,
        )
        with self._lock:
            previous = self._entries.get(conversation_id)
            self._entries[conversation_id] = entry

        if previous is not None:
            logger.info(
                f"[Suspension] Replaced paused run of flow {previous.flowId} "
                f"at {previous.currentNodeId} for {conversation_id}"
            )
        logger.info(
            f"[Suspension] Paused flow {flow_id} at {node_id} for {conversation_id}, "
            f"waiting for: {entry.waitingFor.value}"
        )
        return entry

    def lookup(self, conversation_id: str) -> PausedExecution | None:
        with self._lock:
            return self._entries.get(conversation_id)

    def take(self, conversation_id: str, flow_id: str | None = None) -> PausedExecution | None:
        """Atomically remove and return the entry, if it belongs to `flow_id`."""
        with self._lock:
            entry = self._entries.get(conversation_id)
            if entry is None:
                return None
            if flow_id is not None and entry.flowId != flow_id:
                return None
            del self._entries[conversation_id]
            return entry

    def remove(self, conversation_id: str) -> bool:
        with self._lock:
            return self._entries.pop(conversation_id, None) is not None

    def list(self) -> list[PausedExecution]:
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, conversation_id: str) -> bool:
        with self._lock:
            return conversation_id in self._entries
