"""
Type definitions for the flow orchestrator.

These mirror the flow documents saved by the visual flow builder. Node
`config` stays an open mapping here; per-type validation lives in
`core.node_configs`.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class NodeType(str, Enum):
    """Node types understood by the flow engine."""
    ON_MESSAGE = "on_message"
    CATCH_WEBHOOK = "catch_webhook"
    SEND_MESSAGE = "send_message"
    MESSAGE = "message"
    SEND_MEDIA = "send_media"
    SEND_BUTTON = "send_button"
    BUTTON_MESSAGE = "button_message"
    SEND_LIST = "send_list"
    LIST_MESSAGE = "list_message"
    SEND_CTA = "send_cta"
    CTA_URL = "cta_url"
    SEND_TEMPLATE = "send_template"
    TEMPLATE = "template"
    SEND_LOCATION = "send_location"
    REQUEST_LOCATION = "request_location"
    SEND_FLOW = "send_flow"
    WAIT_FOR_REPLY = "wait_for_reply"
    DELAY = "delay"
    HTTP = "http"
    API = "api"
    WEBHOOK = "webhook"
    CONDITIONAL = "conditional"
    GOOGLE_SHEETS = "google_sheets"
    AI_COMPLETION = "ai_completion"
    EMAIL = "email"
    DATABASE_QUERY = "database_query"
    TRANSFORM = "transform"
    END = "end"


TRIGGER_NODE_TYPES = frozenset({NodeType.ON_MESSAGE.value, NodeType.CATCH_WEBHOOK.value})


class WaitingFor(str, Enum):
    """What a paused execution is waiting for."""
    BUTTON = "button"
    LIST = "list"
    FLOW = "flow"
    LOCATION = "location"
    MESSAGE = "message"
    DELAY = "delay"


class FlowStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class FlowNode(BaseModel):
    """Serialized node format for flow documents."""
    id: str
    type: str
    config: dict[str, Any] = Field(default_factory=dict)
    position: dict[str, float] = Field(default_factory=lambda: {"x": 0, "y": 0})
    label: str = ""

    class Config:
        extra = "allow"


class FlowEdge(BaseModel):
    """Serialized edge format for flow documents."""
    id: str
    source: str
    target: str
    sourceHandle: str | None = None
    targetHandle: str | None = None

    class Config:
        extra = "allow"


class FlowDocument(BaseModel):
    """Canonical node/edge graph executed by the engine."""
    nodes: list[FlowNode] = Field(default_factory=list)
    edges: list[FlowEdge] = Field(default_factory=list)
    startNode: str | None = None


class FlowRecord(BaseModel):
    """A stored flow, as owned by the flow CRUD layer."""
    id: str
    name: str
    userId: str | None = None
    description: str | None = None
    status: FlowStatus = FlowStatus.DRAFT
    triggerKeywords: list[str] = Field(default_factory=list)
    config: Any = None

    class Config:
        extra = "allow"


class PausedExecution(BaseModel):
    """Snapshot of a run suspended at an interactive node."""
    flowId: str
    currentNodeId: str
    conversationId: str
    variables: dict[str, Any] = Field(default_factory=dict)
    waitingFor: WaitingFor
    executionId: str | None = None
    pausedAt: float = Field(default_factory=time.time)


class NodeResult(BaseModel):
    """Outcome of executing a single node."""
    success: bool = True
    nextNode: str | None = None
    output: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    waitingFor: WaitingFor | None = None
    stop: bool = False


class NodeLogEntry(BaseModel):
    nodeId: str
    nodeType: str
    success: bool
    error: str | None = None
    waitingFor: str | None = None
    durationMs: int = 0


class ExecutionRecord(BaseModel):
    """Run bookkeeping mirrored from the flow_executions table."""
    id: str
    flowId: str
    conversationId: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    currentNode: str | None = None
    startedAt: float = Field(default_factory=time.time)
    completedAt: float | None = None
    error: str | None = None
    nodeLog: list[NodeLogEntry] = Field(default_factory=list)
