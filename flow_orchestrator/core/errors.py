"""Exception types raised inside the flow orchestrator."""

from __future__ import annotations


class FlowOrchestratorError(Exception):
    """Base class for flow orchestrator errors."""


class InvalidFlowDocumentError(FlowOrchestratorError):
    """A flow document could not be parsed into nodes and edges."""


class NodeConfigError(FlowOrchestratorError):
    """A node's config failed validation for its node type."""

    def __init__(self, node_id: str, node_type: str, message: str):
        super().__init__(f"Invalid config for node {node_id} ({node_type}): {message}")
        self.node_id = node_id
        self.node_type = node_type


class TransformError(FlowOrchestratorError):
    """A transform expression failed to compile or evaluate."""
