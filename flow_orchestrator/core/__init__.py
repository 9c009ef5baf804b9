"""Core types and utilities for the flow orchestrator."""

from .types import (
    NodeType,
    WaitingFor,
    FlowStatus,
    ExecutionStatus,
    FlowNode,
    FlowEdge,
    FlowDocument,
    FlowRecord,
    PausedExecution,
    NodeResult,
    ExecutionRecord,
)
from .variable_store import VariableStore, flatten_variables
from .condition_evaluator import evaluate_condition, select_branch
from .graph import FlowGraph, parse_flow_document, normalize_flow_document
from .suspension import SuspensionRegistry

__all__ = [
    "NodeType",
    "WaitingFor",
    "FlowStatus",
    "ExecutionStatus",
    "FlowNode",
    "FlowEdge",
    "FlowDocument",
    "FlowRecord",
    "PausedExecution",
    "NodeResult",
    "ExecutionRecord",
    "VariableStore",
    "flatten_variables",
    "evaluate_condition",
    "select_branch",
    "FlowGraph",
    "parse_flow_document",
    "normalize_flow_document",
    "SuspensionRegistry",
]
