"""Flow interpretation: node handlers and the run loop."""

from .node_executor import ExecutionContext, NodeExecutor
from .flow_engine import FlowEngine, RunOutcome, RunResult

__all__ = [
    "ExecutionContext",
    "NodeExecutor",
    "FlowEngine",
    "RunOutcome",
    "RunResult",
]
