"""
Flow Engine

Interprets a flow document node by node. A run starts from a trigger
(inbound WhatsApp message or custom webhook) and walks edges until one of:

1. no next node (completed)
2. an interactive node suspends the run (paused, recorded in the
   SuspensionRegistry under the conversation id)
3. a node or edge points at a node that does not exist (halted)
4. the per-invocation step cap is reached (iteration_limit)
5. an unexpected exception escapes a step (failed)

A paused run is resumed by the next inbound reply for the same
conversation: the reply payload is merged over the snapshot taken at the
pause, and the walk continues along the paused node's outgoing edge.

Runs for one conversation are serialized with a per-conversation
asyncio.Lock; different conversations run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Coroutine

from flow_orchestrator.activities import AdapterRegistry
from flow_orchestrator.core.flow_store import ExecutionStore, InMemoryFlowStore
from flow_orchestrator.core.graph import FlowGraph
from flow_orchestrator.core.inbound import InboundMessage, build_resume_payload
from flow_orchestrator.core.node_configs import WaitForReplyConfig, parse_node_config
from flow_orchestrator.core.suspension import SuspensionRegistry
from flow_orchestrator.core.types import (
    ExecutionRecord,
    ExecutionStatus,
    NodeLogEntry,
    NodeType,
    WaitingFor,
)
from flow_orchestrator.core.variable_store import VariableStore
from flow_orchestrator.workflows.node_executor import ExecutionContext, NodeExecutor

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 50


class RunOutcome(str, Enum):
    COMPLETED = "completed"
    PAUSED = "paused"
    HALTED = "halted"
    ITERATION_LIMIT = "iteration_limit"
    FAILED = "failed"
    FLOW_NOT_FOUND = "flow_not_found"


@dataclass
class RunResult:
    outcome: RunOutcome
    flow_id: str
    conversation_id: str
    execution_id: str | None = None
    visited: list[str] = field(default_factory=list)
    error: str | None = None
    variables: dict[str, Any] = field(default_factory=dict)


_RECORD_STATUS = {
    RunOutcome.COMPLETED: ExecutionStatus.COMPLETED,
    RunOutcome.ITERATION_LIMIT: ExecutionStatus.COMPLETED,
    RunOutcome.PAUSED: ExecutionStatus.PAUSED,
    RunOutcome.HALTED: ExecutionStatus.FAILED,
    RunOutcome.FAILED: ExecutionStatus.FAILED,
}


class FlowEngine:
    def __init__(
        self,
        flows: InMemoryFlowStore,
        adapters: AdapterRegistry,
        registry: SuspensionRegistry | None = None,
        executions: ExecutionStore | None = None,
        executor: NodeExecutor | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        tz_name: str = "UTC",
        server_base_url: str = "",
        clock: Callable[[], datetime] | None = None,
        persist_execution: Callable[[dict[str, Any]], Any] | None = None,
    ):
        self.flows = flows
        self.adapters = adapters
        self.registry = registry or SuspensionRegistry()
        self.executions = executions or ExecutionStore()
        self.executor = executor or NodeExecutor()
        self.max_iterations = max_iterations
        self.tz_name = tz_name
        self.server_base_url = server_base_url
        self.clock = clock
        self.persist_execution = persist_execution

        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._tasks: set[asyncio.Task] = set()

    # --- concurrency helpers ---

    def conversation_lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        """Run `coro` in the background; failures are logged, never raised to the caller."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[Flow Engine] Background run {task.get_name()} failed: {exc}", exc_info=exc)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all background runs started with spawn()."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- public entry points ---

    async def run(
        self,
        flow_id: str,
        conversation_id: str,
        variables: dict[str, Any] | None = None,
        start_node: str | None = None,
        execution_id: str | None = None,
    ) -> RunResult:
        """Start a fresh run of `flow_id` for a conversation."""
        async with self.conversation_lock(conversation_id):
            return await self._run_unlocked(flow_id, conversation_id, variables, start_node, execution_id)

    async def resume(self, conversation_id: str, flow_id: str, payload: dict[str, Any] | None = None) -> RunResult | None:
        """Resume the paused run of a conversation; None when nothing is paused for `flow_id`."""
        async with self.conversation_lock(conversation_id):
            return await self._resume_unlocked(conversation_id, flow_id, payload or {})

    async def handle_inbound_message(self, message: InboundMessage) -> RunResult | None:
        """
        Route an inbound WhatsApp message.

        A paused run for the sender is resumed first; otherwise the message
        body is matched against active flows' trigger keywords.
        """
        conversation_id = message.phone
        async with self.conversation_lock(conversation_id):
            paused = self.registry.lookup(conversation_id)
            if paused is not None:
                logger.info(
                    f"[Flow Engine] Found paused execution for {conversation_id} "
                    f"(flow {paused.flowId}, waiting for {paused.waitingFor.value}), resuming"
                )
                save_as = self._wait_save_as(paused.flowId, paused.currentNodeId) \
                    if paused.waitingFor == WaitingFor.MESSAGE else None
                payload = build_resume_payload(message, paused, save_as=save_as)
                result = await self._resume_unlocked(conversation_id, paused.flowId, payload)
                if result is not None:
                    return result
                logger.info(f"[Flow Engine] Resume for {conversation_id} found nothing, matching triggers")

            flow = self.flows.get_flow_by_trigger(message.body)
            if flow is None:
                logger.info(f"[Flow Engine] No flow matched message from {conversation_id}")
                return None

            logger.info(f"[Flow Engine] Message from {conversation_id} triggered flow {flow.name} ({flow.id})")
            return await self._run_unlocked(flow.id, conversation_id, dict(message.variables))

    async def handle_custom_webhook(
        self,
        flow_id: str,
        node_id: str,
        variables: dict[str, Any],
        conversation_id: str,
        execution_id: str | None = None,
    ) -> RunResult:
        """Start a run at `node_id` for a custom webhook call."""
        return await self.run(flow_id, conversation_id, variables, start_node=node_id, execution_id=execution_id)

    # --- internals ---

    def _wait_save_as(self, flow_id: str, node_id: str) -> str | None:
        flow = self.flows.get_flow(flow_id)
        if flow is None:
            return None
        node = FlowGraph.from_config(flow.config).get_node(node_id)
        if node is None or node.type != NodeType.WAIT_FOR_REPLY.value:
            return None
        cfg = parse_node_config(node)
        return cfg.save_as if isinstance(cfg, WaitForReplyConfig) and cfg.save_as else None

    def _new_store(self, variables: dict[str, Any] | None) -> VariableStore:
        return VariableStore(
            variables,
            clock=self.clock,
            tz_name=self.tz_name,
            server_base_url=self.server_base_url,
        )

    @staticmethod
    def _log_extra(ctx: ExecutionContext, node_id: str | None = None) -> dict[str, Any]:
        return {
            "flow_id": ctx.flow_id,
            "execution_id": ctx.execution_id,
            "conversation_id": ctx.conversation_id,
            "node_id": node_id,
        }

    async def _run_unlocked(
        self,
        flow_id: str,
        conversation_id: str,
        variables: dict[str, Any] | None,
        start_node: str | None = None,
        execution_id: str | None = None,
    ) -> RunResult:
        flow = self.flows.get_flow(flow_id)
        if flow is None:
            logger.error(f"[Flow Engine] Flow not found: {flow_id}")
            return RunResult(RunOutcome.FLOW_NOT_FOUND, flow_id, conversation_id, error="Flow not found")

        graph = FlowGraph.from_config(flow.config)
        start = graph.resolve_start_node(start_node)
        record = self.executions.create(flow.id, conversation_id, execution_id)
        ctx = ExecutionContext(
            flow_id=flow.id,
            conversation_id=conversation_id,
            store=self._new_store(variables),
            adapters=self.adapters,
            graph=graph,
            execution_id=record.id,
        )
        logger.info(
            f"[Flow Engine] Starting flow {flow.name} ({flow.id}) at {start} for {conversation_id}",
            extra=self._log_extra(ctx, start),
        )
        return await self._walk(graph, ctx, start)

    async def _resume_unlocked(self, conversation_id: str, flow_id: str, payload: dict[str, Any]) -> RunResult | None:
        paused = self.registry.take(conversation_id, flow_id)
        if paused is None:
            logger.warning(f"[Flow Engine] No paused execution found for {conversation_id} in flow {flow_id}")
            return None

        logger.info(f"[Flow Engine] Resuming {conversation_id} at {paused.currentNodeId} (flow {flow_id})")
        flow = self.flows.get_flow(flow_id)
        if flow is None:
            logger.error(f"[Flow Engine] Flow not found on resume: {flow_id}")
            return RunResult(RunOutcome.FLOW_NOT_FOUND, flow_id, conversation_id, error="Flow not found")

        graph = FlowGraph.from_config(flow.config)
        record = self.executions.get(paused.executionId)
        if record is None:
            record = self.executions.create(flow.id, conversation_id, paused.executionId)
        else:
            self.executions.mark_running(record.id)

        store = self._new_store(paused.variables)
        store.merge(payload)
        ctx = ExecutionContext(
            flow_id=flow.id,
            conversation_id=conversation_id,
            store=store,
            adapters=self.adapters,
            graph=graph,
            execution_id=record.id,
        )

        next_id = graph.next_node_id(paused.currentNodeId)
        if next_id is None:
            logger.info(f"[Flow Engine] No node after {paused.currentNodeId}, flow complete")
        return await self._walk(graph, ctx, next_id)

    async def _walk(self, graph: FlowGraph, ctx: ExecutionContext, start: str | None) -> RunResult:
        visited: list[str] = []
        current = start
        start_time = time.time()

        try:
            while current:
                if len(visited) >= self.max_iterations:
                    logger.warning(
                        f"[Flow Engine] Max iterations ({self.max_iterations}) reached in flow {ctx.flow_id}, stopping",
                        extra=self._log_extra(ctx, current),
                    )
                    return await self._finish(ctx, RunOutcome.ITERATION_LIMIT, visited, "Max iterations reached")

                node = graph.get_node(current)
                if node is None:
                    logger.error(
                        f"[Flow Engine] Node not found: {current} (flow {ctx.flow_id})",
                        extra=self._log_extra(ctx, current),
                    )
                    return await self._finish(ctx, RunOutcome.HALTED, visited, f"Node not found: {current}")

                visited.append(node.id)
                logger.info(
                    f"[Flow Engine] Executing node {node.id} ({node.type})",
                    extra=self._log_extra(ctx, node.id),
                )
                result = await self.executor.execute(node, ctx)
                self.executions.log_node(ctx.execution_id, NodeLogEntry(
                    nodeId=node.id,
                    nodeType=node.type,
                    success=result.success,
                    error=result.error,
                    waitingFor=result.waitingFor.value if result.waitingFor else None,
                    durationMs=int(result.output.get("duration_ms", 0)),
                ))

                if result.waitingFor is not None:
                    self.registry.pause(
                        ctx.conversation_id,
                        ctx.flow_id,
                        node.id,
                        ctx.store.snapshot(),
                        result.waitingFor,
                        ctx.execution_id,
                    )
                    return await self._finish(ctx, RunOutcome.PAUSED, visited)

                if result.stop:
                    break

                current = result.nextNode or graph.next_node_id(node.id)

        except Exception as e:
            logger.error(
                f"[Flow Engine] Flow {ctx.flow_id} failed: {e}",
                exc_info=True,
                extra=self._log_extra(ctx),
            )
            return await self._finish(ctx, RunOutcome.FAILED, visited, str(e))

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"[Flow Engine] Flow {ctx.flow_id} completed: {len(visited)} node(s) in {duration_ms}ms",
            extra=self._log_extra(ctx),
        )
        return await self._finish(ctx, RunOutcome.COMPLETED, visited)

    async def _finish(
        self,
        ctx: ExecutionContext,
        outcome: RunOutcome,
        visited: list[str],
        error: str | None = None,
    ) -> RunResult:
        record = self.executions.finish(ctx.execution_id, _RECORD_STATUS[outcome], error)
        if record is not None and self.persist_execution is not None:
            await self._persist(record)
        return RunResult(
            outcome=outcome,
            flow_id=ctx.flow_id,
            conversation_id=ctx.conversation_id,
            execution_id=ctx.execution_id,
            visited=visited,
            error=error,
            variables=ctx.store.variables,
        )

    async def _persist(self, record: ExecutionRecord) -> None:
        result = await asyncio.to_thread(self.persist_execution, record.model_dump(mode="json"))
        if isinstance(result, dict) and not result.get("success", True):
            logger.warning(f"[Flow Engine] Execution record {record.id} not persisted: {result.get('error')}")
