"""
Flow Orchestrator Service

A Python service that executes WhatsApp automation flows built in the
visual flow builder.

Architecture:
- FastAPI HTTP server for the WhatsApp Cloud API webhook and custom webhooks
- FlowEngine interpreting flow documents node by node
- In-memory SuspensionRegistry for runs waiting on a user reply
- Shared httpx.AsyncClient for all outbound adapters (WhatsApp, HTTP, Sheets, AI, email)

Webhook requests are acknowledged immediately; flow runs continue in the
background and their errors are logged, never returned to the caller.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from flow_orchestrator.activities import AdapterRegistry
from flow_orchestrator.activities.persist_state import persist_execution_record
from flow_orchestrator.core.config import OrchestratorConfig, config
from flow_orchestrator.core.flow_store import ExecutionStore, InMemoryFlowStore, _generate_execution_id
from flow_orchestrator.core.inbound import parse_whatsapp_payload
from flow_orchestrator.core.logging_setup import configure_logging
from flow_orchestrator.core.suspension import SuspensionRegistry
from flow_orchestrator.core.variable_store import flatten_variables
from flow_orchestrator.workflows.flow_engine import FlowEngine

configure_logging(config.LOG_LEVEL, config.LOG_FORMAT)
logger = logging.getLogger(__name__)

CUSTOM_WEBHOOK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


# --- Request / Response Models ---

class WebhookAck(BaseModel):
    """Acknowledgement returned to the WhatsApp Cloud API."""
    success: bool = True


class CustomWebhookResponse(BaseModel):
    success: bool = True
    message: str = "Webhook received"
    flowId: str
    nodeId: str
    executionId: str
    data: dict[str, Any] = Field(default_factory=dict)


class PausedExecutionView(BaseModel):
    flowId: str
    currentNodeId: str
    conversationId: str
    waitingFor: str
    executionId: str | None = None
    pausedAt: float
    variableCount: int = 0


class FlowSummary(BaseModel):
    id: str
    name: str
    status: str
    triggerKeywords: list[str] = Field(default_factory=list)


def _phone_from(body: Any, query: dict[str, Any]) -> str | None:
    for source in (body if isinstance(body, dict) else {}, query):
        for key in ("phone", "phoneNumber"):
            if source.get(key):
                return str(source[key])
    return None


def webhook_variables(method: str, body: Any, query: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
    """Seed variables for a run started by a custom webhook call."""
    variables: dict[str, Any] = {
        "webhook.method": method,
        "webhook.timestamp": datetime.now(timezone.utc).isoformat(),
        "webhook.body": body,
        "webhook.query": query,
    }
    if isinstance(body, dict):
        variables.update(flatten_variables(body, "webhook.body"))
    variables.update(flatten_variables(query, "webhook.query"))
    variables.update(flatten_variables(headers, "webhook.header"))
    phone = _phone_from(body, query)
    if phone:
        variables["user.phone"] = phone
    return variables


def create_app(
    settings: OrchestratorConfig = config,
    flow_store: InMemoryFlowStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    `flow_store` and `transport` let callers supply pre-loaded flows and a
    custom httpx transport (e.g. httpx.MockTransport).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=== Flow Orchestrator Service ===")
        logger.info(f"Log Level: {settings.LOG_LEVEL}")

        flows = flow_store or InMemoryFlowStore()
        if settings.FLOW_DEFINITIONS_DIR:
            flows.load_directory(settings.FLOW_DEFINITIONS_DIR)

        client = httpx.AsyncClient(transport=transport, timeout=settings.HTTP_TIMEOUT_SECONDS)
        persist = None
        if settings.PERSIST_EXECUTIONS:
            store_name = settings.STATE_STORE_NAME
            persist = lambda record: persist_execution_record(record, store_name)  # noqa: E731

        engine = FlowEngine(
            flows=flows,
            adapters=AdapterRegistry.from_config(client, settings),
            registry=SuspensionRegistry(),
            executions=ExecutionStore(),
            max_iterations=settings.MAX_ITERATIONS,
            tz_name=settings.SYSTEM_TIMEZONE,
            server_base_url=settings.SERVER_BASE_URL,
            persist_execution=persist,
        )
        app.state.engine = engine
        app.state.settings = settings
        logger.info(f"[Flow Orchestrator] Engine ready ({len(flows.list_flows())} flow(s) loaded)")

        yield

        await engine.drain()
        await client.aclose()
        logger.info("[Flow Orchestrator] Shut down")

    app = FastAPI(
        title="Flow Orchestrator",
        description="Execution engine for visual WhatsApp automation flows",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- WhatsApp webhook ---

    @app.get("/api/whatsapp-webhook", response_class=PlainTextResponse)
    async def verify_whatsapp_webhook(request: Request):
        """Meta webhook verification handshake."""
        params = request.query_params
        mode = params.get("hub.mode")
        token = params.get("hub.verify_token")
        challenge = params.get("hub.challenge") or ""

        if mode == "subscribe" and token:
            if settings.WHATSAPP_VERIFY_TOKEN and token == settings.WHATSAPP_VERIFY_TOKEN:
                logger.info("[WhatsApp Webhook] Verified successfully")
                return PlainTextResponse(challenge)
            logger.warning("[WhatsApp Webhook] Invalid verify token")
            raise HTTPException(status_code=403, detail="Invalid verify token")

        raise HTTPException(status_code=400, detail="Missing verification parameters")

    @app.post("/api/whatsapp-webhook", response_model=WebhookAck)
    async def receive_whatsapp_webhook(request: Request):
        """Inbound messages. Always acknowledged with 200; processing continues in the background."""
        try:
            payload = await request.json()
        except ValueError:
            logger.warning("[WhatsApp Webhook] Ignoring non-JSON delivery")
            return WebhookAck()

        message = parse_whatsapp_payload(payload)
        if message is None:
            return WebhookAck()

        logger.info(f"[WhatsApp Webhook] {message.type} message from {message.phone}")
        engine: FlowEngine = request.app.state.engine
        engine.spawn(engine.handle_inbound_message(message), name=f"inbound-{message.id or message.phone}")
        return WebhookAck()

    # --- Custom webhook ---

    @app.api_route(
        "/api/custom-webhook/{flow_identifier}/{node_id}",
        methods=CUSTOM_WEBHOOK_METHODS,
        response_model=CustomWebhookResponse,
    )
    async def custom_webhook(flow_identifier: str, node_id: str, request: Request):
        """Start a flow at `node_id`; the flow is found by id or URL-friendly name."""
        engine: FlowEngine = request.app.state.engine
        flow = engine.flows.find_by_identifier(flow_identifier)
        if flow is None:
            raise HTTPException(status_code=404, detail="Flow not found")

        body: Any = {}
        raw = await request.body()
        if raw:
            try:
                body = await request.json()
            except ValueError:
                body = raw.decode("utf-8", errors="replace")

        query = dict(request.query_params)
        headers = dict(request.headers)
        variables = webhook_variables(request.method, body, query, headers)

        execution_id = _generate_execution_id()
        conversation_id = variables.get("user.phone") or f"webhook:{execution_id}"
        logger.info(f"[Custom Webhook] {request.method} for flow {flow.id} at node {node_id}")

        engine.spawn(
            engine.handle_custom_webhook(flow.id, node_id, variables, conversation_id, execution_id),
            name=f"webhook-{execution_id}",
        )
        return CustomWebhookResponse(
            flowId=flow.id,
            nodeId=node_id,
            executionId=execution_id,
            data={"method": request.method, "body": body, "query": query},
        )

    # --- Inspection ---

    @app.get("/api/paused-executions", response_model=list[PausedExecutionView])
    async def list_paused_executions(request: Request):
        engine: FlowEngine = request.app.state.engine
        return [
            PausedExecutionView(
                flowId=p.flowId,
                currentNodeId=p.currentNodeId,
                conversationId=p.conversationId,
                waitingFor=p.waitingFor.value,
                executionId=p.executionId,
                pausedAt=p.pausedAt,
                variableCount=len(p.variables),
            )
            for p in engine.registry.list()
        ]

    @app.get("/api/executions/{execution_id}")
    async def get_execution(execution_id: str, request: Request):
        engine: FlowEngine = request.app.state.engine
        record = engine.executions.get(execution_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Execution {execution_id} not found")
        return record.model_dump(mode="json")

    @app.get("/api/flows", response_model=list[FlowSummary])
    async def list_flows(request: Request):
        engine: FlowEngine = request.app.state.engine
        return [
            FlowSummary(id=f.id, name=f.name, status=f.status.value, triggerKeywords=f.triggerKeywords)
            for f in engine.flows.list_flows()
        ]

    # --- Health ---

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz(request: Request):
        engine = getattr(request.app.state, "engine", None)
        if engine is None:
            raise HTTPException(status_code=503, detail="Engine not initialized")
        return {"status": "ready", "pausedExecutions": len(engine.registry), "runningTasks": engine.pending_tasks}

    @app.get("/config")
    async def get_config():
        return settings.public_view()

    return app


app = create_app()


def main() -> None:
    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
