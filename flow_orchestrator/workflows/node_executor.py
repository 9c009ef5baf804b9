"""
Node Executor

Executes a single flow node. Each node type has a handler registered in
`_register_handlers`; the handler receives the node, its validated config
model and the execution context, and returns a NodeResult.

Every execution, including one whose handler raised, leaves a result map in
`variables[node.id]` with at least `nodeId`, `nodeType`, `executed` and
`success`, so later nodes can read `{{<nodeId>.<field>}}`.

Interactive sends (buttons, lists, WhatsApp forms, wait_for_reply) suspend
the run when the send succeeds; when it fails the path ends without
suspending.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from flow_orchestrator.activities import AdapterRegistry
from flow_orchestrator.activities.http_request import apply_auth
from flow_orchestrator.core.condition_evaluator import select_branch
from flow_orchestrator.core.errors import TransformError
from flow_orchestrator.core.expressions import evaluate_transform
from flow_orchestrator.core.graph import FlowGraph
from flow_orchestrator.core.node_configs import (
    AiCompletionConfig,
    ConditionalConfig,
    DatabaseQueryConfig,
    DelayConfig,
    EmailConfig,
    EndConfig,
    GoogleSheetsConfig,
    HttpRequestConfig,
    NodeConfig,
    RequestLocationConfig,
    SendButtonConfig,
    SendCtaConfig,
    SendFlowConfig,
    SendListConfig,
    SendLocationConfig,
    SendMediaConfig,
    SendMessageConfig,
    SendTemplateConfig,
    TransformConfig,
    WaitForReplyConfig,
    WebhookConfig,
    parse_node_config,
)
from flow_orchestrator.core.types import FlowNode, NodeResult, NodeType, WaitingFor
from flow_orchestrator.core.variable_store import VariableStore

logger = logging.getLogger(__name__)

# Seconds per delay unit
DELAY_UNITS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 60 * 60,
    "days": 24 * 60 * 60,
}

# Node types that wait for a reply; a failure on these ends the path
SUSPENDING_TYPES = frozenset({
    NodeType.SEND_BUTTON.value,
    NodeType.BUTTON_MESSAGE.value,
    NodeType.SEND_LIST.value,
    NodeType.LIST_MESSAGE.value,
    NodeType.SEND_FLOW.value,
    NodeType.WAIT_FOR_REPLY.value,
})


@dataclass
class ExecutionContext:
    """Per-run state handed to every node handler."""
    flow_id: str
    conversation_id: str
    store: VariableStore
    adapters: AdapterRegistry
    graph: FlowGraph
    execution_id: str | None = None

    @property
    def user_phone(self) -> str | None:
        phone = self.store.get("user.phone")
        return str(phone) if phone else None


Handler = Callable[[FlowNode, Any, ExecutionContext], Awaitable[NodeResult]]


def _interactive_result(sent: dict[str, Any], waiting_for: WaitingFor, output: dict[str, Any]) -> NodeResult:
    output["sent"] = bool(sent.get("success"))
    if sent.get("success"):
        return NodeResult(success=True, output=output, waitingFor=waiting_for)
    output["error"] = sent.get("error")
    return NodeResult(success=False, output=output, error=sent.get("error"), stop=True)


def _missing_fields(output: dict[str, Any], message: str, stop: bool = False) -> NodeResult:
    output["sent"] = False
    output["error"] = message
    return NodeResult(success=False, output=output, error=message, stop=stop)


def _parse_coordinate(value: Any) -> float | None:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


class NodeExecutor:
    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = self._register_handlers()

    def _register_handlers(self) -> dict[str, Handler]:
        """Register all node type handlers"""
        return {
            # Triggers
            NodeType.ON_MESSAGE.value: self._handle_trigger,
            NodeType.CATCH_WEBHOOK.value: self._handle_trigger,

            # WhatsApp sends
            NodeType.SEND_MESSAGE.value: self._handle_send_message,
            NodeType.MESSAGE.value: self._handle_send_message,
            NodeType.SEND_MEDIA.value: self._handle_send_media,
            NodeType.SEND_CTA.value: self._handle_send_cta,
            NodeType.CTA_URL.value: self._handle_send_cta,
            NodeType.SEND_TEMPLATE.value: self._handle_send_template,
            NodeType.TEMPLATE.value: self._handle_send_template,
            NodeType.SEND_LOCATION.value: self._handle_send_location,
            NodeType.REQUEST_LOCATION.value: self._handle_request_location,

            # Interactive (suspending) nodes
            NodeType.SEND_BUTTON.value: self._handle_send_button,
            NodeType.BUTTON_MESSAGE.value: self._handle_send_button,
            NodeType.SEND_LIST.value: self._handle_send_list,
            NodeType.LIST_MESSAGE.value: self._handle_send_list,
            NodeType.SEND_FLOW.value: self._handle_send_flow,
            NodeType.WAIT_FOR_REPLY.value: self._handle_wait_for_reply,

            # Control flow
            NodeType.DELAY.value: self._handle_delay,
            NodeType.CONDITIONAL.value: self._handle_conditional,
            NodeType.END.value: self._handle_end,

            # Integrations
            NodeType.HTTP.value: self._handle_http,
            NodeType.API.value: self._handle_http,
            NodeType.WEBHOOK.value: self._handle_webhook,
            NodeType.GOOGLE_SHEETS.value: self._handle_google_sheets,
            NodeType.AI_COMPLETION.value: self._handle_ai_completion,
            NodeType.EMAIL.value: self._handle_email,
            NodeType.DATABASE_QUERY.value: self._handle_database_query,
            NodeType.TRANSFORM.value: self._handle_transform,
        }

    def register(self, node_type: str, handler: Handler) -> None:
        self._handlers[node_type] = handler

    @property
    def node_types(self) -> list[str]:
        return sorted(self._handlers)

    async def execute(self, node: FlowNode, ctx: ExecutionContext) -> NodeResult:
        """Run one node and record its result under `variables[node.id]`."""
        start_time = time.time()
        handler = self._handlers.get(node.type)

        if handler is None:
            logger.warning(f"[Node Executor] Unknown node type: {node.type} ({node.id}), skipping")
            result = NodeResult(success=True, output={"skipped": True, "reason": f"Unknown node type: {node.type}"})
        else:
            try:
                cfg = parse_node_config(node)
                result = await handler(node, cfg, ctx)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[Node Executor] Node {node.id} ({node.type}) failed: {e}", exc_info=True)
                result = NodeResult(
                    success=False,
                    error=str(e),
                    output={"error": str(e)},
                    stop=node.type in SUSPENDING_TYPES,
                )

        duration_ms = int((time.time() - start_time) * 1000)
        output = {
            "nodeId": node.id,
            "nodeType": node.type,
            "executed": True,
            **result.output,
            "success": result.success,
            "duration_ms": duration_ms,
        }
        if result.error:
            output["error"] = result.error
        ctx.store.set_node_output(node.id, output)
        result.output = output
        return result

    # --- triggers ---

    async def _handle_trigger(self, node: FlowNode, cfg: NodeConfig, ctx: ExecutionContext) -> NodeResult:
        return NodeResult(output={"triggered": True})

    # --- plain sends ---

    async def _handle_send_message(self, node: FlowNode, cfg: SendMessageConfig, ctx: ExecutionContext) -> NodeResult:
        text = ctx.store.interpolate(cfg.text)
        output: dict[str, Any] = {"message": text}
        if not ctx.user_phone or not text:
            return _missing_fields(output, "Missing phone or message text")
        sent = await ctx.adapters.whatsapp.send_text(ctx.user_phone, text)
        output["sent"] = bool(sent.get("success"))
        return NodeResult(success=output["sent"], output=output, error=sent.get("error"))

    async def _handle_send_media(self, node: FlowNode, cfg: SendMediaConfig, ctx: ExecutionContext) -> NodeResult:
        url = ctx.store.interpolate(cfg.media_url)
        caption = ctx.store.interpolate(cfg.caption)
        output: dict[str, Any] = {"mediaUrl": url, "mediaType": cfg.media_type, "caption": caption}
        if not ctx.user_phone or not url:
            return _missing_fields(output, "Missing phone or media URL")
        sent = await ctx.adapters.whatsapp.send_media(
            ctx.user_phone, cfg.media_type, url, caption, ctx.store.interpolate(cfg.filename)
        )
        output["sent"] = bool(sent.get("success"))
        return NodeResult(success=output["sent"], output=output, error=sent.get("error"))

    async def _handle_send_cta(self, node: FlowNode, cfg: SendCtaConfig, ctx: ExecutionContext) -> NodeResult:
        store = ctx.store
        body = store.interpolate(cfg.body_text)
        display = store.interpolate(cfg.display_text)
        url = store.interpolate(cfg.url)
        output: dict[str, Any] = {"bodyText": body, "displayText": display, "url": url}
        if not ctx.user_phone or not body or not url:
            return _missing_fields(output, "Missing phone, body text or URL")
        sent = await ctx.adapters.whatsapp.send_cta(
            ctx.user_phone, body, display, url,
            store.interpolate(cfg.text_header()), store.interpolate(cfg.footer_text),
        )
        output["sent"] = bool(sent.get("success"))
        return NodeResult(success=output["sent"], output=output, error=sent.get("error"))

    async def _handle_send_template(self, node: FlowNode, cfg: SendTemplateConfig, ctx: ExecutionContext) -> NodeResult:
        name = ctx.store.interpolate(cfg.template_name)
        output: dict[str, Any] = {"templateName": name, "languageCode": cfg.language_code}
        if not ctx.user_phone or not name:
            return _missing_fields(output, "Missing phone or template name")
        components = ctx.store.interpolate_value(cfg.components)
        sent = await ctx.adapters.whatsapp.send_template(ctx.user_phone, name, cfg.language_code, components)
        output["sent"] = bool(sent.get("success"))
        return NodeResult(success=output["sent"], output=output, error=sent.get("error"))

    async def _handle_send_location(self, node: FlowNode, cfg: SendLocationConfig, ctx: ExecutionContext) -> NodeResult:
        store = ctx.store
        latitude = _parse_coordinate(store.interpolate(cfg.latitude))
        longitude = _parse_coordinate(store.interpolate(cfg.longitude))
        name = store.interpolate(cfg.name)
        address = store.interpolate(cfg.address)
        output: dict[str, Any] = {"latitude": latitude, "longitude": longitude, "name": name, "address": address}
        if latitude is None or longitude is None:
            logger.error(f"[Node Executor] Invalid latitude or longitude on {node.id}")
            return _missing_fields(output, "Invalid latitude or longitude")
        if not ctx.user_phone:
            return _missing_fields(output, "Missing phone")
        sent = await ctx.adapters.whatsapp.send_location(ctx.user_phone, latitude, longitude, name, address)
        output["sent"] = bool(sent.get("success"))
        return NodeResult(success=output["sent"], output=output, error=sent.get("error"))

    async def _handle_request_location(self, node: FlowNode, cfg: RequestLocationConfig, ctx: ExecutionContext) -> NodeResult:
        body = ctx.store.interpolate(cfg.body_text)
        output: dict[str, Any] = {"bodyText": body}
        if not ctx.user_phone:
            return _missing_fields(output, "Missing phone")
        sent = await ctx.adapters.whatsapp.request_location(ctx.user_phone, body)
        output["sent"] = bool(sent.get("success"))
        return NodeResult(success=output["sent"], output=output, error=sent.get("error"))

    # --- interactive ---

    async def _handle_send_button(self, node: FlowNode, cfg: SendButtonConfig, ctx: ExecutionContext) -> NodeResult:
        store = ctx.store
        body = store.interpolate(cfg.body_text)
        buttons = [
            {"id": b.id or f"btn_{idx}", "title": store.interpolate(b.title) or f"Button {idx + 1}"}
            for idx, b in enumerate(cfg.buttons)
        ]
        output: dict[str, Any] = {"bodyText": body, "buttons": buttons}
        if not ctx.user_phone or not body or not buttons:
            logger.warning(f"[Node Executor] Missing required fields for {node.type} {node.id}")
            return _missing_fields(output, "Missing required fields", stop=True)
        sent = await ctx.adapters.whatsapp.send_buttons(
            ctx.user_phone, body, buttons,
            store.interpolate(cfg.text_header()), store.interpolate(cfg.footer_text),
        )
        return _interactive_result(sent, WaitingFor.BUTTON, output)

    async def _handle_send_list(self, node: FlowNode, cfg: SendListConfig, ctx: ExecutionContext) -> NodeResult:
        store = ctx.store
        body = store.interpolate(cfg.body_text)
        sections = store.interpolate_value([s.model_dump() for s in cfg.sections])
        output: dict[str, Any] = {"bodyText": body, "sections": sections}
        if not ctx.user_phone or not body or not sections:
            logger.warning(f"[Node Executor] Missing required fields for {node.type} {node.id}")
            return _missing_fields(output, "Missing required fields", stop=True)
        sent = await ctx.adapters.whatsapp.send_list(
            ctx.user_phone, body, store.interpolate(cfg.button_text), sections,
            store.interpolate(cfg.text_header()), store.interpolate(cfg.footer_text),
        )
        return _interactive_result(sent, WaitingFor.LIST, output)

    async def _handle_send_flow(self, node: FlowNode, cfg: SendFlowConfig, ctx: ExecutionContext) -> NodeResult:
        store = ctx.store
        flow_id = store.interpolate(cfg.flow_id)
        header = store.interpolate(cfg.header)
        body = store.interpolate(cfg.body)
        output: dict[str, Any] = {"flowId": flow_id, "header": header, "body": body}
        if not ctx.user_phone or not flow_id:
            logger.warning(f"[Node Executor] Missing phone or flow ID for send_flow {node.id}")
            return _missing_fields(output, "Missing phone or flow ID", stop=True)
        sent = await ctx.adapters.whatsapp.send_flow(
            ctx.user_phone,
            header,
            body,
            store.interpolate(cfg.footer),
            flow_id,
            store.interpolate(cfg.flow_token),
            store.interpolate(cfg.flow_cta),
            store.interpolate(cfg.screen),
            store.interpolate_value(cfg.parsed_flow_data()),
        )
        return _interactive_result(sent, WaitingFor.FLOW, output)

    async def _handle_wait_for_reply(self, node: FlowNode, cfg: WaitForReplyConfig, ctx: ExecutionContext) -> NodeResult:
        output: dict[str, Any] = {"waiting": True, "saveAs": cfg.save_as or None}
        prompt = ctx.store.interpolate(cfg.text)
        if prompt:
            if not ctx.user_phone:
                return _missing_fields(output, "Missing phone", stop=True)
            sent = await ctx.adapters.whatsapp.send_text(ctx.user_phone, prompt)
            return _interactive_result(sent, WaitingFor.MESSAGE, output)
        return NodeResult(output=output, waitingFor=WaitingFor.MESSAGE)

    # --- control flow ---

    async def _handle_delay(self, node: FlowNode, cfg: DelayConfig, ctx: ExecutionContext) -> NodeResult:
        try:
            amount = float(str(cfg.amount).strip())
        except ValueError:
            logger.warning(f"[Node Executor] Invalid delay amount '{cfg.amount}' on {node.id}, using 5")
            amount = 5.0
        unit = (cfg.unit or "seconds").lower()
        if unit not in DELAY_UNITS:
            logger.warning(f"[Node Executor] Unknown delay unit '{unit}' on {node.id}, using seconds")
            unit = "seconds"
        seconds = max(0.0, amount * DELAY_UNITS[unit])

        logger.info(f"[Node Executor] Delaying {amount:g} {unit} at {node.id}")
        await ctx.adapters.sleep(seconds)
        return NodeResult(output={
            "delayed": True,
            "delayAmount": amount,
            "delayUnit": unit,
            "delaySeconds": seconds,
        })

    async def _handle_conditional(self, node: FlowNode, cfg: ConditionalConfig, ctx: ExecutionContext) -> NodeResult:
        conditions = [c.model_dump() for c in cfg.conditions]
        target = select_branch(conditions, ctx.store, cfg.default_next)
        next_node = ctx.graph.resolve_branch_target(node.id, target)
        logger.info(f"[Node Executor] Conditional {node.id} selected: {next_node}")
        if not next_node:
            return NodeResult(output={"matched": None}, stop=True)
        return NodeResult(output={"matched": target, "nextNode": next_node}, nextNode=next_node)

    async def _handle_end(self, node: FlowNode, cfg: EndConfig, ctx: ExecutionContext) -> NodeResult:
        text = ctx.store.interpolate(cfg.text)
        output: dict[str, Any] = {"ended": True}
        if text and ctx.user_phone:
            sent = await ctx.adapters.whatsapp.send_text(ctx.user_phone, text)
            output["sent"] = bool(sent.get("success"))
        return NodeResult(output=output, stop=True)

    # --- integrations ---

    async def _handle_http(self, node: FlowNode, cfg: HttpRequestConfig, ctx: ExecutionContext) -> NodeResult:
        store = ctx.store
        method = store.interpolate(cfg.method or "GET").upper()
        url = store.interpolate(cfg.url)
        headers = {store.interpolate(k): store.interpolate(v) for k, v in cfg.header_map().items()}
        headers = apply_auth(
            headers,
            cfg.auth_type,
            bearer_token=store.interpolate(cfg.bearer_token),
            basic_username=store.interpolate(cfg.basic_username),
            basic_password=store.interpolate(cfg.basic_password),
            api_key_header=store.interpolate(cfg.api_key_header),
            api_key_value=store.interpolate(cfg.api_key_value),
        )
        if isinstance(cfg.body, (dict, list)):
            body = json.dumps(store.interpolate_value(cfg.body))
        else:
            body = store.interpolate(cfg.body) if cfg.body else None

        response = await ctx.adapters.http.request(method, url, headers, body, timeout=cfg.timeout_seconds)
        output: dict[str, Any] = {"method": method, "url": url}

        if not response.get("success"):
            error = response.get("error") or "HTTP request failed"
            store.set("http.error", error)
            return NodeResult(success=False, output=output, error=error)

        prefix = cfg.response_variable or "http.response"
        data = response.get("data")
        new_vars: dict[str, Any] = {
            prefix: data,
            f"{prefix}.status": response.get("status"),
            f"{prefix}.statusText": response.get("statusText"),
        }
        if isinstance(data, dict):
            for key, value in data.items():
                new_vars[f"{prefix}.{key}"] = value
        store.merge(new_vars)

        output.update({"status": response.get("status"), "statusText": response.get("statusText"), "response": data})
        return NodeResult(output=output)

    async def _handle_webhook(self, node: FlowNode, cfg: WebhookConfig, ctx: ExecutionContext) -> NodeResult:
        store = ctx.store
        url = store.interpolate(cfg.webhook_url)
        method = (cfg.method or "POST").upper()
        headers = {store.interpolate(k): store.interpolate(v) for k, v in cfg.header_map().items()}
        if isinstance(cfg.body, dict):
            body = json.dumps(store.interpolate_value(cfg.body))
        elif cfg.body:
            body = store.interpolate(cfg.body)
        else:
            body = json.dumps(store.variables, default=str)

        response = await ctx.adapters.http.request(method, url, headers, body)
        output: dict[str, Any] = {
            "sent": bool(response.get("success")),
            "webhookUrl": url,
            "status": response.get("status"),
            "response": response.get("data"),
        }
        return NodeResult(success=output["sent"], output=output, error=response.get("error"))

    async def _handle_google_sheets(self, node: FlowNode, cfg: GoogleSheetsConfig, ctx: ExecutionContext) -> NodeResult:
        store = ctx.store
        values = [
            [store.interpolate("" if cell is None else str(cell)) for cell in row]
            for row in cfg.values
        ]
        result = await ctx.adapters.sheets.write(
            cfg.operation,
            store.interpolate(cfg.spreadsheet_id),
            store.interpolate(cfg.sheet_name),
            values,
            store.interpolate(cfg.range),
        )
        output = {"operation": cfg.operation, "rows": len(values), "skipped": bool(result.get("skipped"))}
        return NodeResult(success=bool(result.get("success")), output=output, error=result.get("error"))

    async def _handle_ai_completion(self, node: FlowNode, cfg: AiCompletionConfig, ctx: ExecutionContext) -> NodeResult:
        store = ctx.store
        result = await ctx.adapters.ai.complete(
            cfg.provider,
            store.interpolate(cfg.prompt),
            model=cfg.model,
            system_prompt=store.interpolate(cfg.system_prompt),
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
        )
        if not result.get("success"):
            return NodeResult(success=False, output={"provider": cfg.provider}, error=result.get("error"))

        store.set(cfg.save_as, result.get("response"))
        return NodeResult(output={
            "provider": result.get("provider"),
            "model": result.get("model"),
            "response": result.get("response"),
            "tokens_used": result.get("tokens_used"),
        })

    async def _handle_email(self, node: FlowNode, cfg: EmailConfig, ctx: ExecutionContext) -> NodeResult:
        store = ctx.store
        to = store.interpolate(cfg.to)
        result = await ctx.adapters.email.send(
            to,
            store.interpolate(cfg.subject),
            store.interpolate(cfg.body),
            html=cfg.html,
            from_name=store.interpolate(cfg.from_name),
        )
        output = {
            "sent": bool(result.get("success")),
            "to": to,
            "messageId": result.get("message_id"),
            "simulated": bool(result.get("simulated")),
        }
        return NodeResult(success=output["sent"], output=output, error=result.get("error"))

    async def _handle_database_query(self, node: FlowNode, cfg: DatabaseQueryConfig, ctx: ExecutionContext) -> NodeResult:
        # Raw SQL is taken verbatim; only structured filters are interpolated (and bound as parameters).
        result = await ctx.adapters.database.run(
            cfg.operation,
            table=cfg.table,
            filters=ctx.store.interpolate_value(cfg.filters),
            query=cfg.query,
        )
        if not result.get("success"):
            return NodeResult(success=False, output={"operation": cfg.operation}, error=result.get("error"))

        ctx.store.set(cfg.save_as, result.get("data"))
        return NodeResult(output={"operation": cfg.operation, "count": result.get("count"), "rows": result.get("data")})

    async def _handle_transform(self, node: FlowNode, cfg: TransformConfig, ctx: ExecutionContext) -> NodeResult:
        try:
            value = evaluate_transform(
                cfg.expression,
                ctx.store.variables,
                cfg.input_variables,
                lookup=ctx.store.get,
            )
        except TransformError as e:
            logger.warning(f"[Node Executor] Transform {node.id} failed: {e}")
            return NodeResult(success=False, error=str(e))

        ctx.store.set(cfg.save_as, value)
        return NodeResult(output={"result": value, "saveAs": cfg.save_as})
