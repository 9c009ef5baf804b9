"""
Per-type node configuration models.

The flow builder has shipped several spellings for the same field over time
(`bodyText`, `body_text`, `text`, ...). Each model lists the accepted
spellings in priority order with `AliasChoices`, so handlers only ever see one
canonical attribute. `None` values coming from the editor fall back to the
field default.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator

from flow_orchestrator.core.errors import NodeConfigError
from flow_orchestrator.core.types import FlowNode, NodeType


def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class NodeConfig(BaseModel):
    """Base model for all node configs."""

    class Config:
        extra = "allow"
        coerce_numbers_to_str = True

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class InteractiveConfig(NodeConfig):
    """Header/footer fields shared by interactive WhatsApp messages."""
    header_type: str = Field("", validation_alias=_aliases("headerType", "header_type"))
    header_text: str = Field("", validation_alias=_aliases("headerText", "header_text"))
    footer_text: str = Field("", validation_alias=_aliases("footerText", "footer_text"))

    def text_header(self) -> str:
        """Header text, only when the header is a plain text header."""
        if self.header_text and self.header_type in ("", "none", "text"):
            return self.header_text
        return ""


def split_keywords(value: Any) -> list[str]:
    """Trigger keywords as a list; the builder stores them as a comma-separated string."""
    if isinstance(value, str):
        return [k.strip() for k in value.split(",") if k.strip()]
    if isinstance(value, (list, tuple)):
        return [str(k).strip() for k in value if str(k).strip()]
    return []


class TriggerConfig(NodeConfig):
    keywords: list[str] = Field(default_factory=list, validation_alias=_aliases("keywords", "triggerKeywords"))

    @field_validator("keywords", mode="before")
    @classmethod
    def _split(cls, value: Any) -> list[str]:
        return split_keywords(value)


class SendMessageConfig(NodeConfig):
    text: str = Field("", validation_alias=_aliases("answer_text", "answerText", "text", "message", "content"))


class SendMediaConfig(NodeConfig):
    media_url: str = Field("", validation_alias=_aliases("mediaUrl", "media_url", "url"))
    media_type: str = Field("Image", validation_alias=_aliases("mediaType", "media_type", "answer_type"))
    caption: str = ""
    filename: str = ""


class ButtonOption(NodeConfig):
    id: str = ""
    title: str = Field("", validation_alias=_aliases("text", "title", "label"))
    next_node_id: str = Field("", validation_alias=_aliases("nextNodeId", "next_node_id", "next"))


class SendButtonConfig(InteractiveConfig):
    body_text: str = Field("", validation_alias=_aliases("bodyText", "body_text", "text", "content"))
    buttons: list[ButtonOption] = Field(default_factory=list)


class ListRow(NodeConfig):
    id: str = ""
    title: str = Field("", validation_alias=_aliases("title", "text"))
    description: str = ""


class ListSection(NodeConfig):
    title: str = "Options"
    rows: list[ListRow] = Field(default_factory=list, validation_alias=_aliases("rows", "items"))


class SendListConfig(InteractiveConfig):
    body_text: str = Field("", validation_alias=_aliases("bodyText", "body_text", "text", "content"))
    button_text: str = Field("View Options", validation_alias=_aliases("buttonText", "button_text"))
    sections: list[ListSection] = Field(default_factory=list)


class SendCtaConfig(InteractiveConfig):
    body_text: str = Field("", validation_alias=_aliases("body", "body_text", "text", "bodyText"))
    display_text: str = Field("Visit", validation_alias=_aliases("displayText", "display_text", "button_text"))
    url: str = ""


class SendTemplateConfig(NodeConfig):
    template_name: str = Field("", validation_alias=_aliases("templateName", "template_name"))
    language_code: str = Field("en_US", validation_alias=_aliases("languageCode", "language_code"))
    components: list[dict[str, Any]] = Field(default_factory=list)


class SendLocationConfig(NodeConfig):
    latitude: str | float = ""
    longitude: str | float = ""
    name: str = Field("", validation_alias=_aliases("name", "locationName"))
    address: str = ""


class RequestLocationConfig(NodeConfig):
    body_text: str = Field(
        "Please share your location",
        validation_alias=_aliases("bodyText", "body_text", "text"),
    )


class SendFlowConfig(NodeConfig):
    header: str = "Flow Header"
    body: str = "Flow Body"
    footer: str = ""
    flow_id: str = Field("", validation_alias=_aliases("flow_id", "flowId"))
    flow_token: str = Field("", validation_alias=_aliases("flow_token", "flowToken"))
    flow_cta: str = Field("Submit", validation_alias=_aliases("flow_cta", "flowCta"))
    screen: str = ""
    flow_data: dict[str, Any] | str = Field(default_factory=dict, validation_alias=_aliases("flow_data", "flowData"))

    def parsed_flow_data(self) -> dict[str, Any] | str:
        if isinstance(self.flow_data, str):
            try:
                return json.loads(self.flow_data)
            except (TypeError, ValueError):
                return self.flow_data
        return self.flow_data


class WaitForReplyConfig(NodeConfig):
    text: str = Field("", validation_alias=_aliases("text", "prompt", "message"))
    save_as: str = Field("", validation_alias=_aliases("saveAs", "save_as", "variable"))


class DelayConfig(NodeConfig):
    amount: int | float | str = Field(5, validation_alias=_aliases("delay", "duration", "time", "amount"))
    unit: str = Field("seconds", validation_alias=_aliases("unit", "timeUnit", "time_unit"))


class HeaderEntry(NodeConfig):
    key: str = ""
    value: Any = ""


class HttpRequestConfig(NodeConfig):
    method: str = "GET"
    url: str = ""
    headers: list[HeaderEntry] | dict[str, Any] = Field(default_factory=list)
    body: str | dict[str, Any] | list[Any] | None = None
    auth_type: str = Field("none", validation_alias=_aliases("auth_type", "authType"))
    bearer_token: str = Field("", validation_alias=_aliases("bearer_token", "bearerToken"))
    basic_username: str = Field("", validation_alias=_aliases("basic_username", "basicUsername"))
    basic_password: str = Field("", validation_alias=_aliases("basic_password", "basicPassword"))
    api_key_header: str = Field("", validation_alias=_aliases("api_key_header", "apiKeyHeader"))
    api_key_value: str = Field("", validation_alias=_aliases("api_key_value", "apiKeyValue"))
    response_variable: str = Field(
        "http.response",
        validation_alias=_aliases("response_variable", "responseVariable", "save_as"),
    )
    timeout_seconds: float | None = Field(None, validation_alias=_aliases("timeout", "timeout_seconds"))

    def header_map(self) -> dict[str, str]:
        if isinstance(self.headers, dict):
            return {str(k): str(v) for k, v in self.headers.items()}
        return {h.key: str(h.value) for h in self.headers if h.key}


class WebhookConfig(NodeConfig):
    webhook_url: str = Field("", validation_alias=_aliases("webhook_url", "webhookUrl", "url"))
    method: str = "POST"
    headers: list[HeaderEntry] | dict[str, Any] = Field(default_factory=list)
    body: str | dict[str, Any] | None = None

    def header_map(self) -> dict[str, str]:
        if isinstance(self.headers, dict):
            return {str(k): str(v) for k, v in self.headers.items()}
        return {h.key: str(h.value) for h in self.headers if h.key}


class Condition(NodeConfig):
    variable: str = ""
    operator: str = "=="
    value: Any = None
    next: str = ""


class ConditionalConfig(NodeConfig):
    conditions: list[Condition] = Field(default_factory=list)
    default_next: str = Field("", validation_alias=_aliases("default_next", "defaultNext"))


class GoogleSheetsConfig(NodeConfig):
    spreadsheet_id: str = Field("", validation_alias=_aliases("spreadsheet_id", "spreadsheetId"))
    sheet_name: str = Field("Sheet1", validation_alias=_aliases("sheet_name", "sheetName"))
    operation: str = "append"
    range: str = ""
    values: list[list[Any]] = Field(default_factory=list)


class AiCompletionConfig(NodeConfig):
    provider: str = "openai"
    model: str = ""
    system_prompt: str = Field("", validation_alias=_aliases("system_prompt", "systemPrompt"))
    prompt: str = ""
    temperature: float = 0.7
    max_tokens: int = Field(1000, validation_alias=_aliases("max_tokens", "maxTokens"))
    save_as: str = Field("ai_response", validation_alias=_aliases("save_as", "saveAs"))


class EmailConfig(NodeConfig):
    to: str = ""
    from_name: str = Field("", validation_alias=_aliases("from_name", "fromName"))
    subject: str = ""
    body: str = ""
    html: bool = True


class DatabaseQueryConfig(NodeConfig):
    operation: str = "select"
    table: str = ""
    query: str = ""
    filters: dict[str, Any] = Field(default_factory=dict)
    save_as: str = Field("query_result", validation_alias=_aliases("save_as", "saveAs"))


class TransformConfig(NodeConfig):
    expression: str = Field("", validation_alias=_aliases("expression", "transform_code", "transformCode", "code"))
    input_variables: list[str] = Field(default_factory=list, validation_alias=_aliases("input_variables", "inputVariables"))
    save_as: str = Field("transformed_data", validation_alias=_aliases("save_as", "saveAs"))


class EndConfig(NodeConfig):
    text: str = Field("", validation_alias=_aliases("text", "message", "content"))


NODE_CONFIG_MODELS: dict[str, type[NodeConfig]] = {
    NodeType.ON_MESSAGE.value: TriggerConfig,
    NodeType.CATCH_WEBHOOK.value: TriggerConfig,
    NodeType.SEND_MESSAGE.value: SendMessageConfig,
    NodeType.MESSAGE.value: SendMessageConfig,
    NodeType.SEND_MEDIA.value: SendMediaConfig,
    NodeType.SEND_BUTTON.value: SendButtonConfig,
    NodeType.BUTTON_MESSAGE.value: SendButtonConfig,
    NodeType.SEND_LIST.value: SendListConfig,
    NodeType.LIST_MESSAGE.value: SendListConfig,
    NodeType.SEND_CTA.value: SendCtaConfig,
    NodeType.CTA_URL.value: SendCtaConfig,
    NodeType.SEND_TEMPLATE.value: SendTemplateConfig,
    NodeType.TEMPLATE.value: SendTemplateConfig,
    NodeType.SEND_LOCATION.value: SendLocationConfig,
    NodeType.REQUEST_LOCATION.value: RequestLocationConfig,
    NodeType.SEND_FLOW.value: SendFlowConfig,
    NodeType.WAIT_FOR_REPLY.value: WaitForReplyConfig,
    NodeType.DELAY.value: DelayConfig,
    NodeType.HTTP.value: HttpRequestConfig,
    NodeType.API.value: HttpRequestConfig,
    NodeType.WEBHOOK.value: WebhookConfig,
    NodeType.CONDITIONAL.value: ConditionalConfig,
    NodeType.GOOGLE_SHEETS.value: GoogleSheetsConfig,
    NodeType.AI_COMPLETION.value: AiCompletionConfig,
    NodeType.EMAIL.value: EmailConfig,
    NodeType.DATABASE_QUERY.value: DatabaseQueryConfig,
    NodeType.TRANSFORM.value: TransformConfig,
    NodeType.END.value: EndConfig,
}


def parse_node_config(node: FlowNode) -> NodeConfig:
    """Validate a node's raw config against the model for its type."""
    model = NODE_CONFIG_MODELS.get(node.type, NodeConfig)
    try:
        return model.model_validate(node.config or {})
    except ValidationError as e:
        raise NodeConfigError(node.id, node.type, str(e)) from e
