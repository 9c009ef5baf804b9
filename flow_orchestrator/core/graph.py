"""
Flow graph model.

Normalizes the shapes a stored flow `config` can take into a canonical
`FlowDocument`, and answers the graph questions the engine asks while
walking it (start node, next node along an edge).

Accepted shapes:
- Canonical: {"nodes": [...], "edges": [...], "startNode"?: "..."}
- Legacy node map: {"nodes": {"n1": {"type": ..., "next": "n2"}}, "start_node"?: "n1"}
- Either of the above serialized as a JSON string
- Editor nodes that keep their type/config under `data`
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from pydantic import ValidationError

from flow_orchestrator.core.errors import InvalidFlowDocumentError
from flow_orchestrator.core.types import TRIGGER_NODE_TYPES, FlowDocument, FlowEdge, FlowNode

logger = logging.getLogger(__name__)

# Editor wrapper node types whose real type lives in `data.type`
_WRAPPER_NODE_TYPES = frozenset({"", "custom", "default", "flowNode"})

# Keys of a legacy node map entry that are not part of its config
_LEGACY_NODE_KEYS = frozenset({"id", "type", "next", "position", "label", "config"})


def _edge_id(source: str, target: str, handle: str | None = None) -> str:
    base = f"{source}->{target}"
    return f"{base}:{handle}" if handle else base


def _normalize_node(raw: Mapping[str, Any]) -> dict[str, Any]:
    node = dict(raw)
    data = node.get("data")
    if isinstance(data, Mapping):
        if node.get("type", "") in _WRAPPER_NODE_TYPES and data.get("type"):
            node["type"] = data["type"]
        if not node.get("config") and isinstance(data.get("config"), Mapping):
            node["config"] = dict(data["config"])
        if not node.get("label") and data.get("label"):
            node["label"] = str(data["label"])
    if not isinstance(node.get("config"), Mapping):
        node["config"] = {}
    node["id"] = str(node.get("id", ""))
    return node


def _legacy_to_canonical(nodes: Mapping[str, Any], raw: Mapping[str, Any]) -> dict[str, Any]:
    out_nodes: list[dict[str, Any]] = []
    out_edges: list[dict[str, Any]] = []

    for node_id, entry in nodes.items():
        if not isinstance(entry, Mapping):
            logger.warning(f"[Flow Graph] Skipping malformed legacy node: {node_id}")
            continue
        node_id = str(entry.get("id") or node_id)
        config = entry.get("config")
        if not isinstance(config, Mapping):
            config = {k: v for k, v in entry.items() if k not in _LEGACY_NODE_KEYS}
        out_nodes.append({
            "id": node_id,
            "type": entry.get("type", ""),
            "config": dict(config),
            "position": entry.get("position") or {"x": 0, "y": 0},
            "label": entry.get("label") or "",
        })

        next_id = entry.get("next")
        if next_id:
            out_edges.append({"id": _edge_id(node_id, next_id), "source": node_id, "target": str(next_id)})

        buttons = config.get("buttons") or entry.get("buttons") or []
        for idx, button in enumerate(buttons if isinstance(buttons, list) else []):
            if not isinstance(button, Mapping) or not button.get("nextNodeId"):
                continue
            handle = str(button.get("id") or f"btn_{idx}")
            target = str(button["nextNodeId"])
            out_edges.append({
                "id": _edge_id(node_id, target, handle),
                "source": node_id,
                "target": target,
                "sourceHandle": handle,
            })

    return {
        "nodes": out_nodes,
        "edges": out_edges,
        "startNode": raw.get("start_node") or raw.get("startNode"),
    }


def parse_flow_document(raw: Any) -> FlowDocument:
    """
    Parse a stored flow config into a FlowDocument.

    Raises:
        InvalidFlowDocumentError: If the value cannot be interpreted as a flow
    """
    if isinstance(raw, FlowDocument):
        return raw
    if raw is None:
        return FlowDocument()
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise InvalidFlowDocumentError(f"Flow config is not valid JSON: {e}") from e
    if not isinstance(raw, Mapping):
        raise InvalidFlowDocumentError(f"Flow config must be an object, got {type(raw).__name__}")

    nodes = raw.get("nodes") or []
    if isinstance(nodes, Mapping):
        doc = _legacy_to_canonical(nodes, raw)
    elif isinstance(nodes, list):
        edges = []
        for edge in raw.get("edges") or []:
            if not isinstance(edge, Mapping) or not edge.get("source") or not edge.get("target"):
                logger.warning(f"[Flow Graph] Skipping malformed edge: {edge}")
                continue
            edge = dict(edge)
            edge.setdefault("id", _edge_id(edge["source"], edge["target"], edge.get("sourceHandle")))
            edges.append(edge)
        doc = {
            "nodes": [_normalize_node(n) for n in nodes if isinstance(n, Mapping) and n.get("id")],
            "edges": edges,
            "startNode": raw.get("startNode") or raw.get("start_node"),
        }
    else:
        raise InvalidFlowDocumentError("Flow config `nodes` must be a list or an object")

    try:
        return FlowDocument.model_validate(doc)
    except ValidationError as e:
        raise InvalidFlowDocumentError(str(e)) from e


def normalize_flow_document(raw: Any) -> FlowDocument:
    """Like parse_flow_document, but an invalid document becomes an empty graph."""
    try:
        return parse_flow_document(raw)
    except InvalidFlowDocumentError as e:
        logger.warning(f"[Flow Graph] Invalid flow document, treating as empty: {e}")
        return FlowDocument()


def _edges_by_source(edges: list[FlowEdge]) -> dict[str, list[FlowEdge]]:
    """Group edges by source node id, keeping document order."""
    out: dict[str, list[FlowEdge]] = {}
    for edge in edges:
        out.setdefault(edge.source, []).append(edge)
    return out


class FlowGraph:
    """Read-only view over a FlowDocument used by the engine."""

    def __init__(self, document: FlowDocument):
        self.document = document
        self.node_map: dict[str, FlowNode] = {}
        for node in document.nodes:
            if node.id in self.node_map:
                logger.warning(f"[Flow Graph] Duplicate node id {node.id}, keeping the first")
                continue
            self.node_map[node.id] = node
        self.edges_by_source = _edges_by_source(document.edges)

    @classmethod
    def from_config(cls, raw: Any) -> "FlowGraph":
        return cls(normalize_flow_document(raw))

    def __len__(self) -> int:
        return len(self.node_map)

    def get_node(self, node_id: str | None) -> FlowNode | None:
        if not node_id:
            return None
        return self.node_map.get(node_id)

    def outgoing(self, node_id: str) -> list[FlowEdge]:
        return self.edges_by_source.get(node_id, [])

    def resolve_start_node(self, explicit: str | None = None) -> str | None:
        """
        Pick where a run begins.

        An explicit start is returned as-is (a missing id halts the run later);
        then the document's startNode, then the first trigger node, then the
        first node in document order.
        """
        if explicit:
            return explicit
        if self.document.startNode and self.document.startNode in self.node_map:
            return self.document.startNode
        for node in self.document.nodes:
            if node.type in TRIGGER_NODE_TYPES:
                return node.id
        if self.document.nodes:
            return self.document.nodes[0].id
        return None

    def next_node_id(self, node_id: str, handle: str | None = None) -> str | None:
        """
        Target of the edge leaving `node_id`.

        With a handle, only an edge carrying that sourceHandle matches. Without
        one, the first handle-less edge wins, falling back to the first edge.
        Duplicate edges resolve to the first in document order.
        """
        edges = self.outgoing(node_id)
        if not edges:
            return None
        if handle is not None:
            for edge in edges:
                if edge.sourceHandle == handle:
                    return edge.target
            return None
        for edge in edges:
            if not edge.sourceHandle:
                return edge.target
        return edges[0].target

    def resolve_branch_target(self, node_id: str, target: str | None) -> str | None:
        """A branch `next` may name a node id or a sourceHandle on the node's edges."""
        if not target:
            return None
        if target in self.node_map:
            return target
        by_handle = self.next_node_id(node_id, handle=target)
        if by_handle:
            return by_handle
        return target
