from __future__ import annotations

import json

import pytest

from flow_orchestrator.core.errors import InvalidFlowDocumentError
from flow_orchestrator.core.graph import FlowGraph, normalize_flow_document, parse_flow_document


def _doc(nodes, edges=None, **extra):
    return {"nodes": nodes, "edges": edges or [], **extra}


def test_parses_canonical_document():
    doc = parse_flow_document(_doc(
        [{"id": "a", "type": "on_message"}, {"id": "b", "type": "send_message", "config": {"text": "hi"}}],
        [{"id": "e1", "source": "a", "target": "b"}],
    ))
    assert [n.id for n in doc.nodes] == ["a", "b"]
    assert doc.nodes[1].config == {"text": "hi"}
    assert doc.edges[0].target == "b"


def test_parses_json_string_and_editor_data_wrapper():
    raw = json.dumps(_doc([
        {"id": "a", "type": "custom", "data": {"type": "send_message", "config": {"text": "x"}, "label": "Say"}},
    ]))
    doc = parse_flow_document(raw)
    node = doc.nodes[0]
    assert node.type == "send_message"
    assert node.config == {"text": "x"}
    assert node.label == "Say"


def test_malformed_edges_are_dropped_and_ids_defaulted():
    doc = parse_flow_document(_doc(
        [{"id": "a", "type": "x"}, {"id": "b", "type": "x"}],
        [{"source": "a", "target": "b"}, {"source": "a"}, "junk"],
    ))
    assert len(doc.edges) == 1
    assert doc.edges[0].id == "a->b"


def test_legacy_node_map_derives_edges_from_next_pointers():
    legacy = {
        "start_node": "n1",
        "nodes": {
            "n1": {"type": "send_message", "text": "hello", "next": "n2"},
            "n2": {
                "type": "send_button",
                "body_text": "pick",
                "buttons": [{"id": "yes", "title": "Yes", "nextNodeId": "n3"}, {"title": "No", "nextNodeId": "n4"}],
            },
            "n3": {"type": "end"},
            "n4": {"type": "end"},
        },
    }
    graph = FlowGraph(parse_flow_document(legacy))

    assert graph.resolve_start_node() == "n1"
    assert graph.get_node("n1").config == {"text": "hello"}
    assert graph.next_node_id("n1") == "n2"
    assert graph.next_node_id("n2", handle="yes") == "n3"
    assert graph.next_node_id("n2", handle="btn_1") == "n4"


def test_invalid_documents():
    with pytest.raises(InvalidFlowDocumentError):
        parse_flow_document("{not json")
    with pytest.raises(InvalidFlowDocumentError):
        parse_flow_document([1, 2, 3])
    assert normalize_flow_document("{not json").nodes == []
    assert parse_flow_document(None).nodes == []


def test_start_node_resolution_order():
    nodes = [{"id": "first", "type": "send_message"}, {"id": "trigger", "type": "on_message"}]
    assert FlowGraph(parse_flow_document(_doc(nodes))).resolve_start_node() == "trigger"
    assert FlowGraph(parse_flow_document(_doc(nodes, startNode="first"))).resolve_start_node() == "first"
    # explicit start is returned even when it does not exist
    assert FlowGraph(parse_flow_document(_doc(nodes))).resolve_start_node("ghost") == "ghost"
    no_trigger = [{"id": "x", "type": "send_message"}, {"id": "y", "type": "end"}]
    assert FlowGraph(parse_flow_document(_doc(no_trigger))).resolve_start_node() == "x"
    assert FlowGraph(parse_flow_document(_doc([]))).resolve_start_node() is None


def test_duplicate_edges_resolve_to_first_in_document_order():
    graph = FlowGraph(parse_flow_document(_doc(
        [{"id": "a", "type": "x"}, {"id": "b", "type": "x"}, {"id": "c", "type": "x"}],
        [
            {"id": "e1", "source": "a", "target": "b", "sourceHandle": "h"},
            {"id": "e2", "source": "a", "target": "c", "sourceHandle": "h"},
            {"id": "e3", "source": "a", "target": "c"},
        ],
    )))
    assert graph.next_node_id("a", handle="h") == "b"
    # handle-less lookups prefer the unconditional edge
    assert graph.next_node_id("a") == "c"
    assert graph.next_node_id("a", handle="missing") is None
    assert graph.next_node_id("c") is None


def test_handle_only_edges_fall_back_to_first_edge():
    graph = FlowGraph(parse_flow_document(_doc(
        [{"id": "a", "type": "x"}, {"id": "b", "type": "x"}],
        [{"id": "e1", "source": "a", "target": "b", "sourceHandle": "true"}],
    )))
    assert graph.next_node_id("a") == "b"


def test_branch_target_resolves_node_id_then_handle():
    graph = FlowGraph(parse_flow_document(_doc(
        [{"id": "cond", "type": "conditional"}, {"id": "yes", "type": "end"}],
        [{"id": "e1", "source": "cond", "target": "yes", "sourceHandle": "true"}],
    )))
    assert graph.resolve_branch_target("cond", "yes") == "yes"
    assert graph.resolve_branch_target("cond", "true") == "yes"
    assert graph.resolve_branch_target("cond", "ghost") == "ghost"
    assert graph.resolve_branch_target("cond", None) is None


def test_duplicate_node_ids_keep_first():
    graph = FlowGraph(parse_flow_document(_doc([
        {"id": "a", "type": "send_message", "config": {"text": "one"}},
        {"id": "a", "type": "send_message", "config": {"text": "two"}},
    ])))
    assert len(graph) == 1
    assert graph.get_node("a").config == {"text": "one"}
