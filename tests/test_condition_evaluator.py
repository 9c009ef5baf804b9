from __future__ import annotations

import pytest

from flow_orchestrator.core.condition_evaluator import compare, evaluate_condition, select_branch
from flow_orchestrator.core.variable_store import VariableStore


@pytest.mark.parametrize(
    "left,operator,right,expected",
    [
        ("1", "==", 1, True),
        ("abc", "==", "abc", True),
        ("abc", "!=", "abd", True),
        ("10", ">", 9, True),
        ("10", ">", "9", False),  # two strings compare lexically
        (5, ">=", "5", True),
        (3, "<", "x", False),
        ("hello world", "contains", "world", True),
        ([1, 2], "contains", "2", True),
        (None, "==", None, True),
        (None, "==", 0, False),
        (True, "==", 1, True),
        ("a", "~=", "a", False),
    ],
)
def test_compare_follows_loose_equality(left, operator, right, expected):
    assert compare(left, operator, right) is expected


def test_missing_variable_never_equals_and_contains_empty():
    store = VariableStore({})
    assert evaluate_condition({"variable": "missing", "operator": "==", "value": ""}, store) is False
    assert evaluate_condition({"variable": "missing", "operator": "!=", "value": "x"}, store) is True
    assert evaluate_condition({"variable": "missing", "operator": "contains", "value": ""}, store) is True
    assert evaluate_condition({"variable": "missing", "operator": "contains", "value": "x"}, store) is False


def test_variable_may_be_written_as_placeholder_and_value_is_interpolated():
    store = VariableStore({"age": 21, "threshold": "18"})
    condition = {"variable": "{{age}}", "operator": ">=", "value": "{{threshold}}"}
    assert evaluate_condition(condition, store) is True


def test_first_matching_condition_wins():
    store = VariableStore({"tier": "gold", "score": 90})
    conditions = [
        {"variable": "score", "operator": ">", "value": "50", "next": "high"},
        {"variable": "tier", "operator": "==", "value": "gold", "next": "gold"},
    ]
    assert select_branch(conditions, store, "fallback") == "high"


def test_no_match_uses_default_or_none():
    store = VariableStore({"tier": "silver"})
    conditions = [{"variable": "tier", "operator": "==", "value": "gold", "next": "gold"}]
    assert select_branch(conditions, store, "fallback") == "fallback"
    assert select_branch(conditions, store, None) is None
    assert select_branch([], store, "") is None
