"""
Condition Evaluator

Evaluates the ordered condition list of a `conditional` node. The first
condition that holds selects its `next` target; when none holds the node's
`default_next` is used.

Comparison semantics follow the flow builder's JavaScript preview, so
`"1" == 1` holds and `"10" > 9` holds. A variable that does not exist
never equals anything, and is treated as "" for `contains`.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Mapping

from flow_orchestrator.core.variable_store import VariableStore, stringify_value

logger = logging.getLogger(__name__)


class ConditionOperator:
    """Operators available in the conditional node editor."""
    EQUALS = "=="
    NOT_EQUALS = "!="
    GREATER_THAN = ">"
    LESS_THAN = "<"
    GREATER_OR_EQUAL = ">="
    LESS_OR_EQUAL = "<="
    CONTAINS = "contains"


class _Undefined:
    """A variable that is not set at all (distinct from an explicit None)."""

    def __repr__(self) -> str:
        return "undefined"


UNDEFINED = _Undefined()


def _to_number(value: Any) -> float:
    if value is UNDEFINED:
        return math.nan
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return 0.0
        try:
            return float(s)
        except ValueError:
            return math.nan
    if isinstance(value, list):
        return _to_number(_to_primitive(value))
    return math.nan


def _to_primitive(value: Any) -> Any:
    if isinstance(value, list):
        return ",".join("" if v is None else stringify_value(v) for v in value)
    if isinstance(value, dict):
        return "[object Object]"
    return value


def loose_equals(left: Any, right: Any) -> bool:
    """JavaScript `==` for JSON-shaped values."""
    if left is UNDEFINED or right is UNDEFINED:
        return (left is UNDEFINED or left is None) and (right is UNDEFINED or right is None)
    if left is None or right is None:
        return left is None and right is None

    left_obj = isinstance(left, (dict, list))
    right_obj = isinstance(right, (dict, list))
    if left_obj and right_obj:
        return left is right
    if left_obj:
        left = _to_primitive(left)
    if right_obj:
        right = _to_primitive(right)

    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if isinstance(left, bool) and isinstance(right, bool):
        return left == right
    return _to_number(left) == _to_number(right)


def _relational(left: Any, right: Any) -> tuple[Any, Any] | None:
    """Coerce operands for <, >, <=, >=; None means the comparison is false."""
    left = _to_primitive(left)
    right = _to_primitive(right)
    if isinstance(left, str) and isinstance(right, str):
        return left, right
    a, b = _to_number(left), _to_number(right)
    if math.isnan(a) or math.isnan(b):
        return None
    return a, b


def compare(left: Any, operator: str, right: Any) -> bool:
    """Apply one operator; unknown operators never match."""
    try:
        if operator == ConditionOperator.EQUALS:
            return loose_equals(left, right)
        if operator == ConditionOperator.NOT_EQUALS:
            return not loose_equals(left, right)
        if operator == ConditionOperator.CONTAINS:
            haystack = "" if left is UNDEFINED or left is None else stringify_value(left)
            needle = "" if right is UNDEFINED or right is None else stringify_value(right)
            return needle in haystack
        if operator in (
            ConditionOperator.GREATER_THAN,
            ConditionOperator.LESS_THAN,
            ConditionOperator.GREATER_OR_EQUAL,
            ConditionOperator.LESS_OR_EQUAL,
        ):
            pair = _relational(left, right)
            if pair is None:
                return False
            a, b = pair
            if operator == ConditionOperator.GREATER_THAN:
                return a > b
            if operator == ConditionOperator.LESS_THAN:
                return a < b
            if operator == ConditionOperator.GREATER_OR_EQUAL:
                return a >= b
            return a <= b
    except (TypeError, ValueError) as e:
        logger.warning(f"[Condition] Failed to compare with operator {operator}: {e}")
        return False

    logger.warning(f"[Condition] Unknown operator: {operator}")
    return False


def _variable_path(raw: Any) -> str:
    path = str(raw or "").strip()
    if path.startswith("{{") and path.endswith("}}"):
        path = path[2:-2].strip()
    return path


def evaluate_condition(condition: Mapping[str, Any], store: VariableStore) -> bool:
    path = _variable_path(condition.get("variable"))
    left = store.get(path, UNDEFINED) if path else UNDEFINED
    right = store.interpolate(condition.get("value"))
    return compare(left, str(condition.get("operator", ConditionOperator.EQUALS)), right)


def select_branch(
    conditions: Iterable[Mapping[str, Any]],
    store: VariableStore,
    default_next: str | None = None,
) -> str | None:
    """Return the `next` of the first matching condition, else `default_next`."""
    for condition in conditions:
        if evaluate_condition(condition, store):
            logger.debug(
                f"[Condition] Matched {condition.get('variable')} "
                f"{condition.get('operator')} {condition.get('value')}"
            )
            return condition.get("next") or None
    return default_next or None


__all__ = [
    "ConditionOperator",
    "UNDEFINED",
    "compare",
    "evaluate_condition",
    "loose_equals",
    "select_branch",
]
