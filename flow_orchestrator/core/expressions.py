"""
CEL helpers for transform nodes.

Transform nodes compute a value from the run's variables with a CEL
expression instead of executing user code. The activation exposes:

- `vars`: every flow variable, keyed by its (possibly dotted) name
- one top-level binding per entry in the node's `input_variables`, named
  with dots replaced by underscores (e.g. `webhook.body.age` -> `webhook_body_age`)
"""

from __future__ import annotations

import functools
import re
from typing import Any, Iterable, Mapping

import celpy
from celpy import celtypes
from celpy.adapter import json_to_cel

from flow_orchestrator.core.errors import TransformError

_CEL_ENV = celpy.Environment()
CEL_PROGRAM_CACHE_SIZE = 256

_IDENT_RE = re.compile(r"[^A-Za-z0-9_]")


def binding_name(variable: str) -> str:
    name = _IDENT_RE.sub("_", variable.strip())
    if name and name[0].isdigit():
        name = f"_{name}"
    return name


@functools.lru_cache(maxsize=CEL_PROGRAM_CACHE_SIZE)
def _program(expression: str) -> Any:
    try:
        ast = _CEL_ENV.compile(expression)
    except celpy.CELParseError as e:
        raise TransformError(f"Invalid expression: {e}") from e
    return _CEL_ENV.program(ast)


def _from_cel(value: Any) -> Any:
    """Convert celpy result types back into plain JSON-compatible Python."""
    if isinstance(value, celtypes.BoolType):
        return bool(value)
    if isinstance(value, (celtypes.IntType, celtypes.UintType)):
        return int(value)
    if isinstance(value, celtypes.DoubleType):
        return float(value)
    if isinstance(value, celtypes.StringType):
        return str(value)
    if isinstance(value, celtypes.MapType):
        return {str(_from_cel(k)): _from_cel(v) for k, v in value.items()}
    if isinstance(value, celtypes.ListType):
        return [_from_cel(v) for v in value]
    if isinstance(value, Mapping):
        return {str(k): _from_cel(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_from_cel(v) for v in value]
    return value


def _json_safe(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def evaluate_transform(
    expression: str,
    variables: Mapping[str, Any],
    input_variables: Iterable[str] = (),
    lookup: Any = None,
) -> Any:
    """
    Evaluate a CEL expression against flow variables.

    `lookup` resolves each entry of `input_variables` (defaults to a flat
    dict get). Raises TransformError on compile or evaluation failure.
    """
    if not expression or not expression.strip():
        raise TransformError("Transform expression is empty")

    program = _program(expression.strip())
    activation: dict[str, Any] = {"vars": json_to_cel(_json_safe(dict(variables)))}
    for name in input_variables:
        value = lookup(name) if lookup is not None else variables.get(name)
        activation[binding_name(name)] = json_to_cel(_json_safe(value))

    try:
        result = program.evaluate(activation)
    except celpy.CELEvalError as e:
        raise TransformError(f"Expression failed: {e}") from e
    if isinstance(result, celpy.CELEvalError):
        raise TransformError(f"Expression failed: {result}")
    return _from_cel(result)


__all__ = ["binding_name", "evaluate_transform"]
