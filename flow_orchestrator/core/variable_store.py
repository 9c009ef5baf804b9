"""
Variable Store

Holds the variables of one flow execution and resolves `{{dotted.path}}`
placeholders inside node configuration.

Lookup rules for `get(path)`:
1. `system.*` keys are computed fresh on every call and win over flow variables
2. An exact flat key (e.g. "webhook.body.name") wins next
3. Otherwise the longest existing key prefix is taken and the remaining
   segments descend into nested mappings (lists are never indexed)

Unresolved placeholders are left verbatim in the output.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

# Matches {{ path }} placeholders
TEMPLATE_REGEX = re.compile(r"\{\{([^}]+)\}\}")

DEFAULT_MAX_DEPTH = 5

_MISSING = object()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def stringify_value(value: Any) -> str:
    """Render a resolved value the way the flow builder previews it."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(value)


def flatten_variables(
    obj: Any,
    prefix: str = "",
    max_depth: int = DEFAULT_MAX_DEPTH,
    _depth: int = 0,
) -> dict[str, Any]:
    """
    Flatten a nested mapping into dotted keys.

    Every key is stored (including intermediate mappings). Recursion only
    descends into mappings, never lists, and no produced key has more than
    `max_depth` segments past `prefix`.
    """
    out: dict[str, Any] = {}
    if not isinstance(obj, Mapping):
        return out

    for key, value in obj.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        out[full_key] = value
        if isinstance(value, Mapping) and _depth + 1 < max_depth:
            out.update(flatten_variables(value, full_key, max_depth, _depth + 1))
    return out


class VariableStore:
    """Mutable variable map for a single execution."""

    def __init__(
        self,
        variables: Mapping[str, Any] | None = None,
        clock: Callable[[], datetime] | None = None,
        tz_name: str = "UTC",
        server_base_url: str = "",
    ):
        self.variables: dict[str, Any] = dict(variables or {})
        self._clock = clock or _utc_now
        self._tz_name = tz_name
        self._server_base_url = server_base_url

    # --- system variables ---

    def _local_tz(self):
        try:
            return ZoneInfo(self._tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"[Variables] Unknown timezone '{self._tz_name}', using UTC")
            return timezone.utc

    def system_variables(self) -> dict[str, Any]:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local = now.astimezone(self._local_tz())
        iso = now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        return {
            "system.current_date": local.strftime("%Y-%m-%d"),
            "system.current_time": local.strftime("%H:%M:%S"),
            "system.current_date_time": iso,
            "system.current_datetime": iso,
            "system.timestamp": int(now.timestamp() * 1000),
            "system.server_base_url": self._server_base_url,
        }

    # --- lookup ---

    def _lookup(self, path: str) -> Any:
        if path.startswith("system."):
            system = self.system_variables()
            if path in system:
                return system[path]

        if path in self.variables:
            return self.variables[path]

        parts = path.split(".")
        for i in range(len(parts) - 1, 0, -1):
            prefix = ".".join(parts[:i])
            if prefix not in self.variables:
                continue
            current: Any = self.variables[prefix]
            for part in parts[i:]:
                if isinstance(current, Mapping) and part in current:
                    current = current[part]
                else:
                    return _MISSING
            return current
        return _MISSING

    def get(self, path: str, default: Any = None) -> Any:
        value = self._lookup(path.strip())
        return default if value is _MISSING else value

    def has(self, path: str) -> bool:
        return self._lookup(path.strip()) is not _MISSING

    # --- interpolation ---

    def interpolate(self, template: Any) -> Any:
        """Replace every {{path}} in a string; non-strings pass through."""
        if not isinstance(template, str) or "{{" not in template:
            return template

        def _replace(match: re.Match) -> str:
            value = self._lookup(match.group(1).strip())
            if value is _MISSING:
                return match.group(0)
            return stringify_value(value)

        return TEMPLATE_REGEX.sub(_replace, template)

    def interpolate_value(self, value: Any) -> Any:
        """Recursively interpolate strings nested in dicts and lists."""
        if isinstance(value, str):
            return self.interpolate(value)
        if isinstance(value, dict):
            return {k: self.interpolate_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.interpolate_value(v) for v in value]
        return value

    # --- mutation ---

    def set(self, key: str, value: Any) -> None:
        self.variables[key] = value

    def merge(self, values: Mapping[str, Any] | None) -> None:
        """Shallow merge; incoming keys overwrite existing ones."""
        if values:
            self.variables.update(values)

    def set_node_output(self, node_id: str, output: Mapping[str, Any]) -> None:
        """Store a node's result under its id so later nodes can read `{{nodeId.field}}`."""
        self.variables[node_id] = dict(output)

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self.variables)

    def __contains__(self, key: str) -> bool:
        return key in self.variables

    def __len__(self) -> int:
        return len(self.variables)
