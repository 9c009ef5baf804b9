from __future__ import annotations

from datetime import datetime, timezone

from flow_orchestrator.core.variable_store import VariableStore, flatten_variables, stringify_value


def _fixed_clock():
    return datetime(2024, 3, 15, 23, 30, 5, tzinfo=timezone.utc)


def test_interpolate_replaces_known_placeholders():
    store = VariableStore({"user.name": "Ada", "order.total": 42})
    assert store.interpolate("Hi {{user.name}}, you owe {{ order.total }}") == "Hi Ada, you owe 42"


def test_unresolved_placeholder_is_left_verbatim():
    store = VariableStore({"user.name": "Ada"})
    assert store.interpolate("Hello {{user.nickname}}!") == "Hello {{user.nickname}}!"


def test_interpolation_is_idempotent_without_placeholders():
    store = VariableStore({"a": 1})
    text = "plain text with { braces } but no placeholders"
    assert store.interpolate(text) == text
    assert store.interpolate(store.interpolate(text)) == text


def test_non_string_values_pass_through_interpolate():
    store = VariableStore({"a": 1})
    assert store.interpolate(None) is None
    assert store.interpolate(12) == 12


def test_flat_key_wins_over_nested_descent():
    store = VariableStore({
        "webhook.body": {"name": "nested"},
        "webhook.body.name": "flat",
    })
    assert store.get("webhook.body.name") == "flat"


def test_longest_prefix_then_descends_into_mappings():
    store = VariableStore({"http.response": {"user": {"id": 7, "tags": ["a", "b"]}}})
    assert store.get("http.response.user.id") == 7
    assert store.interpolate("{{http.response.user}}") == '{"id":7,"tags":["a","b"]}'
    # lists are never indexed
    assert store.get("http.response.user.tags.0") is None
    assert not store.has("http.response.user.tags.0")


def test_node_output_is_readable_by_node_id():
    store = VariableStore()
    store.set_node_output("send-1", {"sent": True, "error": None})
    assert store.interpolate("{{send-1.sent}}") == "true"
    assert store.interpolate("{{send-1.error}}") == "null"


def test_stringify_value_matches_builder_preview():
    assert stringify_value(None) == "null"
    assert stringify_value(False) == "false"
    assert stringify_value(3.0) == "3"
    assert stringify_value(2.5) == "2.5"
    assert stringify_value({"a": [1, 2]}) == '{"a":[1,2]}'


def test_system_variables_use_clock_and_timezone():
    store = VariableStore(clock=_fixed_clock, tz_name="Asia/Kolkata", server_base_url="https://flows.example.com")
    assert store.get("system.current_date") == "2024-03-16"
    assert store.get("system.current_time") == "05:00:05"
    assert store.get("system.current_date_time") == "2024-03-15T23:30:05.000Z"
    assert store.get("system.timestamp") == int(_fixed_clock().timestamp() * 1000)
    assert store.interpolate("{{system.server_base_url}}/hook") == "https://flows.example.com/hook"


def test_system_variables_win_over_flow_variables():
    store = VariableStore({"system.current_date": "stale"}, clock=_fixed_clock)
    assert store.get("system.current_date") == "2024-03-15"


def test_unknown_timezone_falls_back_to_utc():
    store = VariableStore(clock=_fixed_clock, tz_name="Mars/Olympus")
    assert store.get("system.current_time") == "23:30:05"


def test_interpolate_value_recurses_into_containers():
    store = VariableStore({"name": "Ada"})
    value = {"greeting": "hi {{name}}", "items": ["{{name}}", 3], "n": None}
    assert store.interpolate_value(value) == {"greeting": "hi Ada", "items": ["Ada", 3], "n": None}


def test_flatten_variables_caps_depth_and_skips_lists():
    payload = {"a": {"b": {"c": {"d": {"e": {"f": 1}}}}}, "items": [{"x": 1}]}
    flat = flatten_variables(payload, "webhook.body")

    assert flat["webhook.body.a.b.c.d.e"] == {"f": 1}
    assert "webhook.body.a.b.c.d.e.f" not in flat
    assert flat["webhook.body.items"] == [{"x": 1}]
    assert "webhook.body.items.x" not in flat


def test_merge_overwrites_and_snapshot_is_independent():
    store = VariableStore({"a": 1, "nested": {"k": "v"}})
    store.merge({"a": 2, "b": 3})
    snap = store.snapshot()
    snap["nested"]["k"] = "changed"

    assert store.variables["a"] == 2
    assert store.variables["b"] == 3
    assert store.get("nested.k") == "v"
