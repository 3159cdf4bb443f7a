"""
Tests for tool-call normalization and alias resolution.
Run with: pytest tests/test_normalizer.py
"""

import json
import re
from datetime import date

import pytest

from lumai.normalizer import (
    coerce_arguments_json,
    find_closing_brace,
    normalize_message,
    parse_arguments,
    resolve_alias,
)

CALL_ID_RE = re.compile(r"^call-[0-9a-f]{32}$")


def _channel(name: str, payload: str = "{}", terminator: str = "<|call|>") -> str:
    return f"<|channel|>commentary to=functions.{name} <|constrain|>json<|message|>{payload}{terminator}"


# ---------------------------------------------------------------------------
# Channel markup
# ---------------------------------------------------------------------------

def test_channel_markup_get_weight_maps_to_health_metrics():
    """get_weight markup resolves to get_health_metrics with fixed args."""
    result = normalize_message({"role": "assistant", "content": _channel("get_weight")})
    assert len(result.tool_calls) == 1
    call = result.tool_calls[0]
    assert call.function_name == "get_health_metrics"
    assert json.loads(call.arguments_json) == {"metric_type": "weight", "time_period": "current"}
    assert CALL_ID_RE.match(call.id)
    assert result.content == ""
    assert result.source == "channel_markup"


def test_channel_markup_strips_every_span():
    """Each marker becomes one call and disappears from the visible content."""
    content = (
        "Checking now. "
        + _channel("get_bmi")
        + " and "
        + _channel("get_meal_plan", '{"day": "2026-10-17", "include_recipes": true}', "<|call|>assistant")
        + " done"
    )
    result = normalize_message({"content": content})
    assert [c.function_name for c in result.tool_calls] == ["get_health_metrics", "get_meal_plan"]
    assert "<|" not in result.content
    assert "functions." not in result.content
    assert result.content.startswith("Checking now.")
    assert result.content.endswith("done")
    for call in result.tool_calls:
        json.loads(call.arguments_json)
    assert len({c.id for c in result.tool_calls}) == 2


def test_channel_markup_nested_payload_captured_whole():
    """Brace matching keeps nested objects and braces inside strings."""
    payload = '{"filter": {"range": {"from": "a}b"}}, "x": 1}'
    result = normalize_message({"content": _channel("get_visualization", payload)})
    args = json.loads(result.tool_calls[0].arguments_json)
    assert args == {"filter": {"range": {"from": "a}b"}}, "x": 1}


def test_channel_markup_malformed_payload_becomes_empty_args():
    """Unparseable JSON degrades to {}."""
    result = normalize_message({"content": _channel("get_goal_progress", "{not json}")})
    assert result.tool_calls[0].function_name == "get_goal_progress"
    assert result.tool_calls[0].arguments_json == "{}"


def test_channel_markup_unbalanced_payload_still_dispatches():
    """An unclosed payload is stripped up to the terminator and the alias args apply."""
    text = "Checking. " + _channel("get_weight", '{"a": {"b": 1}') + "assistant"
    result = normalize_message({"content": text})
    assert len(result.tool_calls) == 1
    call = result.tool_calls[0]
    assert call.function_name == "get_health_metrics"
    assert json.loads(call.arguments_json) == {"metric_type": "weight", "time_period": "current"}
    assert result.content == "Checking."


def test_channel_markup_unbalanced_payload_without_terminator():
    text = '<|channel|>commentary to=functions.get_goal_progress <|constrain|>json<|message|>{"goal_type": '
    result = normalize_message({"content": text})
    assert result.tool_calls[0].function_name == "get_goal_progress"
    assert result.tool_calls[0].arguments_json == "{}"
    assert result.content == ""


def test_in_band_markup_wins_over_structured_tool_calls():
    """Structured tool_calls are ignored when markup is present."""
    message = {
        "content": _channel("get_bmi"),
        "tool_calls": [{"id": "x1", "function": {"name": "get_recipe_details", "arguments": "{}"}}],
    }
    result = normalize_message(message)
    assert [c.function_name for c in result.tool_calls] == ["get_health_metrics"]
    assert result.source == "channel_markup"


def test_alias_resolution_is_deterministic():
    """Same input twice gives the same name and args."""
    message = {"content": _channel("get_wellness_score", '{"ignored": true}')}
    first = normalize_message(message).tool_calls[0]
    second = normalize_message(message).tool_calls[0]
    assert first.function_name == second.function_name == "get_health_metrics"
    assert first.arguments_json == second.arguments_json
    assert json.loads(first.arguments_json) == {"metric_type": "wellness_score", "time_period": "30d"}


# ---------------------------------------------------------------------------
# Legacy commentary
# ---------------------------------------------------------------------------

def test_legacy_commentary_unwraps_arguments():
    """assistantcommentary form uses the nested arguments object."""
    content = 'assistantcommentary to=functions.get_recipecommentary json {"arguments": {"recipe_id": "r1"}} ok'
    result = normalize_message({"content": content})
    assert result.source == "legacy_commentary"
    call = result.tool_calls[0]
    assert call.function_name == "get_recipe_details"
    assert json.loads(call.arguments_json) == {"recipe_id": "r1"}
    assert result.content == "ok"


def test_legacy_commentary_plain_payload():
    """Without an arguments key the whole object is the argument set."""
    content = 'assistantcommentary to=functions.get_weekly_nutrition json {"foo": 1}'
    result = normalize_message({"content": content})
    assert result.tool_calls[0].function_name == "get_nutrition_snapshot"
    assert json.loads(result.tool_calls[0].arguments_json) == {"time_period": "7d"}


# ---------------------------------------------------------------------------
# Structured fields
# ---------------------------------------------------------------------------

def test_structured_tool_calls_verbatim_names():
    """tool_calls names are not aliased; dict arguments are serialized."""
    message = {
        "content": "",
        "tool_calls": [
            {"id": "abc", "type": "function", "function": {"name": "get_weight", "arguments": {"a": 1}}},
            {"function": {"name": "get_goal_progress", "arguments": "not json"}},
        ],
    }
    result = normalize_message(message)
    assert result.source == "tool_calls"
    first, second = result.tool_calls
    assert first.id == "abc"
    assert first.function_name == "get_weight"
    assert json.loads(first.arguments_json) == {"a": 1}
    assert CALL_ID_RE.match(second.id)
    assert second.arguments_json == "{}"


def test_legacy_function_call_inherits_message_id():
    message = {"id": "msg-7", "function_call": {"name": "get_meal_plan", "arguments": '{"day": "2026-01-01"}'}}
    result = normalize_message(message)
    assert result.source == "function_call"
    assert result.tool_calls[0].id == "msg-7"
    assert json.loads(result.tool_calls[0].arguments_json) == {"day": "2026-01-01"}


def test_plain_message_has_no_calls():
    """Content is returned untouched when nothing matches."""
    result = normalize_message({"role": "assistant", "content": "Your BMI is 23.4."})
    assert result.tool_calls == []
    assert result.content == "Your BMI is 23.4."


def test_non_dict_message_is_tolerated():
    result = normalize_message(None)
    assert result.tool_calls == []
    assert result.content is None


# ---------------------------------------------------------------------------
# Alias table
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("raw,expected", [
    ("functions.get_recipe", "get_recipe_details"),
    ("GET_CHART", "get_visualization"),
    ("get_nutrition_summary", "get_nutrition_snapshot"),
    ("get_health_metrics", "get_health_metrics"),
    ("something_new", "something_new"),
])
def test_resolve_alias_names(raw, expected):
    name, _ = resolve_alias(raw, {})
    assert name == expected


def test_meal_plan_today_defaults_day_to_server_date():
    name, args = resolve_alias("get_meal_plan_today", {"include_recipes": True, "day": "  "})
    assert name == "get_meal_plan"
    assert args == {"include_recipes": True, "day": date.today().isoformat()}


def test_meal_plan_today_keeps_given_day():
    _, args = resolve_alias("get_meal_plan_today", {"day": "2026-02-02"})
    assert args == {"day": "2026-02-02"}


@pytest.mark.parametrize("raw,args,chart", [
    ("visualize_sleep_hours", {}, "sleep_vs_target"),
    ("visualize_protein", {}, "protein_vs_target"),
    ("visualize_macro_split", {}, "macro_breakdown"),
    ("visualize_daily_breakdown", {}, "macro_breakdown"),
    ("visualize_weight", {}, "weight_trend"),
    ("visualize_steps", {"visualization_type": "protein_vs_target"}, "protein_vs_target"),
    ("visualize_steps", {}, "weight_trend"),
])
def test_visualize_slugs(raw, args, chart):
    name, resolved = resolve_alias(raw, args)
    assert name == "get_visualization"
    assert resolved["visualization_type"] == chart


def test_alias_transform_does_not_mutate_input():
    args = {"day": ""}
    resolve_alias("get_meal_plan_today", args)
    assert args == {"day": ""}


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

def test_find_closing_brace():
    text = 'x {"a": {"b": "}"}} tail'
    start = text.index("{")
    assert text[find_closing_brace(text, start)] == "}"
    assert text[find_closing_brace(text, start) + 1:] == " tail"
    assert find_closing_brace("{ unterminated", 0) == -1


def test_parse_and_coerce_arguments():
    assert parse_arguments('{"a": 1}') == {"a": 1}
    assert parse_arguments("[1, 2]") == {}
    assert parse_arguments("") == {}
    assert coerce_arguments_json('{"a": 1}') == '{"a": 1}'
    assert coerce_arguments_json("[]") == "{}"
    assert coerce_arguments_json(None) == "{}"
