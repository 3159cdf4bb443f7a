"""
Tool-call normalizer: turn one raw assistant message into ToolCallRequests.

Models disagree about how to ask for a function call. Conformant providers
fill the structured `tool_calls` array (or the older single `function_call`
object). Some open-weight models instead write pseudo-markup straight into the
message text:

    <|channel|>commentary to=functions.get_weight <|constrain|>json<|message|>{}<|call|>

and older checkpoints glue the channel name onto the role:

    assistantcommentary to=functions.get_bmi json {"arguments": {}}

The normalizer runs an ordered chain of extractors and the first one that finds
anything wins. In-band markup is stripped from the visible content and its
function names go through the alias table, because those models tend to invent
names (get_weight, get_chart, visualize_protein, ...) that map onto the
capabilities the host actually exposes. Structured calls are trusted as-is.

Nothing here does I/O or raises: malformed arguments degrade to "{}".
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

from lumai.models import ToolCallRequest, new_call_id

logger = logging.getLogger(__name__)

ArgsTransform = Callable[[dict], dict]


# ---------------------------------------------------------------------------
# Alias table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FunctionAlias:
    """Canonical capability name plus an optional pure argument transform."""
    name: str
    transform: ArgsTransform | None = None

    def apply(self, args: dict) -> dict:
        if self.transform is None:
            return args
        return self.transform(dict(args))


def _fixed(**values) -> ArgsTransform:
    return lambda _args: dict(values)


def _default_day_today(args: dict) -> dict:
    # Server wall-clock date, not the end user's timezone.
    day = args.get("day")
    if isinstance(day, str) and day.strip():
        return args
    return {**args, "day": date.today().isoformat()}


FUNCTION_ALIASES: dict[str, FunctionAlias] = {
    "get_health_metrics": FunctionAlias("get_health_metrics"),
    "get_weight": FunctionAlias("get_health_metrics", _fixed(metric_type="weight", time_period="current")),
    "get_height": FunctionAlias("get_health_metrics", _fixed(metric_type="height", time_period="current")),
    "get_bmi": FunctionAlias("get_health_metrics", _fixed(metric_type="bmi", time_period="current")),
    "get_wellness_score": FunctionAlias("get_health_metrics", _fixed(metric_type="wellness_score", time_period="30d")),
    "get_goal_progress": FunctionAlias("get_goal_progress"),
    "get_meal_plan": FunctionAlias("get_meal_plan"),
    "get_meal_plan_today": FunctionAlias("get_meal_plan", _default_day_today),
    "get_nutrition_snapshot": FunctionAlias("get_nutrition_snapshot"),
    "get_nutrition_summary": FunctionAlias("get_nutrition_snapshot"),
    "get_weekly_nutrition": FunctionAlias("get_nutrition_snapshot", _fixed(time_period="7d")),
    "get_recipe_details": FunctionAlias("get_recipe_details"),
    "get_recipe": FunctionAlias("get_recipe_details"),
    "get_visualization": FunctionAlias("get_visualization"),
    "get_chart": FunctionAlias("get_visualization"),
}

# visualize_<slug> names: first keyword found in the slug picks the chart
VISUALIZATION_SLUGS = (
    ("sleep", "sleep_vs_target"),
    ("protein", "protein_vs_target"),
    ("macro", "macro_breakdown"),
    ("breakdown", "macro_breakdown"),
    ("weight", "weight_trend"),
)
DEFAULT_VISUALIZATION = "weight_trend"

_FUNCTIONS_PREFIX_RE = re.compile(r"^functions\.", re.IGNORECASE)


def _visualization_type(slug: str, args: dict) -> str:
    lowered = slug.lower()
    for keyword, chart in VISUALIZATION_SLUGS:
        if keyword in lowered:
            return chart
    provided = args.get("visualization_type")
    if isinstance(provided, str) and provided.strip():
        return provided.strip()
    return DEFAULT_VISUALIZATION


def resolve_alias(raw_name: str, args: dict) -> tuple[str, dict]:
    """Map a model-invented function name (and its args) onto a canonical capability."""
    normalized = _FUNCTIONS_PREFIX_RE.sub("", raw_name.strip()).strip()
    lowered = normalized.lower()

    alias = FUNCTION_ALIASES.get(lowered)
    if alias is not None:
        return alias.name, alias.apply(args)

    if lowered.startswith("visualize_"):
        slug = normalized[len("visualize_"):]
        return "get_visualization", {**args, "visualization_type": _visualization_type(slug, args)}

    return normalized, args


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

def find_closing_brace(text: str, start: int) -> int:
    """
    Index of the brace that closes the object opening at text[start], or -1.
    Braces inside JSON string literals are ignored.
    """
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return -1


def parse_arguments(payload: Any) -> dict:
    """Parse a JSON argument payload into a dict; anything unusable becomes {}."""
    if isinstance(payload, dict):
        return payload
    if not isinstance(payload, str) or not payload.strip():
        return {}
    try:
        parsed = json.loads(payload)
    except (json.JSONDecodeError, ValueError):
        logger.debug("Unparseable tool arguments: %.120s", payload)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def coerce_arguments_json(payload: Any) -> str:
    """Return payload as valid JSON object text, "{}" when it isn't one."""
    if isinstance(payload, dict):
        return json.dumps(payload)
    if isinstance(payload, str) and payload.strip():
        try:
            if isinstance(json.loads(payload), dict):
                return payload
        except (json.JSONDecodeError, ValueError):
            pass
        logger.debug("Replacing malformed tool arguments with {}: %.120s", payload)
    return "{}"


def _remove_spans(text: str, spans: list[tuple[int, int]], joiner: str = "") -> str:
    pieces = []
    cursor = 0
    for start, end in spans:
        pieces.append(text[cursor:start])
        cursor = end
    pieces.append(text[cursor:])
    return joiner.join(pieces).strip()


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------

class ToolCallExtractor:
    """One supported encoding of function calls in an assistant message."""

    name = "base"

    def extract(self, message: dict, text: str | None) -> tuple[str | None, list[ToolCallRequest]]:
        """Return (remaining text, calls). An empty call list means no match."""
        raise NotImplementedError


class ChannelMarkupExtractor(ToolCallExtractor):
    """<|channel|>commentary to=functions.NAME <|constrain|>json<|message|>{...}[<|call|>]"""

    name = "channel_markup"

    HEADER_RE = re.compile(
        r"<\|channel\|>\s*(?:commentary\s+)?to=functions\.(?P<name>[^\s<{]+)\s*"
        r"<\|constrain\|>\s*json\s*<\|message\|>\s*",
        re.IGNORECASE,
    )
    TERMINATOR_RE = re.compile(r"\s*<\|call\|>(?:assistant)?", re.IGNORECASE)

    def extract(self, message, text):
        if not text:
            return text, []
        calls: list[ToolCallRequest] = []
        spans: list[tuple[int, int]] = []
        pos = 0
        while True:
            match = self.HEADER_RE.search(text, pos)
            if match is None:
                break
            payload_start = match.end()
            if payload_start >= len(text) or text[payload_start] != "{":
                pos = match.end()
                continue
            payload_end = find_closing_brace(text, payload_start)
            if payload_end == -1:
                # Unbalanced payload: it runs to the terminator (or end of text) and parses to {}
                terminator = self.TERMINATOR_RE.search(text, payload_start)
                payload = text[payload_start:terminator.start() if terminator else len(text)]
                span_end = terminator.end() if terminator else len(text)
            else:
                payload = text[payload_start:payload_end + 1]
                span_end = payload_end + 1
                terminator = self.TERMINATOR_RE.match(text, span_end)
                if terminator:
                    span_end = terminator.end()

            args = parse_arguments(payload)
            name, args = resolve_alias(match.group("name"), args)
            calls.append(ToolCallRequest(id=new_call_id(), function_name=name, arguments_json=json.dumps(args)))
            spans.append((match.start(), span_end))
            pos = span_end

        if not calls:
            return text, []
        return _remove_spans(text, spans), calls


class LegacyCommentaryExtractor(ToolCallExtractor):
    """assistantcommentary to=functions.NAME ... {...}; first balanced object is the payload."""

    name = "legacy_commentary"

    HEADER_RE = re.compile(r"assistantcommentary to=functions\.(?P<name>[^\s{]+)", re.IGNORECASE)
    _TRAILING_CHANNEL_RE = re.compile(r"commentary$", re.IGNORECASE)

    def extract(self, message, text):
        if not text:
            return text, []
        calls: list[ToolCallRequest] = []
        spans: list[tuple[int, int]] = []
        pos = 0
        while True:
            match = self.HEADER_RE.search(text, pos)
            if match is None:
                break
            brace_start = text.find("{", match.end())
            if brace_start == -1:
                break
            brace_end = find_closing_brace(text, brace_start)
            if brace_end == -1:
                break

            parsed = parse_arguments(text[brace_start:brace_end + 1])
            nested = parsed.get("arguments")
            args = nested if isinstance(nested, dict) else parsed
            raw_name = self._TRAILING_CHANNEL_RE.sub("", match.group("name"))
            name, args = resolve_alias(raw_name, args)
            calls.append(ToolCallRequest(id=new_call_id(), function_name=name, arguments_json=json.dumps(args)))
            spans.append((match.start(), brace_end + 1))
            pos = brace_end + 1

        if not calls:
            return text, []
        return _remove_spans(text, spans, joiner=" "), calls


class StructuredToolCallsExtractor(ToolCallExtractor):
    """The standard `tool_calls` array. Names are trusted; arguments are still coerced."""

    name = "tool_calls"

    def extract(self, message, text):
        entries = message.get("tool_calls")
        if not isinstance(entries, list):
            return text, []
        calls = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            function = entry.get("function") or {}
            calls.append(ToolCallRequest(
                id=str(entry.get("id") or new_call_id()),
                function_name=str(function.get("name") or ""),
                arguments_json=coerce_arguments_json(function.get("arguments")),
            ))
        return text, calls


class LegacyFunctionCallExtractor(ToolCallExtractor):
    """A single `function_call` object; inherits the message id when there is one."""

    name = "function_call"

    def extract(self, message, text):
        function = message.get("function_call")
        if not isinstance(function, dict):
            return text, []
        call = ToolCallRequest(
            id=str(message.get("id") or new_call_id()),
            function_name=str(function.get("name") or ""),
            arguments_json=coerce_arguments_json(function.get("arguments")),
        )
        return text, [call]


DEFAULT_EXTRACTORS: tuple[ToolCallExtractor, ...] = (
    ChannelMarkupExtractor(),
    LegacyCommentaryExtractor(),
    StructuredToolCallsExtractor(),
    LegacyFunctionCallExtractor(),
)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

@dataclass
class NormalizedMessage:
    """Visible content (markup removed) plus the extracted calls."""
    content: Any
    tool_calls: list[ToolCallRequest]
    source: str = ""


def normalize_message(
    message: dict | None,
    extractors: tuple[ToolCallExtractor, ...] = DEFAULT_EXTRACTORS,
) -> NormalizedMessage:
    """
    Extract tool calls from a raw assistant message.

    `content` is returned untouched when no text extractor matched, so non-string
    content is left for the caller to coerce.
    """
    message = message if isinstance(message, dict) else {}
    raw_content = message.get("content")
    text = raw_content if isinstance(raw_content, str) else None

    for extractor in extractors:
        remaining, calls = extractor.extract(message, text)
        if calls:
            logger.debug(
                "Extracted %d tool call(s) via %s: %s",
                len(calls), extractor.name, [c.function_name for c in calls],
            )
            content = remaining if text is not None else raw_content
            return NormalizedMessage(content=content, tool_calls=calls, source=extractor.name)

    return NormalizedMessage(content=raw_content, tool_calls=[])
