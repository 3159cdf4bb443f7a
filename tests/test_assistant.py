"""
Tests for AssistantService: transcript assembly, tracing, sanitizing, summaries.
Run with: pytest tests/test_assistant.py
"""

import json

import pytest

from lumai.assistant import (
    FALLBACK_REPLY,
    AssistantService,
    ensure_prefix,
    sanitize_reply,
)
from lumai.errors import BadRequest, CompletionTransportError
from lumai.models import ChatMessage, CompletionResult, ConversationState, ToolCallRequest
from lumai.orchestrator import ConversationOrchestrator
from lumai.prompt import REPLY_PREFIX
from lumai.storage import InMemoryConversationStore
from lumai.tools.fixture_source import FixtureWellnessSource
from lumai.tools.wellness import build_wellness_registry

FIXTURES = {
    "users": {
        "u1": {
            "metrics": {"bmi": {"value": 23.4}},
            "visualizations": {"weight_trend": {"title": "Weight trend", "data": {"series": [1, 2]}}},
        },
    },
}


class ScriptedClient:
    """Replies in order; records transcripts and the options each call used."""

    configured = True

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    async def complete(self, messages, temperature=0.2, top_p=0.9, max_tokens=750, functions=None):
        self.calls.append({
            "messages": list(messages),
            "functions": functions,
            "temperature": temperature,
            "top_p": top_p,
            "max_tokens": max_tokens,
        })
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return CompletionResult(message=reply)


def _tool_call(name, args):
    msg = ChatMessage(role="assistant", content="")
    msg.tool_calls = [ToolCallRequest(id="call-1", function_name=name, arguments_json=json.dumps(args))]
    return msg


def _service(client, store=None, **kwargs):
    orchestrator = ConversationOrchestrator(client, backoff_seconds=0)
    registry = build_wellness_registry(FixtureWellnessSource(FIXTURES))
    return AssistantService(orchestrator, registry, store or InMemoryConversationStore(), **kwargs)


# ---------------------------------------------------------------------------
# Reply sanitizing
# ---------------------------------------------------------------------------

def test_sanitize_strips_artefacts():
    raw = (
        "<|start|>Your BMI is **23.4**. "
        'assistantcommentary to=functions.get_bmicommentary json {"a": {"b": 1}} '
        '{"chart_url": "http://x"} ![chart](http://img)\n\n  Keep going!'
    )
    assert sanitize_reply(raw) == "Your BMI is **23.4**. Keep going!"


def test_sanitize_empty_falls_back():
    assert sanitize_reply("") == FALLBACK_REPLY
    assert sanitize_reply(None) == FALLBACK_REPLY
    assert sanitize_reply("<|end|>  ") == FALLBACK_REPLY


def test_ensure_prefix():
    assert ensure_prefix("Hello") == f"{REPLY_PREFIX}\nHello"
    already = f"{REPLY_PREFIX}Hello\n\n  more"
    assert ensure_prefix(already) == f"{REPLY_PREFIX}Hello\nmore"


# ---------------------------------------------------------------------------
# Chat turns
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_empty_message_rejected():
    service = _service(ScriptedClient())
    with pytest.raises(BadRequest, match="Message cannot be empty."):
        await service.chat("u1", None, "   \n\t ")


@pytest.mark.asyncio
async def test_transcript_layout_and_persisted_turn():
    client = ScriptedClient(ChatMessage.assistant("Your BMI is 23.4."))
    store = InMemoryConversationStore()
    store.put(ConversationState(user_id="u1", summary="- BMI 23.9 last month", messages=[
        ChatMessage.user("hi"), ChatMessage.assistant("hello"),
    ]))
    service = _service(client, store)

    result = await service.chat("u1", "Ada", "  What's my   current BMI? ")

    sent = client.calls[0]["messages"]
    assert sent[0].role == "system" and "Ada" in sent[0].content
    assert sent[1].content == "Conversation summary:\n- BMI 23.9 last month"
    assert [m.content for m in sent[-3:]] == ["hi", "hello", "What's my current BMI?"]
    assert client.calls[0]["temperature"] == 0.3
    assert [d.name for d in client.calls[0]["functions"]][0] == "get_health_metrics"

    assert result["message"]["content"] == f"{REPLY_PREFIX}\nYour BMI is 23.4."
    assert result["summary"] == "- BMI 23.9 last month"
    assert [m["content"] for m in result["messages"]][-2:] == ["What's my current BMI?", result["message"]["content"]]
    assert result["trace"]["function_calls"] == []
    stored = store.get("u1").messages
    assert len(stored) == 4
    assert stored[-1].content == result["message"]["content"]


@pytest.mark.asyncio
async def test_system_prompt_without_name_uses_the_user():
    client = ScriptedClient(ChatMessage.assistant("ok"))
    await _service(client).chat("u1", None, "hi")
    assert "the user" in client.calls[0]["messages"][0].content


@pytest.mark.asyncio
async def test_tool_calls_traced_and_visualizations_collected():
    client = ScriptedClient(
        _tool_call("get_visualization", {"visualization_type": "weight_trend"}),
        ChatMessage.assistant("Here is your weight trend."),
    )
    store = InMemoryConversationStore()
    result = await _service(client, store).chat("u1", "Ada", "show my weight chart")

    call = result["trace"]["function_calls"][0]
    assert call["name"] == "get_visualization"
    assert call["status"] == "ok"
    assert len(call["result_preview"]) <= 200
    assert result["visualizations"][0]["type"] == "weight_trend"
    assert store.get("u1").messages[-1].metadata["visualizations"][0]["title"] == "Weight trend"


@pytest.mark.asyncio
async def test_unknown_function_traced_as_error():
    client = ScriptedClient(_tool_call("get_weather", {}), ChatMessage.assistant("I can't check weather."))
    result = await _service(client).chat("u1", None, "weather?")
    call = result["trace"]["function_calls"][0]
    assert call["status"] == "error"
    assert call["result_preview"] == "Unsupported function: get_weather"
    tool_msg = client.calls[1]["messages"][-1]
    assert json.loads(tool_msg.content)["status"] == "error"


@pytest.mark.asyncio
async def test_summary_at_threshold_keeps_last_eight():
    history = [ChatMessage.user(f"q{i}") if i % 2 == 0 else ChatMessage.assistant(f"a{i}") for i in range(12)]
    store = InMemoryConversationStore()
    store.put(ConversationState(user_id="u1", messages=history))
    client = ScriptedClient(ChatMessage.assistant("answer"), ChatMessage.assistant("- new summary"))

    result = await _service(client, store).chat("u1", None, "next")

    summary_call = client.calls[1]
    assert summary_call["functions"] is None
    assert (summary_call["temperature"], summary_call["top_p"], summary_call["max_tokens"]) == (0.2, 0.7, 220)
    assert summary_call["messages"][0].content.startswith("You are a summarization assistant.")
    assert len(summary_call["messages"]) == 11
    assert result["summary"] == "- new summary"
    stored = store.get("u1")
    assert stored.summary == "- new summary"
    assert len(stored.messages) == 8
    assert stored.messages[-2].content == "next"


@pytest.mark.asyncio
async def test_failed_summary_keeps_previous():
    history = [ChatMessage.user(f"q{i}") for i in range(12)]
    store = InMemoryConversationStore()
    store.put(ConversationState(user_id="u1", summary="old summary", messages=history))
    client = ScriptedClient(ChatMessage.assistant("answer"), CompletionTransportError("down"))

    result = await _service(client, store).chat("u1", None, "next")

    assert result["summary"] == "old summary"
    assert len(client.calls) == 2
    assert len(store.get("u1").messages) == 8


@pytest.mark.asyncio
async def test_context_window_limits_history():
    history = [ChatMessage.user(f"q{i}") for i in range(20)]
    store = InMemoryConversationStore()
    store.put(ConversationState(user_id="u1", messages=history))
    client = ScriptedClient(ChatMessage.assistant("answer"))

    await _service(client, store, max_context_messages=4, summary_threshold=100).chat("u1", None, "next")

    sent = [m.content for m in client.calls[0]["messages"]]
    assert sent[-5:] == ["q16", "q17", "q18", "q19", "next"]
    assert "q15" not in sent


def test_snapshot_shape():
    store = InMemoryConversationStore()
    store.put(ConversationState(user_id="u1", summary="s", messages=[ChatMessage.user("hi")]))
    snap = _service(ScriptedClient(), store).snapshot("u1")
    assert snap["summary"] == "s"
    assert snap["messages"][0]["role"] == "user"
    assert "T" in snap["messages"][0]["created_at"]
