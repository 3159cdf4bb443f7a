"""
Tests for the function dispatcher and capability registry.
Run with: pytest tests/test_dispatcher.py
"""

import asyncio
import json

import pytest

from lumai.dispatcher import FunctionDispatcher, serialize_result
from lumai.errors import UnsupportedFunction
from lumai.models import FunctionContext, FunctionDeclaration, ToolCallRequest
from lumai.tools.registry import CapabilityRegistry

CTX = FunctionContext(user_id="u1", user_name="Ada")


@pytest.fixture
def registry():
    reg = CapabilityRegistry()

    async def echo(args, context):
        return {"status": "ok", "args": args, "user": context.user_id}

    def sync_handler(args, context):
        return {"status": "ok", "sync": True}

    async def broken(args, context):
        raise RuntimeError("database offline")

    reg.register(FunctionDeclaration("echo", "Echo args"), echo)
    reg.register(FunctionDeclaration("sync", "Sync handler"), sync_handler)
    reg.register(FunctionDeclaration("broken", "Always fails"), broken)
    return reg


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def test_registry_declarations_in_registration_order(registry):
    assert registry.list_tools() == ["echo", "sync", "broken"]
    assert [d.name for d in registry.declarations()] == ["echo", "sync", "broken"]


@pytest.mark.asyncio
async def test_registry_executes_sync_and_async_handlers(registry):
    assert await registry.execute("echo", {"a": 1}, CTX) == {"status": "ok", "args": {"a": 1}, "user": "u1"}
    assert await registry.execute("sync", {}, CTX) == {"status": "ok", "sync": True}


@pytest.mark.asyncio
async def test_registry_rejects_unknown_name(registry):
    with pytest.raises(UnsupportedFunction, match="Unsupported function: nope"):
        await registry.execute("nope", {}, CTX)


@pytest.mark.asyncio
async def test_registry_rejects_missing_context(registry):
    with pytest.raises(UnsupportedFunction):
        await registry.execute("echo", {}, None)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_dispatch_builds_tool_message(registry):
    dispatcher = FunctionDispatcher(registry)
    call = ToolCallRequest(id="call-1", function_name="echo", arguments_json='{"x": 2}')
    msg = await dispatcher.dispatch(call, CTX)
    assert msg.role == "tool"
    assert msg.name == "echo"
    assert msg.tool_call_id == "call-1"
    assert json.loads(msg.content) == {"status": "ok", "args": {"x": 2}, "user": "u1"}


@pytest.mark.asyncio
async def test_failing_capability_becomes_error_result(registry):
    dispatcher = FunctionDispatcher(registry)
    msg = await dispatcher.dispatch(ToolCallRequest(id="c", function_name="broken"), CTX)
    assert json.loads(msg.content) == {"status": "error", "message": "database offline"}


@pytest.mark.asyncio
async def test_unknown_function_becomes_error_result(registry):
    dispatcher = FunctionDispatcher(registry)
    msg = await dispatcher.dispatch(ToolCallRequest(id="c", function_name="get_weather"), CTX)
    payload = json.loads(msg.content)
    assert payload["status"] == "error"
    assert payload["message"] == "Unsupported function: get_weather"


@pytest.mark.asyncio
async def test_missing_name_still_yields_named_tool_message(registry):
    dispatcher = FunctionDispatcher(registry)
    msg = await dispatcher.dispatch(ToolCallRequest(id="c", function_name=""), CTX)
    assert msg.name == "tool"
    assert json.loads(msg.content)["status"] == "error"


@pytest.mark.asyncio
async def test_dispatch_all_preserves_request_order():
    """Slow first call still comes back first."""
    reg = CapabilityRegistry()

    async def slow(args, context):
        await asyncio.sleep(0.05)
        return {"which": "slow"}

    async def fast(args, context):
        return {"which": "fast"}

    reg.register(FunctionDeclaration("slow", ""), slow)
    reg.register(FunctionDeclaration("fast", ""), fast)
    dispatcher = FunctionDispatcher(reg)
    calls = [
        ToolCallRequest(id="a", function_name="slow"),
        ToolCallRequest(id="b", function_name="fast"),
    ]
    messages = await dispatcher.dispatch_all(calls, CTX)
    assert [m.tool_call_id for m in messages] == ["a", "b"]
    assert [json.loads(m.content)["which"] for m in messages] == ["slow", "fast"]


@pytest.mark.asyncio
async def test_dispatch_all_empty():
    assert await FunctionDispatcher(CapabilityRegistry()).dispatch_all([], CTX) == []


def test_serialize_result_handles_none_and_odd_types():
    from datetime import date
    assert serialize_result(None) == "{}"
    assert json.loads(serialize_result({"d": date(2026, 1, 2)})) == {"d": "2026-01-02"}
