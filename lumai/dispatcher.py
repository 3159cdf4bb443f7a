"""
Function dispatcher: run the model's tool calls and wrap the results.

Each call becomes exactly one `role=tool` message. A capability that raises
never takes the turn down with it: the failure is turned into
{"status": "error", "message": ...} and handed to the model like any other
result, so it can explain the problem to the user.

Calls from the same assistant message run concurrently; their result messages
come back in the order the model asked for them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from lumai.models import TOOL_ROLE, ChatMessage, FunctionContext, ToolCallRequest
from lumai.normalizer import parse_arguments

logger = logging.getLogger(__name__)


class FunctionExecutor(Protocol):
    async def execute(self, name: str, args: dict, context: FunctionContext | None = None) -> Any:
        ...


def error_result(exc: BaseException) -> dict:
    return {"status": "error", "message": str(exc) or "Failed to execute function call"}


def serialize_result(result: Any) -> str:
    """JSON text for a tool message; None becomes {} and unknown types fall back to str()."""
    try:
        return json.dumps({} if result is None else result, default=str)
    except (TypeError, ValueError) as e:
        logger.warning("Function result could not be serialized: %s", e)
        return json.dumps({"status": "error", "message": "Result could not be serialized"})


class FunctionDispatcher:
    """Executes normalized tool calls against a registry (or any executor)."""

    def __init__(self, executor: FunctionExecutor):
        self.executor = executor

    async def execute(self, name: str, args: dict, context: FunctionContext | None = None) -> Any:
        """Invoke one capability; exceptions become an error-shaped result."""
        try:
            return await self.executor.execute(name, args, context)
        except Exception as e:
            logger.warning("Function '%s' failed: %s", name, e)
            return error_result(e)

    async def dispatch(self, call: ToolCallRequest, context: FunctionContext | None = None) -> ChatMessage:
        """Run one tool call and build its tool-result message."""
        name = call.function_name or "tool"
        args = parse_arguments(call.arguments_json)
        result = await self.execute(call.function_name, args, context)
        return ChatMessage(
            role=TOOL_ROLE,
            name=name,
            tool_call_id=call.id,
            content=serialize_result(result),
        )

    async def dispatch_all(
        self,
        calls: list[ToolCallRequest],
        context: FunctionContext | None = None,
    ) -> list[ChatMessage]:
        """Run every call concurrently; results are returned in request order."""
        if not calls:
            return []
        return list(await asyncio.gather(*(self.dispatch(call, context) for call in calls)))
