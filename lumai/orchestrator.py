"""
Conversation orchestrator: the tool-calling loop.

One run() drives a transcript to a plain natural-language answer:

    attempt loop (retry_count + 1 attempts, backoff 0.5s x attempt number)
      depth loop (at most max_tool_depth completions)
        1. send the transcript (plus function declarations) to the model
        2. no tool calls, or no dispatcher?  -> done, return that message
        3. append the assistant's tool-call message
        4. dispatch every call, append one tool message per call, in order
      depth exhausted -> ToolDepthExceeded

Any CompletionError (transport, timeout, depth) consumes an attempt; the next
attempt starts again from the caller's original transcript. On the last attempt
the error propagates. ServiceUnavailable is raised before the first attempt and
never retried.

All loop state is local to run(); one orchestrator can serve many users at once.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from lumai.completion import CompletionClient
from lumai.dispatcher import FunctionDispatcher
from lumai.errors import CompletionError, ServiceUnavailable, ToolDepthExceeded
from lumai.models import ChatMessage, CompletionResult, FunctionContext, FunctionDeclaration
from lumai.wiretap import WireLog

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_SECONDS = 0.5


@dataclass
class CompletionOptions:
    """Sampling and loop bounds for one orchestrator run."""
    temperature: float = 0.2
    top_p: float = 0.9
    max_tokens: int = 750
    retry_count: int = 1
    max_tool_depth: int = 5

    @classmethod
    def from_config(cls, cfg: dict) -> "CompletionOptions":
        a_cfg = cfg.get("assistant", {})
        return cls(
            temperature=float(a_cfg.get("temperature", 0.3)),
            top_p=float(a_cfg.get("top_p", 0.85)),
            max_tokens=int(a_cfg.get("max_tokens", 650)),
            retry_count=int(a_cfg.get("retry_count", 1)),
            max_tool_depth=int(a_cfg.get("max_tool_depth", 5)),
        )


class ConversationOrchestrator:
    """Runs the request / tool-execution cycle until the model answers."""

    def __init__(
        self,
        client: CompletionClient,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        wire: WireLog | None = None,
    ):
        self.client = client
        self.backoff_seconds = backoff_seconds
        self.wire = wire

    @classmethod
    def from_config(cls, cfg: dict, client: CompletionClient | None = None, wire: WireLog | None = None):
        return cls(
            client=client or CompletionClient.from_config(cfg),
            backoff_seconds=float(cfg.get("assistant", {}).get("backoff_seconds", DEFAULT_BACKOFF_SECONDS)),
            wire=wire,
        )

    async def run(
        self,
        messages: list[ChatMessage],
        options: CompletionOptions | None = None,
        functions: list[FunctionDeclaration] | None = None,
        dispatcher: FunctionDispatcher | None = None,
        context: FunctionContext | None = None,
    ) -> CompletionResult:
        """Return the model's final answer for `messages`. The input list is never mutated."""
        options = options or CompletionOptions()
        if not self.client.configured:
            raise ServiceUnavailable("AI provider not configured")

        retry_count = max(0, options.retry_count)
        for attempt in range(retry_count + 1):
            try:
                return await self._run_tool_loop(list(messages), options, functions, dispatcher, context)
            except CompletionError as e:
                if attempt == retry_count:
                    logger.error(
                        "Assistant failed after %d attempt(s): %s", attempt + 1, e,
                    )
                    raise
                delay = self.backoff_seconds * (attempt + 1)
                logger.warning(
                    "Assistant attempt %d/%d failed (%s), retry in %.1fs",
                    attempt + 1,
                    retry_count + 1,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)

        # Should not reach here
        raise CompletionError("Assistant model invocation failed")

    async def _run_tool_loop(
        self,
        transcript: list[ChatMessage],
        options: CompletionOptions,
        functions: list[FunctionDeclaration] | None,
        dispatcher: FunctionDispatcher | None,
        context: FunctionContext | None,
    ) -> CompletionResult:
        user_id = context.user_id if context else ""

        for depth in range(options.max_tool_depth):
            if self.wire and depth == 0 and transcript:
                last = transcript[-1]
                self.wire.log("outbound", last.role, last.content, user_id=user_id, depth=depth)

            result = await self.client.complete(
                transcript,
                temperature=options.temperature,
                top_p=options.top_p,
                max_tokens=options.max_tokens,
                functions=functions,
            )
            message = result.message

            if self.wire:
                self.wire.log("inbound", message.role, message.content, user_id=user_id, depth=depth,
                              tool_calls=[c.function_name for c in message.tool_calls or []])

            if not message.tool_calls or dispatcher is None:
                result.transcript = transcript + [message]
                return result

            logger.debug(
                "Depth %d: model requested %s",
                depth,
                [c.function_name for c in message.tool_calls],
            )
            transcript.append(message)
            tool_messages = await dispatcher.dispatch_all(message.tool_calls, context)
            transcript.extend(tool_messages)
            if self.wire:
                for tool_message in tool_messages:
                    self.wire.log("outbound", tool_message.role, tool_message.content, user_id=user_id,
                                  depth=depth, tool_name=tool_message.name or "")

        raise ToolDepthExceeded(options.max_tool_depth)
