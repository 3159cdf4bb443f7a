"""
AssistantService: one user-facing chat turn.

    load state -> build transcript -> orchestrator.run (traced tools)
    -> sanitize reply -> maybe summarize -> persist -> response dict

The orchestrator knows nothing about users, prompts or storage; all of that
lives here so HTTP routes and the CLI stay thin.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from lumai.dispatcher import FunctionDispatcher
from lumai.errors import BadRequest, CompletionError
from lumai.models import (
    ChatMessage,
    ConversationState,
    FunctionContext,
)
from lumai.normalizer import find_closing_brace
from lumai.orchestrator import CompletionOptions, ConversationOrchestrator
from lumai.prompt import REPLY_PREFIX, build_system_prompt, few_shot_messages
from lumai.storage import BaseConversationStore
from lumai.tools.registry import CapabilityRegistry

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I could not generate a response."
RESULT_PREVIEW_LIMIT = 200

SUMMARY_PROMPT = (
    "You are a summarization assistant. Condense the following conversation into at most "
    "three bullet points focusing on metrics, goals, and nutrition context. Keep numeric units."
)
SUMMARY_OPTIONS = CompletionOptions(temperature=0.2, top_p=0.7, max_tokens=220, retry_count=0)
SUMMARY_HISTORY = 10

_WS_RE = re.compile(r"\s+")
_CONTROL_TOKEN_RE = re.compile(r"<\|[^>]+>")
_COMMENTARY_ASSISTANT_RE = re.compile(r"commentaryassistant", re.IGNORECASE)
_LEGACY_CALL_RE = re.compile(r"assistantcommentary to=functions\.[\w-]+commentary\s+json", re.IGNORECASE)
_CHART_URL_RE = re.compile(r'\{[^}]*"chart_url"[^}]*\}', re.IGNORECASE)
_MARKDOWN_IMAGE_RE = re.compile(r"!\[[^\]]*]\([^)]*\)")


def collapse_whitespace(value: str | None) -> str:
    return _WS_RE.sub(" ", value or "").strip()


def _strip_legacy_calls(text: str) -> str:
    while True:
        match = _LEGACY_CALL_RE.search(text)
        if not match:
            return text
        brace = text.find("{", match.end())
        if brace == -1:
            return text
        end = find_closing_brace(text, brace)
        if end == -1:
            return text
        text = f"{text[:match.start()]} {text[end + 1:]}"


def sanitize_reply(value: str | None) -> str:
    """Strip model artefacts that must never reach the user."""
    if not value:
        return FALLBACK_REPLY
    cleaned = _CONTROL_TOKEN_RE.sub("", value)
    cleaned = _COMMENTARY_ASSISTANT_RE.sub("assistant", cleaned)
    cleaned = _strip_legacy_calls(cleaned)
    cleaned = _CHART_URL_RE.sub("", cleaned)
    cleaned = _MARKDOWN_IMAGE_RE.sub("", cleaned)
    return collapse_whitespace(cleaned) or FALLBACK_REPLY


def ensure_prefix(value: str) -> str:
    """Reply starts with the coach prefix on its own line."""
    if value.lower().startswith(REPLY_PREFIX.lower()):
        first, _, rest = value.partition("\n")
        rest = rest.strip()
        return f"{first}\n{rest}" if rest else first
    return f"{REPLY_PREFIX}\n{value}"


def _preview(result: Any) -> str:
    if result is None:
        return "Empty result"
    if isinstance(result, str):
        return result[:160]
    try:
        serialized = json.dumps(result, default=str)
    except (TypeError, ValueError):
        return "Result could not be serialized"
    if len(serialized) > RESULT_PREVIEW_LIMIT:
        return serialized[:RESULT_PREVIEW_LIMIT - 3] + "..."
    return serialized


def _visualization(result: Any) -> dict | None:
    if not isinstance(result, dict):
        return None
    payload = result.get("visualization")
    if isinstance(payload, dict) and isinstance(payload.get("type"), str):
        return payload
    return None


class TracingExecutor:
    """Wraps a registry, recording every call and collecting visualizations."""

    def __init__(self, registry: CapabilityRegistry):
        self.registry = registry
        self.calls: list[dict] = []
        self.visualizations: list[dict] = []

    async def execute(self, name: str, args: dict, context: FunctionContext | None = None) -> Any:
        entry = {"name": name, "arguments": args, "status": "pending"}
        self.calls.append(entry)
        try:
            result = await self.registry.execute(name, args, context)
        except Exception as e:
            entry["status"] = "error"
            entry["result_preview"] = str(e) or "Unknown error"
            raise
        entry["status"] = "ok"
        entry["result_preview"] = _preview(result)
        visualization = _visualization(result)
        if visualization is not None:
            entry["visualization"] = visualization
            self.visualizations.append(visualization)
        return result


def serialize_messages(messages: list[ChatMessage]) -> list[dict]:
    return [
        {
            "id": m.id,
            "role": m.role,
            "content": m.content,
            "created_at": m.created_at.isoformat(),
            "metadata": m.metadata or None,
        }
        for m in messages
    ]


class AssistantService:
    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        registry: CapabilityRegistry,
        store: BaseConversationStore,
        options: CompletionOptions | None = None,
        max_context_messages: int = 12,
        summary_threshold: int = 14,
        summary_keep: int = 8,
    ):
        self.orchestrator = orchestrator
        self.registry = registry
        self.store = store
        self.options = options or CompletionOptions(temperature=0.3, top_p=0.85, max_tokens=650)
        self.max_context_messages = max_context_messages
        self.summary_threshold = summary_threshold
        self.summary_keep = summary_keep

    @classmethod
    def from_config(cls, cfg: dict, orchestrator, registry, store) -> "AssistantService":
        a_cfg = cfg.get("assistant", {})
        return cls(
            orchestrator=orchestrator,
            registry=registry,
            store=store,
            options=CompletionOptions.from_config(cfg),
            max_context_messages=int(a_cfg.get("max_context_messages", 12)),
            summary_threshold=int(a_cfg.get("summary_threshold", 14)),
            summary_keep=int(a_cfg.get("summary_keep", 8)),
        )

    def _build_transcript(
        self, state: ConversationState, context_messages: list[ChatMessage], user_message: ChatMessage,
        user_name: str | None,
    ) -> list[ChatMessage]:
        transcript = [ChatMessage.system(build_system_prompt(user_name))]
        if state.summary:
            transcript.append(ChatMessage.system(f"Conversation summary:\n{state.summary}"))
        transcript.extend(few_shot_messages())
        transcript.extend(ChatMessage(role=m.role, content=m.content) for m in context_messages)
        transcript.append(ChatMessage(role=user_message.role, content=user_message.content))
        return transcript

    async def _summarize(self, messages: list[ChatMessage], previous: str | None) -> str | None:
        prompt = [ChatMessage.system(SUMMARY_PROMPT)]
        if previous:
            prompt.append(ChatMessage.system(f"Existing summary:\n{previous}"))
        prompt.extend(ChatMessage(role=m.role, content=m.content) for m in messages[-SUMMARY_HISTORY:])
        try:
            result = await self.orchestrator.run(prompt, options=SUMMARY_OPTIONS)
        except CompletionError as e:
            logger.warning("Conversation summarization failed, keeping previous summary: %s", e)
            return previous
        return result.message.content.strip() or previous

    async def chat(self, user_id: str, user_name: str | None, message: str) -> dict:
        text = collapse_whitespace(message)
        if not text:
            raise BadRequest("Message cannot be empty.")

        state = self.store.get(user_id)
        context_messages = state.messages[-self.max_context_messages:] if self.max_context_messages > 0 else []
        user_message = ChatMessage.user(text)
        transcript = self._build_transcript(state, context_messages, user_message, user_name)

        tracer = TracingExecutor(self.registry)
        result = await self.orchestrator.run(
            transcript,
            options=self.options,
            functions=self.registry.declarations(),
            dispatcher=FunctionDispatcher(tracer),
            context=FunctionContext(user_id=user_id, user_name=user_name),
        )

        reply = ensure_prefix(sanitize_reply(result.message.content))
        assistant_message = ChatMessage.assistant(reply)
        if tracer.visualizations:
            assistant_message.metadata["visualizations"] = list(tracer.visualizations)

        messages = [*context_messages, user_message, assistant_message]
        summary = state.summary
        if len(messages) >= self.summary_threshold:
            summary = await self._summarize(messages, summary)
            messages = messages[-self.summary_keep:]

        self.store.put(ConversationState(
            user_id=user_id, summary=summary, topics=state.topics, messages=messages,
        ))
        logger.info(
            "Chat turn for %s: %d tool call(s), %d visualization(s)",
            user_id, len(tracer.calls), len(tracer.visualizations),
        )

        return {
            "summary": summary,
            "message": {
                "id": assistant_message.id,
                "role": assistant_message.role,
                "content": assistant_message.content,
                "created_at": assistant_message.created_at.isoformat(),
            },
            "messages": serialize_messages(messages),
            "trace": {
                "request": text,
                "user_display_name": user_name,
                "function_calls": tracer.calls,
                "response_plan": reply,
            },
            "visualizations": tracer.visualizations,
        }

    def snapshot(self, user_id: str) -> dict:
        state = self.store.get(user_id)
        return {"summary": state.summary, "messages": serialize_messages(state.messages)}
