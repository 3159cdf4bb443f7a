"""
Data models for the assistant engine.
These define the shape of data flowing between the completion client,
the dispatcher, the orchestrator and the conversation store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

SYSTEM_ROLE = "system"
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
TOOL_ROLE = "tool"
ROLES = (SYSTEM_ROLE, USER_ROLE, ASSISTANT_ROLE, TOOL_ROLE)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_call_id() -> str:
    """Correlation id for a tool call whose source format carried none."""
    return f"call-{uuid4().hex}"


@dataclass(frozen=True)
class ToolCallRequest:
    """A normalized request from the model to invoke one capability."""
    id: str
    function_name: str
    arguments_json: str = "{}"

    def to_openai_format(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.function_name, "arguments": self.arguments_json},
        }


@dataclass
class ChatMessage:
    """
    One transcript entry.

    Only role/content/name/tool_call_id/tool_calls go over the wire; id,
    created_at and metadata are kept for the conversation store.
    """
    role: str
    content: str = ""
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: list[ToolCallRequest] | None = None
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=_now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.role == TOOL_ROLE and (not self.tool_call_id or not self.name):
            raise ValueError("tool messages require tool_call_id and name")
        if self.tool_calls and self.role != ASSISTANT_ROLE:
            raise ValueError("only assistant messages may carry tool_calls")

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=SYSTEM_ROLE, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=USER_ROLE, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role=ASSISTANT_ROLE, content=content)

    def to_openai_format(self) -> dict:
        """Export in OpenAI messages array format (the portable standard)."""
        out: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name:
            out["name"] = self.name
        if self.tool_call_id:
            out["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            out["tool_calls"] = [c.to_openai_format() for c in self.tool_calls]
        return out


@dataclass(frozen=True)
class FunctionDeclaration:
    """One invokable capability as advertised to the model."""
    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_openai_format(self) -> dict:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


@dataclass(frozen=True)
class FunctionContext:
    """Per-conversation context handed to every capability call."""
    user_id: str
    user_name: str | None = None


@dataclass
class CompletionResult:
    """One assistant message plus the provider's token accounting."""
    message: ChatMessage
    usage: dict[str, int] | None = None
    latency_ms: float = 0.0
    # full transcript including tool traffic; filled in by the orchestrator
    transcript: list[ChatMessage] = field(default_factory=list)


@dataclass
class ConversationState:
    """Per-user conversation aggregate persisted between requests."""
    user_id: str
    summary: str | None = None
    topics: list[str] = field(default_factory=list)
    messages: list[ChatMessage] = field(default_factory=list)
    updated_at: datetime = field(default_factory=_now)
