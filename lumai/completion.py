"""
Completion client: one round trip to the chat-completion endpoint.

Builds the request body, hands it to a backend, and turns the raw reply into a
well-typed ChatMessage. Everything coming back from the endpoint is treated as
untrusted: the role is coerced to one we know, content is coerced to a string,
and tool calls in any supported encoding go through the normalizer.

Failures are raised, not retried:
  - ServiceUnavailable   endpoint URL or key missing (before any network call)
  - CompletionTimeout    the 35s budget ran out
  - CompletionTransportError  network failure or non-2xx status
"""

from __future__ import annotations

import logging

from lumai.backends.base import BaseBackend
from lumai.backends.openai_compat import OpenAICompatibleBackend
from lumai.errors import CompletionTimeout, CompletionTransportError, ServiceUnavailable
from lumai.models import ASSISTANT_ROLE, ROLES, TOOL_ROLE, ChatMessage, CompletionResult, FunctionDeclaration
from lumai.normalizer import normalize_message

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "meta-llama/Meta-Llama-3-8B-Instruct"
DEFAULT_TIMEOUT = 35.0
DEFAULT_TEMPERATURE = 0.2
DEFAULT_TOP_P = 0.9
DEFAULT_MAX_TOKENS = 750


def _coerce_role(value) -> str:
    # A reply can't be a tool result: it would lack tool_call_id/name.
    if value in ROLES and value != TOOL_ROLE:
        return value
    return ASSISTANT_ROLE


def _coerce_content(value) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return str(value)


class CompletionClient:
    """Talks to one OpenAI-compatible completion endpoint."""

    def __init__(
        self,
        api_url: str = "",
        api_key: str = "",
        model: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        backend: BaseBackend | None = None,
    ):
        self.api_url = api_url or ""
        self.api_key = api_key or ""
        self.model = model or DEFAULT_MODEL
        self.timeout = timeout
        self.backend = backend or OpenAICompatibleBackend(
            name="completion",
            url=self.api_url,
            api_key=self.api_key,
            timeout=timeout,
        )

    @classmethod
    def from_config(cls, cfg: dict) -> "CompletionClient":
        c_cfg = cfg.get("completion", {})
        return cls(
            api_url=c_cfg.get("api_url", ""),
            api_key=c_cfg.get("api_key", ""),
            model=c_cfg.get("model") or c_cfg.get("default_model") or DEFAULT_MODEL,
            timeout=float(c_cfg.get("timeout", DEFAULT_TIMEOUT)),
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    def build_body(
        self,
        messages: list[ChatMessage],
        temperature: float = DEFAULT_TEMPERATURE,
        top_p: float = DEFAULT_TOP_P,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        functions: list[FunctionDeclaration] | None = None,
    ) -> dict:
        body = {
            "model": self.model,
            "temperature": temperature,
            "top_p": top_p,
            "max_tokens": max_tokens,
            "messages": [m.to_openai_format() for m in messages],
        }
        if functions:
            body["functions"] = [f.to_openai_format() for f in functions]
        return body

    async def complete(
        self,
        messages: list[ChatMessage],
        temperature: float = DEFAULT_TEMPERATURE,
        top_p: float = DEFAULT_TOP_P,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        functions: list[FunctionDeclaration] | None = None,
    ) -> CompletionResult:
        """Send the transcript, return the normalized assistant message and usage."""
        if not self.configured:
            raise ServiceUnavailable("AI provider not configured")

        body = self.build_body(messages, temperature, top_p, max_tokens, functions)
        response = await self.backend.forward(body)

        if not response.ok:
            if response.timed_out:
                raise CompletionTimeout(response.error or f"Timeout after {self.timeout}s")
            raise CompletionTransportError(
                response.error or "Completion request failed",
                status_code=response.status_code or None,
            )

        raw = response.message
        normalized = normalize_message(raw)
        message = ChatMessage(
            role=_coerce_role(raw.get("role")),
            content=_coerce_content(normalized.content),
        )
        if normalized.tool_calls:
            # tool_calls may only ride on assistant messages
            message.role = ASSISTANT_ROLE
            message.tool_calls = normalized.tool_calls

        logger.debug(
            "Completion from %s in %.0fms (%d tool call(s), usage=%s)",
            self.model,
            response.latency_ms,
            len(normalized.tool_calls),
            response.usage,
        )
        return CompletionResult(message=message, usage=response.usage, latency_ms=response.latency_ms)
