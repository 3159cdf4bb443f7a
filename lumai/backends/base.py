"""
Base backend abstraction.
A backend performs exactly one HTTP round trip to a chat-completion endpoint
and reports the outcome as a BackendResponse. It never raises and never
retries; the completion client decides what a failure means.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class BackendResponse:
    """Standardized response from any backend."""
    ok: bool
    status_code: int = 200
    data: dict = field(default_factory=dict)
    backend_name: str = ""
    latency_ms: float = 0.0
    error: str = ""
    timed_out: bool = False

    @property
    def message(self) -> dict:
        """The first choice's raw message, or {} when there is none."""
        choices = self.data.get("choices") if isinstance(self.data, dict) else None
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            if isinstance(message, dict):
                return message
        return {}

    @property
    def usage(self) -> dict | None:
        usage = self.data.get("usage") if isinstance(self.data, dict) else None
        return usage if isinstance(usage, dict) else None


class BaseBackend(abc.ABC):
    """
    Abstract base for completion backends.
    `url` is the full chat-completion endpoint, not a base URL.
    """

    def __init__(self, name: str, url: str, timeout: float = 35.0):
        self.name = name
        self.url = url.rstrip("/")
        self.timeout = timeout

    @abc.abstractmethod
    async def forward(self, body: dict) -> BackendResponse:
        """
        Send one chat completion request.
        Body is OpenAI-compatible format.
        Returns BackendResponse with data or error.
        """
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self.url!r}>"
