"""
Capability registry: central dispatch for everything the model may call.
Holds, per capability, the declaration advertised to the model and the host
handler that runs it. New capabilities are registered here. Nothing else changes.

Handlers take (args, context) and may be plain functions or coroutines.
"""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from lumai.errors import UnsupportedFunction
from lumai.models import FunctionContext, FunctionDeclaration

logger = logging.getLogger(__name__)

Handler = Callable[[dict, FunctionContext], Any]


@dataclass(frozen=True)
class Capability:
    declaration: FunctionDeclaration
    handler: Handler

    @property
    def name(self) -> str:
        return self.declaration.name


class CapabilityRegistry:
    """Manages the capabilities available to the assistant."""

    def __init__(self):
        self.capabilities: dict[str, Capability] = {}

    def register(self, declaration: FunctionDeclaration, handler: Handler):
        """Register (or replace) the capability named by `declaration`."""
        if declaration.name in self.capabilities:
            logger.warning("Capability '%s' re-registered", declaration.name)
        self.capabilities[declaration.name] = Capability(declaration, handler)

    def get(self, name: str) -> Capability | None:
        """Get a capability by name, or None if not registered."""
        return self.capabilities.get(name)

    def list_tools(self) -> list[str]:
        """Return names of all registered capabilities."""
        return list(self.capabilities.keys())

    def declarations(self) -> list[FunctionDeclaration]:
        """Declarations in registration order, ready to advertise to the model."""
        return [c.declaration for c in self.capabilities.values()]

    async def execute(self, name: str, args: dict, context: FunctionContext | None = None) -> Any:
        """
        Run a capability by name and return its JSON-serializable result.
        Raises UnsupportedFunction for unknown names or a missing context;
        whatever the handler raises propagates to the caller.
        """
        capability = self.capabilities.get(name)
        if capability is None or context is None:
            raise UnsupportedFunction(name)

        start = time.monotonic()
        result = capability.handler(args or {}, context)
        if inspect.isawaitable(result):
            result = await result
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.debug("Capability '%s' finished in %.0fms", name, elapsed_ms)
        return result
