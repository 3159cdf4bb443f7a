"""
Error types shared across the assistant engine.

ApiError and its subclasses carry an HTTP status and are converted to JSON
responses at the HTTP boundary. CompletionError covers everything that can go
wrong while talking to the model; the orchestrator retries those and nothing
else.
"""

from __future__ import annotations


class ApiError(Exception):
    """An error with a user-facing message and an HTTP status."""

    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: str = "", details=None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class BadRequest(ApiError):
    status_code = 400
    default_message = "Bad Request"


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Unauthorized"


class TooManyRequests(ApiError):
    status_code = 429
    default_message = "Too Many Requests"


class ServiceUnavailable(ApiError):
    """Raised before any network call when the completion endpoint is unconfigured."""

    status_code = 503
    default_message = "Service Unavailable"


class CompletionError(Exception):
    """Base for failures of a completion round trip or of the tool loop."""


class CompletionTransportError(CompletionError):
    """Network failure or non-2xx response from the completion endpoint."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CompletionTimeout(CompletionTransportError):
    pass


class ToolDepthExceeded(CompletionError):
    def __init__(self, max_tool_depth: int):
        super().__init__("Assistant exceeded maximum tool depth")
        self.max_tool_depth = max_tool_depth


class UnsupportedFunction(Exception):
    """A capability name the registry cannot execute."""

    def __init__(self, name: str):
        super().__init__(f"Unsupported function: {name}")
        self.name = name
