"""
Completion backends for lumai.
One HTTP round trip per call; retries belong to the orchestrator.
"""
from lumai.backends.base import BaseBackend, BackendResponse
from lumai.backends.openai_compat import OpenAICompatibleBackend

__all__ = [
    "BaseBackend",
    "BackendResponse",
    "OpenAICompatibleBackend",
]
