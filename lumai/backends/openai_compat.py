"""
Generic OpenAI-compatible completion backend.

Supports any endpoint that accepts an OpenAI-style chat completion body:
- Hugging Face Inference Endpoints / router
- vLLM, llama.cpp server, TGI
- OpenAI itself
"""

from __future__ import annotations

import logging
import time

import httpx

from lumai.backends.base import BaseBackend, BackendResponse

logger = logging.getLogger(__name__)


class OpenAICompatibleBackend(BaseBackend):
    """Posts the body to `url` with a bearer token and a fixed timeout."""

    def __init__(self, name: str, url: str, api_key: str = "", timeout: float = 35.0):
        super().__init__(name, url, timeout)
        self.api_key = api_key

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def forward(self, body: dict) -> BackendResponse:
        """Forward a non-streaming request."""
        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.url, json=body, headers=self._headers())
                latency = (time.monotonic() - t0) * 1000

                if not 200 <= resp.status_code < 300:
                    return BackendResponse(
                        ok=False,
                        status_code=resp.status_code,
                        backend_name=self.name,
                        latency_ms=latency,
                        error=f"HTTP {resp.status_code}: {resp.text[:200]}",
                    )

                data = resp.json()
                return BackendResponse(
                    ok=True,
                    status_code=resp.status_code,
                    data=data if isinstance(data, dict) else {},
                    backend_name=self.name,
                    latency_ms=latency,
                )
        except httpx.TimeoutException:
            latency = (time.monotonic() - t0) * 1000
            logger.warning(
                "Completion backend '%s' timed out after %.0fms",
                self.name,
                latency,
            )
            return BackendResponse(
                ok=False,
                status_code=0,
                backend_name=self.name,
                latency_ms=latency,
                error=f"Timeout after {self.timeout}s",
                timed_out=True,
            )
        except Exception as e:
            latency = (time.monotonic() - t0) * 1000
            logger.warning("Completion backend '%s' failed: %s", self.name, e)
            return BackendResponse(
                ok=False,
                status_code=0,
                backend_name=self.name,
                latency_ms=latency,
                error=str(e) or e.__class__.__name__,
            )
