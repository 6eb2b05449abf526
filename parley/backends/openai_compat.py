"""
Generic OpenAI-compatible backend.

Supports any endpoint that speaks the OpenAI chat completions format
(OpenAI itself, vLLM, llama.cpp server, LocalAI, ...). The configured url
is the API base, e.g. https://api.openai.com/v1.
"""

from __future__ import annotations

import logging
import time

import httpx

from parley.backends.base import BaseBackend, BackendResponse

logger = logging.getLogger(__name__)


class OpenAICompatibleBackend(BaseBackend):
    """
    Generic backend for OpenAI-compatible endpoints.

    Works with any service that implements /chat/completions and /models
    under its base url.
    """

    def __init__(
        self,
        name: str,
        url: str,
        timeout: int = 120,
        priority: int = 1,
        models: list[str] | None = None,
        api_key: str = "",
    ):
        super().__init__(name, url, timeout, priority, models)
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
                resp = await client.post(
                    f"{self.url}/chat/completions",
                    json=body,
                    headers=self._headers(),
                )
                latency = (time.monotonic() - t0) * 1000

                if resp.status_code >= 400:
                    return BackendResponse(
                        ok=False,
                        status_code=resp.status_code,
                        backend_name=self.name,
                        latency_ms=latency,
                        error=f"HTTP {resp.status_code}: {resp.text[:200]}",
                    )

                return BackendResponse(
                    ok=True,
                    status_code=resp.status_code,
                    data=resp.json(),
                    backend_name=self.name,
                    latency_ms=latency,
                )
        except httpx.TimeoutException:
            latency = (time.monotonic() - t0) * 1000
            logger.warning(
                "OpenAI-compatible backend '%s' timed out after %.0fms",
                self.name, latency,
            )
            return BackendResponse(
                ok=False, backend_name=self.name, latency_ms=latency,
                error=f"Timeout after {self.timeout}s",
            )
        except httpx.HTTPError as e:
            latency = (time.monotonic() - t0) * 1000
            logger.warning("OpenAI-compatible backend '%s' failed: %s", self.name, e)
            return BackendResponse(
                ok=False, backend_name=self.name, latency_ms=latency,
                error=str(e),
            )

    async def forward_stream(self, body: dict):
        """Forward a streaming request, yielding SSE lines."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            async with client.stream(
                "POST",
                f"{self.url}/chat/completions",
                json=body,
                headers=self._headers(),
            ) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    logger.warning(
                        "OpenAI-compatible backend '%s' stream rejected: HTTP %d",
                        self.name, resp.status_code,
                    )
                    raise RuntimeError(f"HTTP {resp.status_code}: {resp.text[:200]}")
                async for line in resp.aiter_lines():
                    if line:
                        yield line

    async def health_check(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=5) as client:
                resp = await client.get(f"{self.url}/models", headers=self._headers())
                return resp.status_code == 200
        except httpx.HTTPError:
            return False
