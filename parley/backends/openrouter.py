"""
OpenRouter backend: API access to hosted models from every provider
through one OpenAI-compatible endpoint.
"""

from __future__ import annotations

import logging

from parley.backends.base import BackendResponse
from parley.backends.openai_compat import OpenAICompatibleBackend

logger = logging.getLogger(__name__)


class OpenRouterBackend(OpenAICompatibleBackend):
    """Backend for the OpenRouter API. Requires an api key."""

    def __init__(
        self,
        name: str,
        url: str = "https://openrouter.ai/api/v1",
        timeout: int = 120,
        priority: int = 1,
        models: list[str] | None = None,
        api_key: str = "",
    ):
        super().__init__(name, url, timeout, priority, models, api_key)

    def _headers(self) -> dict:
        """Build request headers with auth and app attribution."""
        headers = super()._headers()
        headers["HTTP-Referer"] = "https://github.com/parley-chat/parley"
        headers["X-Title"] = "Parley"
        return headers

    async def forward(self, body: dict) -> BackendResponse:
        if not self.api_key:
            return BackendResponse(
                ok=False, backend_name=self.name,
                error="No API key configured for OpenRouter",
            )
        return await super().forward(body)

    async def forward_stream(self, body: dict):
        if not self.api_key:
            raise RuntimeError("No API key configured for OpenRouter")
        async for line in super().forward_stream(body):
            yield line

    async def health_check(self) -> bool:
        if not self.api_key:
            return False
        return await super().health_check()
