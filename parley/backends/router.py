"""
Multi-Backend Router: picks the backend that serves a model.

Backends are ordered by priority (lower first); the first one whose model
prefixes match the requested model serves the request. There is no
fallback to the next backend on failure: an upstream error ends the
request.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from parley.backends.base import BaseBackend, BackendResponse
from parley.backends.openrouter import OpenRouterBackend
from parley.backends.openai_compat import OpenAICompatibleBackend

logger = logging.getLogger(__name__)

# Provider name → backend class
PROVIDERS: dict[str, type[BaseBackend]] = {
    "openrouter": OpenRouterBackend,
    "openai_compat": OpenAICompatibleBackend,
}


class NoBackendError(RuntimeError):
    """No configured backend serves the requested model."""


class MultiBackendRouter:
    """
    Routes requests to one of several backends.
    Lower priority number = preferred.
    """

    def __init__(self, backends_config: list[dict]):
        self.backends: list[BaseBackend] = []
        for cfg in backends_config:
            backend = self._create_backend(cfg)
            if backend:
                self.backends.append(backend)

        self.backends.sort(key=lambda b: b.priority)

        names = [f"{b.name}(p{b.priority})" for b in self.backends]
        logger.info("Backend router initialized: %s", " → ".join(names) or "(none)")

    @staticmethod
    def _create_backend(cfg: dict) -> BaseBackend | None:
        """Instantiate a backend from config dict."""
        provider = cfg.get("provider", "openrouter")
        cls = PROVIDERS.get(provider)
        if not cls:
            logger.warning("Unknown backend provider '%s', skipping", provider)
            return None

        name = cfg.get("name", provider)
        url = cfg.get("url", "")
        if not url:
            logger.warning("Backend '%s' has no url, skipping", name)
            return None

        return cls(
            name=name,
            url=url,
            timeout=cfg.get("timeout", 120),
            priority=cfg.get("priority", 99),
            models=cfg.get("models"),
            api_key=cfg.get("api_key", ""),
        )

    def select(self, model: str) -> BaseBackend | None:
        """First backend (by priority) that serves the model."""
        for backend in self.backends:
            if backend.supports_model(model):
                return backend
        return None

    async def forward(self, body: dict) -> BackendResponse:
        """Forward a non-streaming request to the selected backend."""
        model = body.get("model", "")
        backend = self.select(model)
        if backend is None:
            logger.error("No backend serves model '%s'", model)
            return BackendResponse(
                ok=False, status_code=503, backend_name="router",
                error=f"No backend available for model '{model}'",
            )

        response = await backend.forward(body)
        if response.ok:
            logger.info(
                "Backend '%s' served model '%s' in %.0fms",
                backend.name, model, response.latency_ms,
            )
        else:
            logger.warning(
                "Backend '%s' failed for model '%s': %s",
                backend.name, model, response.error,
            )
        return response

    async def forward_stream(self, body: dict) -> AsyncIterator[str]:
        """Stream SSE lines from the selected backend. Errors propagate."""
        model = body.get("model", "")
        backend = self.select(model)
        if backend is None:
            raise NoBackendError(f"No backend available for model '{model}'")

        logger.debug("Streaming model '%s' from backend '%s'", model, backend.name)
        async for line in backend.forward_stream(body):
            yield line

    async def health(self) -> dict:
        """Health check all backends."""
        results = {}
        for backend in self.backends:
            ok = await backend.health_check()
            results[backend.name] = {"healthy": ok, "priority": backend.priority}
        return results
