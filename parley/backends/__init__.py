"""
Model-provider backends for parley.
Priority-ordered routing across OpenRouter and OpenAI-compatible endpoints.
"""
from parley.backends.router import MultiBackendRouter, NoBackendError
from parley.backends.base import BaseBackend, BackendResponse
from parley.backends.openrouter import OpenRouterBackend
from parley.backends.openai_compat import OpenAICompatibleBackend

__all__ = [
    "MultiBackendRouter",
    "NoBackendError",
    "BaseBackend",
    "BackendResponse",
    "OpenRouterBackend",
    "OpenAICompatibleBackend",
]
