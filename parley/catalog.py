"""
Model catalog: the chat models offered to users, the image models exposed
as tools, and the mapping from catalog aliases to provider model ids.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

DEFAULT_CHAT_MODEL = "chat-model"

# Used when config.yaml has no models.aliases section
DEFAULT_ALIASES = {
    "chat-model": "openai/gpt-4o",
    "chat-model-reasoning": "openai/o3-mini",
    "chat-websearch": "openai/gpt-4o:search",
    "title-model": "openai/gpt-4o-mini",
    "artifact-model": "anthropic/claude-3-7-sonnet",
}


@dataclass(frozen=True)
class ChatModel:
    id: str
    name: str
    description: str


@dataclass(frozen=True)
class ImageModel:
    id: str
    name: str
    provider: str
    description: str

    @property
    def tool_name(self) -> str:
        """
        generateImage + CamelCase of the model id, e.g. dall-e-3 becomes
        generateImageDallE3. Never contains "_" so the tool stays selectable.
        """
        words = [w for w in re.split(r"[^a-zA-Z0-9]+", self.id) if w]
        return "generateImage" + "".join(w[0].upper() + w[1:] for w in words)


CHAT_MODELS = [
    ChatModel("chat-model", "Chat model", "Primary model for all-purpose chat"),
    ChatModel("chat-model-reasoning", "Reasoning model", "Uses advanced reasoning"),
]

SUPPORTED_IMAGE_MODELS = [
    ImageModel(
        "stability-ai/stable-diffusion-3", "Stable Diffusion 3", "Stability AI",
        "Advanced open-source model with strong artistic capabilities.",
    ),
    ImageModel(
        "dall-e-3", "DALL·E 3", "OpenAI",
        "Powerful model with excellent prompt following.",
    ),
    ImageModel(
        "black-forest-labs/flux-dev", "FLUX.1 Dev", "Black Forest Labs",
        "High-quality creative generation with excellent coherence.",
    ),
    ImageModel(
        "recraft-ai/recraft-v3", "Recraft V3", "Recraft",
        "Exceptional detail and realism.",
    ),
]


def _aliases(cfg: dict | None) -> dict:
    return ((cfg or {}).get("models") or {}).get("aliases") or DEFAULT_ALIASES


def provider_model(model_id: str, cfg: dict | None = None) -> str:
    """Catalog alias → provider model id. Unknown ids pass through unchanged."""
    return _aliases(cfg).get(model_id, model_id)


def supports_reasoning(model_id: str, cfg: dict | None = None) -> bool:
    """Reasoning models emit <think> sections that are relayed as reasoning."""
    reasoning = ((cfg or {}).get("models") or {}).get("reasoning_models")
    if reasoning is None:
        reasoning = ["chat-model-reasoning"]
    return model_id in reasoning


def list_catalog(cfg: dict | None = None) -> dict:
    """Chat and image models in the shape the model picker expects."""
    return {
        "chat_models": [
            {"id": m.id, "name": m.name, "description": m.description,
             "provider_model": provider_model(m.id, cfg)}
            for m in CHAT_MODELS
        ],
        "image_models": [
            {"id": m.id, "name": m.name, "provider": m.provider,
             "description": m.description, "tool_name": m.tool_name}
            for m in SUPPORTED_IMAGE_MODELS
        ],
    }
