"""
Image generation tools, one per supported image model.

dall-e-* models go to the OpenAI images API, everything else to Replicate.
Images are written under the media directory and served from /media.
"""

from __future__ import annotations

import base64
import logging
import secrets
import time
from pathlib import Path

import httpx

from parley.catalog import SUPPORTED_IMAGE_MODELS, ImageModel

logger = logging.getLogger(__name__)

OPENAI_IMAGES_URL = "https://api.openai.com/v1/images/generations"
REPLICATE_URL = "https://api.replicate.com/v1/models"


class ImageGenerationTool:
    parameters = {
        "type": "object",
        "properties": {
            "prompt": {"type": "string", "description": "A detailed text prompt describing the image."},
        },
        "required": ["prompt"],
    }

    def __init__(self, model: ImageModel, cfg: dict, media_dir: str):
        self.model = model
        self.name = model.tool_name
        self.description = (
            f"Generates an image using the {model.name} model. {model.description} "
            "Never return the image to the user, it is displayed in the UI already."
        )
        self.openai_api_key = cfg.get("openai_api_key", "")
        self.replicate_api_token = cfg.get("replicate_api_token", "")
        self.timeout = cfg.get("timeout", 120)
        self.media_dir = Path(media_dir)

    async def _openai(self, client: httpx.AsyncClient, prompt: str) -> bytes:
        if not self.openai_api_key:
            raise RuntimeError("No OpenAI API key configured")
        resp = await client.post(
            OPENAI_IMAGES_URL,
            headers={"Authorization": f"Bearer {self.openai_api_key}"},
            json={
                "model": self.model.id,
                "prompt": prompt,
                "n": 1,
                "size": "1024x1024",
                "response_format": "b64_json",
            },
        )
        resp.raise_for_status()
        return base64.b64decode(resp.json()["data"][0]["b64_json"])

    async def _replicate(self, client: httpx.AsyncClient, prompt: str) -> bytes:
        if not self.replicate_api_token:
            raise RuntimeError("No Replicate API token configured")
        resp = await client.post(
            f"{REPLICATE_URL}/{self.model.id}/predictions",
            headers={
                "Authorization": f"Bearer {self.replicate_api_token}",
                "Prefer": "wait",
            },
            json={"input": {"prompt": prompt}},
        )
        resp.raise_for_status()
        prediction = resp.json()
        output = prediction.get("output")
        if isinstance(output, list):
            output = output[0] if output else None
        if not output:
            raise RuntimeError(f"Prediction finished without output (status {prediction.get('status')})")
        image = await client.get(output)
        image.raise_for_status()
        return image.content

    def _save(self, user_id: str, data: bytes) -> str:
        filename = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}.png"
        target = self.media_dir / user_id / filename
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return f"/media/{user_id}/{filename}"

    async def run(self, args: dict, ctx) -> dict:
        prompt = args.get("prompt", "")
        logger.info("Generating image with %s", self.model.id)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                if self.model.id.startswith("dall-e"):
                    data = await self._openai(client, prompt)
                else:
                    data = await self._replicate(client, prompt)
        except (httpx.HTTPError, RuntimeError, KeyError) as e:
            logger.error("Image generation with %s failed: %s", self.model.id, e)
            return {
                "toolName": self.name,
                "modelUsed": self.model.id,
                "error": f"Failed to generate image using {self.model.name}: {e}",
            }

        url = self._save(ctx.caller.id, data)
        return {
            "url": url,
            "prompt": prompt,
            "alt": f"AI generated image for prompt: {prompt[:30]}...",
            "modelUsed": self.model.id,
            "message": f"Generated image using {self.model.name}.",
        }


def image_tools(cfg: dict, media_dir: str) -> list[ImageGenerationTool]:
    return [ImageGenerationTool(m, cfg, media_dir) for m in SUPPORTED_IMAGE_MODELS]
