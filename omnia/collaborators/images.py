"""
omnia.collaborators.images — Image generation and editing via Gemini Flash-Image.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any

import httpx

from omnia.collaborators.base import ImageCollaborator, ImageData
from omnia.core.errors import ConfigurationError, ToolExecutionError

logger = logging.getLogger("omnia.collaborators.images")

IMAGE_MODEL = "gemini-2.5-flash-image"

# The edit endpoint ignores aspectRatio, so orientation is pinned in the prompt.
EDIT_SUFFIX = (
    ". Keep the original image aspect ratio. Keep the exact same orientation "
    "as the input image. Do not rotate, flip, or mirror."
)


def _first_inline_image(data: dict[str, Any]) -> ImageData | None:
    for candidate in data.get("candidates") or []:
        for part in (candidate.get("content") or {}).get("parts") or []:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                return ImageData(
                    data=base64.b64decode(inline["data"]),
                    mime_type=inline.get("mimeType") or inline.get("mime_type") or "image/png",
                )
    return None


class GeminiImageClient(ImageCollaborator):
    """
    Calls ``generateContent`` on the Flash-Image model.

    One request yields one image, so ``generate(count=n)`` issues ``n``
    requests concurrently and returns once all have finished.
    """

    model = IMAGE_MODEL

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(connect=10.0, read=120.0, write=30.0, pool=10.0),
        )

    async def generate(self, prompt: str, count: int, aspect_ratio: str) -> list[ImageData]:
        logger.info("Generating %d image(s) at %s: %.60s", count, aspect_ratio, prompt)
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt.strip()}]}],
            "generationConfig": {
                "responseModalities": ["IMAGE"],
                "imageConfig": {"aspectRatio": aspect_ratio},
            },
        }
        return list(await asyncio.gather(*(self._generate_one(body) for _ in range(count))))

    async def edit(self, source_url: str, instruction: str) -> ImageData:
        logger.info("Editing image %.60s: %.60s", source_url, instruction)
        source = await self._client.get(source_url, follow_redirects=True)
        source.raise_for_status()
        mime_type = source.headers.get("content-type", "image/png").split(";")[0]

        body = {
            "contents": [{
                "role": "user",
                "parts": [
                    {"inlineData": {
                        "mimeType": mime_type,
                        "data": base64.b64encode(source.content).decode("ascii"),
                    }},
                    {"text": instruction.strip() + EDIT_SUFFIX},
                ],
            }],
            "generationConfig": {"responseModalities": ["IMAGE"]},
        }
        return await self._generate_one(body)

    async def _generate_one(self, body: dict[str, Any]) -> ImageData:
        if not self._api_key:
            raise ConfigurationError("Gemini API key not configured")
        resp = await self._client.post(
            f"/v1beta/models/{self.model}:generateContent",
            params={"key": self._api_key},
            json=body,
        )
        if resp.is_error:
            logger.error("Flash-Image HTTP %d: %s", resp.status_code, resp.text[:500])
            raise ToolExecutionError(f"Image model returned HTTP {resp.status_code}")
        image = _first_inline_image(resp.json())
        if image is None:
            raise ToolExecutionError("No image returned from the image model")
        return image

    async def close(self) -> None:
        await self._client.aclose()
