"""OpenRouter image generation (OpenAI-compatible) for covers and thumbnails.

OpenRouter serves many image models behind the Chat Completions API, and
their response shapes differ. Extraction therefore tries, in order:

- ``message.images[0].image_url.url`` (OpenRouter's documented format)
- multimodal content parts carrying a data URL
- a top-level ``data`` array with ``b64_json`` or ``url``

Remote ``http(s)`` image URLs are downloaded with httpx so every image ends up
in our own object store.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
from typing import Any, cast

import httpx
from openai import OpenAI

from hyde.config import Settings, get_settings
from hyde.errors import GenerationError
from hyde.models import ImagePurpose
from hyde.prompts import build_image_prompt
from hyde.providers.base import GeneratedImage, ImageProvider
from hyde.storage import ObjectStore, upload_media

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:(image/[^;]+);base64,(.+)$", re.DOTALL)

# Decoded (bytes, mime_type), or a remote image URL still to be downloaded
_Extracted = tuple[bytes, str] | str


def _decode_data_url(url: str) -> tuple[bytes, str]:
    m = _DATA_URL_RE.match(url.strip())
    if not m:
        raise ValueError("Not a data URL")
    return base64.b64decode(m.group(2)), m.group(1)


def _from_url(url: Any) -> _Extracted | None:
    if not isinstance(url, str):
        return None
    url = url.strip()
    if url.startswith("data:image/"):
        return _decode_data_url(url)
    if url.startswith(("http://", "https://")):
        return url
    return None


def _extract_from_content(content: Any) -> _Extracted | None:
    """Try to extract an image from OpenAI-style message content."""
    if isinstance(content, str):
        match = re.search(r"data:image/[^;]+;base64,[A-Za-z0-9+/=]+", content)
        return _decode_data_url(match.group(0)) if match else None

    if isinstance(content, list):
        for part in content:
            if not isinstance(part, dict):
                continue
            # { "type": "image_url", "image_url": {"url": "data:image/png;base64,..."} }
            if part.get("type") == "image_url" and isinstance(part.get("image_url"), dict):
                found = _from_url(part["image_url"].get("url"))
                if found:
                    return found
            # { "type": "output_image", "image": {"url": "..."} }
            if part.get("type") in {"output_image", "image"} and isinstance(part.get("image"), dict):
                found = _from_url(part["image"].get("url"))
                if found:
                    return found
    return None


def extract_image(response: Any) -> _Extracted:
    """Extract image bytes + mime, or a remote image URL, from a response.

    Raises:
        GenerationError: If no recognized image payload is present.
    """
    raw: dict[str, Any]
    if hasattr(response, "model_dump"):
        raw = response.model_dump()
    elif isinstance(response, dict):
        raw = response
    else:
        raw = {}

    choices = raw.get("choices") or []
    if choices:
        msg = (choices[0] or {}).get("message") or {}
        images = msg.get("images")
        if isinstance(images, list) and images and isinstance(images[0], dict):
            first = images[0]
            image_url = first.get("image_url")
            found = _from_url(image_url.get("url") if isinstance(image_url, dict) else first.get("url"))
            if found:
                return found
        found = _extract_from_content(msg.get("content"))
        if found:
            return found

    data = raw.get("data")
    if isinstance(data, list) and data and isinstance(data[0], dict):
        first = data[0]
        if isinstance(first.get("b64_json"), str):
            return base64.b64decode(first["b64_json"]), "image/png"
        found = _from_url(first.get("url"))
        if found:
            return found

    raise GenerationError(
        "Could not extract image from model response. "
        "Response did not contain a recognized image payload.",
        raw=raw,
    )


class OpenRouterImageProvider:
    """Generates playlist covers and track thumbnails via OpenRouter."""

    def __init__(
        self,
        store: ObjectStore,
        settings: Settings | None = None,
        client: OpenAI | None = None,
        http_client: httpx.AsyncClient | None = None,
        model: str | None = None,
    ) -> None:
        s = settings or get_settings()
        self._store = store
        self._client = client or OpenAI(
            base_url=s.openrouter_base_url,
            api_key=s.openrouter_api_key,
        )
        self._http_client = http_client
        self._model = model or s.openrouter_image_model

    @property
    def model(self) -> str:
        return self._model

    def _request(self, prompt: str) -> Any:
        # OpenRouter multimodal payloads are accepted at runtime, but the
        # OpenAI SDK's message typing doesn't model them.
        return self._client.chat.completions.create(
            model=self._model,
            messages=cast(Any, [{"role": "user", "content": prompt}]),
            extra_body={"modalities": ["image", "text"]},
        )

    async def _download(self, url: str) -> tuple[bytes, str]:
        if self._http_client is not None:
            response = await self._http_client.get(url)
        else:
            async with httpx.AsyncClient(timeout=60.0, follow_redirects=True) as client:
                response = await client.get(url)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "image/png").split(";")[0]
        return response.content, content_type

    async def generate(
        self,
        prompt: str,
        purpose: ImagePurpose,
        genre: str | None = None,
        mood: str | None = None,
    ) -> GeneratedImage:
        """Generate an image for a music prompt and store it.

        Raises:
            GenerationError: If the response carried no image.
            httpx.HTTPError: If a remote image URL could not be downloaded.
        """
        image_prompt = build_image_prompt(prompt, purpose, genre, mood)
        logger.info(f"Generating {purpose} image with {self._model}")

        response = await asyncio.to_thread(self._request, image_prompt)
        extracted = extract_image(response)
        if isinstance(extracted, str):
            logger.debug(f"Downloading remote image: {extracted[:80]}")
            image_bytes, mime_type = await self._download(extracted)
        else:
            image_bytes, mime_type = extracted

        image_url = await upload_media(self._store, image_bytes, mime_type, "images")
        return GeneratedImage(
            image_url=image_url,
            purpose=purpose,
            prompt=image_prompt,
            model_used=self._model,
        )


# Type assertion to verify protocol compliance
def _check_protocol(store: ObjectStore) -> ImageProvider:
    return OpenRouterImageProvider(store)
