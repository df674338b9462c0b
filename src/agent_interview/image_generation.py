"""Image generation contract: fal.ai Flux or OpenAI Images over HTTP."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, cast

import httpx

from .config import ImageSettings

logger = logging.getLogger(__name__)

FAL_FLUX_URL = "https://fal.run/fal-ai/flux/dev"
OPENAI_IMAGES_URL = "https://api.openai.com/v1/images/generations"

IMAGE_SIZES: Tuple[str, ...] = (
    "square_hd",
    "square",
    "portrait_4_3",
    "portrait_16_9",
    "landscape_4_3",
    "landscape_16_9",
)
_DALLE_SIZES: Dict[str, str] = {
    "square_hd": "1024x1024",
    "square": "1024x1024",
    "portrait_4_3": "1024x1792",
    "portrait_16_9": "1024x1792",
    "landscape_4_3": "1792x1024",
    "landscape_16_9": "1792x1024",
}

CHARACTER_STYLE_PROMPT = (
    "full body shot, front view, facing viewer, standing straight, arms at "
    "side, neutral expression, high resolution, flcl anime style"
)
CHARACTER_IMAGE_SIZE = "portrait_4_3"
BACKGROUND_STYLE_PROMPT = "flcl anime style background art"
BACKGROUND_IMAGE_SIZE = "square_hd"


class ImageGenerationError(RuntimeError):
    """The image provider rejected a request or returned no image."""

    def __init__(self, message: str, *, status: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


@dataclass(slots=True)
class GeneratedImage:
    """Binary image payload returned by a provider."""

    data: bytes
    content_type: str = "image/png"
    seed: Optional[str] = None

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


def bytes_to_data_url(data: bytes, content_type: str = "application/octet-stream") -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def decode_data_url(url: str, default_type: str = "image/png") -> GeneratedImage:
    header, _, payload = url.partition(",")
    content_type = header[len("data:"):].split(";")[0] or default_type
    try:
        data = base64.b64decode(payload)
    except (binascii.Error, ValueError) as exc:
        raise ImageGenerationError("malformed image data URL") from exc
    return GeneratedImage(data=data, content_type=content_type)


def compose_prompt(style_prompt: Optional[str], prompt: str) -> str:
    return "\n".join(part for part in (style_prompt, prompt) if part)


class ImageGenerator:
    """Generates character and homespace images from text descriptions."""

    def __init__(
        self,
        settings: ImageSettings,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ) -> None:
        if settings.provider not in {"fal", "openai"}:
            raise ImageGenerationError(
                f"unknown image generation provider: {settings.provider}"
            )
        self._settings = settings
        self._client = client
        self._timeout = timeout

    async def generate(
        self,
        prompt: str,
        *,
        size: str = "landscape_4_3",
        seed: Optional[int] = None,
        guidance_scale: Optional[float] = None,
    ) -> GeneratedImage:
        if size not in IMAGE_SIZES:
            raise ValueError(f"unsupported image size class: {size}")
        if self._client is not None:
            return await self._generate_with(
                self._client, prompt, size, seed, guidance_scale
            )
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await self._generate_with(
                client, prompt, size, seed, guidance_scale
            )

    async def generate_character_image(
        self,
        prompt: str,
        *,
        style_prompt: Optional[str] = CHARACTER_STYLE_PROMPT,
        seed: Optional[int] = None,
        guidance_scale: Optional[float] = None,
    ) -> Tuple[str, GeneratedImage]:
        full_prompt = compose_prompt(style_prompt, prompt)
        image = await self.generate(
            full_prompt,
            size=CHARACTER_IMAGE_SIZE,
            seed=seed,
            guidance_scale=guidance_scale,
        )
        return full_prompt, image

    async def generate_background_image(
        self,
        prompt: str,
        *,
        style_prompt: Optional[str] = BACKGROUND_STYLE_PROMPT,
        seed: Optional[int] = None,
        guidance_scale: Optional[float] = None,
    ) -> Tuple[str, GeneratedImage]:
        full_prompt = compose_prompt(style_prompt, prompt)
        image = await self.generate(
            full_prompt,
            size=BACKGROUND_IMAGE_SIZE,
            seed=seed,
            guidance_scale=guidance_scale,
        )
        return full_prompt, image

    async def _generate_with(
        self,
        client: httpx.AsyncClient,
        prompt: str,
        size: str,
        seed: Optional[int],
        guidance_scale: Optional[float],
    ) -> GeneratedImage:
        if self._settings.provider == "fal":
            return await self._generate_flux(client, prompt, size, seed, guidance_scale)
        return await self._generate_dalle(client, prompt, size)

    async def _generate_flux(
        self,
        client: httpx.AsyncClient,
        prompt: str,
        size: str,
        seed: Optional[int],
        guidance_scale: Optional[float],
    ) -> GeneratedImage:
        body: Dict[str, Any] = {
            "prompt": prompt,
            "image_size": size,
            "num_images": 1,
            "sync_mode": True,
            "enable_safety_checker": False,
        }
        if seed is not None:
            body["seed"] = seed
        if guidance_scale is not None:
            body["guidance_scale"] = guidance_scale
        response = await client.post(
            FAL_FLUX_URL,
            json=body,
            headers={"Authorization": f"Key {self._settings.api_key}"},
        )
        payload = _json_or_raise(response)
        images = cast(List[Dict[str, Any]], payload.get("images") or [])
        if not images:
            raise ImageGenerationError(
                "image generation returned no images", body=response.text
            )
        url = str(images[0].get("url", ""))
        content_type = str(images[0].get("content_type") or "image/jpeg")
        if url.startswith("data:"):
            image = decode_data_url(url, default_type=content_type)
        else:
            download = await client.get(url)
            if download.status_code >= 400:
                raise ImageGenerationError(
                    f"image download error: {download.status_code}",
                    status=download.status_code,
                    body=download.text,
                )
            image = GeneratedImage(data=download.content, content_type=content_type)
        output_seed = payload.get("seed")
        if output_seed is not None:
            image.seed = str(output_seed)
        return image

    async def _generate_dalle(
        self,
        client: httpx.AsyncClient,
        prompt: str,
        size: str,
    ) -> GeneratedImage:
        response = await client.post(
            OPENAI_IMAGES_URL,
            json={
                "prompt": prompt,
                "model": "dall-e-3",
                "size": _DALLE_SIZES[size],
                "quality": "hd",
                "n": 1,
                "response_format": "b64_json",
            },
            headers={"Authorization": f"Bearer {self._settings.api_key}"},
        )
        payload = _json_or_raise(response)
        entries = cast(List[Dict[str, Any]], payload.get("data") or [])
        if not entries or not entries[0].get("b64_json"):
            raise ImageGenerationError(
                "image generation returned no images", body=response.text
            )
        try:
            data = base64.b64decode(entries[0]["b64_json"])
        except (binascii.Error, ValueError) as exc:
            raise ImageGenerationError("malformed image payload") from exc
        return GeneratedImage(data=data, content_type="image/png")


def _json_or_raise(response: httpx.Response) -> Dict[str, Any]:
    if response.status_code >= 400:
        logger.warning("Image generation failed with status %s", response.status_code)
        raise ImageGenerationError(
            f"image generation error: {response.status_code}: {response.text}",
            status=response.status_code,
            body=response.text,
        )
    try:
        payload = response.json()
    except ValueError as exc:
        raise ImageGenerationError(
            "image generation returned invalid JSON",
            status=response.status_code,
            body=response.text,
        ) from exc
    if not isinstance(payload, dict):
        raise ImageGenerationError(
            "image generation returned an unexpected payload",
            status=response.status_code,
            body=response.text,
        )
    return cast(Dict[str, Any], payload)
