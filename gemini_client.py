"""
Remote collaborators: image generation and instruction enhancement on Gemini.
"""

import base64
import logging
from typing import Protocol, Sequence

from google import genai
from google.genai import types

from config import API_KEY, IMAGE_MODEL, IMAGE_SIZE_MODELS, TEXT_MODEL
from errors import GenerationError
from models import SourceImage
from prompts import RequestPayload, build_enhancement_instruction

logger = logging.getLogger(__name__)


class ImageService(Protocol):
    async def generate_image(self, payload: RequestPayload, images: Sequence[SourceImage]) -> bytes:
        """Return image bytes or raise GenerationError with a human-readable reason."""

    async def enhance_text(self, text: str, kind: str = "background") -> str:
        """Return improved text, or ``text`` unchanged when anything goes wrong."""


def normalize_inline_data(data) -> bytes:
    if isinstance(data, bytes):
        return data
    if isinstance(data, str):
        return base64.b64decode(data)
    raise TypeError(f"Unsupported inline data type: {type(data)}")


def extract_image_from_response(response) -> bytes:
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline and getattr(inline, "data", None):
                return normalize_inline_data(inline.data)
    raise GenerationError(_no_image_reason(response))


def _no_image_reason(response):
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None) if feedback else None
    if block_reason:
        return f"The model returned no image. Blocked: {block_reason}."
    for candidate in getattr(response, "candidates", None) or []:
        finish_reason = getattr(candidate, "finish_reason", None)
        if finish_reason and str(finish_reason) not in ("STOP", "FinishReason.STOP"):
            return f"The model returned no image. Finish reason: {finish_reason}."
    return "The model returned no image. Possible safety block."


def image_config_for(model: str, payload: RequestPayload) -> types.ImageConfig:
    """Aspect ratio always; output size only for models that accept one."""
    if model in IMAGE_SIZE_MODELS:
        return types.ImageConfig(aspect_ratio=payload.aspect_ratio, image_size=payload.image_size)
    return types.ImageConfig(aspect_ratio=payload.aspect_ratio)


def create_client(api_key=None) -> genai.Client:
    key = api_key or API_KEY
    if not key:
        raise RuntimeError("GEMINI_API_KEY environment variable not set")
    return genai.Client(api_key=key)


class GeminiImageService:
    def __init__(self, client=None, image_model=IMAGE_MODEL, text_model=TEXT_MODEL):
        self._client = client
        self.image_model = image_model
        self.text_model = text_model

    @property
    def client(self):
        # a fresh client per call unless one was injected; Streamlit runs each action in its own event loop
        return self._client or create_client()

    async def generate_image(self, payload: RequestPayload, images: Sequence[SourceImage]) -> bytes:
        contents = [payload.instructions]
        contents.extend(types.Part.from_bytes(data=img.data, mime_type=img.mime_type) for img in images)
        try:
            response = await self.client.aio.models.generate_content(
                model=self.image_model,
                contents=contents,
                config=types.GenerateContentConfig(
                    response_modalities=["IMAGE"],
                    image_config=image_config_for(self.image_model, payload),
                ),
            )
        except Exception as exc:
            logger.warning("Image request failed: %s", exc)
            raise GenerationError(str(exc) or "Image generation service failed.") from exc
        return extract_image_from_response(response)

    async def enhance_text(self, text: str, kind: str = "background") -> str:
        try:
            response = await self.client.aio.models.generate_content(
                model=self.text_model,
                contents=build_enhancement_instruction(text, kind),
            )
            enhanced = (response.text or "").strip()
        except Exception as exc:
            logger.warning("Prompt enhancement failed, keeping original text: %s", exc)
            return text
        return enhanced or text
