from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, List, Optional, Tuple

from pydantic import TypeAdapter

from .config import Settings
from .images import decode_data_uri, encode_data_uri, sniff_mime_type
from .prompts import menu_parse_prompt
from .schemas import ParsedDish

logger = logging.getLogger(__name__)

_PARSED_DISHES = TypeAdapter(List[ParsedDish])


class GatewayError(RuntimeError):
    pass


class GenerationFailed(GatewayError):
    pass


class EditFailed(GatewayError):
    pass


def fallback_dish_names(menu_text: str) -> List[str]:
    return [line.strip() for line in menu_text.split("\n") if line.strip()]


def _extract_first_balanced_json(text: str) -> Optional[str]:
    # Find the first balanced JSON array/object in the text.
    starts = [(text.find(ch), ch) for ch in "[{" if text.find(ch) != -1]
    if not starts:
        return None
    start, open_ch = min(starts)
    close_ch = "]" if open_ch == "[" else "}"

    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return None


def _strip_code_fences(text: str) -> str:
    stripped = text.strip()
    if "```" not in stripped:
        return stripped
    m = re.search(r"```(?:json)?\s*(.*?)\s*```", stripped, flags=re.DOTALL | re.IGNORECASE)
    if m is not None:
        return m.group(1).strip()
    return stripped.replace("```", "").strip()


def _parse_dish_list_text(text: str) -> List[str]:
    stripped = _strip_code_fences(text)
    try:
        data = json.loads(stripped)
    except ValueError:
        candidate = _extract_first_balanced_json(stripped)
        if candidate is None:
            raise
        data = json.loads(candidate)
    return [d.dish_name for d in _PARSED_DISHES.validate_python(data)]


def _dish_names_from_response(response: object) -> List[str]:
    parsed = getattr(response, "parsed", None)
    if parsed is not None:
        return [d.dish_name for d in _PARSED_DISHES.validate_python(parsed)]

    text = getattr(response, "text", None)
    if not isinstance(text, str) or not text.strip():
        raise ValueError("Menu parse response carried no JSON")
    return _parse_dish_list_text(text)


def _first_inline_image(response: object) -> Optional[Tuple[bytes, str]]:
    parts: List[Any] = []
    candidates = getattr(response, "candidates", None) or []
    if candidates:
        content = getattr(candidates[0], "content", None)
        parts = list(getattr(content, "parts", None) or [])

    for part in parts:
        inline = getattr(part, "inline_data", None)
        if inline is None or not getattr(inline, "data", None):
            continue
        data = inline.data
        # Depending on SDK version, this may be bytes or a base64 string.
        if isinstance(data, str):
            data = base64.b64decode(data)
        mime_type = getattr(inline, "mime_type", None) or sniff_mime_type(data)
        return data, mime_type

    return None


def _finish_reason(response: object) -> Optional[Any]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    return getattr(candidates[0], "finish_reason", None)


class GeminiClient:
    def __init__(self, settings: Settings, *, client: Optional[Any] = None) -> None:
        self.text_model = settings.text_model
        self.image_model = settings.image_model
        self.edit_model = settings.edit_model

        if client is None:
            from google import genai

            timeout_ms = max(1000, int(settings.http_timeout_s * 1000))
            client = genai.Client(api_key=settings.api_key, http_options={"timeout": timeout_ms})
        self._client = client

    async def parse_menu_async(self, menu_text: str) -> List[str]:
        """Extract dish names from free menu text.

        Never raises: any transport error or non-conforming response falls back
        to one dish per non-empty line.
        """
        try:
            from google.genai import types

            response = await self._client.aio.models.generate_content(
                model=self.text_model,
                contents=[menu_parse_prompt(menu_text)],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=list[ParsedDish],
                ),
            )
            names = _dish_names_from_response(response)
        except Exception:
            logger.exception("Menu parsing with model=%s failed, falling back to line split", self.text_model)
            return fallback_dish_names(menu_text)

        logger.info("Parsed %d dishes with model=%s", len(names), self.text_model)
        return names

    async def generate_image_async(self, prompt: str, *, aspect_ratio: str = "1:1") -> str:
        from google.genai import types

        logger.info("Generating image with model=%s, prompt_len=%d", self.image_model, len(prompt))

        # Prefer Imagen for text-to-image.
        if self.image_model.startswith("imagen-"):
            result = await self._client.aio.models.generate_images(
                model=self.image_model,
                prompt=prompt,
                config=types.GenerateImagesConfig(
                    number_of_images=1,
                    output_mime_type="image/jpeg",
                    aspect_ratio=aspect_ratio,
                ),
            )
            generated = getattr(result, "generated_images", None) or []
            image = getattr(generated[0], "image", None) if generated else None
            if image is None or not getattr(image, "image_bytes", None):
                logger.error("Imagen returned no images")
                raise GenerationFailed("Image generation failed, no images returned.")
            mime_type = getattr(image, "mime_type", None) or "image/jpeg"
            return encode_data_uri(image.image_bytes, mime_type)

        # Gemini native image generation model.
        response = await self._client.aio.models.generate_content(
            model=self.image_model,
            contents=[prompt],
            config=types.GenerateContentConfig(
                response_modalities=[types.Modality.IMAGE],
                image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
            ),
        )
        found = _first_inline_image(response)
        if found is None:
            logger.error("Image model returned no inline image data (finish_reason=%s)", _finish_reason(response))
            raise GenerationFailed("Image generation failed, no images returned.")
        return encode_data_uri(*found)

    async def edit_image_async(self, image_data_uri: str, instruction: str) -> str:
        from google.genai import types

        payload = decode_data_uri(image_data_uri)
        logger.info(
            "Editing image with model=%s, mime_type=%s, bytes=%d",
            self.edit_model,
            payload.mime_type,
            len(payload.data),
        )

        response = await self._client.aio.models.generate_content(
            model=self.edit_model,
            contents=[
                types.Part.from_bytes(data=payload.data, mime_type=payload.mime_type),
                instruction,
            ],
            config=types.GenerateContentConfig(
                response_modalities=[types.Modality.IMAGE],
            ),
        )

        found = _first_inline_image(response)
        if found is None:
            logger.error("Edit model returned no inline image data (finish_reason=%s)", _finish_reason(response))
            raise EditFailed("Image editing failed, no image data returned.")
        return encode_data_uri(*found)
