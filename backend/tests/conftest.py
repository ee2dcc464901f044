import asyncio
import io
from typing import Dict, Iterable, List, Optional

import pytest
from PIL import Image

from photographer.gemini_client import GenerationFailed, fallback_dish_names
from photographer.images import encode_data_uri


class FakeGateway:
    """In-process stand-in for GeminiClient.

    Generated images encode their prompt as the payload, so tests can tell
    which dish an image was produced for.
    """

    def __init__(
        self,
        dishes: Optional[List[str]] = None,
        *,
        fail_for: Iterable[str] = (),
        delays: Optional[Dict[str, float]] = None,
        parse_error: Optional[Exception] = None,
        edit_error: Optional[Exception] = None,
        prompt_error: Optional[Exception] = None,
    ) -> None:
        self.dishes = dishes
        self.fail_for = set(fail_for)
        self.delays = delays or {}
        self.parse_error = parse_error
        self.edit_error = edit_error
        self.prompt_error = prompt_error
        self.edit_gate: Optional[asyncio.Event] = None
        self.generate_gate: Optional[asyncio.Event] = None
        self.edit_started: Optional[asyncio.Event] = None
        self.generate_started: Optional[asyncio.Event] = None

        self.parse_calls: List[str] = []
        self.generate_calls: List[tuple] = []
        self.edit_calls: List[tuple] = []

    async def parse_menu_async(self, menu_text: str) -> List[str]:
        self.parse_calls.append(menu_text)
        if self.parse_error is not None:
            raise self.parse_error
        if self.dishes is not None:
            return list(self.dishes)
        return fallback_dish_names(menu_text)

    async def generate_image_async(self, prompt: str, *, aspect_ratio: str = "1:1") -> str:
        self.generate_calls.append((prompt, aspect_ratio))
        if self.generate_started is not None:
            self.generate_started.set()
        if self.generate_gate is not None:
            await self.generate_gate.wait()
        for name, delay in self.delays.items():
            if f'"{name}"' in prompt:
                await asyncio.sleep(delay)
        for name in self.fail_for:
            if f'"{name}"' in prompt:
                raise GenerationFailed("Image generation failed, no images returned.")
        if self.prompt_error is not None:
            raise self.prompt_error
        return encode_data_uri(prompt.encode("utf-8"), "image/jpeg")

    async def edit_image_async(self, image_data_uri: str, instruction: str) -> str:
        self.edit_calls.append((image_data_uri, instruction))
        if self.edit_started is not None:
            self.edit_started.set()
        if self.edit_gate is not None:
            await self.edit_gate.wait()
        if self.edit_error is not None:
            raise self.edit_error
        return encode_data_uri(f"edited:{instruction}".encode("utf-8"), "image/png")


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def png_bytes() -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (4, 3), color=(200, 80, 40)).save(out, format="PNG")
    return out.getvalue()
