from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from .prompts import DEFAULT_STYLE, ImageStyle


class ParsedDish(BaseModel):
    dish_name: str = Field(description="The name of the dish.")


class DishImage(BaseModel):
    id: str
    dish_name: str
    image_url: str = ""
    is_loading: bool = True
    is_editing: bool = False
    edit_prompt: str = ""
    error: Optional[str] = None


class PromptImageState(BaseModel):
    prompt: str = ""
    image_url: Optional[str] = None
    is_loading: bool = False
    error: Optional[str] = None


class SessionSnapshot(BaseModel):
    session_id: str
    menu_text: str
    style: ImageStyle
    dishes: List[DishImage]
    is_loading: bool
    error: Optional[str] = None
    prompt_image: PromptImageState


class StyleOption(BaseModel):
    name: ImageStyle
    description: str


# -----------------------------------------------------------------------------
# Request / response bodies
# -----------------------------------------------------------------------------
class CreateSessionRequest(BaseModel):
    menu_text: str = ""
    style: ImageStyle = DEFAULT_STYLE


class UpdateSessionRequest(BaseModel):
    menu_text: Optional[str] = None
    style: Optional[ImageStyle] = None


class EditPromptRequest(BaseModel):
    edit_prompt: str


class EditRequest(BaseModel):
    # Falls back to the record's pending edit_prompt when omitted.
    instruction: Optional[str] = None


class PromptImageRequest(BaseModel):
    prompt: str


class ParseMenuRequest(BaseModel):
    menu_text: str


class ParseMenuResponse(BaseModel):
    dishes: List[str]
