"""
Server-side view state for one photoshoot session.

PhotoshootSession holds exactly what a front-end renders (menu text, chosen
style, ordered dish cards, loading/error flags and the prompt-image panel)
and applies the transitions the orchestrator asks for. It performs no
validation or transformation of its own.

Dish records are kept in a dict keyed by id plus a list of ids for display
order. Batch-scoped transitions carry the batch id they belong to; anything
addressed to a superseded batch (or to a record that has since been replaced)
is ignored.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Dict, List, Optional, Sequence

from .prompts import DEFAULT_STYLE
from .schemas import DishImage, PromptImageState, SessionSnapshot

logger = logging.getLogger(__name__)


def _new_dish_id(dish_name: str) -> str:
    slug = re.sub(r"\s+", "-", dish_name).lower()
    return f"{slug}{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


class PhotoshootSession:
    def __init__(self, session_id: str, *, menu_text: str = "", style: str = DEFAULT_STYLE) -> None:
        self.session_id = session_id
        self.menu_text = menu_text
        self.style = style
        self.is_loading = False
        self.error: Optional[str] = None
        self.batch_id: Optional[str] = None
        self.prompt_image = PromptImageState()

        self._order: List[str] = []
        self._dishes: Dict[str, DishImage] = {}

    # -------------------------------------------------------------------------
    # Form fields
    # -------------------------------------------------------------------------
    def set_menu_text(self, menu_text: str) -> None:
        self.menu_text = menu_text

    def set_style(self, style: str) -> None:
        # Existing records keep the image they were generated with.
        self.style = style

    # -------------------------------------------------------------------------
    # Batch lifecycle
    # -------------------------------------------------------------------------
    def reject_input(self, message: str) -> None:
        self.error = message

    def begin_batch(self) -> str:
        self.batch_id = uuid.uuid4().hex
        self.is_loading = True
        self.error = None
        self._order = []
        self._dishes = {}
        return self.batch_id

    def show_placeholders(self, batch_id: str, dish_names: Sequence[str]) -> List[DishImage]:
        records: Dict[str, DishImage] = {}
        for name in dish_names:
            dish_id = _new_dish_id(name)
            while dish_id in records:
                dish_id = _new_dish_id(name)
            records[dish_id] = DishImage(id=dish_id, dish_name=name)

        if batch_id != self.batch_id:
            logger.info("Dropping placeholders for superseded batch %s", batch_id)
            return list(records.values())

        self._order = list(records)
        self._dishes = records
        return list(records.values())

    def settle_dish(
        self,
        dish_id: str,
        *,
        image_url: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[DishImage]:
        dish = self._dishes.get(dish_id)
        if dish is None:
            logger.debug("Ignoring settlement for dish %s no longer in the batch", dish_id)
            return None
        dish.is_loading = False
        if error is not None:
            dish.image_url = ""
            dish.error = error
        else:
            dish.image_url = image_url or ""
        return dish

    def fail_batch(self, batch_id: str, message: str) -> None:
        if batch_id != self.batch_id:
            return
        self._order = []
        self._dishes = {}
        self.error = message

    def end_batch(self, batch_id: str) -> None:
        if batch_id != self.batch_id:
            return
        self.is_loading = False

    # -------------------------------------------------------------------------
    # Per-card edits
    # -------------------------------------------------------------------------
    def get_dish(self, dish_id: str) -> Optional[DishImage]:
        return self._dishes.get(dish_id)

    def set_edit_prompt(self, dish_id: str, edit_prompt: str) -> Optional[DishImage]:
        dish = self._dishes.get(dish_id)
        if dish is not None:
            dish.edit_prompt = edit_prompt
        return dish

    def begin_edit(self, dish_id: str) -> bool:
        dish = self._dishes.get(dish_id)
        if dish is None or dish.is_editing:
            return False
        dish.is_editing = True
        return True

    def finish_edit(self, dish_id: str, image_url: str) -> Optional[DishImage]:
        dish = self._dishes.get(dish_id)
        if dish is None:
            return None
        dish.image_url = image_url
        dish.is_editing = False
        dish.edit_prompt = ""
        return dish

    def fail_edit(self, dish_id: str, message: str) -> Optional[DishImage]:
        dish = self._dishes.get(dish_id)
        if dish is None:
            return None
        dish.is_editing = False
        dish.error = message
        return dish

    # -------------------------------------------------------------------------
    # Prompt image panel
    # -------------------------------------------------------------------------
    def reject_prompt(self, prompt: str, message: str) -> None:
        self.prompt_image.prompt = prompt
        self.prompt_image.error = message

    def begin_prompt_image(self, prompt: str) -> bool:
        if self.prompt_image.is_loading:
            return False
        self.prompt_image = PromptImageState(prompt=prompt, is_loading=True)
        return True

    def finish_prompt_image(self, image_url: str) -> None:
        self.prompt_image.image_url = image_url
        self.prompt_image.is_loading = False

    def fail_prompt_image(self, message: str) -> None:
        self.prompt_image.is_loading = False
        self.prompt_image.error = message

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------
    @property
    def dishes(self) -> List[DishImage]:
        return [self._dishes[k] for k in self._order if k in self._dishes]

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            menu_text=self.menu_text,
            style=self.style,
            dishes=[d.model_copy() for d in self.dishes],
            is_loading=self.is_loading,
            error=self.error,
            prompt_image=self.prompt_image.model_copy(),
        )


class SessionStore:
    def __init__(self) -> None:
        self._mem: Dict[str, PhotoshootSession] = {}

    def create(self, *, menu_text: str = "", style: str = DEFAULT_STYLE) -> PhotoshootSession:
        session_id = uuid.uuid4().hex
        session = PhotoshootSession(session_id, menu_text=menu_text, style=style)
        self._mem[session_id] = session
        return session

    def get(self, session_id: str) -> Optional[PhotoshootSession]:
        return self._mem.get(session_id)
