from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Set, Tuple

from .gemini_client import GeminiClient
from .observability import (
    BatchContext,
    ErrorCode,
    log_batch_done,
    log_batch_error,
    log_batch_start,
    log_step_timing,
)
from .prompts import style_prompt
from .schemas import DishImage, PromptImageState
from .state import PhotoshootSession

logger = logging.getLogger(__name__)

EMPTY_MENU_MESSAGE = "Please enter a menu."
BATCH_FAILED_MESSAGE = "Failed to parse menu or generate images. Please check your menu format and try again."
DISH_FAILED_MESSAGE = "Failed to generate image"
EDIT_FAILED_MESSAGE = "Editing failed"
EMPTY_PROMPT_MESSAGE = "Please enter a prompt."
PROMPT_IMAGE_FAILED_MESSAGE = "Failed to generate image. Please try again."

BatchEvent = Tuple[str, Dict[str, Any]]


class InputValidationError(ValueError):
    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class DishNotFound(KeyError):
    pass


class EditInProgress(RuntimeError):
    pass


class PromptImageInProgress(RuntimeError):
    pass


def _elapsed_ms(since: float) -> int:
    return int((time.monotonic() - since) * 1000)


def _done_status(ctx: BatchContext) -> str:
    if ctx.failed_items_count:
        return "partial"
    return "completed"


# -----------------------------------------------------------------------------
# Generate batch
# -----------------------------------------------------------------------------
# Running batch tasks; kept referenced so a closed stream cannot drop them.
_running_batches: Set["asyncio.Task[None]"] = set()


async def _run_batch_work(
    session: PhotoshootSession,
    gateway: GeminiClient,
    ctx: BatchContext,
    emit: Callable[[Optional[BatchEvent]], None],
    *,
    menu_text: str,
    aspect_ratio: str,
) -> None:
    batch_id = ctx.batch_id
    style = ctx.style
    try:
        emit(("status", {"step": "parsing", "batch_id": batch_id}))

        step_started = time.monotonic()
        dish_names = await gateway.parse_menu_async(menu_text)
        ctx.parse_ms = _elapsed_ms(step_started)
        log_step_timing(ctx, "parse", ctx.parse_ms, extra={"dishes": len(dish_names)})

        placeholders = session.show_placeholders(batch_id, dish_names)
        ctx.items_count = len(placeholders)
        emit(("menu_data", {"batch_id": batch_id, "dishes": [d.model_dump() for d in placeholders]}))

        if placeholders:
            emit(("status", {"step": "generating_images", "batch_id": batch_id}))

        step_started = time.monotonic()
        results = await asyncio.gather(
            *(
                gateway.generate_image_async(style_prompt(style, d.dish_name), aspect_ratio=aspect_ratio)
                for d in placeholders
            ),
            return_exceptions=True,
        )
        ctx.image_gen_ms = _elapsed_ms(step_started)
        log_step_timing(ctx, "image_gen", ctx.image_gen_ms)

        # gather keeps submission order, so results[i] belongs to placeholders[i].
        # Every record is settled before any update goes out.
        updates: List[Dict[str, Any]] = []
        for index, (placeholder, result) in enumerate(zip(placeholders, results)):
            if isinstance(result, BaseException):
                ctx.failed_items_count += 1
                logger.error(
                    "Failed to generate image for %s: %r",
                    placeholder.dish_name,
                    result,
                    exc_info=result,
                )
                settled = session.settle_dish(placeholder.id, error=DISH_FAILED_MESSAGE)
            else:
                settled = session.settle_dish(placeholder.id, image_url=result)

            if settled is None:
                continue
            update: Dict[str, Any] = {"batch_id": batch_id, "index": index, "dish": settled.model_dump()}
            if settled.error:
                update["code"] = ErrorCode.IMAGE_GEN_FAILED.value
            updates.append(update)
        session.end_batch(batch_id)

        for update in updates:
            emit(("image_update", update))
        ctx.mark_done(_done_status(ctx))
        log_batch_done(ctx)
        emit(("done", {"status": ctx.final_status, "session_id": session.session_id, "summary": ctx.summary()}))
    except Exception as e:
        log_batch_error(ctx, ErrorCode.BATCH_FAILED, BATCH_FAILED_MESSAGE, exc=e)
        session.fail_batch(batch_id, BATCH_FAILED_MESSAGE)
        emit(
            (
                "error",
                {
                    "code": ErrorCode.BATCH_FAILED.value,
                    "message": BATCH_FAILED_MESSAGE,
                    "detail": str(e),
                    "recoverable": True,
                },
            )
        )
        ctx.mark_done("failed")
        log_batch_done(ctx)
        emit(("done", {"status": "failed", "session_id": session.session_id, "summary": ctx.summary()}))
    finally:
        session.end_batch(batch_id)
        emit(None)


async def stream_batch(
    session: PhotoshootSession,
    gateway: GeminiClient,
    *,
    aspect_ratio: str = "4:3",
) -> AsyncGenerator[BatchEvent, None]:
    """Run one generate action for the session, yielding lifecycle events.

    Events: ``status``, ``menu_data`` (placeholders), ``image_update`` (one per
    dish, in menu order), ``error`` and a final ``done``. Session state is
    updated before each event is yielded, so consumers may ignore the events
    and read the session instead.

    The parse and image calls run in their own task. Closing or cancelling the
    stream stops the events, not the batch: every record still settles.
    """
    menu_text = session.menu_text
    style = session.style
    ctx = BatchContext(session_id=session.session_id, style=style)

    if not menu_text.strip():
        session.reject_input(EMPTY_MENU_MESSAGE)
        log_batch_error(ctx, ErrorCode.EMPTY_MENU, EMPTY_MENU_MESSAGE)
        yield "error", {"code": ErrorCode.EMPTY_MENU.value, "message": EMPTY_MENU_MESSAGE, "recoverable": True}
        ctx.mark_done("rejected")
        yield "done", {"status": "rejected", "session_id": session.session_id, "summary": ctx.summary()}
        return

    ctx.batch_id = session.begin_batch()
    log_batch_start(ctx, extra={"style": style, "menu_chars": len(menu_text)})

    events: "asyncio.Queue[Optional[BatchEvent]]" = asyncio.Queue()
    task = asyncio.create_task(
        _run_batch_work(
            session,
            gateway,
            ctx,
            events.put_nowait,
            menu_text=menu_text,
            aspect_ratio=aspect_ratio,
        )
    )
    _running_batches.add(task)
    task.add_done_callback(_running_batches.discard)

    while True:
        item = await events.get()
        if item is None:
            break
        yield item


async def run_batch(
    session: PhotoshootSession,
    gateway: GeminiClient,
    *,
    aspect_ratio: str = "4:3",
) -> PhotoshootSession:
    """Drain stream_batch; raises InputValidationError for an empty menu."""
    async for event, payload in stream_batch(session, gateway, aspect_ratio=aspect_ratio):
        if event == "error" and payload.get("code") == ErrorCode.EMPTY_MENU.value:
            raise InputValidationError(ErrorCode.EMPTY_MENU, payload["message"])
    return session


# -----------------------------------------------------------------------------
# Edit one dish
# -----------------------------------------------------------------------------
async def edit_dish(
    session: PhotoshootSession,
    gateway: GeminiClient,
    dish_id: str,
    instruction: Optional[str] = None,
) -> DishImage:
    dish = session.get_dish(dish_id)
    if dish is None:
        raise DishNotFound(dish_id)

    if instruction is not None:
        session.set_edit_prompt(dish_id, instruction)
    prompt = dish.edit_prompt
    if not prompt.strip():
        raise InputValidationError(ErrorCode.EMPTY_INSTRUCTION, "Please enter an edit instruction.")
    if not dish.image_url:
        raise InputValidationError(ErrorCode.MISSING_IMAGE, "This dish has no image to edit yet.")

    if not session.begin_edit(dish_id):
        raise EditInProgress(dish_id)

    source_url = dish.image_url
    try:
        edited_url = await gateway.edit_image_async(source_url, prompt)
    except asyncio.CancelledError:
        session.fail_edit(dish_id, EDIT_FAILED_MESSAGE)
        raise
    except Exception:
        logger.exception("Failed to edit image for dish ID %s (code=%s)", dish_id, ErrorCode.EDIT_FAILED.value)
        failed = session.fail_edit(dish_id, EDIT_FAILED_MESSAGE)
        if failed is None:
            raise DishNotFound(dish_id)
        return failed.model_copy()

    finished = session.finish_edit(dish_id, edited_url)
    if finished is None:
        # The batch was replaced while the edit was in flight.
        raise DishNotFound(dish_id)
    return finished.model_copy()


# -----------------------------------------------------------------------------
# Free prompt image
# -----------------------------------------------------------------------------
async def generate_prompt_image(
    session: PhotoshootSession,
    gateway: GeminiClient,
    prompt: str,
    *,
    aspect_ratio: str = "1:1",
) -> PromptImageState:
    # One request at a time; the panel belongs to whichever request is loading.
    if session.prompt_image.is_loading:
        raise PromptImageInProgress(session.session_id)
    if not prompt.strip():
        session.reject_prompt(prompt, EMPTY_PROMPT_MESSAGE)
        raise InputValidationError(ErrorCode.EMPTY_PROMPT, EMPTY_PROMPT_MESSAGE)

    if not session.begin_prompt_image(prompt):
        raise PromptImageInProgress(session.session_id)
    try:
        image_url = await gateway.generate_image_async(prompt, aspect_ratio=aspect_ratio)
    except asyncio.CancelledError:
        session.fail_prompt_image(PROMPT_IMAGE_FAILED_MESSAGE)
        raise
    except Exception:
        logger.exception("Prompt image generation failed")
        session.fail_prompt_image(PROMPT_IMAGE_FAILED_MESSAGE)
    else:
        session.finish_prompt_image(image_url)
    return session.prompt_image.model_copy()
