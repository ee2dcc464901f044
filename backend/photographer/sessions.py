"""
Photoshoot session API endpoints.

Endpoints:
- POST  /api/v1/sessions                                   -> Create session
- GET   /api/v1/sessions/{id}                              -> Session snapshot
- PATCH /api/v1/sessions/{id}                              -> Update menu text / style
- POST  /api/v1/sessions/{id}/generate                     -> Run a batch, return snapshot
- POST  /api/v1/sessions/{id}/generate/stream              -> Run a batch as SSE
- PUT   /api/v1/sessions/{id}/dishes/{dish_id}/edit-prompt -> Update pending edit instruction
- POST  /api/v1/sessions/{id}/dishes/{dish_id}/edit        -> Edit one dish image
- POST  /api/v1/sessions/{id}/prompt-image                 -> Generate image from a free prompt
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException
from fastapi.responses import StreamingResponse

from .config import Settings
from .dependencies import get_gateway, get_sessions, get_settings
from .gemini_client import GeminiClient
from .observability import ErrorCode
from .photoshoot import (
    DishNotFound,
    EditInProgress,
    InputValidationError,
    PromptImageInProgress,
    edit_dish,
    generate_prompt_image,
    run_batch,
    stream_batch,
)
from .schemas import (
    CreateSessionRequest,
    DishImage,
    EditPromptRequest,
    EditRequest,
    PromptImageRequest,
    PromptImageState,
    SessionSnapshot,
    UpdateSessionRequest,
)
from .sse import sse_event
from .state import PhotoshootSession, SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sessions")


def _get_session(session_id: str, sessions: SessionStore) -> PhotoshootSession:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


# -----------------------------------------------------------------------------
# Session CRUD
# -----------------------------------------------------------------------------
@router.post("", response_model=SessionSnapshot)
async def create_session(
    req: Optional[CreateSessionRequest] = Body(default=None),
    sessions: SessionStore = Depends(get_sessions),
) -> SessionSnapshot:
    req = req or CreateSessionRequest()
    session = sessions.create(menu_text=req.menu_text, style=req.style)
    logger.info("Created session_id=%s", session.session_id)
    return session.snapshot()


@router.get("/{session_id}", response_model=SessionSnapshot)
async def get_session(session_id: str, sessions: SessionStore = Depends(get_sessions)) -> SessionSnapshot:
    return _get_session(session_id, sessions).snapshot()


@router.patch("/{session_id}", response_model=SessionSnapshot)
async def update_session(
    session_id: str,
    req: UpdateSessionRequest,
    sessions: SessionStore = Depends(get_sessions),
) -> SessionSnapshot:
    session = _get_session(session_id, sessions)
    if req.menu_text is not None:
        session.set_menu_text(req.menu_text)
    if req.style is not None:
        session.set_style(req.style)
    return session.snapshot()


# -----------------------------------------------------------------------------
# Generate batch
# -----------------------------------------------------------------------------
@router.post("/{session_id}/generate", response_model=SessionSnapshot)
async def generate_photos(
    session_id: str,
    sessions: SessionStore = Depends(get_sessions),
    gateway: GeminiClient = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> SessionSnapshot:
    session = _get_session(session_id, sessions)
    try:
        await run_batch(session, gateway, aspect_ratio=settings.dish_aspect_ratio)
    except InputValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return session.snapshot()


@router.post("/{session_id}/generate/stream")
async def generate_photos_stream(
    session_id: str,
    accept: str | None = Header(default=None),
    sessions: SessionStore = Depends(get_sessions),
    gateway: GeminiClient = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    if accept and "text/event-stream" not in accept and "*/*" not in accept:
        raise HTTPException(status_code=406, detail="Client must send Accept: text/event-stream")

    session = _get_session(session_id, sessions)

    async def event_generator() -> AsyncGenerator[str, None]:
        seq = 0
        try:
            async for event, payload in stream_batch(session, gateway, aspect_ratio=settings.dish_aspect_ratio):
                seq += 1
                yield sse_event(event, payload, event_id=str(seq))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("photoshoot stream failed for session_id=%s", session_id)
            yield sse_event(
                "error",
                {
                    "code": ErrorCode.INTERNAL_ERROR.value,
                    "message": "Something went wrong, please try again.",
                    "detail": str(e),
                    "recoverable": True,
                },
            )
            yield sse_event("done", {"status": "failed", "session_id": session_id})

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# -----------------------------------------------------------------------------
# Per-dish edits
# -----------------------------------------------------------------------------
@router.put("/{session_id}/dishes/{dish_id}/edit-prompt", response_model=DishImage)
async def update_edit_prompt(
    session_id: str,
    dish_id: str,
    req: EditPromptRequest,
    sessions: SessionStore = Depends(get_sessions),
) -> DishImage:
    session = _get_session(session_id, sessions)
    dish = session.set_edit_prompt(dish_id, req.edit_prompt)
    if dish is None:
        raise HTTPException(status_code=404, detail="Dish not found")
    return dish.model_copy()


@router.post("/{session_id}/dishes/{dish_id}/edit", response_model=DishImage)
async def edit_dish_image(
    session_id: str,
    dish_id: str,
    req: Optional[EditRequest] = Body(default=None),
    sessions: SessionStore = Depends(get_sessions),
    gateway: GeminiClient = Depends(get_gateway),
) -> DishImage:
    session = _get_session(session_id, sessions)
    instruction = req.instruction if req is not None else None
    try:
        return await edit_dish(session, gateway, dish_id, instruction)
    except DishNotFound:
        raise HTTPException(status_code=404, detail="Dish not found")
    except InputValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except EditInProgress:
        raise HTTPException(status_code=409, detail="An edit is already in progress for this dish")


# -----------------------------------------------------------------------------
# Free prompt image
# -----------------------------------------------------------------------------
@router.post("/{session_id}/prompt-image", response_model=PromptImageState)
async def create_prompt_image(
    session_id: str,
    req: PromptImageRequest,
    sessions: SessionStore = Depends(get_sessions),
    gateway: GeminiClient = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> PromptImageState:
    session = _get_session(session_id, sessions)
    try:
        return await generate_prompt_image(
            session,
            gateway,
            req.prompt,
            aspect_ratio=settings.prompt_aspect_ratio,
        )
    except InputValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except PromptImageInProgress:
        raise HTTPException(status_code=409, detail="A prompt image is already being generated")
