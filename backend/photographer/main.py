import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List

from fastapi import Depends, FastAPI

from .config import load_settings
from .dependencies import get_gateway
from .gemini_client import GeminiClient
from .observability import configure_logging
from .prompts import IMAGE_STYLES, STYLE_DESCRIPTIONS
from .schemas import ParseMenuRequest, ParseMenuResponse, StyleOption
from .sessions import router as sessions_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # A missing API key raises ConfigError here and aborts startup.
    settings = load_settings()
    app.state.settings = settings
    app.state.gateway = GeminiClient(settings)
    logger.info(
        "Gemini gateway ready (text_model=%s, image_model=%s, edit_model=%s)",
        settings.text_model,
        settings.image_model,
        settings.edit_model,
    )
    yield


app = FastAPI(title="Virtual Food Photographer API", version="0.1.0", lifespan=lifespan)
app.include_router(sessions_router)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/styles", response_model=List[StyleOption])
def list_styles() -> List[StyleOption]:
    return [StyleOption(name=name, description=STYLE_DESCRIPTIONS[name]) for name in IMAGE_STYLES]


@app.post("/api/v1/menu/parse", response_model=ParseMenuResponse)
async def parse_menu(req: ParseMenuRequest, gateway: GeminiClient = Depends(get_gateway)) -> ParseMenuResponse:
    if not req.menu_text.strip():
        return ParseMenuResponse(dishes=[])
    return ParseMenuResponse(dishes=await gateway.parse_menu_async(req.menu_text))


def serve() -> None:
    import uvicorn

    configure_logging()
    uvicorn.run(
        "photographer.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8080")),
    )
