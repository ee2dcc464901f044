from __future__ import annotations

from fastapi import Request

from .config import Settings
from .gemini_client import GeminiClient
from .state import SessionStore

_session_store = SessionStore()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_gateway(request: Request) -> GeminiClient:
    return request.app.state.gateway


def get_sessions() -> SessionStore:
    return _session_store
