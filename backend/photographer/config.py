from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


class ConfigError(RuntimeError):
    pass


_DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
_DEFAULT_IMAGE_MODEL = "imagen-4.0-generate-001"
_DEFAULT_EDIT_MODEL = "gemini-2.5-flash-image"
_DEFAULT_HTTP_TIMEOUT_SECONDS = 300.0


@dataclass(frozen=True)
class Settings:
    api_key: str
    text_model: str = _DEFAULT_TEXT_MODEL
    image_model: str = _DEFAULT_IMAGE_MODEL
    edit_model: str = _DEFAULT_EDIT_MODEL
    dish_aspect_ratio: str = "4:3"
    prompt_aspect_ratio: str = "1:1"
    http_timeout_s: float = _DEFAULT_HTTP_TIMEOUT_SECONDS


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    try:
        return float(env.get(name, str(default)))
    except Exception:
        return default


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Read settings from the process environment.

    The Gemini API key is the only required value; without it the service
    cannot do anything useful, so startup fails with ConfigError.
    """
    if env is None:
        env = os.environ

    api_key = (env.get("GOOGLE_API_KEY") or env.get("API_KEY") or "").strip()
    if not api_key:
        raise ConfigError("GOOGLE_API_KEY (or API_KEY) environment variable not set")

    return Settings(
        api_key=api_key,
        text_model=env.get("TEXT_MODEL") or _DEFAULT_TEXT_MODEL,
        image_model=env.get("IMAGE_MODEL") or _DEFAULT_IMAGE_MODEL,
        edit_model=env.get("EDIT_MODEL") or _DEFAULT_EDIT_MODEL,
        dish_aspect_ratio=env.get("DISH_ASPECT_RATIO") or "4:3",
        prompt_aspect_ratio=env.get("PROMPT_ASPECT_RATIO") or "1:1",
        http_timeout_s=_env_float(env, "GENAI_HTTP_TIMEOUT_SECONDS", _DEFAULT_HTTP_TIMEOUT_SECONDS),
    )
