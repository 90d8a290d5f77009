"""Configuration helpers for the ConceptCraft wizard."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

ENV_PREFIX = "CONCEPTCRAFT_"
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "google/gemini-2.0-flash-001"
DEFAULT_STORAGE_PATH = ".conceptcraft/state.json"

load_dotenv(override=False)


@dataclass(frozen=True)
class Settings:
    """Settings container for the inference collaborator and local storage.

    The API key is read from ``OPENAI_API_KEY`` first; ``OPENROUTER_API_KEY`` is
    accepted as a fallback because the default endpoint is OpenRouter's
    OpenAI-compatible API.
    """

    openai_api_key: str | None = None
    llm_base_url: str | None = DEFAULT_BASE_URL
    llm_model: str = DEFAULT_MODEL
    llm_timeout: float = 60.0
    storage_path: Path = Path(DEFAULT_STORAGE_PATH)
    auth_latency: float = 1.0
    log_level: str = "INFO"
    json_logs: bool = False

    @property
    def has_api_key(self) -> bool:
        """True when an inference API key is configured."""

        return bool(self.openai_api_key)


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_flag(environ: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def settings_from_env(environ: Mapping[str, str]) -> Settings:
    """Build settings from an environment-like mapping."""

    return Settings(
        openai_api_key=environ.get("OPENAI_API_KEY") or environ.get("OPENROUTER_API_KEY") or None,
        llm_base_url=environ.get(f"{ENV_PREFIX}LLM_BASE_URL") or DEFAULT_BASE_URL,
        llm_model=environ.get(f"{ENV_PREFIX}LLM_MODEL") or DEFAULT_MODEL,
        llm_timeout=_env_float(environ, f"{ENV_PREFIX}LLM_TIMEOUT", 60.0),
        storage_path=Path(environ.get(f"{ENV_PREFIX}STORAGE_PATH") or DEFAULT_STORAGE_PATH),
        auth_latency=_env_float(environ, f"{ENV_PREFIX}AUTH_LATENCY", 1.0),
        log_level=(environ.get(f"{ENV_PREFIX}LOG_LEVEL") or "INFO").upper(),
        json_logs=_env_flag(environ, f"{ENV_PREFIX}JSON_LOGS"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read environment variables and return cached settings."""

    return settings_from_env(os.environ)
