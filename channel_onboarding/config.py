"""Application configuration handling."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

ENV_PATH = Path(__file__).resolve().parent / ".env"
load_dotenv(ENV_PATH, encoding="utf-8-sig")

DEFAULT_GRAPH_API_URL = "https://graph.facebook.com/v22.0"
DEFAULT_ALLOWED_ORIGINS = ("https://www.facebook.com", "https://web.facebook.com")


def _env(key: str, default: str | None = None) -> str:
    value = os.getenv(key, default)
    if value is None:
        raise RuntimeError(f"Missing required environment variable: {key}")
    return value


def _env_int(key: str, default: int | None = None) -> int:
    value = _env(key, str(default) if default is not None else None)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise RuntimeError(f"Environment variable {key} must be an integer") from None


def _env_float(key: str, default: float | None = None) -> float:
    value = _env(key, str(default) if default is not None else None)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise RuntimeError(f"Environment variable {key} must be a number") from None


def _env_list(key: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(key)
    if raw is None:
        return default
    items = tuple(item.strip() for item in raw.split(",") if item.strip())
    return items or default


@dataclass(frozen=True)
class Settings:
    graph_api_url: str
    backend_api_url: str
    signup_proxy_url: str
    facebook_config_id: Optional[str]
    consent_allowed_origins: Tuple[str, ...]
    request_timeout_seconds: int
    contacts_sync_delay_seconds: float
    history_sync_delay_seconds: float
    sync_completion_delay_seconds: float

    @classmethod
    def from_env(cls) -> "Settings":
        config_id = os.getenv("FACEBOOK_CONFIG_ID", "").strip() or None
        return cls(
            graph_api_url=_env("GRAPH_API_URL", DEFAULT_GRAPH_API_URL),
            backend_api_url=_env("BACKEND_API_URL"),
            signup_proxy_url=_env("SIGNUP_PROXY_URL"),
            facebook_config_id=config_id,
            consent_allowed_origins=_env_list("CONSENT_ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS),
            request_timeout_seconds=_env_int("REQUEST_TIMEOUT_SECONDS", 15),
            contacts_sync_delay_seconds=_env_float("CONTACTS_SYNC_DELAY_SECONDS", 1.0),
            history_sync_delay_seconds=_env_float("HISTORY_SYNC_DELAY_SECONDS", 1.0),
            sync_completion_delay_seconds=_env_float("SYNC_COMPLETION_DELAY_SECONDS", 2.0),
        )
