"""
Configuration.

Settings are read from environment variables (after loading an optional
``.env`` file) into an immutable Settings model.

Example .env:
    APERIO_TRANSPORT=direct
    GEMINI_API_KEY=...
    APERIO_DAILY_LIMIT=10
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from aperioesca.infrastructure.ai.gemini_client import (
    DEFAULT_BASE_URL,
    DEFAULT_TIER1_MODELS,
    DEFAULT_TIER2_MODELS,
)

TRANSPORTS = ("direct", "relay", "stub")


class Settings(BaseModel):
    """Immutable runtime configuration."""

    model_config = ConfigDict(frozen=True)

    # Client pipeline
    transport: str = "stub"
    gemini_api_key: Optional[str] = None
    gemini_base_url: str = DEFAULT_BASE_URL
    tier1_models: Tuple[str, ...] = DEFAULT_TIER1_MODELS
    tier2_models: Tuple[str, ...] = DEFAULT_TIER2_MODELS
    relay_url: Optional[str] = None
    relay_token: Optional[str] = None
    device_id: Optional[str] = None
    daily_limit: int = Field(10, ge=1)
    max_retries: int = Field(3, ge=0)
    base_delay_ms: int = Field(1000, ge=0)
    max_delay_ms: int = Field(8000, ge=0)
    request_timeout_s: float = Field(30.0, gt=0)
    state_dir: Path = Path("~/.aperioesca")
    image_max_width: int = Field(512, ge=1)
    image_quality: int = Field(50, ge=1, le=95)
    log_level: str = "INFO"

    # Relay server
    relay_api_tokens: Tuple[str, ...] = ()
    relay_daily_limit: int = Field(10, ge=1)
    relay_dedup_window_s: int = Field(300, ge=0)
    relay_max_image_bytes: int = Field(5 * 1024 * 1024, ge=1)
    relay_host: str = "0.0.0.0"
    relay_port: int = 8080


def _get(env: Mapping[str, str], key: str) -> Optional[str]:
    value = env.get(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = _get(env, key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = _get(env, key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_list(env: Mapping[str, str], key: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = _get(env, key)
    if raw is None:
        return default
    items: List[str] = [item.strip() for item in raw.split(",") if item.strip()]
    return tuple(items) or default


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env: Explicit mapping to read instead of ``os.environ``; when
            given, no ``.env`` file is loaded

    Returns:
        Settings instance
    """
    if env is None:
        load_dotenv()
        env = os.environ

    transport = (_get(env, "APERIO_TRANSPORT") or "stub").lower()
    if transport not in TRANSPORTS:
        raise ValueError(
            f"APERIO_TRANSPORT must be one of {', '.join(TRANSPORTS)}, got {transport!r}"
        )

    return Settings(
        transport=transport,
        gemini_api_key=_get(env, "GEMINI_API_KEY") or _get(env, "GOOGLE_API_KEY"),
        gemini_base_url=_get(env, "APERIO_GEMINI_BASE_URL") or DEFAULT_BASE_URL,
        tier1_models=_get_list(env, "APERIO_TIER1_MODELS", DEFAULT_TIER1_MODELS),
        tier2_models=_get_list(env, "APERIO_TIER2_MODELS", DEFAULT_TIER2_MODELS),
        relay_url=_get(env, "APERIO_RELAY_URL"),
        relay_token=_get(env, "APERIO_RELAY_TOKEN"),
        device_id=_get(env, "APERIO_DEVICE_ID"),
        daily_limit=_get_int(env, "APERIO_DAILY_LIMIT", 10),
        max_retries=_get_int(env, "APERIO_MAX_RETRIES", 3),
        base_delay_ms=_get_int(env, "APERIO_BASE_DELAY_MS", 1000),
        max_delay_ms=_get_int(env, "APERIO_MAX_DELAY_MS", 8000),
        request_timeout_s=_get_float(env, "APERIO_REQUEST_TIMEOUT_S", 30.0),
        state_dir=Path(_get(env, "APERIO_STATE_DIR") or "~/.aperioesca"),
        image_max_width=_get_int(env, "APERIO_IMAGE_MAX_WIDTH", 512),
        image_quality=_get_int(env, "APERIO_IMAGE_QUALITY", 50),
        log_level=(_get(env, "LOG_LEVEL") or "INFO").upper(),
        relay_api_tokens=_get_list(env, "RELAY_API_TOKENS", ()),
        relay_daily_limit=_get_int(env, "RELAY_DAILY_LIMIT", 10),
        relay_dedup_window_s=_get_int(env, "RELAY_DEDUP_WINDOW_S", 300),
        relay_max_image_bytes=_get_int(env, "RELAY_MAX_IMAGE_BYTES", 5 * 1024 * 1024),
        relay_host=_get(env, "RELAY_HOST") or "0.0.0.0",
        relay_port=_get_int(env, "RELAY_PORT", 8080),
    )
