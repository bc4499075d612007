"""Application configuration helpers."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

ENV_FILE_CANDIDATES = (Path(".env"), Path(".env.local"))


class Settings(BaseModel):
    """Global application settings loaded from environment variables or .env files."""

    database_path: Path = Field(
        default=Path("./data/mealforge.db"),
        description="SQLite database location (checkpoints and saved plans).",
    )
    service_base_url: str = Field(
        default="http://127.0.0.1:54321/functions/v1",
        description="Base URL of the plan, recipe-detail and image generation services.",
    )
    service_token: Optional[str] = Field(
        default=None,
        description="Bearer token sent to the generation services.",
    )
    api_token: Optional[str] = Field(
        default=None,
        description="Bearer token required for authenticated endpoints.",
    )
    log_level: str = Field(default="INFO", description="Logging level (DEBUG/INFO/WARNING/ERROR)")
    log_format: str = Field(
        default="plain",
        description="Logging format (plain/json).",
    )
    log_requests: bool = Field(
        default=True,
        description="Emit request access logs when true.",
    )
    stream_timeout: float = Field(
        default=180.0,
        description="Seconds allowed for a single week's plan stream.",
    )
    request_timeout: float = Field(
        default=60.0,
        description="Seconds allowed for a recipe-detail or image request.",
    )
    recipe_wait_timeout: float = Field(
        default=120.0,
        description="Seconds to wait for outstanding recipe details before moving on.",
    )
    image_wait_timeout: float = Field(
        default=30.0,
        description="Seconds to wait for outstanding images before moving on.",
    )
    cancel_grace_period: float = Field(
        default=0.5,
        description="Seconds cancel() waits for in-flight handlers to observe the signal.",
    )

    model_config = ConfigDict(frozen=True)


def _coerce_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_env_file(path: Path) -> dict[str, str]:
    payload: dict[str, str] = {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            for raw_line in handle:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, raw_value = line.split("=", 1)
                payload[key.strip()] = raw_value.strip()
    except FileNotFoundError:
        return {}
    return payload


def _load_env_file_values() -> dict[str, str]:
    values: dict[str, str] = {}
    for candidate in ENV_FILE_CANDIDATES:
        values.update(_parse_env_file(candidate))
    return values


_FLOAT_FIELDS = {
    "MEALFORGE_STREAM_TIMEOUT": "stream_timeout",
    "MEALFORGE_REQUEST_TIMEOUT": "request_timeout",
    "MEALFORGE_RECIPE_WAIT_TIMEOUT": "recipe_wait_timeout",
    "MEALFORGE_IMAGE_WAIT_TIMEOUT": "image_wait_timeout",
    "MEALFORGE_CANCEL_GRACE_PERIOD": "cancel_grace_period",
}


def _load_from_env() -> dict[str, object]:
    """Load optional overrides from env vars (with .env fallbacks)."""

    file_values = _load_env_file_values()

    def _env(key: str) -> Optional[str]:
        return os.environ.get(key) or file_values.get(key)

    payload: dict[str, object] = {}
    if (db_path := _env("MEALFORGE_DATABASE_PATH")):
        payload["database_path"] = Path(db_path)
    if (base_url := _env("MEALFORGE_SERVICE_BASE_URL")):
        payload["service_base_url"] = base_url
    if (service_token := _env("MEALFORGE_SERVICE_TOKEN")):
        payload["service_token"] = service_token
    if (api_token := _env("MEALFORGE_API_TOKEN")):
        payload["api_token"] = api_token
    if (log_level := _env("MEALFORGE_LOG_LEVEL")):
        payload["log_level"] = log_level
    if (log_format := _env("MEALFORGE_LOG_FORMAT")):
        payload["log_format"] = log_format
    if (log_requests := _env("MEALFORGE_LOG_REQUESTS")):
        payload["log_requests"] = _coerce_bool(log_requests)
    for env_key, field_name in _FLOAT_FIELDS.items():
        if (raw := _env(env_key)):
            try:
                payload[field_name] = float(raw)
            except ValueError:
                pass
    return payload


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings(**_load_from_env())
