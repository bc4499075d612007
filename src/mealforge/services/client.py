"""HTTP client for the plan-stream, recipe-detail and image generation services."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mealforge.config import Settings, get_settings
from mealforge.errors import EnrichmentError, QuotaExceeded, StreamError
from mealforge.models.plan import DetailedRecipe, Meal, WeekPlan
from mealforge.services.sse import ServerSentEvent, SseDecoder

PLAN_STREAM_PATH = "/meal-plan-generator"
RECIPE_DETAIL_PATH = "/recipe-detail-generator"
IMAGE_PATH = "/image-generator"

QUOTA_STATUS = 402

logger = logging.getLogger(__name__)


class ImageResult(BaseModel):
    """Response of the image generation service."""

    image_url: str
    cache_hit: bool = False
    cost: Optional[float] = Field(default=None)

    model_config = ConfigDict(frozen=True)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:200] or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)[:200]
    return str(body)[:200]


class GenerationServiceClient:
    """Async wrapper around the three remote generation services.

    Status 402 from any service is mapped to :class:`QuotaExceeded`; other
    failures become :class:`StreamError` for plan streams and
    :class:`EnrichmentError` for recipe and image calls.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: Optional[str] = None,
        request_timeout: float = 60.0,
        stream_timeout: float = 180.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._stream_timeout = stream_timeout
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=request_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GenerationServiceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def stream_week(
        self,
        *,
        user_id: str,
        session_id: str,
        week: WeekPlan,
        inventory_id: Optional[str],
        batch_cooking: bool,
    ) -> AsyncIterator[ServerSentEvent]:
        """Open the plan stream for one week and yield its raw events."""

        payload = {
            "user_id": user_id,
            "session_id": session_id,
            "week_number": week.week_number,
            "start_date": week.start_date.isoformat(),
            "end_date": week.end_date.isoformat(),
            "inventory_id": inventory_id,
            "has_preferences": True,
            "batch_cooking_enabled": batch_cooking,
        }
        timeout = httpx.Timeout(self._stream_timeout, connect=10.0)
        try:
            async with self._client.stream(
                "POST", PLAN_STREAM_PATH, json=payload, timeout=timeout
            ) as response:
                if response.status_code == QUOTA_STATUS:
                    await response.aread()
                    raise QuotaExceeded(_error_detail(response), service="meal-plan-generator")
                if response.is_error:
                    await response.aread()
                    raise StreamError(
                        f"Plan stream failed with status {response.status_code}: "
                        f"{_error_detail(response)}",
                        week_number=week.week_number,
                        status_code=response.status_code,
                    )
                decoder = SseDecoder()
                async for line in response.aiter_lines():
                    event = decoder.feed(line)
                    if event is not None:
                        yield event
                tail = decoder.flush()
                if tail is not None:
                    yield tail
        except httpx.HTTPError as exc:
            raise StreamError(
                f"Plan stream transport error: {exc}", week_number=week.week_number
            ) from exc

    async def fetch_recipe_detail(
        self,
        *,
        user_id: str,
        meal: Meal,
        preferences: Dict[str, Any],
    ) -> DetailedRecipe:
        payload = {
            "user_id": user_id,
            "meal_title": meal.name,
            "main_ingredients": list(meal.ingredients),
            "user_preferences": preferences,
            "meal_type": meal.type,
            "target_calories": meal.calories,
        }
        body = await self._post_json(RECIPE_DETAIL_PATH, payload, service="recipe-detail-generator")
        recipe_payload = body.get("recipe") if isinstance(body, dict) else None
        if not isinstance(recipe_payload, dict):
            raise EnrichmentError("Recipe detail response did not include a recipe object")
        recipe_payload = dict(recipe_payload)
        recipe_payload.setdefault("id", meal.id)
        recipe_payload.setdefault("title", meal.name)
        try:
            return DetailedRecipe.model_validate(recipe_payload)
        except ValidationError as exc:
            raise EnrichmentError(f"Recipe detail response was invalid: {exc}") from exc

    async def generate_image(
        self,
        *,
        user_id: str,
        recipe: DetailedRecipe,
        signature: str,
    ) -> ImageResult:
        payload = {
            "user_id": user_id,
            "recipe_id": recipe.id,
            "image_signature": signature,
            "recipe_details": {
                "title": recipe.title,
                "description": recipe.description or "",
                "ingredients": [ingredient.name for ingredient in recipe.ingredients[:5]],
                "dietary_tags": list(recipe.dietary_tags),
            },
        }
        body = await self._post_json(IMAGE_PATH, payload, service="image-generator")
        try:
            return ImageResult.model_validate(body)
        except ValidationError as exc:
            raise EnrichmentError(f"Image response was invalid: {exc}") from exc

    async def _post_json(self, path: str, payload: Dict[str, Any], *, service: str) -> Any:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise EnrichmentError(f"{service} transport error: {exc}") from exc

        if response.status_code == QUOTA_STATUS:
            raise QuotaExceeded(_error_detail(response), service=service)
        if response.is_error:
            raise EnrichmentError(
                f"{service} failed with status {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise EnrichmentError(f"{service} returned invalid JSON") from exc


def build_service_client(settings: Optional[Settings] = None) -> GenerationServiceClient:
    """Create a client from application settings."""

    settings = settings or get_settings()
    return GenerationServiceClient(
        base_url=settings.service_base_url,
        token=settings.service_token,
        request_timeout=settings.request_timeout,
        stream_timeout=settings.stream_timeout,
    )


__all__ = ["GenerationServiceClient", "ImageResult", "build_service_client"]
