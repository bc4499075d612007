"""Concurrent per-meal recipe and image enrichment."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from mealforge import metrics
from mealforge.errors import EnrichmentError, QuotaExceeded
from mealforge.models.plan import Day, Meal
from mealforge.pipeline.handle import RunHandle
from mealforge.pipeline.transitions import apply_image_url, apply_recipe, find_meal, iter_meals

logger = logging.getLogger(__name__)

QuotaListener = Callable[[RunHandle, QuotaExceeded], None]


class EnrichmentCoordinator:
    """Fan out recipe-detail requests per meal and image requests per recipe.

    Every request runs as a task registered with the run's cancellation token
    and with one of two tracked task sets, which the state machine joins with
    a deadline before advancing phases. There is no concurrency cap: the
    fan-out is bounded by the meals of the day being enriched.
    """

    def __init__(self, client, *, on_quota_exceeded: Optional[QuotaListener] = None) -> None:
        self._client = client
        self._on_quota_exceeded = on_quota_exceeded
        self._recipe_tasks: Set[asyncio.Task] = set()
        self._image_tasks: Set[asyncio.Task] = set()
        self._in_flight: Set[str] = set()
        # Meals whose recipe request already failed; never requested again this run.
        self._failed: Set[str] = set()

    @property
    def pending_recipes(self) -> int:
        return sum(1 for task in self._recipe_tasks if not task.done())

    @property
    def failed_meals(self) -> int:
        return len(self._failed)

    @property
    def pending_images(self) -> int:
        return sum(1 for task in self._image_tasks if not task.done())

    def enrich_day(
        self, handle: RunHandle, day: Day, preferences: Dict[str, Any]
    ) -> List[asyncio.Task]:
        """Start one recipe request per meal of ``day`` that still needs one."""

        if handle.token.cancelled:
            return []
        tasks: List[asyncio.Task] = []
        for meal in day.meals:
            if meal.recipe_generated or meal.id in self._in_flight or meal.id in self._failed:
                continue
            self._in_flight.add(meal.id)
            task = asyncio.create_task(
                self._enrich_meal(handle, meal, preferences), name=f"recipe-{meal.id}"
            )
            self._track(handle, task, self._recipe_tasks)
            tasks.append(task)
        return tasks

    def enrich_pending(self, handle: RunHandle, preferences: Dict[str, Any]) -> List[asyncio.Task]:
        """Start enrichment for every meal of the run not yet enriched, failed or in flight."""

        tasks: List[asyncio.Task] = []
        seen: Set[tuple] = set()
        for week_index, day, _ in iter_meals(handle.run):
            key = (week_index, day.day_index)
            if key in seen:
                continue
            seen.add(key)
            tasks.extend(self.enrich_day(handle, day, preferences))
        return tasks

    def generate_image(
        self, handle: RunHandle, meal: Meal, signature: Optional[str] = None
    ) -> Optional[asyncio.Task]:
        """Start image generation for an enriched meal without blocking on it."""

        if handle.token.cancelled or meal.detailed_recipe is None:
            return None
        recipe = meal.detailed_recipe
        signature = signature or recipe.image_signature or f"recipe-{recipe.id}"
        handle.record(handle.progress.record_image_scheduled)
        task = asyncio.create_task(
            self._generate_image(handle, meal, signature), name=f"image-{meal.id}"
        )
        self._track(handle, task, self._image_tasks)
        return task

    async def join_recipes(self, timeout: float) -> bool:
        return await self._join(self._recipe_tasks, timeout)

    async def join_images(self, timeout: float) -> bool:
        return await self._join(self._image_tasks, timeout)

    async def _enrich_meal(self, handle: RunHandle, meal: Meal, preferences: Dict[str, Any]) -> None:
        log_extra = {"run_id": handle.run_id, "meal_id": meal.id}
        try:
            if handle.token.cancelled:
                return
            recipe = await self._client.fetch_recipe_detail(
                user_id=handle.run.user_id, meal=meal, preferences=preferences
            )
        except QuotaExceeded as exc:
            metrics.RECIPE_ENRICHMENTS.labels(result="quota_exceeded").inc()
            logger.warning("Recipe quota exhausted meal=%s", meal.name, extra=log_extra)
            self._record_failure(handle, meal)
            handle.apply(lambda run: run.model_copy(
                update={"quota_exceeded": True, "last_error": str(exc)}
            ))
            if self._on_quota_exceeded is not None and not handle.token.cancelled:
                self._on_quota_exceeded(handle, exc)
            return
        except EnrichmentError as exc:
            metrics.RECIPE_ENRICHMENTS.labels(result="failed").inc()
            logger.warning("Recipe enrichment failed meal=%s error=%s", meal.name, exc, extra=log_extra)
            self._record_failure(handle, meal)
            return
        except asyncio.CancelledError:
            raise
        except Exception:  # pragma: no cover - defensive logging
            metrics.RECIPE_ENRICHMENTS.labels(result="failed").inc()
            logger.exception("Unexpected recipe enrichment failure meal=%s", meal.name, extra=log_extra)
            self._record_failure(handle, meal)
            return
        finally:
            self._in_flight.discard(meal.id)

        applied = handle.apply(
            lambda run: apply_recipe(run, meal.id, recipe)[0],
            on_applied=handle.progress.record_meal_enriched,
        )
        if not applied:
            logger.debug("Recipe result discarded meal=%s", meal.name, extra=log_extra)
            return
        metrics.RECIPE_ENRICHMENTS.labels(result="succeeded").inc()
        logger.info("Recipe enriched meal=%s recipe=%s", meal.name, recipe.title, extra=log_extra)

        enriched = find_meal(handle.run, meal.id)
        if enriched is not None:
            self.generate_image(handle, enriched)

    async def _generate_image(self, handle: RunHandle, meal: Meal, signature: str) -> None:
        log_extra = {"run_id": handle.run_id, "meal_id": meal.id}
        assert meal.detailed_recipe is not None
        try:
            if handle.token.cancelled:
                return
            result = await self._client.generate_image(
                user_id=handle.run.user_id, recipe=meal.detailed_recipe, signature=signature
            )
        except (QuotaExceeded, EnrichmentError) as exc:
            metrics.IMAGE_GENERATIONS.labels(result="failed").inc()
            logger.warning("Image generation failed meal=%s error=%s", meal.name, exc, extra=log_extra)
            handle.record(lambda: handle.progress.record_image_done(succeeded=False))
            return
        except asyncio.CancelledError:
            raise
        except Exception:  # pragma: no cover - defensive logging
            metrics.IMAGE_GENERATIONS.labels(result="failed").inc()
            logger.exception("Unexpected image generation failure meal=%s", meal.name, extra=log_extra)
            handle.record(lambda: handle.progress.record_image_done(succeeded=False))
            return

        applied = handle.apply(
            lambda run: apply_image_url(run, meal.id, result.image_url)[0],
            on_applied=lambda: handle.progress.record_image_done(succeeded=True),
        )
        if applied:
            metrics.IMAGE_GENERATIONS.labels(result="cache_hit" if result.cache_hit else "generated").inc()
            logger.debug("Image attached meal=%s cache_hit=%s", meal.name, result.cache_hit, extra=log_extra)
        else:
            handle.record(lambda: handle.progress.record_image_done(succeeded=False))

    def _record_failure(self, handle: RunHandle, meal: Meal) -> None:
        if meal.id in self._failed:
            return
        self._failed.add(meal.id)
        handle.record(handle.progress.record_meal_failed)

    @staticmethod
    def _track(handle: RunHandle, task: asyncio.Task, bucket: Set[asyncio.Task]) -> None:
        handle.token.track(task)
        bucket.add(task)
        task.add_done_callback(bucket.discard)

    @staticmethod
    async def _join(bucket: Set[asyncio.Task], timeout: float) -> bool:
        """Wait until ``bucket`` is empty (including tasks added meanwhile) or the deadline."""

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, timeout)
        while True:
            pending = {task for task in bucket if not task.done()}
            if not pending:
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            await asyncio.wait(pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)


__all__ = ["EnrichmentCoordinator"]
