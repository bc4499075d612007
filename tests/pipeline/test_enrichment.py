"""Tests for concurrent recipe and image enrichment."""

from __future__ import annotations

import asyncio

from mealforge.models.run import GenerationConfig, GenerationRun
from mealforge.pipeline.cancellation import CancellationToken
from mealforge.pipeline.enrichment import EnrichmentCoordinator
from mealforge.pipeline.handle import RunHandle
from mealforge.pipeline.progress import ProgressTracker
from mealforge.pipeline.transitions import build_week_plans, merge_day, parse_day
from tests.fakes import TODAY, FakeGenerationService, day_payload, meal_name


def _handle(days: int = 1) -> RunHandle:
    config = GenerationConfig(selected_inventory_id="inv-1")
    (week,) = build_week_plans(config, TODAY)
    for index in range(days):
        week = merge_day(week, parse_day(week, day_payload(1, TODAY, index)))
    run = GenerationRun(run_id="run-1", user_id="user-1", config=config, weeks=[week])
    return RunHandle(
        run,
        token=CancellationToken(run.run_id),
        progress=ProgressTracker(total_days=7, total_meals=21),
    )


async def _enrich_first_day(service, handle, coordinator=None):
    coordinator = coordinator or EnrichmentCoordinator(service)
    coordinator.enrich_day(handle, handle.run.weeks[0].days[0], {"diet": "vegetarian"})
    await coordinator.join_recipes(2.0)
    await coordinator.join_images(2.0)
    return coordinator


def test_each_meal_receives_its_own_recipe_and_image():
    service = FakeGenerationService()
    handle = _handle()

    asyncio.run(_enrich_first_day(service, handle))

    meals = handle.run.weeks[0].days[0].meals
    assert all(meal.recipe_generated for meal in meals)
    for meal in meals:
        assert meal.detailed_recipe.id == f"recipe-{meal.id}"
        assert meal.detailed_recipe.title == meal.name
        assert meal.image_url == f"https://images.test/recipe-recipe-{meal.id}.png"
    assert handle.progress.meals_enriched == 3
    assert handle.progress.images_generated == 3


def test_quota_exceeded_only_affects_its_meal():
    lunch = meal_name("lunch", 1, 0)
    service = FakeGenerationService(quota_meals={lunch})
    handle = _handle()
    quota_events = []
    coordinator = EnrichmentCoordinator(
        service, on_quota_exceeded=lambda h, exc: quota_events.append(str(exc))
    )

    asyncio.run(_enrich_first_day(service, handle, coordinator))

    meals = {meal.name: meal for meal in handle.run.weeks[0].days[0].meals}
    assert not meals[lunch].recipe_generated
    assert meals[lunch].detailed_recipe is None
    assert meals[meal_name("breakfast", 1, 0)].recipe_generated
    assert meals[meal_name("dinner", 1, 0)].recipe_generated
    assert handle.run.quota_exceeded is True
    assert quota_events == ["Insufficient credits"]
    assert handle.progress.meals_enriched == 2
    assert handle.progress.meals_failed == 1


def test_failed_recipe_leaves_meal_unenriched():
    dinner = meal_name("dinner", 1, 0)
    service = FakeGenerationService(failing_meals={dinner})
    handle = _handle()

    asyncio.run(_enrich_first_day(service, handle))

    meals = {meal.name: meal for meal in handle.run.weeks[0].days[0].meals}
    assert not meals[dinner].recipe_generated
    assert handle.run.quota_exceeded is False
    assert len(service.image_calls) == 2


def test_meals_in_flight_are_not_requested_twice():
    async def scenario():
        service = FakeGenerationService()
        service.recipe_gate = asyncio.Event()
        handle = _handle(days=2)
        coordinator = EnrichmentCoordinator(service)

        first = coordinator.enrich_day(handle, handle.run.weeks[0].days[0], {})
        pending = coordinator.enrich_pending(handle, {})
        assert coordinator.pending_recipes == 6

        service.recipe_gate.set()
        await coordinator.join_recipes(2.0)
        again = coordinator.enrich_pending(handle, {})
        await coordinator.join_images(2.0)
        return service, first, pending, again

    service, first, pending, again = asyncio.run(scenario())
    assert len(first) == 3
    assert len(pending) == 3
    assert again == []
    assert len(service.recipe_calls) == 6


def test_join_returns_false_when_images_outlive_the_deadline():
    dinner = meal_name("dinner", 1, 0)

    async def scenario():
        service = FakeGenerationService(stalled_images={dinner})
        handle = _handle()
        coordinator = EnrichmentCoordinator(service)
        coordinator.enrich_day(handle, handle.run.weeks[0].days[0], {})
        recipes_done = await coordinator.join_recipes(2.0)
        images_done = await coordinator.join_images(0.05)
        return handle, coordinator, recipes_done, images_done

    handle, coordinator, recipes_done, images_done = asyncio.run(scenario())
    assert recipes_done is True
    assert images_done is False
    meals = {meal.name: meal for meal in handle.run.weeks[0].days[0].meals}
    assert meals[dinner].recipe_generated
    assert meals[dinner].image_url is None
    assert handle.progress.images_generated == 2


def test_failed_meals_are_not_requested_again():
    lunch = meal_name("lunch", 1, 0)
    dinner = meal_name("dinner", 1, 0)

    async def scenario():
        service = FakeGenerationService(quota_meals={lunch}, failing_meals={dinner})
        handle = _handle()
        coordinator = await _enrich_first_day(service, handle)
        again = coordinator.enrich_pending(handle, {})
        await coordinator.join_recipes(2.0)
        return service, handle, coordinator, again

    service, handle, coordinator, again = asyncio.run(scenario())
    assert again == []
    assert service.recipe_calls.count(lunch) == 1
    assert service.recipe_calls.count(dinner) == 1
    assert coordinator.failed_meals == 2
    assert handle.progress.meals_failed == 2
