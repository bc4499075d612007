"""Tests for the pure run transformations."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from mealforge.models.plan import DetailedRecipe
from mealforge.models.run import GenerationConfig, GenerationRun
from mealforge.pipeline.transitions import (
    apply_image_url,
    apply_recipe,
    build_week_plans,
    complete_week,
    find_meal,
    merge_day,
    parse_day,
    parse_meal,
    replace_week,
    resolve_day_index,
    strip_recipes,
)
from tests.fakes import day_payload

START = date(2026, 3, 2)


def _week(week_count: int = 1):
    config = GenerationConfig(selected_inventory_id="inv-1", week_count=week_count)
    return build_week_plans(config, START)


def _run(week):
    return GenerationRun(
        run_id="run-1",
        user_id="user-1",
        config=GenerationConfig(selected_inventory_id="inv-1"),
        weeks=[week],
    )


def test_build_week_plans_lays_out_consecutive_weeks():
    weeks = _week(3)

    assert [week.week_number for week in weeks] == [1, 2, 3]
    assert weeks[0].start_date == START
    assert weeks[0].end_date == date(2026, 3, 8)
    assert weeks[2].start_date == date(2026, 3, 16)
    assert all(week.status == "loading" and not week.days for week in weeks)
    assert len({week.id for week in weeks}) == 3


def test_parse_meal_uses_defaults_for_missing_fields():
    meal = parse_meal("lunch", None)

    assert meal.name == "Lunch"
    assert meal.status == "ready"
    assert meal.recipe_generated is False
    assert meal.ingredients == []


def test_parse_meal_reads_wire_fields():
    meal = parse_meal(
        "dinner",
        {
            "title": "Lentil curry",
            "ingredients": ["lentils", {"name": "coconut milk"}, ""],
            "prep_time_min": "15",
            "cook_time_min": 30.4,
            "calories_est": 640,
        },
    )

    assert meal.name == "Lentil curry"
    assert meal.ingredients == ["lentils", "coconut milk"]
    assert meal.prep_time_min == 15
    assert meal.cook_time_min == 30
    assert meal.calories == 640


def test_resolve_day_index_prefers_explicit_index_then_date_then_next_slot():
    (week,) = _week()

    assert resolve_day_index(week, {"day_index": 4, "date": "2026-03-02"}) == 4
    assert resolve_day_index(week, {"date": "2026-03-05"}) == 3
    assert resolve_day_index(week, {}) == 0

    with pytest.raises(ValueError):
        resolve_day_index(week, {"day_index": 7})


def test_days_shifted_past_the_week_fill_free_slots():
    (week,) = _week()
    shifted = START + timedelta(days=1)

    for index in range(7):
        week = merge_day(week, parse_day(week, day_payload(1, shifted, index)))

    assert [day.day_index for day in week.days] == list(range(7))
    assert sum(len(day.meals) for day in week.days) == 21
    assert week.day_at(0).date == START + timedelta(days=7)

    # A repeat of the out-of-range day resolves to the slot that already holds it.
    repeat = day_payload(1, shifted, 6)
    assert resolve_day_index(week, repeat) == 0


def test_full_week_rejects_an_unmatched_day():
    (week,) = _week()
    for index in range(7):
        week = merge_day(week, parse_day(week, day_payload(1, START, index)))

    with pytest.raises(ValueError):
        resolve_day_index(week, {"date": "2026-04-20"})
    with pytest.raises(ValueError):
        resolve_day_index(week, {})


def test_merge_day_inserts_days_in_index_order():
    (week,) = _week()
    later = parse_day(week, day_payload(1, START, 5))
    earlier = parse_day(week, day_payload(1, START, 1))

    week = merge_day(merge_day(week, later), earlier)

    assert [day.day_index for day in week.days] == [1, 5]
    assert all(len(day.meals) == 3 for day in week.days)


def test_merge_day_is_idempotent():
    (week,) = _week()
    payload = day_payload(1, START, 2)

    once = merge_day(week, parse_day(week, payload))
    twice = merge_day(once, parse_day(once, payload))

    assert twice == once
    assert [meal.id for meal in twice.days[0].meals] == [meal.id for meal in once.days[0].meals]


def test_remerge_preserves_enriched_meal_and_keeps_ids():
    (week,) = _week()
    week = merge_day(week, parse_day(week, day_payload(1, START, 0)))
    run = _run(week)
    breakfast = run.weeks[0].days[0].meals[0]
    recipe = DetailedRecipe(id="r-1", title="Overnight oats")
    run, applied = apply_recipe(run, breakfast.id, recipe)
    assert applied
    enriched = run.weeks[0].days[0].meals[0]

    revised = day_payload(1, START, 0)
    revised["breakfast"] = {"title": "Granola"}
    revised["lunch"] = {"title": "Soup"}
    current = run.weeks[0]
    run = replace_week(run, 0, merge_day(current, parse_day(current, revised)))

    meals = run.weeks[0].days[0].meals
    assert meals[0] == enriched
    assert meals[0].detailed_recipe.title == "Overnight oats"
    assert meals[1].name == "Soup"
    assert meals[1].id == week.days[0].meals[1].id


def test_apply_recipe_only_once():
    (week,) = _week()
    week = merge_day(week, parse_day(week, day_payload(1, START, 0)))
    run = _run(week)
    meal_id = week.days[0].meals[2].id

    run, first = apply_recipe(run, meal_id, DetailedRecipe(id="a", title="First"))
    again, second = apply_recipe(run, meal_id, DetailedRecipe(id="b", title="Second"))

    assert first and not second
    assert again is run
    assert find_meal(run, meal_id).detailed_recipe.title == "First"


def test_apply_image_url_requires_recipe():
    (week,) = _week()
    week = merge_day(week, parse_day(week, day_payload(1, START, 0)))
    run = _run(week)
    meal_id = week.days[0].meals[0].id

    unchanged, applied = apply_image_url(run, meal_id, "https://images.test/x.png")
    assert not applied
    assert unchanged is run

    run, _ = apply_recipe(run, meal_id, DetailedRecipe(id="r", title="Toast"))
    run, applied = apply_image_url(run, meal_id, "https://images.test/x.png")
    assert applied
    assert find_meal(run, meal_id).image_url == "https://images.test/x.png"


def test_complete_week_attaches_summary():
    (week,) = _week()
    completed = complete_week(
        week,
        {
            "weekly_summary": "Plenty of greens",
            "avg_calories_per_day": "1650",
            "ai_explanation": {"personalizedReasoning": "Built around spinach."},
        },
    )

    assert completed.status == "ready"
    assert completed.weekly_summary == "Plenty of greens"
    assert completed.avg_calories_per_day == 1650.0
    assert completed.ai_explanation == "Built around spinach."


def test_strip_recipes_removes_details():
    (week,) = _week()
    week = merge_day(week, parse_day(week, day_payload(1, START, 0)))
    run = _run(week)
    run, _ = apply_recipe(run, week.days[0].meals[0].id, DetailedRecipe(id="r", title="Toast"))

    stripped = strip_recipes(run.weeks[0])

    assert all(meal.detailed_recipe is None for meal in stripped.iter_meals())
    assert all(not meal.recipe_generated for meal in stripped.iter_meals())
