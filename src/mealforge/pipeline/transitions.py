"""Pure transformations of the run aggregate.

Every function here takes immutable models and returns new ones; nothing is
mutated in place, so observers never see a half-applied change.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Iterator, Mapping, Optional, Tuple
from uuid import uuid4

from mealforge.models.plan import (
    DAYS_PER_WEEK,
    MEAL_TYPES,
    Day,
    DetailedRecipe,
    Meal,
    MealType,
    WeekPlan,
)
from mealforge.models.run import GenerationConfig, GenerationRun

DEFAULT_MEAL_NAMES: dict[MealType, str] = {
    "breakfast": "Breakfast",
    "lunch": "Lunch",
    "dinner": "Dinner",
}


def new_id() -> str:
    return uuid4().hex


def build_week_plans(config: GenerationConfig, start: date) -> list[WeekPlan]:
    """Create the empty ``loading`` week plans for a new run."""

    plans: list[WeekPlan] = []
    for offset in range(config.week_count):
        week_start = start + timedelta(days=offset * DAYS_PER_WEEK)
        plans.append(
            WeekPlan(
                id=new_id(),
                week_number=offset + 1,
                title=f"Week {offset + 1} plan",
                start_date=week_start,
                end_date=week_start + timedelta(days=DAYS_PER_WEEK - 1),
                batch_cooking_enabled=config.batch_cooking,
            )
        )
    return plans


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return max(0, int(round(float(value))))
    except (TypeError, ValueError):
        return None


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def _ingredient_names(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    names: list[str] = []
    for entry in raw:
        if isinstance(entry, str) and entry.strip():
            names.append(entry.strip())
        elif isinstance(entry, Mapping) and entry.get("name"):
            names.append(str(entry["name"]).strip())
    return names


def parse_meal(meal_type: MealType, payload: Any, meal_id: Optional[str] = None) -> Meal:
    """Build a skeleton meal from one named slot of a ``day`` event."""

    data: Mapping[str, Any] = payload if isinstance(payload, Mapping) else {}
    name = data.get("title") or data.get("name") or DEFAULT_MEAL_NAMES[meal_type]
    return Meal(
        id=meal_id or new_id(),
        type=meal_type,
        name=str(name),
        description=data.get("description"),
        ingredients=_ingredient_names(data.get("ingredients")),
        prep_time_min=_as_int(data.get("prep_time_min")),
        cook_time_min=_as_int(data.get("cook_time_min")),
        calories=_as_float(data.get("calories_est", data.get("calories"))),
        status="ready",
        recipe_generated=False,
    )


def resolve_day_index(week: WeekPlan, payload: Mapping[str, Any]) -> int:
    """Locate the slot an incoming day targets.

    Uses an explicit ``day_index`` when present, then the date's offset from the
    week start, then a day already holding that date, and finally the first free
    slot. Never falls back onto an occupied slot.
    """

    explicit = payload.get("day_index")
    if explicit is not None:
        index = _as_int(explicit)
        if index is not None and index < DAYS_PER_WEEK:
            return index
        raise ValueError(f"day_index out of range: {explicit!r}")

    raw_date = payload.get("date")
    if raw_date:
        parsed = date.fromisoformat(str(raw_date)[:10])
        offset = (parsed - week.start_date).days
        if 0 <= offset < DAYS_PER_WEEK:
            return offset
        for day in week.days:
            if day.date == parsed:
                return day.day_index

    for index in range(DAYS_PER_WEEK):
        if week.day_at(index) is None:
            return index
    raise ValueError("week already holds seven days and the event matches none of them")


def parse_day(week: WeekPlan, payload: Mapping[str, Any]) -> Day:
    """Translate a ``day`` event payload into a Day with fresh meal ids."""

    index = resolve_day_index(week, payload)
    raw_date = payload.get("date")
    day_date = (
        date.fromisoformat(str(raw_date)[:10])
        if raw_date
        else week.start_date + timedelta(days=index)
    )
    meals = [parse_meal(meal_type, payload.get(meal_type)) for meal_type in MEAL_TYPES]
    return Day(date=day_date, day_index=index, meals=meals)


def merge_day(week: WeekPlan, incoming: Day) -> WeekPlan:
    """Merge an incoming day into its slot.

    An empty slot takes the incoming day as is. An occupied slot keeps every
    enriched meal untouched; unenriched meals are replaced by the incoming
    skeleton, which inherits the existing meal id so in-flight enrichment still
    lands on it.
    """

    existing = week.day_at(incoming.day_index)
    if existing is None:
        days = sorted([*week.days, incoming], key=lambda day: day.day_index)
        return week.model_copy(update={"days": days})

    merged_meals: list[Meal] = []
    for slot, fresh in enumerate(incoming.meals):
        current = existing.meals[slot] if slot < len(existing.meals) else None
        if current is None:
            merged_meals.append(fresh)
        elif current.recipe_generated:
            merged_meals.append(current)
        else:
            merged_meals.append(fresh.model_copy(update={"id": current.id}))

    merged = existing.model_copy(update={"date": incoming.date, "meals": merged_meals})
    days = [merged if day.day_index == incoming.day_index else day for day in week.days]
    return week.model_copy(update={"days": days})


def complete_week(week: WeekPlan, summary: Mapping[str, Any]) -> WeekPlan:
    """Attach the weekly summary of a ``complete`` event and mark the week ready."""

    explanation = summary.get("ai_explanation")
    if isinstance(explanation, Mapping):
        explanation = explanation.get("personalizedReasoning") or explanation.get("summary")
    return week.model_copy(
        update={
            "status": "ready",
            "weekly_summary": summary.get("weekly_summary") or week.weekly_summary,
            "nutritional_highlights": summary.get("nutritional_highlights"),
            "avg_calories_per_day": _as_float(summary.get("avg_calories_per_day")),
            "ai_explanation": explanation if isinstance(explanation, str) else None,
        }
    )


def replace_week(run: GenerationRun, week_index: int, week: WeekPlan) -> GenerationRun:
    weeks = list(run.weeks)
    weeks[week_index] = week
    return run.model_copy(update={"weeks": weeks})


def iter_meals(run: GenerationRun) -> Iterator[Tuple[int, Day, Meal]]:
    for week_index, week in enumerate(run.weeks):
        for day in week.days:
            for meal in day.meals:
                yield week_index, day, meal


def find_meal(run: GenerationRun, meal_id: str) -> Optional[Meal]:
    for _, _, meal in iter_meals(run):
        if meal.id == meal_id:
            return meal
    return None


def _update_meal(run: GenerationRun, meal_id: str, updater) -> Tuple[GenerationRun, bool]:
    for week_index, week in enumerate(run.weeks):
        for day in week.days:
            for slot, meal in enumerate(day.meals):
                if meal.id != meal_id:
                    continue
                updated = updater(meal)
                if updated is None:
                    return run, False
                meals = list(day.meals)
                meals[slot] = updated
                new_day = day.model_copy(update={"meals": meals})
                days = [new_day if d.day_index == day.day_index else d for d in week.days]
                return replace_week(run, week_index, week.model_copy(update={"days": days})), True
    return run, False


def apply_recipe(
    run: GenerationRun, meal_id: str, recipe: DetailedRecipe
) -> Tuple[GenerationRun, bool]:
    """Attach a detailed recipe to exactly the meal with ``meal_id``."""

    def _attach(meal: Meal) -> Optional[Meal]:
        if meal.recipe_generated:
            return None
        return meal.model_copy(
            update={"detailed_recipe": recipe, "recipe_generated": True, "status": "ready"}
        )

    return _update_meal(run, meal_id, _attach)


def apply_image_url(run: GenerationRun, meal_id: str, image_url: str) -> Tuple[GenerationRun, bool]:
    """Set the image URL on the meal's recipe; no-op when the meal has no recipe."""

    def _attach(meal: Meal) -> Optional[Meal]:
        if meal.detailed_recipe is None:
            return None
        recipe = meal.detailed_recipe.model_copy(update={"image_url": image_url})
        return meal.model_copy(update={"detailed_recipe": recipe})

    return _update_meal(run, meal_id, _attach)


def strip_recipes(week: WeekPlan) -> WeekPlan:
    """Return the week without detailed recipes (skeleton-only save)."""

    days = [
        day.model_copy(
            update={
                "meals": [
                    meal.model_copy(update={"detailed_recipe": None, "recipe_generated": False})
                    for meal in day.meals
                ]
            }
        )
        for day in week.days
    ]
    return week.model_copy(update={"days": days})


__all__ = [
    "apply_image_url",
    "apply_recipe",
    "build_week_plans",
    "complete_week",
    "find_meal",
    "iter_meals",
    "merge_day",
    "new_id",
    "parse_day",
    "parse_meal",
    "replace_week",
    "resolve_day_index",
    "strip_recipes",
]
