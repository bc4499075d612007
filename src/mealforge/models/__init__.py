"""Pydantic models defining shared data contracts."""

from mealforge.models.plan import (
    DAYS_PER_WEEK,
    MEAL_TYPES,
    MEALS_PER_DAY,
    Day,
    DetailedRecipe,
    Meal,
    NutritionalInfo,
    RecipeIngredient,
    RecipeInstruction,
    WeekPlan,
)
from mealforge.models.run import (
    Checkpoint,
    GenerationConfig,
    GenerationRun,
    Phase,
    PipelineStatus,
    ProgressSnapshot,
)

__all__ = [
    "DAYS_PER_WEEK",
    "MEAL_TYPES",
    "MEALS_PER_DAY",
    "Day",
    "DetailedRecipe",
    "Meal",
    "NutritionalInfo",
    "RecipeIngredient",
    "RecipeInstruction",
    "WeekPlan",
    "Checkpoint",
    "GenerationConfig",
    "GenerationRun",
    "Phase",
    "PipelineStatus",
    "ProgressSnapshot",
]
