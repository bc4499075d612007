"""Meal plan models: weeks, days, meals and detailed recipes."""

from __future__ import annotations

from datetime import date
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MealType = Literal["breakfast", "lunch", "dinner"]
ItemStatus = Literal["loading", "ready"]

MEAL_TYPES: tuple[MealType, ...] = ("breakfast", "lunch", "dinner")
DAYS_PER_WEEK = 7
MEALS_PER_DAY = len(MEAL_TYPES)


class RecipeIngredient(BaseModel):
    """Ingredient line of a detailed recipe."""

    name: str
    quantity: Optional[str] = Field(default=None)
    unit: Optional[str] = Field(default=None)

    model_config = ConfigDict(frozen=True)

    @field_validator("quantity", mode="before")
    @classmethod
    def _stringify_quantity(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return str(value)
        return value


class RecipeInstruction(BaseModel):
    """Single preparation step."""

    step: int = Field(ge=0)
    instruction: str
    time_min: Optional[float] = Field(default=None, alias="timeMin", ge=0)
    equipment: Optional[str] = Field(default=None)

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class NutritionalInfo(BaseModel):
    """Per-serving nutrition summary."""

    kcal: Optional[float] = Field(default=None, ge=0)
    protein: Optional[float] = Field(default=None, ge=0)
    carbs: Optional[float] = Field(default=None, ge=0)
    fat: Optional[float] = Field(default=None, ge=0)
    fiber: Optional[float] = Field(default=None, ge=0)

    model_config = ConfigDict(frozen=True)


class DetailedRecipe(BaseModel):
    """Full recipe attached to a meal once enrichment succeeds.

    ``image_url`` is filled in independently by image generation, so a recipe
    can be complete without an image.
    """

    id: str
    title: str
    description: Optional[str] = Field(default=None)
    ingredients: list[RecipeIngredient] = Field(default_factory=list)
    instructions: list[RecipeInstruction] = Field(default_factory=list)
    prep_time_min: Optional[int] = Field(default=None, alias="prepTimeMin", ge=0)
    cook_time_min: Optional[int] = Field(default=None, alias="cookTimeMin", ge=0)
    servings: Optional[int] = Field(default=None, ge=1)
    nutritional_info: Optional[NutritionalInfo] = Field(default=None, alias="nutritionalInfo")
    dietary_tags: list[str] = Field(default_factory=list, alias="dietaryTags")
    difficulty: Optional[str] = Field(default=None)
    tips: list[str] = Field(default_factory=list)
    variations: list[str] = Field(default_factory=list)
    image_signature: Optional[str] = Field(default=None, alias="imageSignature")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Meal(BaseModel):
    """Meal slot within a day.

    The ``id`` is assigned once and survives stream re-merges so that
    enrichment results always find their target.
    """

    id: str
    type: MealType
    name: str
    description: Optional[str] = Field(default=None)
    ingredients: list[str] = Field(default_factory=list)
    prep_time_min: Optional[int] = Field(default=None, ge=0)
    cook_time_min: Optional[int] = Field(default=None, ge=0)
    calories: Optional[float] = Field(default=None, ge=0)
    status: ItemStatus = "loading"
    recipe_generated: bool = False
    detailed_recipe: Optional[DetailedRecipe] = Field(default=None)

    model_config = ConfigDict(frozen=True)

    @property
    def image_url(self) -> Optional[str]:
        if self.detailed_recipe is None:
            return None
        return self.detailed_recipe.image_url


class Day(BaseModel):
    """One calendar day of a week plan, addressed by ``day_index``."""

    date: date
    day_index: int = Field(ge=0, lt=DAYS_PER_WEEK)
    meals: list[Meal] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class WeekPlan(BaseModel):
    """Plan for one requested week, populated incrementally from its stream."""

    id: str
    week_number: int = Field(ge=1)
    title: str
    start_date: date
    end_date: date
    days: list[Day] = Field(default_factory=list)
    status: ItemStatus = "loading"
    batch_cooking_enabled: bool = False
    weekly_summary: Optional[str] = Field(default=None)
    nutritional_highlights: Optional[Any] = Field(default=None)
    avg_calories_per_day: Optional[float] = Field(default=None)
    ai_explanation: Optional[str] = Field(default=None)

    model_config = ConfigDict(frozen=True)

    def day_at(self, index: int) -> Optional[Day]:
        for day in self.days:
            if day.day_index == index:
                return day
        return None

    def iter_meals(self):
        for day in self.days:
            yield from day.meals
