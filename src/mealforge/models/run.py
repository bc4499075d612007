"""Generation run models: configuration, phases, progress and checkpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from mealforge.models.plan import WeekPlan

MAX_WEEK_COUNT = 4


class Phase(str, Enum):
    """Named stage of the generation pipeline."""

    CONFIGURATION = "configuration"
    GENERATING = "generating"
    VALIDATION = "validation"
    RECIPE_DETAILS_GENERATING = "recipe_details_generating"
    RECIPE_DETAILS_VALIDATION = "recipe_details_validation"
    SAVED = "saved"
    DISCARDED = "discarded"
    CANCELLED = "cancelled"
    FAILED = "failed"


VALIDATION_PHASES = frozenset({Phase.VALIDATION, Phase.RECIPE_DETAILS_VALIDATION})
TERMINAL_PHASES = frozenset({Phase.SAVED, Phase.DISCARDED, Phase.CANCELLED, Phase.FAILED})
# Phases from which a new run may be started.
IDLE_PHASES = TERMINAL_PHASES | {Phase.CONFIGURATION}


class GenerationConfig(BaseModel):
    """User-facing configuration of a generation run."""

    selected_inventory_id: Optional[str] = Field(default=None, alias="selectedInventoryId")
    week_count: int = Field(default=1, alias="weekCount")
    batch_cooking: bool = Field(default=False, alias="batchCooking")

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class GenerationRun(BaseModel):
    """The single aggregate owned by the pipeline for one generation attempt.

    Instances are immutable; every change produces a new run through the
    transformations in :mod:`mealforge.pipeline.transitions`.
    """

    run_id: str
    user_id: str
    config: GenerationConfig
    phase: Phase = Phase.CONFIGURATION
    weeks: list[WeekPlan] = Field(default_factory=list)
    preferences: dict = Field(default_factory=dict)
    cancelled: bool = False
    quota_exceeded: bool = False
    last_error: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    def meal_count(self) -> int:
        return sum(len(day.meals) for week in self.weeks for day in week.days)


class ProgressSnapshot(BaseModel):
    """Derived view of the progress counters."""

    days_received: int = 0
    total_days: int = 0
    meals_enriched: int = 0
    total_meals: int = 0
    images_generated: int = 0
    total_images: int = 0
    percent: float = Field(default=0.0, ge=0, le=100)

    model_config = ConfigDict(frozen=True)


class PipelineStatus(BaseModel):
    """Snapshot delivered to status listeners and API callers."""

    phase: Phase
    progress: ProgressSnapshot
    run: Optional[GenerationRun] = Field(default=None)
    last_error: Optional[str] = Field(default=None)
    quota_exceeded: bool = False

    model_config = ConfigDict(frozen=True)


class Checkpoint(BaseModel):
    """Durable projection of a run used only to resume after a restart."""

    run_id: str
    user_id: str
    phase: Phase
    config: GenerationConfig
    weeks: list[WeekPlan] = Field(default_factory=list)
    is_completed: bool = False
    updated_at: Optional[datetime] = Field(default=None)

    model_config = ConfigDict(frozen=True)
