"""Progress counters and the phase-weighted overall percentage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from mealforge.models.run import Phase, ProgressSnapshot

# (band start, band end) for each phase.
PHASE_BANDS: Dict[Phase, Tuple[float, float]] = {
    Phase.CONFIGURATION: (0.0, 0.0),
    Phase.GENERATING: (10.0, 75.0),
    Phase.VALIDATION: (75.0, 75.0),
    Phase.RECIPE_DETAILS_GENERATING: (75.0, 95.0),
    Phase.RECIPE_DETAILS_VALIDATION: (100.0, 100.0),
    Phase.SAVED: (100.0, 100.0),
}

# Recipes are required, images best effort: recipes own the larger, earlier share.
RECIPE_SUB_BAND: Tuple[float, float] = (75.0, 90.0)
IMAGE_SUB_BAND: Tuple[float, float] = (90.0, 95.0)


def _fraction(done: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return min(1.0, done / total)


def _within(band: Tuple[float, float], fraction: float) -> float:
    start, end = band
    return start + fraction * (end - start)


@dataclass
class ProgressTracker:
    """Monotonic counters for one run.

    Counters only ever grow; :meth:`percent` additionally clamps to the highest
    value it has reported so the overall figure never regresses, whatever the
    arrival order of days, recipes and images.
    """

    total_days: int = 0
    total_meals: int = 0
    days_received: int = 0
    meals_enriched: int = 0
    meals_failed: int = 0
    total_images: int = 0
    images_generated: int = 0
    images_failed: int = 0
    _high_water: float = 0.0

    def record_day(self) -> None:
        self.days_received = min(self.total_days, self.days_received + 1)

    def record_meal_enriched(self) -> None:
        self.meals_enriched += 1

    def record_meal_failed(self) -> None:
        self.meals_failed += 1

    def record_image_scheduled(self) -> None:
        self.total_images += 1

    def record_image_done(self, *, succeeded: bool) -> None:
        # Failed images still count as accounted for.
        self.images_generated += 1
        if not succeeded:
            self.images_failed += 1

    def percent(self, phase: Phase) -> float:
        band = PHASE_BANDS.get(phase)
        if band is None:
            return self._high_water
        if phase is Phase.GENERATING:
            value = _within(band, _fraction(self.days_received, self.total_days))
        elif phase is Phase.RECIPE_DETAILS_GENERATING:
            recipe_fraction = _fraction(self.meals_enriched + self.meals_failed, self.total_meals)
            if recipe_fraction < 1.0:
                value = _within(RECIPE_SUB_BAND, recipe_fraction)
            else:
                value = _within(
                    IMAGE_SUB_BAND, _fraction(self.images_generated, self.total_images)
                )
        else:
            value = band[1]
        self._high_water = max(self._high_water, round(value, 2))
        return self._high_water

    def snapshot(self, phase: Phase) -> ProgressSnapshot:
        return ProgressSnapshot(
            days_received=self.days_received,
            total_days=self.total_days,
            meals_enriched=self.meals_enriched,
            total_meals=self.total_meals,
            images_generated=self.images_generated,
            total_images=self.total_images,
            percent=self.percent(phase),
        )


__all__ = ["PHASE_BANDS", "ProgressTracker"]
