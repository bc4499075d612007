"""Persistence layer: checkpoints and saved meal plans."""

from mealforge.db.checkpoints import CheckpointStore
from mealforge.db.meal_plans import list_meal_plans, save_week_plan
from mealforge.db.repository import get_engine, reset_repository_state, session_scope

__all__ = [
    "CheckpointStore",
    "get_engine",
    "list_meal_plans",
    "reset_repository_state",
    "save_week_plan",
    "session_scope",
]
