"""Data access helpers for saved meal plans."""

from __future__ import annotations

from typing import Any, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from mealforge.errors import PersistenceError
from mealforge.models.plan import WeekPlan
from mealforge.models.run import GenerationRun
from mealforge.pipeline.transitions import strip_recipes

from .models import MealPlanORM
from .repository import session_scope


def _to_dict(row: MealPlanORM) -> dict[str, Any]:
    return {
        "id": row.id,
        "session_id": row.session_id,
        "user_id": row.user_id,
        "inventory_id": row.inventory_id,
        "week_number": row.week_number,
        "start_date": row.start_date,
        "end_date": row.end_date,
        "title": row.title,
        "batch_cooking_enabled": row.batch_cooking_enabled,
        "ai_explanation": row.ai_explanation,
        "status": row.status,
        "with_recipes": row.with_recipes,
        "plan": WeekPlan.model_validate(row.plan_data),
        "created_at": row.created_at,
    }


def save_week_plan(run: GenerationRun, week: WeekPlan, with_details: bool) -> int:
    """Insert one week of ``run`` and return the new row id."""

    stored = week if with_details else strip_recipes(week)
    try:
        with session_scope() as session:
            row = MealPlanORM(
                session_id=run.run_id,
                user_id=run.user_id,
                inventory_id=run.config.selected_inventory_id,
                week_number=week.week_number,
                start_date=week.start_date,
                end_date=week.end_date,
                title=week.title,
                batch_cooking_enabled=week.batch_cooking_enabled,
                ai_explanation=week.ai_explanation,
                status="completed",
                with_recipes=with_details,
                plan_data=stored.model_dump(mode="json"),
            )
            session.add(row)
            session.flush()
            return row.id
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Unable to save week {week.week_number}: {exc}") from exc


def list_meal_plans(user_id: str, limit: int = 50) -> List[dict[str, Any]]:
    """Return saved plans for ``user_id``, newest first."""

    with session_scope() as session:
        rows = (
            session.execute(
                select(MealPlanORM)
                .where(MealPlanORM.user_id == user_id)
                .order_by(MealPlanORM.created_at.desc(), MealPlanORM.id.desc())
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return [_to_dict(row) for row in rows]


__all__ = ["list_meal_plans", "save_week_plan"]
