"""Checkpoint persistence for resuming generation runs after a restart."""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from mealforge.errors import PersistenceError
from mealforge.models.plan import WeekPlan
from mealforge.models.run import Checkpoint, GenerationConfig, GenerationRun, Phase

from .models import GenerationCheckpointORM
from .repository import session_scope

logger = logging.getLogger(__name__)


def _to_model(row: GenerationCheckpointORM) -> Checkpoint:
    return Checkpoint(
        run_id=row.session_id,
        user_id=row.user_id,
        phase=Phase(row.phase),
        config=GenerationConfig.model_validate(row.config),
        weeks=[WeekPlan.model_validate(week) for week in row.plan_snapshot or []],
        is_completed=row.is_completed,
        updated_at=row.updated_at,
    )


class CheckpointStore:
    """Keyed checkpoint records, one per run.

    The in-memory run is authoritative while a run is active; these records
    only exist so a restarted client can pick up where it left off.
    """

    def save(self, run_id: str, phase: Phase, state: GenerationRun) -> Checkpoint:
        """Write or replace the checkpoint for ``run_id``."""

        snapshot = [week.model_dump(mode="json") for week in state.weeks]
        config = state.config.model_dump(mode="json")
        try:
            with session_scope() as session:
                # One incomplete checkpoint per user: older runs are superseded.
                session.execute(
                    delete(GenerationCheckpointORM).where(
                        GenerationCheckpointORM.user_id == state.user_id,
                        GenerationCheckpointORM.session_id != run_id,
                        GenerationCheckpointORM.is_completed.is_(False),
                    )
                )
                row = session.get(GenerationCheckpointORM, run_id)
                if row is None:
                    row = GenerationCheckpointORM(
                        session_id=run_id,
                        user_id=state.user_id,
                        phase=phase.value,
                        config=config,
                        plan_snapshot=snapshot,
                        is_completed=False,
                    )
                    session.add(row)
                else:
                    row.phase = phase.value
                    row.config = config
                    row.plan_snapshot = snapshot
                session.flush()
                session.refresh(row)
                return _to_model(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to write checkpoint {run_id}: {exc}") from exc

    def load(self, user_id: str) -> Optional[Checkpoint]:
        """Return the most recent incomplete checkpoint for ``user_id``, if any."""

        try:
            with session_scope() as session:
                rows = (
                    session.execute(
                        select(GenerationCheckpointORM)
                        .where(
                            GenerationCheckpointORM.user_id == user_id,
                            GenerationCheckpointORM.is_completed.is_(False),
                        )
                        .order_by(
                            GenerationCheckpointORM.updated_at.desc(),
                            GenerationCheckpointORM.created_at.desc(),
                        )
                    )
                    .scalars()
                    .all()
                )
                for row in rows:
                    try:
                        return _to_model(row)
                    except (ValidationError, ValueError) as exc:
                        logger.warning(
                            "Ignoring unreadable checkpoint session_id=%s error=%s",
                            row.session_id,
                            exc,
                        )
                return None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to load checkpoint for user {user_id}: {exc}") from exc

    def get(self, run_id: str) -> Optional[Checkpoint]:
        try:
            with session_scope() as session:
                row = session.get(GenerationCheckpointORM, run_id)
                return _to_model(row) if row else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to read checkpoint {run_id}: {exc}") from exc

    def list_for_user(self, user_id: str) -> List[Checkpoint]:
        try:
            with session_scope() as session:
                rows = (
                    session.execute(
                        select(GenerationCheckpointORM)
                        .where(GenerationCheckpointORM.user_id == user_id)
                        .order_by(GenerationCheckpointORM.updated_at.desc())
                    )
                    .scalars()
                    .all()
                )
                return [_to_model(row) for row in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to list checkpoints for user {user_id}: {exc}") from exc

    def mark_complete(self, run_id: str) -> bool:
        """Flag a checkpoint as finished without deleting it."""

        try:
            with session_scope() as session:
                row = session.get(GenerationCheckpointORM, run_id)
                if row is None:
                    return False
                row.is_completed = True
                return True
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to complete checkpoint {run_id}: {exc}") from exc

    def delete(self, run_id: str) -> bool:
        """Purge the checkpoint for ``run_id``."""

        try:
            with session_scope() as session:
                row = session.get(GenerationCheckpointORM, run_id)
                if row is None:
                    return False
                session.delete(row)
                return True
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to delete checkpoint {run_id}: {exc}") from exc


__all__ = ["CheckpointStore"]
