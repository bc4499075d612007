"""Dependency definitions for the MealForge API server."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, HTTPException, Request, status

from mealforge.config import get_settings
from mealforge.db.checkpoints import CheckpointStore
from mealforge.db.meal_plans import list_meal_plans, save_week_plan
from mealforge.pipeline.state_machine import PipelineStateMachine
from mealforge.services.client import build_service_client

MachineFactory = Callable[[str], PipelineStateMachine]
PlanLister = Callable[[str], List[Dict[str, Any]]]


def build_state_machine(user_id: str) -> PipelineStateMachine:
    """Wire a state machine to the configured services and the SQLite stores."""

    settings = get_settings()
    return PipelineStateMachine(
        user_id,
        client=build_service_client(settings),
        checkpoints=CheckpointStore(),
        plan_writer=save_week_plan,
        settings=settings,
    )


class MachineRegistry:
    """One state machine per user, created on first use."""

    def __init__(self, factory: MachineFactory = build_state_machine) -> None:
        self._factory = factory
        self._machines: Dict[str, PipelineStateMachine] = {}

    def get(self, user_id: str) -> Optional[PipelineStateMachine]:
        return self._machines.get(user_id)

    def get_or_create(self, user_id: str) -> PipelineStateMachine:
        machine = self._machines.get(user_id)
        if machine is None:
            machine = self._factory(user_id)
            self._machines[user_id] = machine
        return machine

    def clear(self) -> None:
        self._machines.clear()

    async def aclose(self) -> None:
        """Shut down every machine and forget them."""

        machines = list(self._machines.values())
        self._machines.clear()
        for machine in machines:
            await machine.aclose()


_registry: Optional[MachineRegistry] = None


def get_registry() -> MachineRegistry:
    """Return the process-wide machine registry."""

    global _registry
    if _registry is None:
        _registry = MachineRegistry()
    return _registry


def reset_registry() -> None:
    global _registry
    _registry = None


def get_checkpoint_store() -> CheckpointStore:
    return CheckpointStore()


def get_plan_lister() -> PlanLister:
    return list_meal_plans


def require_api_token(
    request: Request,
    settings=Depends(get_settings),
) -> None:
    """Ensure requests carry the configured API token when required."""

    token = settings.api_token
    if not token:
        return

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.split("Bearer ")[-1].strip() == token:
        return

    if request.headers.get("X-API-Key") == token:
        return

    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


__all__ = [
    "MachineFactory",
    "MachineRegistry",
    "PlanLister",
    "build_state_machine",
    "get_checkpoint_store",
    "get_plan_lister",
    "get_registry",
    "require_api_token",
    "reset_registry",
]
