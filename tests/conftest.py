"""Shared pytest fixtures for the MealForge test suite."""

from __future__ import annotations

from typing import Callable, Generator, Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from mealforge.config import Settings, get_settings
from mealforge.db.checkpoints import CheckpointStore
from mealforge.db.meal_plans import save_week_plan
from mealforge.db.repository import reset_repository_state
from mealforge.pipeline.state_machine import PipelineStateMachine
from mealforge.server import deps
from mealforge.server.app import create_app
from tests.fakes import TODAY, FakeGenerationService


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Ensure each test uses an isolated SQLite database location."""

    db_path = tmp_path / "test_mealforge.db"
    monkeypatch.setenv("MEALFORGE_DATABASE_PATH", str(db_path))
    monkeypatch.delenv("MEALFORGE_API_TOKEN", raising=False)
    get_settings.cache_clear()
    reset_repository_state()
    deps.reset_registry()
    yield
    deps.reset_registry()
    reset_repository_state()
    monkeypatch.delenv("MEALFORGE_DATABASE_PATH", raising=False)
    get_settings.cache_clear()


@pytest.fixture()
def fast_settings() -> Settings:
    """Settings with short waits so timeout paths finish quickly."""

    return get_settings().model_copy(
        update={
            "stream_timeout": 5.0,
            "recipe_wait_timeout": 5.0,
            "image_wait_timeout": 2.0,
            "cancel_grace_period": 0.2,
        }
    )


@pytest.fixture()
def make_machine(fast_settings) -> Callable[..., PipelineStateMachine]:
    """Build a state machine around a fake service and the SQLite stores."""

    def _factory(
        service: Optional[FakeGenerationService] = None,
        *,
        user_id: str = "user-1",
        settings: Optional[Settings] = None,
        checkpoints=None,
        plan_writer=save_week_plan,
    ) -> PipelineStateMachine:
        return PipelineStateMachine(
            user_id,
            client=service or FakeGenerationService(),
            checkpoints=checkpoints if checkpoints is not None else CheckpointStore(),
            plan_writer=plan_writer,
            settings=settings or fast_settings,
            clock=lambda: TODAY,
        )

    return _factory


@pytest.fixture()
def app() -> Generator[FastAPI, None, None]:
    """Create a new FastAPI app instance for each test and reset overrides."""

    application = create_app()
    yield application
    application.dependency_overrides.clear()


@pytest.fixture()
def registry(make_machine) -> deps.MachineRegistry:
    return deps.MachineRegistry(lambda user_id: make_machine(user_id=user_id))


@pytest.fixture()
def client(app, registry) -> Generator[TestClient, None, None]:
    """Return a test client whose machines talk to the fake services."""

    app.dependency_overrides[deps.get_registry] = lambda: registry
    with TestClient(app) as test_client:
        yield test_client
