"""Shared helpers for integration tests."""

from __future__ import annotations

import time

from fastapi.testclient import TestClient

from mealforge.config import get_settings


def auth_headers() -> dict[str, str]:
    token = get_settings().api_token
    if not token:
        return {}
    return {"Authorization": f"Bearer {token}"}


def wait_for_phase(client: TestClient, user_id: str, phase: str, timeout: float = 5.0) -> dict:
    """Poll the status endpoint until the run reaches ``phase``."""

    deadline = time.monotonic() + timeout
    body: dict = {}
    while time.monotonic() < deadline:
        response = client.get(f"/users/{user_id}/generation", headers=auth_headers())
        assert response.status_code == 200
        body = response.json()
        if body["phase"] == phase:
            return body
        time.sleep(0.02)
    raise AssertionError(f"Run stuck in phase {body.get('phase')!r}, expected {phase!r}")
