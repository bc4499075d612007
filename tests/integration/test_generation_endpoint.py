"""Integration tests for the generation endpoints."""

from __future__ import annotations

from tests.integration.utils import auth_headers, wait_for_phase

START = {"selectedInventoryId": "inv-1", "weekCount": 1, "preferences": {"diet": "vegetarian"}}


def test_generation_runs_to_review_and_saves(client):
    response = client.post("/users/user-1/generation", json=START, headers=auth_headers())
    assert response.status_code == 202
    assert response.json()["phase"] == "generating"

    body = wait_for_phase(client, "user-1", "recipe_details_validation")
    assert body["progress"]["percent"] == 100.0
    assert body["progress"]["meals_enriched"] == 21
    (week,) = body["run"]["weeks"]
    assert len(week["days"]) == 7

    response = client.post(
        "/users/user-1/generation/save",
        params={"with_details": "false"},
        headers=auth_headers(),
    )
    assert response.status_code == 200
    assert response.json()["phase"] == "saved"

    plans = client.get("/users/user-1/plans", headers=auth_headers()).json()
    assert len(plans) == 1
    assert plans[0]["week_number"] == 1
    assert plans[0]["with_recipes"] is False
    assert plans[0]["days"] == 7


def test_missing_inventory_is_rejected(client):
    response = client.post(
        "/users/user-1/generation",
        json={"weekCount": 1},
        headers=auth_headers(),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidConfiguration"


def test_week_count_out_of_range_is_rejected(client):
    response = client.post(
        "/users/user-1/generation",
        json={"selectedInventoryId": "inv-1", "weekCount": 9},
        headers=auth_headers(),
    )
    assert response.status_code == 400


def test_status_for_unknown_user_is_404(client):
    response = client.get("/users/nobody/generation", headers=auth_headers())
    assert response.status_code == 404


def test_save_without_run_conflicts(client):
    response = client.post("/users/user-1/generation/save", headers=auth_headers())
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidTransition"


def test_cancel_without_run_is_a_noop(client):
    response = client.post("/users/user-1/generation/cancel", headers=auth_headers())
    assert response.status_code == 200
    assert response.json()["phase"] == "configuration"


def test_discard_returns_to_configuration(client):
    client.post("/users/user-1/generation", json=START, headers=auth_headers())
    wait_for_phase(client, "user-1", "recipe_details_validation")

    response = client.post("/users/user-1/generation/discard", headers=auth_headers())
    assert response.status_code == 200
    assert response.json()["phase"] == "configuration"
    assert response.json()["run"] is None

    checkpoints = client.get("/users/user-1/generation/checkpoints", headers=auth_headers())
    assert checkpoints.json() == []


def test_checkpoints_and_resume(client, registry):
    client.post("/users/user-1/generation", json=START, headers=auth_headers())
    finished = wait_for_phase(client, "user-1", "recipe_details_validation")

    checkpoints = client.get("/users/user-1/generation/checkpoints", headers=auth_headers()).json()
    assert len(checkpoints) == 1
    assert checkpoints[0]["run_id"] == finished["run"]["run_id"]
    assert checkpoints[0]["phase"] == "recipe_details_validation"
    assert checkpoints[0]["week_count"] == 1
    assert "weeks" not in checkpoints[0]

    # A fresh registry stands in for a restarted process.
    registry.clear()
    response = client.post("/users/user-1/generation/resume", headers=auth_headers())
    assert response.status_code == 200
    body = response.json()
    assert body["resumed"] is True
    assert body["status"]["phase"] == "recipe_details_validation"
    assert body["status"]["run"]["run_id"] == finished["run"]["run_id"]


def test_resume_without_checkpoint(client):
    response = client.post("/users/user-1/generation/resume", headers=auth_headers())
    assert response.status_code == 200
    assert response.json()["resumed"] is False
    assert response.json()["status"]["phase"] == "configuration"
