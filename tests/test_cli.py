"""Tests for the typer command-line interface."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from mealforge import cli
from tests.fakes import FakeGenerationService


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def fake_service(monkeypatch) -> FakeGenerationService:
    service = FakeGenerationService()
    monkeypatch.setattr(cli, "build_service_client", lambda settings=None: service)
    return service


def test_generate_and_save(runner, fake_service):
    result = runner.invoke(
        cli.app,
        ["generate", "--inventory", "inv-1", "--weeks", "2", "--save", "--no-pretty"],
    )

    assert result.exit_code == 0, result.output
    summary = json.loads(result.output.strip().splitlines()[-1])
    assert summary["phase"] == "saved"
    assert [week["meals"] for week in summary["weeks"]] == [21, 21]
    assert all(week["recipes"] == 21 for week in summary["weeks"])
    assert [call["week_number"] for call in fake_service.stream_calls] == [1, 2]

    listed = runner.invoke(cli.app, ["plans", "--no-pretty"])
    assert listed.exit_code == 0
    rows = json.loads(listed.output.strip().splitlines()[-1])
    assert sorted(row["week_number"] for row in rows) == [1, 2]


def test_generate_rejects_out_of_range_weeks(runner, fake_service):
    result = runner.invoke(cli.app, ["generate", "--inventory", "inv-1", "--weeks", "6"])

    assert result.exit_code != 0
    assert fake_service.stream_calls == []


def test_resume_reports_missing_checkpoint(runner, fake_service):
    result = runner.invoke(cli.app, ["resume", "--user", "nobody"])

    assert result.exit_code == 1
    assert "No resumable checkpoint found." in result.output


def test_resume_after_generate(runner, fake_service):
    runner.invoke(cli.app, ["generate", "--inventory", "inv-1", "--no-pretty"])

    result = runner.invoke(cli.app, ["resume", "--no-pretty"])

    assert result.exit_code == 0, result.output
    summary = json.loads(result.output.strip().splitlines()[-1])
    assert summary["phase"] == "recipe_details_validation"

    listed = runner.invoke(cli.app, ["checkpoints", "--no-pretty"])
    (checkpoint,) = json.loads(listed.output.strip().splitlines()[-1])
    assert checkpoint["run_id"] == summary["run_id"]
    assert checkpoint["is_completed"] is False
