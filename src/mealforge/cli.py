"""Command-line interface for MealForge."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import typer

from mealforge.config import get_settings
from mealforge.db.checkpoints import CheckpointStore
from mealforge.db.meal_plans import list_meal_plans, save_week_plan
from mealforge.errors import PipelineError
from mealforge.logging_utils import configure_logging
from mealforge.models.run import GenerationConfig, GenerationRun, Phase
from mealforge.pipeline.state_machine import PipelineStateMachine
from mealforge.services.client import build_service_client

app = typer.Typer(help="MealForge meal plan generation commands.")


def _echo_json(payload: Any, pretty: bool) -> None:
    typer.echo(json.dumps(payload, indent=2 if pretty else None, sort_keys=pretty, default=str))


def _summarize(run: GenerationRun) -> dict[str, Any]:
    weeks = []
    for week in run.weeks:
        meals = list(week.iter_meals())
        weeks.append(
            {
                "week_number": week.week_number,
                "title": week.title,
                "start_date": week.start_date.isoformat(),
                "end_date": week.end_date.isoformat(),
                "status": week.status,
                "days": len(week.days),
                "meals": len(meals),
                "recipes": sum(1 for meal in meals if meal.recipe_generated),
                "images": sum(1 for meal in meals if meal.image_url),
            }
        )
    return {
        "run_id": run.run_id,
        "phase": run.phase.value,
        "quota_exceeded": run.quota_exceeded,
        "last_error": run.last_error,
        "weeks": weeks,
    }


def _setup_logging() -> None:
    settings = get_settings()
    configure_logging(
        settings.log_level,
        settings.log_format,
        [settings.api_token or "", settings.service_token or ""],
    )


def _fail(exc: PipelineError) -> None:
    typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.command()
def generate(
    inventory: str = typer.Option(..., "--inventory", help="Inventory to plan from."),
    weeks: int = typer.Option(1, "--weeks", min=1, max=4, help="Number of weeks to plan."),
    batch_cooking: bool = typer.Option(False, "--batch-cooking", help="Plan for batch cooking."),
    user: str = typer.Option("local", "--user", help="User the plan belongs to."),
    save: bool = typer.Option(False, "--save", help="Save the plan once generation finishes."),
    with_details: bool = typer.Option(
        True, "--with-details/--skeleton-only", help="Store detailed recipes when saving."
    ),
    pretty: bool = typer.Option(True, "--pretty/--no-pretty", help="Pretty-print output JSON."),
) -> None:
    """
    Generate a meal plan end to end and print a summary of the result.
    """

    _setup_logging()
    config = GenerationConfig(
        selected_inventory_id=inventory, week_count=weeks, batch_cooking=batch_cooking
    )

    async def _run() -> GenerationRun:
        settings = get_settings()
        async with build_service_client(settings) as client:
            machine = PipelineStateMachine(
                user,
                client=client,
                checkpoints=CheckpointStore(),
                plan_writer=save_week_plan,
                settings=settings,
            )
            run = await machine.start(config)
            if save:
                run = machine.save(with_details=with_details)
            return run

    try:
        run = asyncio.run(_run())
    except PipelineError as exc:
        _fail(exc)
    _echo_json(_summarize(run), pretty)


@app.command()
def resume(
    user: str = typer.Option("local", "--user", help="User whose checkpoint to resume."),
    continue_enrichment: bool = typer.Option(
        True,
        "--continue/--no-continue",
        help="Finish recipe enrichment when the checkpoint stopped before it.",
    ),
    save: bool = typer.Option(False, "--save", help="Save the resumed plan."),
    pretty: bool = typer.Option(True, "--pretty/--no-pretty", help="Pretty-print output JSON."),
) -> None:
    """Restore the latest resumable checkpoint for a user."""

    _setup_logging()

    async def _run() -> Optional[GenerationRun]:
        settings = get_settings()
        async with build_service_client(settings) as client:
            machine = PipelineStateMachine(
                user,
                client=client,
                checkpoints=CheckpointStore(),
                plan_writer=save_week_plan,
                settings=settings,
            )
            if not machine.resume():
                return None
            if continue_enrichment and machine.phase is Phase.VALIDATION:
                await machine.continue_enrichment()
            if save:
                machine.save()
            return machine.run

    try:
        run = asyncio.run(_run())
    except PipelineError as exc:
        _fail(exc)
    if run is None:
        typer.echo("No resumable checkpoint found.")
        raise typer.Exit(code=1)
    _echo_json(_summarize(run), pretty)


@app.command()
def checkpoints(
    user: str = typer.Option("local", "--user", help="User whose checkpoints to list."),
    pretty: bool = typer.Option(True, "--pretty/--no-pretty", help="Pretty-print output JSON."),
) -> None:
    """List stored generation checkpoints."""

    rows = CheckpointStore().list_for_user(user)
    _echo_json(
        [
            {
                "run_id": checkpoint.run_id,
                "phase": checkpoint.phase.value,
                "is_completed": checkpoint.is_completed,
                "weeks": len(checkpoint.weeks),
                "updated_at": checkpoint.updated_at,
            }
            for checkpoint in rows
        ],
        pretty,
    )


@app.command()
def plans(
    user: str = typer.Option("local", "--user", help="User whose saved plans to list."),
    limit: int = typer.Option(20, "--limit", min=1, help="Maximum number of plans."),
    pretty: bool = typer.Option(True, "--pretty/--no-pretty", help="Pretty-print output JSON."),
) -> None:
    """List saved meal plans, newest first."""

    rows = list_meal_plans(user, limit=limit)
    _echo_json(
        [
            {
                "id": row["id"],
                "week_number": row["week_number"],
                "title": row["title"],
                "start_date": row["start_date"],
                "end_date": row["end_date"],
                "with_recipes": row["with_recipes"],
                "days": len(row["plan"].days),
            }
            for row in rows
        ],
        pretty,
    )


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for `python -m mealforge`."""
    app(prog_name="mealforge", args=argv)


if __name__ == "__main__":
    main()
