"""Phase state machine orchestrating one user's generation runs."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Union

from mealforge import metrics
from mealforge.config import Settings, get_settings
from mealforge.errors import (
    Cancelled,
    InvalidConfiguration,
    InvalidTransition,
    PersistenceError,
    QuotaExceeded,
    StreamError,
)
from mealforge.models.plan import DAYS_PER_WEEK, MEALS_PER_DAY, WeekPlan
from mealforge.models.run import (
    IDLE_PHASES,
    MAX_WEEK_COUNT,
    VALIDATION_PHASES,
    Checkpoint,
    GenerationConfig,
    GenerationRun,
    Phase,
    PipelineStatus,
    ProgressSnapshot,
)
from mealforge.pipeline.cancellation import CancellationToken
from mealforge.pipeline.enrichment import EnrichmentCoordinator
from mealforge.pipeline.handle import RunHandle
from mealforge.pipeline.ingest import StreamIngestor
from mealforge.pipeline.progress import ProgressTracker
from mealforge.pipeline.transitions import build_week_plans, iter_meals, new_id

logger = logging.getLogger(__name__)

StatusListener = Callable[[PipelineStatus], None]
PlanWriter = Callable[[GenerationRun, WeekPlan, bool], Any]

ALLOWED_TRANSITIONS: Dict[Phase, frozenset] = {
    Phase.CONFIGURATION: frozenset({Phase.GENERATING, Phase.CONFIGURATION}),
    Phase.GENERATING: frozenset(
        {Phase.VALIDATION, Phase.CONFIGURATION, Phase.CANCELLED, Phase.FAILED}
    ),
    Phase.VALIDATION: frozenset(
        {
            Phase.RECIPE_DETAILS_GENERATING,
            Phase.SAVED,
            Phase.CONFIGURATION,
            Phase.CANCELLED,
            Phase.FAILED,
        }
    ),
    Phase.RECIPE_DETAILS_GENERATING: frozenset(
        {Phase.RECIPE_DETAILS_VALIDATION, Phase.CONFIGURATION, Phase.CANCELLED, Phase.FAILED}
    ),
    Phase.RECIPE_DETAILS_VALIDATION: frozenset(
        {Phase.SAVED, Phase.CONFIGURATION, Phase.CANCELLED, Phase.FAILED}
    ),
    Phase.SAVED: frozenset({Phase.GENERATING, Phase.CONFIGURATION}),
    Phase.DISCARDED: frozenset({Phase.GENERATING, Phase.CONFIGURATION}),
    Phase.CANCELLED: frozenset({Phase.GENERATING, Phase.CONFIGURATION}),
    Phase.FAILED: frozenset({Phase.GENERATING, Phase.CONFIGURATION}),
}


class CheckpointWriter(Protocol):
    def save(self, run_id: str, phase: Phase, state: GenerationRun) -> Any: ...

    def load(self, user_id: str) -> Optional[Checkpoint]: ...

    def mark_complete(self, run_id: str) -> bool: ...

    def delete(self, run_id: str) -> bool: ...


def check_transition(current: Phase, target: Phase) -> None:
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(current.value, target.value)


def _coerce_config(config: Union[GenerationConfig, Mapping[str, Any]]) -> GenerationConfig:
    if isinstance(config, GenerationConfig):
        parsed = config
    else:
        try:
            parsed = GenerationConfig.model_validate(dict(config))
        except ValueError as exc:
            raise InvalidConfiguration(f"Invalid generation configuration: {exc}") from exc
    if not parsed.selected_inventory_id:
        raise InvalidConfiguration("An inventory must be selected before generating a plan")
    if not 1 <= parsed.week_count <= MAX_WEEK_COUNT:
        raise InvalidConfiguration(
            f"week_count must be between 1 and {MAX_WEEK_COUNT}, got {parsed.week_count}"
        )
    return parsed


def _progress_from_weeks(weeks: List[WeekPlan]) -> ProgressTracker:
    """Rebuild counters for a run restored from a checkpoint."""

    progress = ProgressTracker(
        total_days=len(weeks) * DAYS_PER_WEEK,
        total_meals=len(weeks) * DAYS_PER_WEEK * MEALS_PER_DAY,
    )
    progress.days_received = min(progress.total_days, sum(len(week.days) for week in weeks))
    for week in weeks:
        for meal in week.iter_meals():
            if meal.detailed_recipe is None:
                continue
            progress.meals_enriched += 1
            progress.total_images += 1
            if meal.image_url:
                progress.images_generated += 1
    return progress


class PipelineStateMachine:
    """Drive generation runs for one user through their phases.

    Holds at most one run at a time. Every change to the run goes through its
    :class:`RunHandle`, so a cancelled run can no longer be modified by late
    stream events or enrichment results.
    """

    def __init__(
        self,
        user_id: str,
        *,
        client,
        checkpoints: Optional[CheckpointWriter] = None,
        plan_writer: Optional[PlanWriter] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.user_id = user_id
        self._client = client
        self._checkpoints = checkpoints
        self._plan_writer = plan_writer
        self._settings = settings or get_settings()
        self._clock = clock
        self._handle: Optional[RunHandle] = None
        self._coordinator: Optional[EnrichmentCoordinator] = None
        self._ingestor: Optional[StreamIngestor] = None
        self._task: Optional[asyncio.Task] = None
        self._config: Optional[GenerationConfig] = None
        self._listeners: List[StatusListener] = []

    # ------------------------------------------------------------------ status

    @property
    def config(self) -> Optional[GenerationConfig]:
        return self._config

    @property
    def phase(self) -> Phase:
        return self._handle.run.phase if self._handle else Phase.CONFIGURATION

    @property
    def run(self) -> Optional[GenerationRun]:
        return self._handle.run if self._handle else None

    @property
    def task(self) -> Optional[asyncio.Task]:
        """Background task created by :meth:`launch`, if any."""

        return self._task

    def status(self) -> PipelineStatus:
        if self._handle is None:
            return PipelineStatus(phase=Phase.CONFIGURATION, progress=ProgressSnapshot())
        return self._handle.status()

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register ``listener`` for status snapshots; returns an unsubscribe callable."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # -------------------------------------------------------------- operations

    async def start(
        self,
        config: Union[GenerationConfig, Mapping[str, Any]],
        preferences: Optional[Dict[str, Any]] = None,
    ) -> GenerationRun:
        """Run a full generation and return the run in ``recipe_details_validation``."""

        handle = self._begin(config, preferences)
        return await self._execute(handle, lambda: self._generate(handle))

    def launch(
        self,
        config: Union[GenerationConfig, Mapping[str, Any]],
        preferences: Optional[Dict[str, Any]] = None,
    ) -> PipelineStatus:
        """Validate and allocate now; run the rest of :meth:`start` in the background."""

        handle = self._begin(config, preferences)
        self._task = asyncio.create_task(
            self._run_in_background(handle, lambda: self._generate(handle)),
            name=f"generation-{handle.run_id}",
        )
        return self.status()

    async def continue_enrichment(self) -> GenerationRun:
        """Enrich a run resumed in ``validation`` and move it to ``recipe_details_validation``."""

        handle = self._require_handle()
        check_transition(handle.run.phase, Phase.RECIPE_DETAILS_GENERATING)
        return await self._execute(handle, lambda: self._enrich(handle))

    async def cancel(self) -> PipelineStatus:
        """Abort the active run, clear its plans and forget its checkpoint."""

        handle = self._handle
        if handle is None or handle.run.phase in IDLE_PHASES:
            return self.status()
        check_transition(handle.run.phase, Phase.CANCELLED)

        handle.token.cancel("Generation cancelled by user")
        await self._wait_for_unwind(handle)
        handle.force(
            lambda run: run.model_copy(
                update={"phase": Phase.CANCELLED, "cancelled": True, "weeks": []}
            )
        )
        self._delete_checkpoint(handle.run_id)
        metrics.PIPELINE_RUNS.labels(outcome="cancelled").inc()
        logger.info("Generation cancelled", extra={"run_id": handle.run_id, "user_id": self.user_id})
        return self.status()

    def save(self, with_details: bool = True) -> GenerationRun:
        """Persist every week of the run and move to ``saved``.

        Weeks are written one by one; a failing write raises
        :class:`PersistenceError` and leaves the run untouched, while weeks
        written before the failure stay stored.
        """

        handle = self._require_handle()
        run = handle.run
        if run.phase not in VALIDATION_PHASES:
            raise InvalidTransition(run.phase.value, Phase.SAVED.value)
        if self._plan_writer is None:
            raise PersistenceError("No meal plan archive is configured")

        for week in run.weeks:
            self._plan_writer(run, week, with_details)
            logger.info(
                "Saved week plan week=%s with_details=%s",
                week.week_number,
                with_details,
                extra={"run_id": run.run_id, "user_id": self.user_id},
            )

        if self._checkpoints is not None:
            try:
                self._checkpoints.mark_complete(run.run_id)
                metrics.CHECKPOINT_WRITES.labels(operation="complete", result="ok").inc()
            except PersistenceError as exc:
                metrics.CHECKPOINT_WRITES.labels(operation="complete", result="error").inc()
                logger.warning("Unable to mark checkpoint complete error=%s", exc)

        handle.force(lambda current: current.model_copy(update={"phase": Phase.SAVED}))
        metrics.PIPELINE_RUNS.labels(outcome="saved").inc()
        return handle.run

    async def discard(self) -> PipelineStatus:
        """Drop the current run, if any, and return to ``configuration``."""

        handle = self._handle
        if handle is None:
            return self.status()
        active = handle.run.phase not in IDLE_PHASES
        if not handle.token.cancelled:
            handle.token.cancel("Generation discarded")
            await self._wait_for_unwind(handle)
        self._delete_checkpoint(handle.run_id)
        self._clear_run()
        if active:
            metrics.PIPELINE_RUNS.labels(outcome="discarded").inc()
        logger.info("Generation discarded", extra={"run_id": handle.run_id, "user_id": self.user_id})
        self._emit_status()
        return self.status()

    async def reset(self) -> PipelineStatus:
        """Discard the run and forget the last configuration."""

        status = await self.discard()
        self._config = None
        return status

    async def aclose(self) -> None:
        """Abort an active run and release the service client."""

        handle = self._handle
        if handle is not None and handle.run.phase not in IDLE_PHASES:
            handle.token.cancel("Generation service shutting down")
            await self._wait_for_unwind(handle)
        close = getattr(self._client, "aclose", None)
        if close is not None:
            await close()

    def resume(self) -> bool:
        """Restore the latest resumable checkpoint; returns whether one was restored."""

        self._ensure_idle(Phase.CONFIGURATION)
        if self._checkpoints is None:
            return False
        checkpoint = self._checkpoints.load(self.user_id)
        if checkpoint is None:
            return False
        if checkpoint.phase not in VALIDATION_PHASES:
            logger.info(
                "Checkpoint not resumable phase=%s",
                checkpoint.phase.value,
                extra={"run_id": checkpoint.run_id, "user_id": self.user_id},
            )
            return False

        run = GenerationRun(
            run_id=checkpoint.run_id,
            user_id=self.user_id,
            config=checkpoint.config,
            phase=checkpoint.phase,
            weeks=checkpoint.weeks,
        )
        self._config = checkpoint.config
        self._install(run, _progress_from_weeks(checkpoint.weeks))
        logger.info(
            "Resumed generation phase=%s weeks=%s",
            run.phase.value,
            len(run.weeks),
            extra={"run_id": run.run_id, "user_id": self.user_id},
        )
        self._emit_status()
        return True

    # ---------------------------------------------------------------- internals

    def _begin(
        self,
        config: Union[GenerationConfig, Mapping[str, Any]],
        preferences: Optional[Dict[str, Any]],
    ) -> RunHandle:
        parsed = _coerce_config(config)
        self._ensure_idle(Phase.GENERATING)

        run = GenerationRun(
            run_id=new_id(),
            user_id=self.user_id,
            config=parsed,
            phase=Phase.GENERATING,
            weeks=build_week_plans(parsed, self._clock()),
            preferences=dict(preferences or {}),
        )
        total_days = parsed.week_count * DAYS_PER_WEEK
        progress = ProgressTracker(total_days=total_days, total_meals=total_days * MEALS_PER_DAY)
        self._config = parsed
        handle = self._install(run, progress)
        logger.info(
            "Generation started weeks=%s inventory=%s batch_cooking=%s",
            parsed.week_count,
            parsed.selected_inventory_id,
            parsed.batch_cooking,
            extra={"run_id": run.run_id, "user_id": self.user_id},
        )
        self._emit_status()
        return handle

    def _install(self, run: GenerationRun, progress: ProgressTracker) -> RunHandle:
        token = CancellationToken(run.run_id)
        handle = RunHandle(run, token=token, progress=progress, on_change=self._on_change)
        coordinator = EnrichmentCoordinator(self._client, on_quota_exceeded=self._on_quota_exceeded)
        self._handle = handle
        self._coordinator = coordinator
        self._ingestor = StreamIngestor(
            self._client,
            on_day=lambda h, _week_index, day: coordinator.enrich_day(h, day, h.run.preferences),
        )
        return handle

    def _ensure_idle(self, target: Phase) -> None:
        if self._handle is None:
            return
        current = self._handle.run.phase
        if current not in IDLE_PHASES:
            raise InvalidTransition(current.value, target.value)
        check_transition(current, target)

    def _require_handle(self) -> RunHandle:
        if self._handle is None:
            raise InvalidTransition(Phase.CONFIGURATION.value, "active run")
        return self._handle

    def _clear_run(self) -> None:
        self._handle = None
        self._coordinator = None
        self._ingestor = None

    async def _execute(
        self, handle: RunHandle, body: Callable[[], Awaitable[GenerationRun]]
    ) -> GenerationRun:
        """Run ``body`` applying the pipeline's error policy."""

        token = handle.token
        try:
            return await body()
        except Cancelled:
            raise
        except asyncio.CancelledError:
            if token.cancelled:
                raise Cancelled(token.reason or "Generation run cancelled") from None
            raise
        except (StreamError, QuotaExceeded) as exc:
            if token.cancelled:
                raise Cancelled(token.reason or "Generation run cancelled") from exc
            self._abort_to_configuration(handle, exc)
            raise
        except Exception as exc:
            if token.cancelled:
                raise Cancelled(token.reason or "Generation run cancelled") from exc
            self._fail(handle, exc)
            raise

    async def _run_in_background(
        self, handle: RunHandle, body: Callable[[], Awaitable[GenerationRun]]
    ) -> None:
        log_extra = {"run_id": handle.run_id, "user_id": self.user_id}
        try:
            await self._execute(handle, body)
        except Cancelled:
            logger.debug("Background generation observed cancellation", extra=log_extra)
        except Exception as exc:
            # Already recorded on the run; the API reads it back through status().
            logger.warning("Background generation ended with error=%s", exc, extra=log_extra)

    async def _generate(self, handle: RunHandle) -> GenerationRun:
        for week_index in range(len(handle.run.weeks)):
            await self._stream_week(handle, week_index)
        self._transition(handle, Phase.VALIDATION)
        self._checkpoint(handle)
        return await self._enrich(handle)

    async def _stream_week(self, handle: RunHandle, week_index: int) -> None:
        assert self._ingestor is not None
        week_number = handle.run.weeks[week_index].week_number
        timeout = self._settings.stream_timeout
        task = asyncio.create_task(
            self._ingestor.ingest_week(handle, week_index), name=f"stream-week-{week_number}"
        )
        handle.token.track(task)
        done, _ = await asyncio.wait({task}, timeout=timeout)
        handle.token.raise_if_cancelled()
        if not done:
            task.cancel()
            raise StreamError(
                f"Plan stream for week {week_number} timed out after {timeout:g}s",
                week_number=week_number,
            )
        task.result()

    async def _enrich(self, handle: RunHandle) -> GenerationRun:
        assert self._coordinator is not None
        coordinator = self._coordinator
        token = handle.token
        log_extra = {"run_id": handle.run_id, "user_id": self.user_id}

        self._transition(handle, Phase.RECIPE_DETAILS_GENERATING)
        coordinator.enrich_pending(handle, handle.run.preferences)

        if not await coordinator.join_recipes(self._settings.recipe_wait_timeout):
            logger.warning(
                "Recipe details still pending after %.0fs pending=%s",
                self._settings.recipe_wait_timeout,
                coordinator.pending_recipes,
                extra=log_extra,
            )
        token.raise_if_cancelled()

        if not await coordinator.join_images(self._settings.image_wait_timeout):
            logger.warning(
                "Images still pending after %.0fs pending=%s",
                self._settings.image_wait_timeout,
                coordinator.pending_images,
                extra=log_extra,
            )
        token.raise_if_cancelled()

        self._transition(handle, Phase.RECIPE_DETAILS_VALIDATION)
        self._checkpoint(handle)
        metrics.PIPELINE_RUNS.labels(outcome="completed").inc()
        run = handle.run
        enriched = sum(1 for _, _, meal in iter_meals(run) if meal.recipe_generated)
        logger.info(
            "Generation ready for review meals=%s enriched=%s",
            run.meal_count(),
            enriched,
            extra=log_extra,
        )
        return run

    def _transition(self, handle: RunHandle, target: Phase) -> None:
        check_transition(handle.run.phase, target)
        handle.apply(lambda run: run.model_copy(update={"phase": target}))
        handle.token.raise_if_cancelled()
        logger.debug("Phase changed phase=%s", target.value, extra={"run_id": handle.run_id})

    def _abort_to_configuration(self, handle: RunHandle, exc: Exception) -> None:
        """Stop outstanding work after a week failed, keeping completed weeks."""

        handle.token.cancel(f"Aborted after stream failure: {exc}")
        quota = isinstance(exc, QuotaExceeded)
        handle.force(
            lambda run: run.model_copy(
                update={
                    "phase": Phase.CONFIGURATION,
                    "weeks": [week for week in run.weeks if week.status == "ready"],
                    "last_error": str(exc),
                    "quota_exceeded": run.quota_exceeded or quota,
                }
            )
        )
        metrics.PIPELINE_RUNS.labels(outcome="quota_exceeded" if quota else "stream_failed").inc()
        logger.warning(
            "Generation aborted error=%s",
            exc,
            extra={"run_id": handle.run_id, "user_id": self.user_id},
        )

    def _fail(self, handle: RunHandle, exc: Exception) -> None:
        handle.token.cancel(f"Aborted after unexpected error: {exc}")
        handle.force(
            lambda run: run.model_copy(update={"phase": Phase.FAILED, "last_error": str(exc)})
        )
        metrics.PIPELINE_RUNS.labels(outcome="failed").inc()
        logger.exception(
            "Generation failed unexpectedly",
            extra={"run_id": handle.run_id, "user_id": self.user_id},
        )

    async def _wait_for_unwind(self, handle: RunHandle) -> None:
        """Give aborted work one shared grace period to finish unwinding."""

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.cancel_grace_period
        await handle.token.drain(self._settings.cancel_grace_period)
        task = self._task
        remaining = deadline - loop.time()
        if (
            remaining > 0
            and task is not None
            and not task.done()
            and task is not asyncio.current_task()
        ):
            await asyncio.wait({task}, timeout=remaining)

    def _checkpoint(self, handle: RunHandle) -> None:
        if self._checkpoints is None or handle.token.cancelled:
            return
        run = handle.run
        try:
            self._checkpoints.save(run.run_id, run.phase, run)
        except PersistenceError as exc:
            metrics.CHECKPOINT_WRITES.labels(operation="save", result="error").inc()
            logger.warning(
                "Checkpoint write failed phase=%s error=%s",
                run.phase.value,
                exc,
                extra={"run_id": run.run_id},
            )
            return
        metrics.CHECKPOINT_WRITES.labels(operation="save", result="ok").inc()

    def _delete_checkpoint(self, run_id: str) -> None:
        if self._checkpoints is None:
            return
        try:
            self._checkpoints.delete(run_id)
            metrics.CHECKPOINT_WRITES.labels(operation="delete", result="ok").inc()
        except PersistenceError as exc:
            metrics.CHECKPOINT_WRITES.labels(operation="delete", result="error").inc()
            logger.warning("Checkpoint delete failed error=%s", exc, extra={"run_id": run_id})

    def _on_quota_exceeded(self, handle: RunHandle, exc: QuotaExceeded) -> None:
        logger.warning(
            "Usage quota exhausted during enrichment: %s",
            exc,
            extra={"run_id": handle.run_id, "user_id": self.user_id},
        )

    def _on_change(self, handle: RunHandle) -> None:
        if handle is self._handle:
            self._emit_status()

    def _emit_status(self) -> None:
        if not self._listeners:
            return
        status = self.status()
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:  # pragma: no cover - listener errors never break the run
                logger.exception("Status listener failed")


__all__ = ["ALLOWED_TRANSITIONS", "PipelineStateMachine", "check_transition"]
