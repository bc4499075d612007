"""Explicit handle through which pipeline components read and update one run."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from mealforge.models.run import GenerationRun, PipelineStatus
from mealforge.pipeline.cancellation import CancellationToken
from mealforge.pipeline.progress import ProgressTracker

logger = logging.getLogger(__name__)

Transform = Callable[[GenerationRun], GenerationRun]


class RunHandle:
    """Owns the current :class:`GenerationRun` value for one attempt.

    Components never mutate the run themselves: they pass pure transforms to
    :meth:`apply`. Once the run's token is cancelled every transform and
    counter update is refused, so late network completions cannot change state.
    """

    def __init__(
        self,
        run: GenerationRun,
        *,
        token: CancellationToken,
        progress: ProgressTracker,
        on_change: Optional[Callable[["RunHandle"], None]] = None,
    ) -> None:
        self._run = run
        self.token = token
        self.progress = progress
        self._on_change = on_change

    @property
    def run(self) -> GenerationRun:
        return self._run

    @property
    def run_id(self) -> str:
        return self._run.run_id

    def apply(self, transform: Transform, *, on_applied: Optional[Callable[[], None]] = None) -> bool:
        """Apply ``transform`` unless the run is cancelled; returns whether state changed."""

        if self.token.cancelled:
            return False
        updated = transform(self._run)
        if updated is self._run:
            return False
        self._run = updated
        if on_applied is not None:
            on_applied()
        self._notify()
        return True

    def record(self, update: Callable[[], None]) -> bool:
        """Run a progress counter update unless the run is cancelled."""

        if self.token.cancelled:
            return False
        update()
        self._notify()
        return True

    def force(self, transform: Transform) -> None:
        """Apply a transform regardless of cancellation (phase bookkeeping only)."""

        self._run = transform(self._run)
        self._notify()

    def status(self) -> PipelineStatus:
        return PipelineStatus(
            phase=self._run.phase,
            progress=self.progress.snapshot(self._run.phase),
            run=self._run,
            last_error=self._run.last_error,
            quota_exceeded=self._run.quota_exceeded,
        )

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self)
        except Exception:  # pragma: no cover - listener errors never break the run
            logger.exception("Status listener failed run_id=%s", self.run_id)


__all__ = ["RunHandle", "Transform"]
