"""Cooperative cancellation shared by every operation of one generation run."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from mealforge.errors import Cancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Single cancellation signal for a run.

    Network operations register their tasks with :meth:`track`; triggering the
    token cancels those tasks (aborting the underlying HTTP requests) and makes
    every later :meth:`raise_if_cancelled` check fail.
    """

    def __init__(self, run_id: Optional[str] = None) -> None:
        self.run_id = run_id
        self._cancelled = False
        self._reason: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise Cancelled(self._reason or "Generation run cancelled")

    def track(self, task: asyncio.Task) -> asyncio.Task:
        """Register an outstanding task; it is cancelled if the token fires."""

        if self._cancelled:
            task.cancel()
            return task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def outstanding(self) -> Set[asyncio.Task]:
        return {task for task in self._tasks if not task.done()}

    def cancel(self, reason: str = "Generation run cancelled") -> int:
        """Trigger the token and abort outstanding tasks; returns how many were aborted."""

        if self._cancelled:
            return 0
        self._cancelled = True
        self._reason = reason
        pending = self.outstanding()
        for task in pending:
            task.cancel()
        logger.info(
            "Cancellation requested run_id=%s aborted_tasks=%s reason=%s",
            self.run_id,
            len(pending),
            reason,
            extra={"run_id": self.run_id},
        )
        return len(pending)

    async def drain(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for aborted tasks to finish unwinding."""

        pending = self.outstanding()
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        if still_pending:
            logger.warning(
                "Tasks still unwinding after cancellation run_id=%s pending=%s",
                self.run_id,
                len(still_pending),
                extra={"run_id": self.run_id},
            )
        return not still_pending


__all__ = ["CancellationToken"]
