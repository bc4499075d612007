"""Streaming ingestion of one week's plan events."""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from mealforge import metrics
from mealforge.errors import StreamError
from mealforge.models.plan import DAYS_PER_WEEK, Day, WeekPlan
from mealforge.pipeline.handle import RunHandle
from mealforge.pipeline.transitions import complete_week, merge_day, parse_day, replace_week
from mealforge.services.sse import ServerSentEvent

logger = logging.getLogger(__name__)

EVENT_KINDS = frozenset({"progress", "heartbeat", "day", "complete", "error"})

DayListener = Callable[[RunHandle, int, Day], None]


def decode_event(raw: ServerSentEvent) -> Tuple[str, Dict[str, Any]]:
    """Return ``(kind, payload)`` for a raw event.

    The kind comes from the SSE ``event:`` field, or from a ``type`` key in the
    JSON data when the server only sends ``data:`` lines.
    """

    body: Any = json.loads(raw.data) if raw.data.strip() else {}
    if raw.event != "message":
        kind, payload = raw.event, body
    elif isinstance(body, dict) and "type" in body:
        kind = str(body["type"])
        payload = body.get("data", {key: value for key, value in body.items() if key != "type"})
    else:
        raise ValueError("event carries neither an event name nor a type")

    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValueError(f"{kind} payload must be an object, got {type(payload).__name__}")
    return kind, payload


class StreamIngestor:
    """Translate a week's server-sent events into day merges on the run."""

    def __init__(self, client, *, on_day: Optional[DayListener] = None) -> None:
        self._client = client
        self._on_day = on_day

    async def ingest_week(self, handle: RunHandle, week_index: int) -> WeekPlan:
        """Consume the stream for ``week_index`` until ``complete`` or failure."""

        handle.token.raise_if_cancelled()
        run = handle.run
        week = run.weeks[week_index]
        log_extra = {"run_id": run.run_id, "week_number": week.week_number}
        logger.info(
            "Opening plan stream week=%s start=%s", week.week_number, week.start_date, extra=log_extra
        )

        completed = False
        events = self._client.stream_week(
            user_id=run.user_id,
            session_id=run.run_id,
            week=week,
            inventory_id=run.config.selected_inventory_id,
            batch_cooking=run.config.batch_cooking,
        )
        async with aclosing(events):
            async for raw in events:
                handle.token.raise_if_cancelled()
                try:
                    kind, payload = decode_event(raw)
                except ValueError as exc:
                    metrics.STREAM_EVENTS.labels(kind="malformed").inc()
                    logger.warning(
                        "Skipping malformed stream event week=%s error=%s preview=%s",
                        week.week_number,
                        exc,
                        raw.data[:200],
                        extra=log_extra,
                    )
                    continue

                metrics.STREAM_EVENTS.labels(kind=kind if kind in EVENT_KINDS else "unknown").inc()
                if kind == "heartbeat":
                    continue
                if kind == "progress":
                    logger.debug("Stream progress week=%s payload=%s", week.week_number, payload)
                    continue
                if kind == "error":
                    message = payload.get("message") or payload.get("error") or "generation failed"
                    raise StreamError(
                        f"Plan stream reported an error: {message}", week_number=week.week_number
                    )
                if kind == "day":
                    self._ingest_day(handle, week_index, payload, log_extra)
                elif kind == "complete":
                    received = len(handle.run.weeks[week_index].days)
                    if received < DAYS_PER_WEEK:
                        logger.warning(
                            "Week completed with %s of %s days week=%s",
                            received,
                            DAYS_PER_WEEK,
                            week.week_number,
                            extra=log_extra,
                        )
                    handle.apply(lambda current: replace_week(
                        current, week_index, complete_week(current.weeks[week_index], payload)
                    ))
                    completed = True
                    logger.info(
                        "Week completed week=%s days=%s",
                        week.week_number,
                        len(handle.run.weeks[week_index].days),
                        extra=log_extra,
                    )
                    break
                else:
                    logger.debug("Ignoring unknown stream event kind=%s", kind)

        handle.token.raise_if_cancelled()

        if not completed:
            self._finish_without_complete(handle, week_index, log_extra)
        return handle.run.weeks[week_index]

    def _ingest_day(
        self, handle: RunHandle, week_index: int, payload: Dict[str, Any], log_extra: dict
    ) -> None:
        try:
            day = parse_day(handle.run.weeks[week_index], payload)
        except (ValueError, TypeError, ValidationError) as exc:
            metrics.STREAM_EVENTS.labels(kind="malformed").inc()
            logger.warning("Skipping unusable day payload error=%s", exc, extra=log_extra)
            return

        is_new = handle.run.weeks[week_index].day_at(day.day_index) is None
        applied = handle.apply(
            lambda current: replace_week(
                current, week_index, merge_day(current.weeks[week_index], day)
            ),
            on_applied=handle.progress.record_day if is_new else None,
        )
        if not applied:
            return

        merged = handle.run.weeks[week_index].day_at(day.day_index)
        logger.info(
            "Day merged index=%s date=%s new=%s", day.day_index, day.date, is_new, extra=log_extra
        )
        if self._on_day is not None and merged is not None:
            self._on_day(handle, week_index, merged)

    def _finish_without_complete(self, handle: RunHandle, week_index: int, log_extra: dict) -> None:
        week = handle.run.weeks[week_index]
        if len(week.days) < DAYS_PER_WEEK:
            raise StreamError(
                f"Plan stream closed after {len(week.days)} of {DAYS_PER_WEEK} days",
                week_number=week.week_number,
            )
        logger.warning("Plan stream closed without a complete event", extra=log_extra)
        handle.apply(lambda current: replace_week(
            current, week_index, complete_week(current.weeks[week_index], {})
        ))


__all__ = ["StreamIngestor", "decode_event"]
