"""Tests for logging utilities and sensitive data redaction."""

from __future__ import annotations

import json
import logging
from datetime import date

import pytest

from mealforge.logging_utils import configure_logging

SECRET = "top-secret-token"


def _emit(message: str, args: tuple = (), **extra) -> str:
    handler = logging.getLogger().handlers[0]
    record = logging.getLogger("mealforge.test.redaction").makeRecord(
        "mealforge.test.redaction",
        logging.INFO,
        __file__,
        0,
        message,
        args,
        None,
        extra=extra,
    )
    for filter_ in handler.filters:
        filter_.filter(record)
    return handler.format(record)


@pytest.mark.parametrize("fmt", ["plain", "json"])
def test_sensitive_data_filter_redacts_tokens(fmt):
    configure_logging("INFO", fmt, [SECRET])

    formatted = _emit("Authorization header Bearer %s", (SECRET,))

    assert SECRET not in formatted
    assert "[redacted]" in formatted


def test_json_records_carry_run_context():
    configure_logging("INFO", "json", [SECRET])

    formatted = _emit(
        "Recipe enriched meal=%s",
        ("Dinner w1d0",),
        run_id="run-42",
        user_id="user-7",
        week_number=2,
        meal_id="meal-3",
    )
    payload = json.loads(formatted)

    assert payload["message"] == "Recipe enriched meal=Dinner w1d0"
    assert payload["logger"] == "mealforge.test.redaction"
    assert payload["run_id"] == "run-42"
    assert payload["user_id"] == "user-7"
    assert payload["week_number"] == 2
    assert payload["meal_id"] == "meal-3"
    assert "request_id" not in payload


def test_json_context_is_redacted_and_stringified():
    configure_logging("INFO", "json", [SECRET])

    formatted = _emit(
        "Stream opened token=%s",
        (SECRET,),
        run_id=f"run-{SECRET}",
        week_number=date(2026, 3, 2),
    )
    payload = json.loads(formatted)

    assert SECRET not in formatted
    assert payload["message"] == "Stream opened token=[redacted]"
    assert payload["run_id"] == "run-[redacted]"
    assert payload["week_number"] == "2026-03-02"
