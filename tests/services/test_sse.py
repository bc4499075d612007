"""Tests for the server-sent event line decoder."""

from __future__ import annotations

from mealforge.services.sse import ServerSentEvent, SseDecoder


def _decode(lines):
    decoder = SseDecoder()
    events = [event for event in (decoder.feed(line) for line in lines) if event is not None]
    tail = decoder.flush()
    if tail is not None:
        events.append(tail)
    return events


def test_named_events_and_comments():
    events = _decode(
        [
            ": keep-alive",
            "event: day",
            'data: {"date": "2026-03-02"}',
            "",
            "event: complete",
            "data: {}",
            "",
        ]
    )

    assert events == [
        ServerSentEvent(event="day", data='{"date": "2026-03-02"}'),
        ServerSentEvent(event="complete", data="{}"),
    ]


def test_data_only_events_default_to_message():
    events = _decode(['data: {"type": "heartbeat"}', ""])

    assert events == [ServerSentEvent(event="message", data='{"type": "heartbeat"}')]


def test_multiline_data_is_joined():
    events = _decode(["data: first", "data: second", ""])

    assert events[0].data == "first\nsecond"


def test_trailing_event_without_blank_line_is_flushed():
    events = _decode(["id: 7", "data: {}"])

    assert events == [ServerSentEvent(event="message", data="{}", id="7")]


def test_blank_lines_alone_emit_nothing():
    assert _decode(["", "", ""]) == []
