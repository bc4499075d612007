"""Incremental decoder for ``text/event-stream`` bodies."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class ServerSentEvent:
    event: str
    data: str
    id: Optional[str] = None


@dataclass
class SseDecoder:
    """Accumulate stream lines and emit one event per blank-line boundary."""

    _event: Optional[str] = None
    _data: List[str] = field(default_factory=list)
    _last_id: Optional[str] = None

    def feed(self, line: str) -> Optional[ServerSentEvent]:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            self._last_id = value
        return None

    def flush(self) -> Optional[ServerSentEvent]:
        """Emit a trailing event when the stream ends without a blank line."""

        return self._dispatch()

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data and self._event is None:
            return None
        event = ServerSentEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._last_id,
        )
        self._event = None
        self._data = []
        return event


__all__ = ["ServerSentEvent", "SseDecoder"]
