from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List


# Event kinds emitted by the form engine towards the hosting screen.
NOTIFY = "notify"
NAVIGATE = "navigate"
GO_BACK = "go_back"
FIELD_CHANGED = "field_changed"
OPTIONS_LOADED = "options_loaded"
RECORD_LOADED = "record_loaded"


@dataclass(frozen=True)
class UiEvent:
    """Lightweight, structured UI event produced by the engine layer."""

    kind: str
    source: str
    payload: Dict[str, Any] = field(default_factory=dict)


EmitCallback = Callable[[UiEvent], None]


def discard_event(_event: UiEvent) -> None:
    """Default sink used when a form is built without a host."""


class EventRecorder:
    """Collect emitted events; handy for headless hosts and tests.

    The recorder is itself an :data:`EmitCallback`.
    """

    def __init__(self) -> None:
        self.events: List[UiEvent] = []

    def __call__(self, event: UiEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: str) -> List[UiEvent]:
        return [e for e in self.events if e.kind == kind]

    def last(self, kind: str | None = None) -> UiEvent | None:
        matches = self.events if kind is None else self.of_kind(kind)
        return matches[-1] if matches else None

    def clear(self) -> None:
        self.events.clear()


__all__ = [
    "EmitCallback",
    "EventRecorder",
    "UiEvent",
    "discard_event",
    "NOTIFY",
    "NAVIGATE",
    "GO_BACK",
    "FIELD_CHANGED",
    "OPTIONS_LOADED",
    "RECORD_LOADED",
]
