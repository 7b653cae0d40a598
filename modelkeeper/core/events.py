# core/events.py
"""
Lifecycle notifications.

Components take an optional ``on_event`` callback and call it inline with an
:class:`Event`. Names mirror the notifications a presentation layer renders:

pull-start, pull-progress, pull-skipped, pull-complete, pull-error,
sync-start, sync-status, sync-complete, training-start, training-complete,
export-complete, model-deleted, gdrive-setup-start, gdrive-setup-complete,
authenticated, auth-revoked, upload-progress, download-progress,
retry, warning, error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional


@dataclass(frozen=True)
class Event:
    """A named notification with a JSON-friendly payload."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)


EventHook = Callable[[Event], None]


class EventEmitter:
    """
    Holds an optional hook and forwards events to it.

    A hook that raises propagates to the caller of the operation.
    """

    def __init__(self, on_event: Optional[EventHook] = None) -> None:
        self._hook = on_event

    @property
    def hook(self) -> Optional[EventHook]:
        return self._hook

    def emit(self, name: str, **payload: Any) -> Event:
        event = Event(name=name, payload=payload)
        if self._hook is not None:
            self._hook(event)
        return event


class EventRecorder:
    """Hook that keeps every event in order. Handy for tests and scripted callers."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [e.name for e in self.events]

    def of(self, name: str) -> list[Event]:
        return [e for e in self.events if e.name == name]


__all__ = ["Event", "EventHook", "EventEmitter", "EventRecorder"]
