"""Lightweight event dispatcher for reporting long-running sweep progress.

Sweeps and batch fits dispatch one event per processed grid point. This is
the only place where a surrounding application can interleave its own work
with a long calibration loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable


class EventType(Enum):
    """Supported event types emitted by specfit drivers."""

    SWEEP_STARTED = auto()
    SWEEP_PROGRESS = auto()
    SWEEP_COMPLETED = auto()
    PEAK_FITTED = auto()


@dataclass(slots=True)
class Event:
    """Base event carrying a type and arbitrary metadata."""

    event_type: EventType
    data: dict[str, Any]


@dataclass(slots=True)
class SweepProgressEvent(Event):
    """Event emitted after each point of a parameter sweep."""

    current_point: int
    total_points: int
    valid: bool


class EventHandler(Protocol):
    """Protocol implemented by event handlers."""

    def handle(self, event: Event) -> None:  # pragma: no cover - thin interface
        """Process an incoming event."""


class EventDispatcher:
    """Simple pub-sub dispatcher for internal progress events."""

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[EventHandler]] = {}

    def subscribe(
        self,
        event_type: EventType,
        handler: EventHandler | Callable[[Event], None],
    ) -> None:
        """Register a handler for a particular event type."""
        if event_type not in self._handlers:
            self._handlers[event_type] = []

        if callable(handler) and not hasattr(handler, "handle"):
            handler = _CallableHandler(handler)

        self._handlers[event_type].append(handler)

    def dispatch(self, event: Event) -> None:
        """Send an event to all subscribed handlers."""
        for handler in self._handlers.get(event.event_type, []):
            handler.handle(event)


class _CallableHandler:
    """Adapter that allows bare callables to act as event handlers."""

    def __init__(self, func: Callable[[Event], None]) -> None:
        self._func = func

    def handle(self, event: Event) -> None:  # pragma: no cover - trivial adapter
        self._func(event)


def emit_sweep_progress(
    dispatcher: EventDispatcher | None,
    current: int,
    total: int,
    *,
    valid: bool,
    **data: Any,
) -> None:
    """Dispatch a ``SweepProgressEvent`` if a dispatcher is attached."""
    if dispatcher is None:
        return
    dispatcher.dispatch(
        SweepProgressEvent(
            event_type=EventType.SWEEP_PROGRESS,
            data=data,
            current_point=current,
            total_points=total,
            valid=valid,
        )
    )
