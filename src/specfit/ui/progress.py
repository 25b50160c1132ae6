"""Progress bars driven by sweep events."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from specfit.core.shared.events import EventType, SweepProgressEvent
from specfit.ui.console import Verbosity, console, get_verbosity, icon

if TYPE_CHECKING:
    from rich.progress import TaskID

    from specfit.core.shared.events import Event, EventDispatcher

__all__ = [
    "RichSweepProgressHandler",
    "create_progress",
    "track_sweep",
]


def create_progress(transient: bool = False) -> Progress:
    """Create a progress bar with the package styling.

    Args:
        transient: Whether the progress bar should disappear when complete

    Returns
    -------
        Configured Progress instance
    """
    return Progress(
        SpinnerColumn(finished_text=f"[success]{icon('check')}[/success]", spinner_name="dots"),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(complete_style="cyan", finished_style="green"),
        MofNCompleteColumn(),
        TextColumn("[dim]{task.fields[skipped]} skipped[/dim]"),
        TimeElapsedColumn(),
        console=console,
        transient=transient,
    )


class RichSweepProgressHandler:
    """Advances a Rich progress bar on ``SWEEP_PROGRESS`` events.

    The bar starts with the first event and stops once the last grid point
    has been reported. In quiet mode only the skipped points are counted.
    """

    def __init__(self, description: str = "Sweeping", *, transient: bool = True) -> None:
        self.description = description
        self.transient = transient
        self.progress: Progress | None = None
        self.task_id: TaskID | None = None
        self.skipped = 0
        self.active = False

    def handle(self, event: Event) -> None:
        """Handle an event."""
        if not isinstance(event, SweepProgressEvent):
            return
        if not self.active:
            self.active = True
            self.skipped = 0
            if get_verbosity() > Verbosity.QUIET:
                self.progress = create_progress(transient=self.transient)
                self.progress.start()
                self.task_id = self.progress.add_task(self.description, total=event.total_points, skipped=0)
        if not event.valid:
            self.skipped += 1
        if self.progress is not None:
            self.progress.update(self.task_id, completed=event.current_point, skipped=self.skipped)
        if event.current_point >= event.total_points:
            if self.progress is not None:
                self.progress.stop()
            self.active = False
            self.progress = None
            self.task_id = None


def track_sweep(dispatcher: EventDispatcher, description: str = "Sweeping") -> RichSweepProgressHandler:
    """Subscribe a progress bar handler to a dispatcher and return it."""
    handler = RichSweepProgressHandler(description)
    dispatcher.subscribe(EventType.SWEEP_PROGRESS, handler)
    return handler
