"""
Presenter surface.

Operator-facing notes and preview view. Shows the current and next slide,
the notes of the current slide and a local elapsed-time counter, and can
navigate and start or stop rotation like the control surface.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from ..const import NO_NOTES_PLACEHOLDER
from ..core.models import Slide
from .base import NavigatingSurface, SurfaceRole

logger = logging.getLogger(__name__)


def format_elapsed(seconds: float) -> str:
    """Format whole elapsed seconds as MM:SS."""
    total = int(max(0.0, seconds))
    minutes, secs = divmod(total, 60)
    return f"{minutes:02d}:{secs:02d}"


class PresenterTimer:
    """
    Elapsed-time counter local to one presenter surface.

    Not synchronized across surfaces; start, pause and reset only affect this
    instance.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._accumulated = 0.0
        self._started_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._started_at is not None

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return self._accumulated
        return self._accumulated + (self._clock() - self._started_at)

    def start(self) -> None:
        if self._started_at is None:
            self._started_at = self._clock()

    def pause(self) -> None:
        if self._started_at is not None:
            self._accumulated += self._clock() - self._started_at
            self._started_at = None

    def toggle(self) -> bool:
        """Start if paused, pause if running. Returns the new running state."""
        if self.running:
            self.pause()
        else:
            self.start()
        return self.running

    def reset(self) -> None:
        """Stop and zero the counter."""
        self._accumulated = 0.0
        self._started_at = None

    def format(self) -> str:
        return format_elapsed(self.elapsed)


class PresenterSurface(NavigatingSurface):
    role = SurfaceRole.PRESENTER

    def __init__(self, *args, clock: Callable[[], float] = time.monotonic, **kwargs):
        super().__init__(*args, **kwargs)
        self.timer = PresenterTimer(clock)
        self.rendered_next: Any = None

    @property
    def next_slide(self) -> Optional[Slide]:
        return self.presentation.slide_at(self.current_index + 1)

    @property
    def notes(self) -> str:
        slide = self.current_slide
        text = slide.notes.strip() if slide and slide.notes else ""
        return text or NO_NOTES_PLACEHOLDER

    @property
    def selected_group_indices(self) -> List[int]:
        group = self.selected_group
        return group.resolve_indices(self.presentation.slides) if group else []

    def refresh(self) -> None:
        upcoming = self.next_slide
        self.rendered_next = self.renderer.render(upcoming, self.scale) if upcoming is not None else None
        super().refresh()

    def state_dict(self) -> Dict[str, Any]:
        state = super().state_dict()
        upcoming = self.next_slide
        group = self.selected_group
        state.update(
            {
                "next_slide_id": upcoming.id if upcoming else None,
                "notes": self.notes,
                "timer": {"elapsed": self.timer.format(), "running": self.timer.running},
                "selected_group_id": group.id if group else None,
                "selected_group_indices": self.selected_group_indices,
            }
        )
        return state
