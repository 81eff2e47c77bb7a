"""
Rotation Scheduler.

Automatically advances the control channel through a rotation group on a
fixed interval, in loop or ping-pong order.

All scheduler state (running flag, group, direction, next deadline) is owned
by a single asyncio task. Public coroutines enqueue a command and wait for
the task to execute it, so timer expiry and operator commands can never
interleave. The periodic timer is the task's wait-with-timeout on its
command queue: entering Idle removes the deadline, which cancels the timer.

At every tick the authoritative RotationState and ControlState are re-read
from the shared register rather than trusted from ``start()`` time: another
surface may have navigated, stopped rotation, or started its own rotation.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .content_store import PresentationStore
from .models import ControlState, Presentation, RotationGroup, RotationMode, RotationState
from .shared_register import ControlChannel, RotationChannel

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    """Scheduler state enumeration."""

    IDLE = "idle"
    RUNNING = "running"


@dataclass(frozen=True)
class RotationStep:
    """Outcome of one traversal step. ``index`` is None when rotation should stop."""

    index: Optional[int]
    direction: int

    @property
    def stops(self) -> bool:
        return self.index is None


def next_rotation_step(
    indices: Sequence[int], current: int, mode: RotationMode, repeat: bool, direction: int = 1
) -> RotationStep:
    """
    Compute the slide index that follows ``current`` in a rotation group.

    Args:
        indices: Resolved slide indices of the group, in group order
        current: Currently displayed slide index; a non-member counts as position 0
        mode: Loop or ping-pong traversal
        repeat: Wrap (loop) or reverse (ping-pong) at the end instead of stopping
        direction: Current ping-pong direction, +1 or -1

    Returns:
        The next index and the direction to use for the following step
    """
    if not indices:
        return RotationStep(None, direction)

    count = len(indices)
    position = indices.index(current) if current in indices else 0

    # A single member has no other index to move to; repeat just holds it
    if count == 1:
        return RotationStep(indices[0] if repeat else None, direction)

    if RotationMode(mode) is RotationMode.LOOP:
        next_position = position + 1
        if next_position >= count:
            if not repeat:
                return RotationStep(None, direction)
            next_position = 0
        return RotationStep(indices[next_position], direction)

    next_position = position + direction
    if next_position < 0 or next_position >= count:
        if not repeat:
            return RotationStep(None, direction)
        direction = -direction
        next_position = min(max(position + direction, 0), count - 1)
    return RotationStep(indices[next_position], direction)


class RotationScheduler:
    """
    Drives automatic rotation for one presentation.

    Only the process that called ``start()`` runs the timer. Other surfaces
    observe rotation through the rotation channel and forward what they see
    to ``on_remote_rotation()``.
    """

    def __init__(
        self,
        presentation_id: str,
        content: PresentationStore,
        control: ControlChannel,
        rotation: RotationChannel,
    ):
        self.presentation_id = presentation_id
        self.content = content
        self.control = control
        self.rotation = rotation

        self._state = SchedulerState.IDLE
        self._group_id: Optional[str] = None
        self._direction = 1
        self._deadline: Optional[float] = None

        self._commands: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        # Local writes are not echoed back through register subscriptions,
        # so the hosting surface re-renders from these callbacks.
        self.on_control_changed: Optional[Callable[[ControlState], None]] = None
        self.on_rotation_changed: Optional[Callable[[RotationState], None]] = None
        self.on_warning: Optional[Callable[[str], None]] = None

    # ------------------------------------------------------------ properties
    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    @property
    def group_id(self) -> Optional[str]:
        return self._group_id

    @property
    def direction(self) -> int:
        return self._direction

    @property
    def is_open(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------- lifecycle
    async def open(self) -> None:
        """Start the actor task on the running event loop."""
        if self.is_open:
            return
        self._loop = asyncio.get_running_loop()
        self._commands = asyncio.Queue()
        self._task = asyncio.create_task(self._run(), name=f"rotation-{self.presentation_id}")
        logger.debug(f"Rotation scheduler opened for {self.presentation_id}")

    async def close(self) -> None:
        """Stop the actor. A rotation hosted here is stopped first so no surface shows an orphaned rotation."""
        if not self.is_open:
            return
        if self.running:
            await self.stop()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._fail_pending()
        self._task = None
        self._deadline = None
        logger.debug(f"Rotation scheduler closed for {self.presentation_id}")

    # ------------------------------------------------------------ public API
    async def start(self, group_id: Optional[str] = None) -> bool:
        """
        Start rotating through a group.

        With no ``group_id`` the last known group is resumed. Returns False
        (and reports a warning) if the group does not resolve to any slide.
        """
        return await self._call(self._handle_start, group_id)

    async def stop(self) -> bool:
        """Stop rotation and cancel the timer. Returns True if rotation was active."""
        return await self._call(self._handle_stop)

    async def tick(self) -> Optional[int]:
        """Advance one step now. Returns the index written, or None if nothing changed."""
        return await self._call(self._handle_tick)

    async def on_interaction(self) -> bool:
        """Manual navigation happened. Returns True if it stopped rotation."""
        return await self._call(self._handle_interaction)

    async def on_group_mutated(self) -> bool:
        """Slides or groups changed. Returns True if rotation stopped because the group is now empty."""
        return await self._call(self._handle_group_mutated)

    async def on_remote_rotation(self, state: RotationState) -> None:
        """Another process wrote the rotation channel."""
        await self._call(self._handle_remote_rotation, state)

    # ----------------------------------------------------------------- actor
    async def _call(self, handler: Callable[..., Any], *args: Any) -> Any:
        if not self.is_open:
            raise RuntimeError("Rotation scheduler is not open")
        future = self._loop.create_future()
        await self._commands.put((handler, args, future))
        return await future

    async def _run(self) -> None:
        while True:
            timeout = None
            if self._state is SchedulerState.RUNNING and self._deadline is not None:
                timeout = max(0.0, self._deadline - self._loop.time())

            try:
                handler, args, future = await asyncio.wait_for(self._commands.get(), timeout)
            except asyncio.TimeoutError:
                try:
                    self._handle_tick()
                except Exception as e:
                    logger.error(f"Rotation tick failed for {self.presentation_id}: {e}")
                    self._stop_after_failure()
                continue

            if future.cancelled():
                continue
            try:
                result = handler(*args)
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(result)

    def _stop_after_failure(self) -> None:
        """Clear the register's active flag so no surface shows a rotation nobody runs."""
        try:
            self._handle_stop()
        except Exception as e:
            logger.error(f"Could not clear rotation state for {self.presentation_id}: {e}")
            self._enter_idle()

    def _fail_pending(self) -> None:
        """Resolve commands still queued when the actor stops."""
        while not self._commands.empty():
            _, _, future = self._commands.get_nowait()
            if not future.done():
                future.set_exception(RuntimeError("Rotation scheduler closed"))

    # -------------------------------------------------------------- handlers
    def _resolve(self, group_id: Optional[str]) -> Tuple[Presentation, Optional[RotationGroup], List[int]]:
        presentation = self.content.get_presentation(self.presentation_id)
        group, indices = presentation.resolve_group(group_id)
        return presentation, group, indices

    def _handle_start(self, group_id: Optional[str]) -> bool:
        if group_id is None:
            group_id = self._group_id or self.rotation.read().group_id

        presentation, group, indices = self._resolve(group_id)
        if group is None or not indices:
            reason = "does not exist" if group is None else "has no slides in this presentation"
            self._warn(f"Cannot start rotation: group {group_id!r} {reason}")
            return False

        if self.running:
            logger.info(f"Replacing running rotation {self._group_id} with {group.id}")

        self._publish_rotation(RotationState(active=True, group_id=group.id))
        self._group_id = group.id
        self._direction = 1

        current = self.control.read().clamped(presentation.slide_count)
        if current.slide_index not in indices:
            self._publish_control(indices[0])

        self._state = SchedulerState.RUNNING
        self._deadline = self._loop.time() + group.interval_seconds
        logger.info(
            f"Rotation started: group '{group.name}' ({group.mode.value}, every {group.interval_seconds}s, "
            f"{len(indices)} slides)"
        )
        return True

    def _handle_stop(self) -> bool:
        authoritative = self.rotation.read()
        was_active = self.running or authoritative.active
        group_id = self._group_id or authoritative.group_id

        self._enter_idle()
        if authoritative.active or self._group_id is not None:
            self._publish_rotation(RotationState(active=False, group_id=group_id))
        if was_active:
            logger.info(f"Rotation stopped for {self.presentation_id}")
        return was_active

    def _handle_tick(self) -> Optional[int]:
        if self._state is not SchedulerState.RUNNING:
            return None

        authoritative = self.rotation.read()
        if not authoritative.active or authoritative.group_id != self._group_id:
            logger.info("Rotation no longer active in register; scheduler going idle")
            self._group_id = authoritative.group_id or self._group_id
            self._enter_idle()
            return None

        presentation, group, indices = self._resolve(self._group_id)
        if group is None or not indices:
            logger.warning(f"Rotation group {self._group_id} is empty or gone; stopping")
            self._handle_stop()
            return None

        current = self.control.read().clamped(presentation.slide_count)
        step = next_rotation_step(indices, current.slide_index, group.mode, group.repeat, self._direction)
        self._direction = step.direction

        if step.stops:
            logger.info(f"Rotation group '{group.name}' reached its end")
            self._handle_stop()
            return None

        self._deadline = self._loop.time() + group.interval_seconds
        if step.index == current.slide_index:
            return None

        self._publish_control(step.index)
        logger.debug(f"Rotation advanced to slide {step.index}")
        return step.index

    def _handle_interaction(self) -> bool:
        authoritative = self.rotation.read()
        if not (self.running or authoritative.active):
            return False

        group_id = self._group_id if self.running else authoritative.group_id
        group = self.content.get_presentation(self.presentation_id).find_group(group_id)
        if group is not None and not group.stop_on_interaction:
            return False

        logger.info("Manual navigation stopped rotation")
        self._handle_stop()
        return True

    def _handle_group_mutated(self) -> bool:
        if not self.running:
            return False
        _, group, indices = self._resolve(self._group_id)
        if group is not None and indices:
            return False
        logger.info(f"Active rotation group {self._group_id} no longer resolves; stopping")
        self._handle_stop()
        return True

    def _handle_remote_rotation(self, state: RotationState) -> None:
        # Only one process may host the timer: a remote start takes over,
        # a remote stop ends ours.
        if state.group_id is not None:
            self._group_id = state.group_id
        if self.running:
            logger.info(f"Rotation changed by another surface (active={state.active}); scheduler going idle")
            self._enter_idle()

    # --------------------------------------------------------------- helpers
    def _enter_idle(self) -> None:
        self._state = SchedulerState.IDLE
        self._deadline = None

    def _publish_control(self, slide_index: int) -> None:
        state = self.control.write_index(slide_index)
        if self.on_control_changed:
            self.on_control_changed(state)

    def _publish_rotation(self, state: RotationState) -> None:
        written = self.rotation.write(state)
        if self.on_rotation_changed:
            self.on_rotation_changed(written)

    def _warn(self, message: str) -> None:
        logger.warning(message)
        if self.on_warning:
            self.on_warning(message)
