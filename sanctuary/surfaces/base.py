"""
Surface controllers.

Every surface (control, output, presenter) subscribes to the control and
rotation channels of one presentation and renders the current slide as a
pure function of the last observed values. Surfaces that may drive the
presentation (control and presenter) also own a RotationScheduler and route
every manual move through ``on_interaction()`` before writing.
"""

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from ..const import SLIDE_WIDTH
from ..core.content_store import PresentationStore
from ..core.models import ControlState, Presentation, RotationGroup, RotationState, Slide
from ..core.rotation import RotationScheduler
from ..core.shared_register import ControlChannel, OutputChannel, RotationChannel, SharedRegister, Unsubscribe
from .keyboard import NavigationCommand, command_for_key
from .renderer import GeometryRenderer, SlideRenderer, scale_for_width

logger = logging.getLogger(__name__)

MAX_NOTICES = 50


class SurfaceRole(str, Enum):
    CONTROL = "control"
    OUTPUT = "output"
    PRESENTER = "presenter"


class SurfaceController:
    """Shared subscribe/render logic for all surface variants."""

    role: SurfaceRole = SurfaceRole.OUTPUT

    def __init__(
        self,
        presentation_id: str,
        content: PresentationStore,
        register: SharedRegister,
        renderer: Optional[SlideRenderer] = None,
        width: float = SLIDE_WIDTH,
    ):
        self.presentation_id = presentation_id
        self.content = content
        self.register = register
        self.renderer = renderer or GeometryRenderer()
        self.scale = scale_for_width(width)

        self.control = ControlChannel(register, presentation_id)
        self.rotation = RotationChannel(register, presentation_id)
        self.output = OutputChannel(register, presentation_id)

        self.control_state = ControlState()
        self.rotation_state = RotationState()
        self.rendered: Any = None
        self.is_open = False

        # Called after every render with the surface itself
        self.on_render: Optional[Callable[["SurfaceController"], None]] = None

        self._unsubscribers: List[Unsubscribe] = []
        self._tasks: Set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def name(self) -> str:
        return f"{self.role.value}:{self.presentation_id}"

    # ------------------------------------------------------------- lifecycle
    async def open(self) -> None:
        """Read both channels, subscribe to changes and render the first slide."""
        if self.is_open:
            return
        self._loop = asyncio.get_running_loop()

        self._ensure_control_state()
        self.control_state = self.control.read()
        self.rotation_state = self.rotation.read()

        self._unsubscribers.append(self.control.subscribe(self._on_remote_control))
        self._unsubscribers.append(self.rotation.subscribe(self._on_remote_rotation))
        self._unsubscribers.append(self.content.add_listener(self._on_content_changed))

        self.is_open = True
        logger.info(f"Surface {self.name} opened at slide {self.current_index}")
        self.refresh()

    async def close(self) -> None:
        if not self.is_open:
            return
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.is_open = False
        logger.info(f"Surface {self.name} closed")

    def _ensure_control_state(self) -> None:
        """Consumers never create the control slot."""

    # ----------------------------------------------------------------- state
    @property
    def presentation(self) -> Presentation:
        return self.content.get_presentation(self.presentation_id)

    @property
    def slide_count(self) -> int:
        return self.presentation.slide_count

    @property
    def current_index(self) -> int:
        return self.control_state.clamped(self.slide_count).slide_index

    @property
    def current_slide(self) -> Optional[Slide]:
        return self.presentation.slide_at(self.current_index)

    @property
    def rotating(self) -> bool:
        return self.rotation_state.active

    def resize(self, width: float) -> None:
        self.scale = scale_for_width(width)
        self.refresh()

    def refresh(self) -> None:
        """Re-render the current slide."""
        slide = self.current_slide
        self.rendered = self.renderer.render(slide, self.scale) if slide is not None else None
        if self.on_render:
            self.on_render(self)

    def state_dict(self) -> Dict[str, Any]:
        slide = self.current_slide
        return {
            "presentation_id": self.presentation_id,
            "surface": self.role.value,
            "slide_index": self.current_index,
            "slide_count": self.slide_count,
            "slide_id": slide.id if slide else None,
            "rotation": {"active": self.rotation_state.active, "group_id": self.rotation_state.group_id},
        }

    # ---------------------------------------------------------- subscriptions
    def _on_remote_control(self, state: ControlState) -> None:
        self.control_state = state
        self.refresh()

    def _on_remote_rotation(self, state: RotationState) -> None:
        self.rotation_state = state
        self.refresh()

    def _on_content_changed(self, presentation_id: str) -> None:
        if presentation_id == self.presentation_id:
            self.refresh()

    def _spawn(self, coro) -> None:
        """Run a coroutine from a synchronous callback on the surface's loop."""
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


class NavigatingSurface(SurfaceController):
    """A surface that may navigate and start/stop rotation."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.scheduler = RotationScheduler(self.presentation_id, self.content, self.control, self.rotation)
        self.scheduler.on_control_changed = self._on_local_control
        self.scheduler.on_rotation_changed = self._on_local_rotation
        self.scheduler.on_warning = self.notify

        self.notices: Deque[str] = deque(maxlen=MAX_NOTICES)
        self.exit_requested = False
        self.selected_group_id: Optional[str] = None

        self.on_notice: Optional[Callable[[str], None]] = None
        self.on_exit: Optional[Callable[[], None]] = None

    async def open(self) -> None:
        await super().open()
        self._follow_rotation_group(self.rotation_state)
        self._reconcile_selection()
        await self.scheduler.open()

    async def close(self) -> None:
        await super().close()
        await self.scheduler.close()

    def _ensure_control_state(self) -> None:
        # ControlState is created on first load with index 0
        if not self.control.exists():
            logger.info(f"Creating control state for {self.presentation_id}")
            self.control.write(ControlState())

    def notify(self, message: str) -> None:
        """Record a non-fatal operator notice."""
        self.notices.append(message)
        if self.on_notice:
            self.on_notice(message)

    # ------------------------------------------------------------ navigation
    async def _navigate(self, index: int) -> int:
        await self.scheduler.on_interaction()
        count = self.slide_count
        if count == 0:
            return 0
        index = min(max(index, 0), count - 1)
        if index != self.control_state.slide_index or not self.control.exists():
            self._on_local_control(self.control.write_index(index, count))
        return self.current_index

    async def advance(self) -> int:
        return await self._navigate(self.current_index + 1)

    async def back(self) -> int:
        return await self._navigate(self.current_index - 1)

    async def first(self) -> int:
        return await self._navigate(0)

    async def last(self) -> int:
        return await self._navigate(self.slide_count - 1)

    async def jump_to(self, index: int) -> int:
        """
        Jump to a slide.

        Raises:
            IndexError: If ``index`` is not a valid slide position
        """
        if not 0 <= index < self.slide_count:
            raise IndexError(f"Slide index {index} out of range for {self.slide_count} slides")
        return await self._navigate(index)

    async def exit(self) -> None:
        await self.scheduler.on_interaction()
        self.exit_requested = True
        logger.info(f"Surface {self.name} exit requested")
        if self.on_exit:
            self.on_exit()

    async def run_command(self, command: NavigationCommand) -> Optional[int]:
        if command is NavigationCommand.ADVANCE:
            return await self.advance()
        if command is NavigationCommand.BACK:
            return await self.back()
        if command is NavigationCommand.FIRST:
            return await self.first()
        if command is NavigationCommand.LAST:
            return await self.last()
        await self.exit()
        return None

    async def handle_key(self, key: str) -> bool:
        """Dispatch a key press. Returns False for unbound keys."""
        command = command_for_key(key)
        if command is None:
            return False
        await self.run_command(command)
        return True

    # -------------------------------------------------------------- rotation
    @property
    def selected_group(self) -> Optional[RotationGroup]:
        return self.presentation.find_group(self.selected_group_id)

    def select_group(self, group_id: Optional[str]) -> None:
        """
        Choose the group ``start_rotation()`` uses when given none.

        Raises:
            RotationGroupNotFoundError: If the group does not exist
        """
        if group_id is not None:
            self.content.get_rotation_group(self.presentation_id, group_id)
        self.selected_group_id = group_id

    def _reconcile_selection(self) -> None:
        # Default to the first group; re-select when the chosen one is gone
        groups = self.presentation.rotation_groups
        if not groups:
            self.selected_group_id = None
        elif all(group.id != self.selected_group_id for group in groups):
            self.selected_group_id = groups[0].id

    def refresh(self) -> None:
        self._reconcile_selection()
        super().refresh()

    async def start_rotation(self, group_id: Optional[str] = None) -> bool:
        return await self.scheduler.start(group_id or self.selected_group_id)

    async def stop_rotation(self) -> bool:
        return await self.scheduler.stop()

    def state_dict(self) -> Dict[str, Any]:
        state = super().state_dict()
        state["rotation"]["hosted"] = self.scheduler.running
        state["notices"] = list(self.notices)
        return state

    # ---------------------------------------------------------- subscriptions
    def _on_local_control(self, state: ControlState) -> None:
        self.control_state = state
        self.refresh()

    def _follow_rotation_group(self, state: RotationState) -> None:
        if state.active and state.group_id is not None:
            self.selected_group_id = state.group_id

    def _on_local_rotation(self, state: RotationState) -> None:
        self._follow_rotation_group(state)
        self.rotation_state = state
        self.refresh()

    def _on_remote_rotation(self, state: RotationState) -> None:
        self._follow_rotation_group(state)
        super()._on_remote_rotation(state)
        if self.scheduler.is_open:
            self._spawn(self.scheduler.on_remote_rotation(state))
