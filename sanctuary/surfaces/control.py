"""
Control surface.

The operator's surface: the only one that authors rotation groups and deletes
slides. It also tracks whether the audience output window is open, from the
output surface's "closed" signal.
"""

import dataclasses
import logging
from typing import Any, Dict, List

from ..const import DEFAULT_ROTATION_INTERVAL, DEFAULT_TRANSITION
from ..core.content_store import new_group_id
from ..core.models import OutputState, RotationGroup, RotationMode, SlideRemoval
from .base import NavigatingSurface, SurfaceRole

logger = logging.getLogger(__name__)

GROUP_FIELDS = {"name", "slide_ids", "interval_seconds", "mode", "repeat", "stop_on_interaction", "transition"}


class ControlSurface(NavigatingSurface):
    role = SurfaceRole.CONTROL

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.output_open = False

    async def open(self) -> None:
        await super().open()
        self.output_open = self.output.read().open
        self._unsubscribers.append(self.output.subscribe(self._on_output_changed))

    # ----------------------------------------------------------------- output
    def mark_output_opened(self) -> None:
        """The operator opened the audience output window."""
        self.output_open = True
        self.output.write(OutputState(open=True))
        logger.info("Output surface opened")

    def _on_output_changed(self, state: OutputState) -> None:
        was_open = self.output_open
        self.output_open = state.open
        if was_open and not state.open:
            self.notify("Output window closed")

    # ---------------------------------------------------------- group editing
    @property
    def rotation_groups(self) -> List[RotationGroup]:
        return list(self.presentation.rotation_groups)

    def create_rotation_group(
        self,
        name: str,
        slide_ids: List[str],
        interval_seconds: float = DEFAULT_ROTATION_INTERVAL,
        mode: RotationMode = RotationMode.LOOP,
        repeat: bool = True,
        stop_on_interaction: bool = True,
        transition: str = DEFAULT_TRANSITION,
    ) -> RotationGroup:
        group = RotationGroup(
            id=new_group_id(),
            name=name,
            slide_ids=list(slide_ids),
            interval_seconds=interval_seconds,
            mode=mode,
            repeat=repeat,
            stop_on_interaction=stop_on_interaction,
            transition=transition,
        )
        self.content.create_rotation_group(self.presentation_id, group)
        self.selected_group_id = group.id
        self._republish_control()
        return group

    async def update_rotation_group(self, group_id: str, **changes: Any) -> RotationGroup:
        """
        Edit a rotation group.

        Raises:
            RotationGroupNotFoundError: If the group does not exist
            ValueError: If ``changes`` names an unknown field or an invalid value
        """
        unknown = set(changes) - GROUP_FIELDS
        if unknown:
            raise ValueError(f"Unknown rotation group fields: {sorted(unknown)}")
        existing = self.content.get_rotation_group(self.presentation_id, group_id)
        group = dataclasses.replace(existing, **changes)
        self.content.update_rotation_group(self.presentation_id, group)
        await self.scheduler.on_group_mutated()
        self._republish_control()
        return group

    async def delete_rotation_group(self, group_id: str) -> RotationGroup:
        group = self.content.delete_rotation_group(self.presentation_id, group_id)
        await self._stop_if_group_gone([group_id])
        self._republish_control()
        return group

    # -------------------------------------------------------- slide deletion
    async def delete_slide(self, slide_id: str) -> SlideRemoval:
        """Delete a slide, prune rotation groups and keep the control index in range."""
        removal = self.content.delete_slide(self.presentation_id, slide_id)
        await self._stop_if_group_gone(removal.deleted_group_ids)
        self._republish_control()
        return removal

    def _republish_control(self) -> None:
        """
        Rewrite the control slot after a content edit.

        Content listeners only fire in this process; the write is what makes
        surfaces in other processes re-read the presentation and re-render.
        The index is clamped to the new slide count.
        """
        state = self.control.read().clamped(self.slide_count)
        self._on_local_control(self.control.write(state))

    async def _stop_if_group_gone(self, group_ids: List[str]) -> None:
        if await self.scheduler.on_group_mutated():
            self.notify("Rotation stopped: its group no longer has any slides")
            return
        # Rotation hosted by another surface whose group was just deleted
        authoritative = self.rotation.read()
        if authoritative.active and authoritative.group_id in group_ids:
            await self.stop_rotation()
            self.notify("Rotation stopped: its group was deleted")

    def state_dict(self) -> Dict[str, Any]:
        state = super().state_dict()
        state["output_open"] = self.output_open
        state["selected_group_id"] = self.selected_group_id
        state["rotation_groups"] = [group.to_dict() for group in self.rotation_groups]
        return state

