"""
Tests for rotation traversal and the rotation scheduler.

Traversal sequences are checked on the pure step function and end-to-end
through the scheduler with explicit ticks (groups use a long interval so the
timer never fires on its own unless a test asks for it).
"""

import asyncio
import sys
from pathlib import Path
from typing import List
from unittest.mock import Mock, patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sanctuary.core.content_store import ContentStoreError, PresentationStore
from sanctuary.core.models import ControlState, RotationMode, RotationState
from sanctuary.core.rotation import RotationScheduler, SchedulerState, next_rotation_step
from sanctuary.core.shared_register import ControlChannel, RotationChannel

PID = "sunday-service"


def walk(indices: List[int], start: int, mode: RotationMode, repeat: bool, steps: int) -> List[int]:
    """Indices visited by repeated steps; stops early when the traversal ends."""
    visited = [start]
    current, direction = start, 1
    for _ in range(steps):
        step = next_rotation_step(indices, current, mode, repeat, direction)
        if step.stops:
            break
        current, direction = step.index, step.direction
        visited.append(current)
    return visited


# =============================================================================
# Traversal Tests
# =============================================================================


class TestNextRotationStep:
    """Test the pure traversal function."""

    def test_loop_repeat_is_periodic(self):
        assert walk([2, 4, 5], 2, RotationMode.LOOP, True, 6) == [2, 4, 5, 2, 4, 5, 2]

    def test_loop_without_repeat_stops_at_end(self):
        assert walk([0, 1], 0, RotationMode.LOOP, False, 5) == [0, 1]

    def test_ping_pong_repeat_reverses_at_both_ends(self):
        assert walk([1, 3, 4], 1, RotationMode.PING_PONG, True, 6) == [1, 3, 4, 3, 1, 3, 4]

    def test_ping_pong_direction_flips_only_at_boundaries(self):
        indices = [1, 3, 4]
        step = next_rotation_step(indices, 3, RotationMode.PING_PONG, True, 1)
        assert (step.index, step.direction) == (4, 1)
        step = next_rotation_step(indices, 4, RotationMode.PING_PONG, True, 1)
        assert (step.index, step.direction) == (3, -1)
        step = next_rotation_step(indices, 3, RotationMode.PING_PONG, True, -1)
        assert (step.index, step.direction) == (1, -1)
        step = next_rotation_step(indices, 1, RotationMode.PING_PONG, True, -1)
        assert (step.index, step.direction) == (3, 1)

    def test_ping_pong_without_repeat_stops_at_far_boundary(self):
        assert walk([1, 3, 4], 1, RotationMode.PING_PONG, False, 5) == [1, 3, 4]

    @pytest.mark.parametrize("mode", list(RotationMode))
    def test_single_member_repeat_holds_index(self, mode):
        step = next_rotation_step([2], 2, mode, True)
        assert step.index == 2
        assert step.direction == 1

    @pytest.mark.parametrize("mode", list(RotationMode))
    def test_single_member_without_repeat_stops(self, mode):
        assert next_rotation_step([2], 2, mode, False).stops

    def test_non_member_counts_as_first_position(self):
        assert next_rotation_step([2, 4, 5], 0, RotationMode.LOOP, True).index == 4

    def test_empty_group_stops(self):
        assert next_rotation_step([], 0, RotationMode.LOOP, True).stops

    def test_accepts_mode_string(self):
        assert next_rotation_step([1, 2], 1, "ping-pong", True).index == 2


# =============================================================================
# Scheduler Fixtures
# =============================================================================


class Harness:
    """A scheduler on one register endpoint plus channels on another endpoint (another process)."""

    def __init__(self, hub, content: PresentationStore):
        self.content = content
        self.local = hub.attach("host")
        self.remote = hub.attach("other")
        self.control = ControlChannel(self.local, PID)
        self.rotation = RotationChannel(self.local, PID)
        self.remote_control = ControlChannel(self.remote, PID)
        self.remote_rotation = RotationChannel(self.remote, PID)
        self.scheduler = RotationScheduler(PID, content, self.control, self.rotation)

    @property
    def index(self) -> int:
        return self.control.read().slide_index

    async def ticks(self, count: int) -> List[int]:
        visited = []
        for _ in range(count):
            await self.scheduler.tick()
            if not self.scheduler.running:
                break
            visited.append(self.index)
        return visited


@pytest.fixture
def harness(hub, content_store):
    return Harness(hub, content_store)


# =============================================================================
# Scheduler Tests
# =============================================================================


class TestSchedulerStart:
    """Test starting rotation."""

    @pytest.mark.asyncio
    async def test_start_writes_rotation_and_jumps_to_first_member(self, harness):
        await harness.scheduler.open()
        try:
            assert await harness.scheduler.start("announcements") is True

            assert harness.scheduler.state is SchedulerState.RUNNING
            state = harness.rotation.read()
            assert (state.active, state.group_id) == (True, "announcements")
            assert harness.index == 2
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_start_keeps_index_when_already_member(self, harness):
        harness.control.write_index(4)
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("announcements")
            assert harness.index == 4
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_start_unknown_group_is_reported_noop(self, harness):
        warnings = Mock()
        harness.scheduler.on_warning = warnings
        await harness.scheduler.open()
        try:
            assert await harness.scheduler.start("missing") is False

            assert harness.scheduler.state is SchedulerState.IDLE
            assert harness.rotation.exists() is False
            warnings.assert_called_once()
            assert "missing" in warnings.call_args[0][0]
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_start_group_without_resolvable_slides(self, harness, content_store, group_factory):
        presentation = content_store.get_presentation(PID)
        presentation.rotation_groups.append(group_factory("ghost", ["gone-1", "gone-2"]))
        await harness.scheduler.open()
        try:
            assert await harness.scheduler.start("ghost") is False
            assert harness.scheduler.running is False
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_restart_replaces_running_rotation(self, harness):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("announcements")
            await harness.scheduler.start("worship")

            assert harness.scheduler.group_id == "worship"
            assert harness.rotation.read().group_id == "worship"
            assert harness.index == 1
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_not_open_raises(self, harness):
        with pytest.raises(RuntimeError):
            await harness.scheduler.start("announcements")


class TestSchedulerSequences:
    """Test tick sequences for each traversal mode."""

    @pytest.mark.asyncio
    async def test_loop_repeat(self, harness):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("announcements")
            assert await harness.ticks(6) == [4, 5, 2, 4, 5, 2]
            assert harness.scheduler.running
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_ping_pong_repeat(self, harness):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("worship")
            assert harness.index == 1
            assert await harness.ticks(6) == [3, 4, 3, 1, 3, 4]
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_ping_pong_without_repeat_goes_idle_at_far_end(
        self, harness, content_store, group_factory
    ):
        content_store.create_rotation_group(
            PID, group_factory("once", ["s1", "s3", "s4"], mode=RotationMode.PING_PONG, repeat=False)
        )
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("once")
            assert await harness.ticks(5) == [3, 4]

            assert harness.scheduler.state is SchedulerState.IDLE
            assert harness.index == 4
            assert harness.rotation.read().active is False
            assert harness.rotation.read().group_id == "once"
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_loop_without_repeat(self, harness, content_store, group_factory):
        content_store.create_rotation_group(PID, group_factory("intro", ["s0", "s1"], repeat=False))
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("intro")
            assert harness.index == 0
            assert await harness.ticks(4) == [1]
            assert harness.scheduler.state is SchedulerState.IDLE
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_single_member_repeat_keeps_running_without_writes(self, harness):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("welcome")
            before = harness.control.read()

            for _ in range(5):
                assert await harness.scheduler.tick() is None

            assert harness.scheduler.running
            assert harness.control.read() == before
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_single_member_without_repeat_stops(self, harness, content_store, group_factory):
        content_store.create_rotation_group(PID, group_factory("solo", ["s3"], repeat=False))
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("solo")
            await harness.scheduler.tick()

            assert harness.scheduler.state is SchedulerState.IDLE
            assert harness.index == 3
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_indices_recomputed_each_tick(self, harness, content_store):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("announcements")
            content_store.delete_slide(PID, "s4")

            # s5 is now at index 4; s2 stays at 2
            assert await harness.ticks(3) == [4, 2, 4]
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_tick_follows_manual_navigation_elsewhere(self, harness):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("announcements")
            harness.remote_control.write_index(5)

            await harness.scheduler.tick()

            assert harness.index == 2
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_control_index_always_in_range(self, harness, content_store):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("worship")
            for _ in range(10):
                await harness.scheduler.tick()
                count = content_store.get_presentation(PID).slide_count
                assert 0 <= harness.index < count
        finally:
            await harness.scheduler.close()


class TestSchedulerTimer:
    """Test the periodic timer."""

    @pytest.mark.asyncio
    async def test_timer_advances(self, harness, content_store, group_factory):
        content_store.create_rotation_group(PID, group_factory("fast", ["s0", "s1", "s2"], interval_seconds=0.05))
        visited = []
        harness.scheduler.on_control_changed = lambda state: visited.append(state.slide_index)
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("fast")
            await asyncio.sleep(0.3)

            assert harness.scheduler.running
            assert len(visited) >= 2
            assert visited == [1, 2, 0, 1, 2, 0, 1, 2, 0, 1, 2, 0][: len(visited)]
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_stop_cancels_timer(self, harness, content_store, group_factory):
        content_store.create_rotation_group(PID, group_factory("fast", ["s0", "s1", "s2"], interval_seconds=0.05))
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("fast")
            await harness.scheduler.stop()
            stopped_at = harness.control.read()

            await asyncio.sleep(0.2)

            assert harness.control.read() == stopped_at
            assert harness.scheduler.state is SchedulerState.IDLE
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_failed_tick_clears_active_flag(self, harness, content_store, group_factory):
        content_store.create_rotation_group(PID, group_factory("fast", ["s0", "s1", "s2"], interval_seconds=0.05))
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("fast")
            with patch.object(content_store, "get_presentation", side_effect=ContentStoreError("disk gone")):
                await asyncio.sleep(0.15)

                assert harness.scheduler.state is SchedulerState.IDLE
                state = harness.remote_rotation.read()
                assert (state.active, state.group_id) == (False, "fast")
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_remote_stop_makes_pending_tick_noop(self, harness):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("announcements")
            harness.remote_rotation.write(RotationState(active=False, group_id="announcements"))
            before = harness.control.read()

            assert await harness.scheduler.tick() is None

            assert harness.scheduler.state is SchedulerState.IDLE
            assert harness.control.read() == before
            # No automatic restart
            assert harness.rotation.read().active is False
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_remote_takeover_idles_local_scheduler(self, harness):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("announcements")
            harness.remote_rotation.write(RotationState(active=True, group_id="worship"))

            await harness.scheduler.tick()

            assert harness.scheduler.state is SchedulerState.IDLE
            assert harness.rotation.read().group_id == "worship"
            assert harness.rotation.read().active is True
        finally:
            await harness.scheduler.close()


class TestSchedulerInteraction:
    """Test manual interaction and group mutation."""

    @pytest.mark.asyncio
    async def test_interaction_stops_and_keeps_group(self, harness):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("announcements")

            assert await harness.scheduler.on_interaction() is True

            assert harness.scheduler.state is SchedulerState.IDLE
            state = harness.rotation.read()
            assert state.active is False
            assert state.group_id == "announcements"
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_parameterless_resume(self, harness):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("worship")
            await harness.scheduler.on_interaction()

            assert await harness.scheduler.start() is True
            assert harness.scheduler.group_id == "worship"
            assert harness.rotation.read().active is True
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_interaction_ignored_when_group_keeps_running(self, harness, content_store, group_factory):
        content_store.create_rotation_group(PID, group_factory("sticky", ["s0", "s1"], stop_on_interaction=False))
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("sticky")

            assert await harness.scheduler.on_interaction() is False

            assert harness.scheduler.running
            assert harness.rotation.read().active is True
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_interaction_when_idle_is_noop(self, harness):
        await harness.scheduler.open()
        try:
            assert await harness.scheduler.on_interaction() is False
            assert harness.rotation.exists() is False
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_interaction_stops_rotation_hosted_elsewhere(self, harness):
        harness.remote_rotation.write(RotationState(active=True, group_id="announcements"))
        await harness.scheduler.open()
        try:
            assert await harness.scheduler.on_interaction() is True
            state = harness.rotation.read()
            assert (state.active, state.group_id) == (False, "announcements")
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_interaction_with_unresolvable_group_stops(self, harness):
        harness.remote_rotation.write(RotationState(active=True, group_id="deleted-group"))
        await harness.scheduler.open()
        try:
            assert await harness.scheduler.on_interaction() is True
            assert harness.rotation.read().active is False
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_group_emptied_stops_rotation(self, harness, content_store):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("announcements")
            for slide_id in ("s2", "s4", "s5"):
                content_store.delete_slide(PID, slide_id)

            assert await harness.scheduler.on_group_mutated() is True

            assert harness.scheduler.state is SchedulerState.IDLE
            assert harness.rotation.read().active is False
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_group_mutation_keeps_running_when_members_remain(self, harness, content_store):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("announcements")
            content_store.delete_slide(PID, "s4")

            assert await harness.scheduler.on_group_mutated() is False
            assert harness.scheduler.running
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_emptied_group_stops_on_next_tick(self, harness, content_store):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("welcome")
            content_store.delete_slide(PID, "s2")

            await harness.scheduler.tick()

            assert harness.scheduler.state is SchedulerState.IDLE
            assert harness.rotation.read().active is False
        finally:
            await harness.scheduler.close()

    @pytest.mark.asyncio
    async def test_remote_rotation_notification(self, harness):
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("announcements")
            await harness.scheduler.on_remote_rotation(RotationState(active=False, group_id="announcements"))

            assert harness.scheduler.state is SchedulerState.IDLE
            assert harness.scheduler.group_id == "announcements"
        finally:
            await harness.scheduler.close()


class TestSchedulerLifecycle:
    """Test open/close and callbacks."""

    @pytest.mark.asyncio
    async def test_close_stops_hosted_rotation(self, harness):
        await harness.scheduler.open()
        await harness.scheduler.start("announcements")

        await harness.scheduler.close()

        assert harness.rotation.read().active is False
        assert harness.scheduler.is_open is False

    @pytest.mark.asyncio
    async def test_close_releases_queued_callers(self, harness):
        await harness.scheduler.open()
        pending = asyncio.ensure_future(harness.scheduler.tick())

        await harness.scheduler.close()
        (outcome,) = await asyncio.wait_for(asyncio.gather(pending, return_exceptions=True), timeout=1.0)

        assert outcome is None or isinstance(outcome, RuntimeError)

    @pytest.mark.asyncio
    async def test_call_after_close(self, harness):
        await harness.scheduler.open()
        await harness.scheduler.close()
        with pytest.raises(RuntimeError):
            await harness.scheduler.tick()

    @pytest.mark.asyncio
    async def test_close_when_idle_writes_nothing(self, harness):
        await harness.scheduler.open()
        await harness.scheduler.close()
        assert harness.rotation.exists() is False

    @pytest.mark.asyncio
    async def test_local_write_callbacks(self, harness):
        controls, rotations = [], []
        harness.scheduler.on_control_changed = controls.append
        harness.scheduler.on_rotation_changed = rotations.append
        await harness.scheduler.open()
        try:
            await harness.scheduler.start("announcements")
            await harness.scheduler.tick()
        finally:
            await harness.scheduler.close()

        assert [state.slide_index for state in controls] == [2, 4]
        assert all(isinstance(state, ControlState) for state in controls)
        assert [state.active for state in rotations] == [True, False]
