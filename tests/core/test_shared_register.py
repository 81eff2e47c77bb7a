"""
Unit tests for the shared register.

Tests the loopback hub (writer does not observe its own writes), JSON store
persistence and the typed channels' handling of malformed payloads.
"""

import asyncio
import json
import sys
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sanctuary.core.models import ControlState, RotationState
from sanctuary.core.shared_register import (
    ControlChannel,
    LocalRegisterHub,
    OutputChannel,
    RegisterStore,
    RotationChannel,
    register_key,
)

PID = "pres-1"


# =============================================================================
# RegisterStore Tests
# =============================================================================


class TestRegisterStore:
    """Test RegisterStore persistence."""

    def test_memory_only(self):
        store = RegisterStore()
        store.put("k", {"a": 1})
        assert store.get("k") == {"a": 1}
        assert store.get("missing", "default") == "default"

    def test_persists_and_reloads(self, temp_dir):
        path = temp_dir / "register.json"
        RegisterStore(path).put("k", {"slideIndex": 2})

        assert json.loads(path.read_text()) == {"k": {"slideIndex": 2}}
        assert RegisterStore(path).get("k") == {"slideIndex": 2}

    def test_corrupt_file_loads_empty(self, temp_dir):
        path = temp_dir / "register.json"
        path.write_text("{not json")

        store = RegisterStore(path)
        assert store.snapshot() == {}

    def test_non_object_file_loads_empty(self, temp_dir):
        path = temp_dir / "register.json"
        path.write_text("[1, 2]")

        assert RegisterStore(path).snapshot() == {}


# =============================================================================
# LocalRegisterHub Tests
# =============================================================================


class TestLocalRegisterHub:
    """Test the in-process loopback register."""

    def test_storage_key_convention(self):
        assert register_key("abc", "control") == "presentation-control-abc"

    def test_write_stamps_updated_at(self, hub):
        endpoint = hub.attach("a")
        payload = endpoint.write(PID, "control", {"slideIndex": 1})

        assert payload["slideIndex"] == 1
        assert payload["updatedAt"] > 0
        assert endpoint.read(PID, "control") == payload

    def test_other_endpoints_notified_writer_is_not(self, hub):
        writer = hub.attach("writer")
        reader = hub.attach("reader")
        writer_cb = Mock()
        reader_cb = Mock()
        writer.subscribe(PID, "control", writer_cb)
        reader.subscribe(PID, "control", reader_cb)

        payload = writer.write(PID, "control", {"slideIndex": 3})

        writer_cb.assert_not_called()
        reader_cb.assert_called_once_with(payload)

    def test_subscription_scoped_by_presentation_and_key(self, hub):
        writer = hub.attach("writer")
        reader = hub.attach("reader")
        callback = Mock()
        reader.subscribe(PID, "control", callback)

        writer.write("other", "control", {"slideIndex": 1})
        writer.write(PID, "rotation", {"active": False, "groupId": None})

        callback.assert_not_called()

    def test_unsubscribe(self, hub):
        writer = hub.attach("writer")
        reader = hub.attach("reader")
        callback = Mock()
        unsubscribe = reader.subscribe(PID, "control", callback)

        unsubscribe()
        writer.write(PID, "control", {"slideIndex": 1})

        callback.assert_not_called()

    def test_detached_endpoint_not_notified(self, hub):
        writer = hub.attach("writer")
        reader = hub.attach("reader")
        callback = Mock()
        reader.subscribe(PID, "control", callback)

        reader.close()
        writer.write(PID, "control", {"slideIndex": 1})

        callback.assert_not_called()

    def test_failing_subscriber_does_not_break_others(self, hub):
        writer = hub.attach("writer")
        reader = hub.attach("reader")
        good = Mock()
        reader.subscribe(PID, "control", Mock(side_effect=RuntimeError("boom")))
        reader.subscribe(PID, "control", good)

        writer.write(PID, "control", {"slideIndex": 1})

        good.assert_called_once()

    @pytest.mark.asyncio
    async def test_loop_dispatch(self, hub):
        loop = asyncio.get_running_loop()
        writer = hub.attach("writer")
        reader = hub.attach("reader", loop=loop)
        received = []
        reader.subscribe(PID, "control", received.append)

        writer.write(PID, "control", {"slideIndex": 4})
        assert received == []  # Delivered on the next loop iteration

        await asyncio.sleep(0)
        assert received[0]["slideIndex"] == 4


# =============================================================================
# Channel Tests
# =============================================================================


class TestChannels:
    """Test typed channels over the register."""

    def test_defaults_when_absent(self, hub):
        endpoint = hub.attach()
        control = ControlChannel(endpoint, PID)
        rotation = RotationChannel(endpoint, PID)

        assert control.read() == ControlState()
        assert rotation.read() == RotationState()
        assert control.exists() is False

    @pytest.mark.parametrize("payload", ["junk", {"slideIndex": -4}, {"slideIndex": "1"}, {"other": 1}])
    def test_malformed_reads_as_default(self, hub, payload):
        endpoint = hub.attach()
        hub.store.put(register_key(PID, "control"), payload)
        control = ControlChannel(endpoint, PID)

        assert control.read().slide_index == 0
        assert control.exists() is False

    def test_write_returns_stamped_state(self, hub):
        control = ControlChannel(hub.attach(), PID)
        state = control.write_index(2)

        assert state.slide_index == 2
        assert state.updated_at > 0
        assert control.read() == state

    def test_write_index_range_check(self, hub):
        control = ControlChannel(hub.attach(), PID)
        with pytest.raises(ValueError):
            control.write_index(5, slide_count=5)
        with pytest.raises(ValueError):
            control.write_index(-1, slide_count=5)

    def test_typed_subscription(self, hub):
        writer = RotationChannel(hub.attach("writer"), PID)
        reader = RotationChannel(hub.attach("reader"), PID)
        received = []
        reader.subscribe(received.append)

        writer.write(RotationState(active=True, group_id="g1"))

        assert received[0].active is True
        assert received[0].group_id == "g1"

    def test_malformed_notification_delivers_default(self, hub):
        writer = hub.attach("writer")
        reader = OutputChannel(hub.attach("reader"), PID)
        received = []
        reader.subscribe(received.append)

        writer.write(PID, "output", {"open": "maybe"})

        assert received[0].open is False
