"""
Tests for the register synchronization service and client.

Runs a real service on a temporary Unix domain socket and connects
clients to it, one per simulated surface process.
"""

import sys
import threading
import time
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sanctuary.core.register_sync import RegisterMessage, RegisterSyncClient, RegisterSyncService
from sanctuary.core.shared_register import ControlChannel

PID = "pres-1"


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def service(temp_dir):
    """Running register service persisting to a temporary store."""
    svc = RegisterSyncService(socket_path=str(temp_dir / "register.sock"), store_path=temp_dir / "register.json")
    assert svc.start()
    yield svc
    svc.stop()


@pytest.fixture
def make_client(service):
    """Connect named clients to the running service and disconnect them afterwards."""
    clients = []

    def factory(name: str) -> RegisterSyncClient:
        client = RegisterSyncClient(service.socket_path, client_name=name)
        assert client.connect()
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.disconnect()


# =============================================================================
# Message Tests
# =============================================================================


class TestRegisterMessage:
    """Test RegisterMessage JSON framing."""

    def test_json_round_trip(self):
        message = RegisterMessage(type="write", key="presentation-control-x", value={"slideIndex": 1})
        restored = RegisterMessage.from_json(message.to_json())

        assert restored.type == "write"
        assert restored.value == {"slideIndex": 1}
        assert restored.request_id == message.request_id
        assert restored.timestamp > 0


# =============================================================================
# Service/Client Tests
# =============================================================================


class TestRegisterSync:
    """Test register synchronization between processes."""

    def test_write_reaches_other_client_not_writer(self, make_client):
        writer = make_client("control")
        reader = make_client("output")
        writer_cb = Mock()
        received = threading.Event()
        payloads = []

        def on_change(payload):
            payloads.append(payload)
            received.set()

        writer.subscribe(PID, "control", writer_cb)
        reader.subscribe(PID, "control", on_change)

        payload = writer.write(PID, "control", {"slideIndex": 3})

        assert received.wait(timeout=2.0)
        assert payloads == [payload]
        assert reader.read(PID, "control") == payload
        time.sleep(0.05)
        writer_cb.assert_not_called()

    def test_writer_reads_own_write_immediately(self, make_client):
        writer = make_client("control")
        payload = writer.write(PID, "control", {"slideIndex": 2})
        assert writer.read(PID, "control") == payload

    def test_new_client_receives_snapshot(self, service, make_client):
        writer = make_client("control")
        writer.write(PID, "rotation", {"active": True, "groupId": "g1"})
        assert wait_for(lambda: service.store.get("presentation-rotation-pres-1") is not None)

        late = make_client("presenter")
        assert late.read(PID, "rotation")["groupId"] == "g1"

    def test_service_persists_writes(self, service, make_client, temp_dir):
        make_client("control").write(PID, "control", {"slideIndex": 4})
        assert wait_for(lambda: service.store.get("presentation-control-pres-1") is not None)

        stored = RegisterSyncService(socket_path=str(temp_dir / "other.sock"), store_path=temp_dir / "register.json")
        assert stored.store.get("presentation-control-pres-1")["slideIndex"] == 4

    def test_typed_channel_over_socket(self, make_client):
        writer = ControlChannel(make_client("control"), PID)
        reader = ControlChannel(make_client("output"), PID)

        writer.write_index(5)

        assert wait_for(lambda: reader.read().slide_index == 5)

    def test_client_count(self, service, make_client):
        make_client("a")
        make_client("b")
        assert wait_for(lambda: service.get_client_count() == 2)

    def test_change_callback(self, service, make_client):
        changes = []
        service.on_register_changed = lambda key, value: changes.append(key)

        make_client("control").write(PID, "control", {"slideIndex": 1})

        assert wait_for(lambda: changes == ["presentation-control-pres-1"])


class TestDisconnectedClient:
    """Test client behaviour without a running service."""

    def test_connect_fails_without_service(self, temp_dir):
        client = RegisterSyncClient(str(temp_dir / "missing.sock"), client_name="lonely")
        assert client.connect() is False
        assert client.connected is False

    def test_writes_stay_local(self, temp_dir):
        client = RegisterSyncClient(str(temp_dir / "missing.sock"), client_name="lonely")
        payload = client.write(PID, "control", {"slideIndex": 1})

        assert client.read(PID, "control") == payload

    def test_connection_lost_callback(self, service):
        client = RegisterSyncClient(service.socket_path, client_name="fragile")
        lost = threading.Event()
        client.on_connection_lost = lost.set
        assert client.connect()

        service.stop()

        assert lost.wait(timeout=2.0)
        assert client.connected is False
        client.disconnect()
