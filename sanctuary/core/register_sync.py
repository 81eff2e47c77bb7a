"""
Register Synchronization Service.

This service shares register slots between surface processes using message
passing via Unix domain sockets. It persists every write, sends a full
snapshot to new clients, and forwards each write to every client except
the one that made it.
"""

import asyncio
import contextlib
import json
import logging
import os
import socket
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union
from uuid import uuid4

from ..const import DEFAULT_SOCKET_PATH, SNAPSHOT_TIMEOUT, SOCKET_RECV_SIZE
from .shared_register import (
    RegisterCallback,
    RegisterStore,
    SharedRegister,
    SubscriberRegistry,
    Unsubscribe,
    register_key,
    stamp,
)

logger = logging.getLogger(__name__)


@dataclass
class RegisterMessage:
    """Message structure for register operations."""

    type: str  # "snapshot", "write", "changed"
    key: Optional[str] = None  # Storage key, see register_key()
    value: Optional[Any] = None
    entries: Optional[Dict[str, Any]] = None  # Only for "snapshot"
    client_id: Optional[str] = None
    timestamp: float = 0.0
    request_id: Optional[str] = None

    def __post_init__(self):
        if self.timestamp == 0.0:
            self.timestamp = time.time()
        if self.request_id is None:
            self.request_id = str(uuid4())

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, json_str: str) -> "RegisterMessage":
        """Create from JSON string."""
        data = json.loads(json_str)
        return cls(**data)


def _frame(message: RegisterMessage) -> bytes:
    # Newline delimiter for message framing
    return (message.to_json() + "\n").encode("utf-8")


class RegisterSyncService:
    """
    Register synchronization service using Unix domain sockets.

    Acts as the single store of register slots for all surface processes
    on one machine.
    """

    def __init__(
        self,
        socket_path: str = DEFAULT_SOCKET_PATH,
        store_path: Optional[Union[str, Path]] = None,
    ):
        self.socket_path = socket_path
        self.store = RegisterStore(store_path)
        self.clients: Dict[str, Dict[str, Any]] = {}  # client_id -> client_info
        self.server_socket: Optional[socket.socket] = None
        self.running = False
        self.server_thread: Optional[threading.Thread] = None

        # Called after each write has been stored: (storage_key, payload)
        self.on_register_changed: Optional[Callable[[str, Any], None]] = None

        self._lock = threading.Lock()

        logger.info(f"Register sync service initialized with socket: {self.socket_path}")

    def start(self) -> bool:
        """Start the register synchronization service."""
        try:
            if self.running:
                logger.warning("Register sync service already running")
                return True

            # Remove stale socket file from a previous run
            if os.path.exists(self.socket_path):
                os.unlink(self.socket_path)

            self.server_socket = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            self.server_socket.bind(self.socket_path)
            self.server_socket.listen(10)

            self.running = True
            self.server_thread = threading.Thread(target=self._server_loop, name="RegisterSyncServer", daemon=True)
            self.server_thread.start()

            logger.info(f"Register sync service started on {self.socket_path}")
            return True

        except Exception as e:
            logger.error(f"Failed to start register sync service: {e}")
            self.running = False
            return False

    def stop(self) -> None:
        """Stop the register synchronization service."""
        try:
            self.running = False

            if self.server_socket:
                with contextlib.suppress(OSError):
                    self.server_socket.shutdown(socket.SHUT_RDWR)
                self.server_socket.close()
                self.server_socket = None

            with self._lock:
                for client_info in self.clients.values():
                    # shutdown() wakes the handler's blocking recv; close() alone does not
                    with contextlib.suppress(OSError):
                        client_info["socket"].shutdown(socket.SHUT_RDWR)
                    with contextlib.suppress(OSError):
                        client_info["socket"].close()
                self.clients.clear()

            if self.server_thread and self.server_thread.is_alive():
                self.server_thread.join(timeout=5.0)

            if os.path.exists(self.socket_path):
                os.unlink(self.socket_path)

            logger.info("Register sync service stopped")

        except Exception as e:
            logger.error(f"Error stopping register sync service: {e}")

    def _server_loop(self) -> None:
        """Accept client connections."""
        logger.info("Register sync server loop started")

        while self.running:
            try:
                if not self.server_socket:
                    break

                client_socket, _ = self.server_socket.accept()
                client_id = str(uuid4())

                client_thread = threading.Thread(
                    target=self._handle_client, args=(client_socket, client_id), daemon=True
                )
                client_thread.start()

            except OSError:
                # Socket closed
                break
            except Exception as e:
                logger.error(f"Error in server loop: {e}")

        logger.info("Register sync server loop ended")

    def _handle_client(self, client_socket: socket.socket, client_id: str) -> None:
        """Handle individual client connection."""
        logger.info(f"New register sync client connected: {client_id}")

        message_buffer = ""

        with self._lock:
            self.clients[client_id] = {
                "socket": client_socket,
                "connected_at": time.time(),
                "last_seen": time.time(),
            }
            # Snapshot is sent under the lock so no write can slip in between
            self._send_to_client(
                client_id, RegisterMessage(type="snapshot", entries=self.store.snapshot(), client_id="server")
            )

        try:
            while self.running:
                data = client_socket.recv(SOCKET_RECV_SIZE)
                if not data:
                    break

                try:
                    message_buffer += data.decode("utf-8")

                    while "\n" in message_buffer:
                        message_str, message_buffer = message_buffer.split("\n", 1)

                        if message_str.strip():
                            message = RegisterMessage.from_json(message_str)
                            message.client_id = client_id

                            with self._lock:
                                if client_id in self.clients:
                                    self.clients[client_id]["last_seen"] = time.time()

                            self._process_message(message)

                except (json.JSONDecodeError, TypeError) as e:
                    logger.error(f"Invalid message from client {client_id}: {e}")
                    # Clear buffer to prevent cascade failures
                    message_buffer = ""

        except OSError as e:
            if self.running:
                logger.warning(f"Connection error for client {client_id}: {e}")
        finally:
            with self._lock:
                self.clients.pop(client_id, None)

            with contextlib.suppress(OSError):
                client_socket.close()

            logger.info(f"Register sync client disconnected: {client_id}")

    def _process_message(self, message: RegisterMessage) -> None:
        """Store a write and forward it to the other clients."""
        if message.type != "write":
            logger.warning(f"Unknown message type: {message.type}")
            return
        if not message.key:
            logger.error("Write message missing key")
            return

        logger.debug(f"Write to {message.key} from {message.client_id}")

        with self._lock:
            self.store.put(message.key, message.value)
            self._broadcast(
                RegisterMessage(type="changed", key=message.key, value=message.value, client_id=message.client_id),
                exclude_client=message.client_id,
            )

        if self.on_register_changed:
            try:
                self.on_register_changed(message.key, message.value)
            except Exception as e:
                logger.error(f"Register change callback failed: {e}")

    def _broadcast(self, message: RegisterMessage, exclude_client: Optional[str] = None) -> None:
        """Send to all clients except ``exclude_client``. Must be called with lock held."""
        clients_to_remove = []
        for client_id in list(self.clients.keys()):
            if client_id == exclude_client:
                continue
            if not self._send_to_client(client_id, message):
                clients_to_remove.append(client_id)

        for client_id in clients_to_remove:
            self.clients.pop(client_id, None)

    def _send_to_client(self, client_id: str, message: RegisterMessage) -> bool:
        """Send message to specific client with proper framing."""
        try:
            if client_id not in self.clients:
                return False
            self.clients[client_id]["socket"].sendall(_frame(message))
            return True
        except OSError as e:
            logger.warning(f"Failed to send message to client {client_id}: {e}")
            return False

    def get_client_count(self) -> int:
        """Get number of connected clients."""
        with self._lock:
            return len(self.clients)


class RegisterSyncClient(SharedRegister):
    """
    Shared register backed by the register synchronization service.

    Keeps a local cache so that a process always reads its own writes
    immediately. Subscriber callbacks run on ``loop`` when one is given,
    otherwise on the listener thread.
    """

    def __init__(
        self,
        socket_path: str = DEFAULT_SOCKET_PATH,
        client_name: str = "unknown",
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.socket_path = socket_path
        self.client_name = client_name
        self.socket: Optional[socket.socket] = None
        self.connected = False
        self.listener_thread: Optional[threading.Thread] = None
        self.running = False

        self._message_buffer = ""
        self._cache: Dict[str, Any] = {}
        self._cache_lock = threading.Lock()
        self._snapshot_received = threading.Event()
        self._send_lock = threading.Lock()
        self.subscribers = SubscriberRegistry(loop)

        self.on_connection_lost: Optional[Callable[[], None]] = None

        logger.info(f"Register sync client '{client_name}' initialized")

    def connect(self, snapshot_timeout: float = SNAPSHOT_TIMEOUT) -> bool:
        """Connect to the service and wait for the initial snapshot."""
        try:
            if self.connected:
                logger.warning(f"Client '{self.client_name}' already connected")
                return True

            self.socket = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            self.socket.connect(self.socket_path)

            self.connected = True
            self.running = True
            self._snapshot_received.clear()

            self.listener_thread = threading.Thread(
                target=self._listener_loop, name=f"RegisterSync-{self.client_name}", daemon=True
            )
            self.listener_thread.start()

            if not self._snapshot_received.wait(timeout=snapshot_timeout):
                logger.warning(f"Client '{self.client_name}' did not receive register snapshot in time")

            logger.info(f"Register sync client '{self.client_name}' connected")
            return True

        except OSError as e:
            logger.error(f"Failed to connect register sync client '{self.client_name}': {e}")
            self.connected = False
            if self.socket:
                self.socket.close()
                self.socket = None
            return False

    def disconnect(self) -> None:
        """Disconnect from the register synchronization service."""
        self.running = False
        self.connected = False

        if self.socket:
            with contextlib.suppress(OSError):
                self.socket.shutdown(socket.SHUT_RDWR)
            self.socket.close()
            self.socket = None

        if self.listener_thread and self.listener_thread.is_alive():
            self.listener_thread.join(timeout=5.0)

        logger.info(f"Register sync client '{self.client_name}' disconnected")

    def _listener_loop(self) -> None:
        """Listen for messages from the server."""
        logger.debug(f"Register sync client '{self.client_name}' listener started")

        try:
            while self.running and self.connected:
                if not self.socket:
                    break

                data = self.socket.recv(SOCKET_RECV_SIZE)
                if not data:
                    break

                try:
                    self._message_buffer += data.decode("utf-8")

                    while "\n" in self._message_buffer:
                        message_str, self._message_buffer = self._message_buffer.split("\n", 1)

                        if message_str.strip():
                            self._handle_message(RegisterMessage.from_json(message_str))

                except (json.JSONDecodeError, TypeError) as e:
                    logger.error(f"Invalid message received by client '{self.client_name}': {e}")
                    self._message_buffer = ""

        except OSError as e:
            if self.running:
                logger.warning(f"Listener error for client '{self.client_name}': {e}")
        finally:
            was_running = self.running
            self.connected = False
            if was_running and self.on_connection_lost:
                self.on_connection_lost()

        logger.debug(f"Register sync client '{self.client_name}' listener ended")

    def _handle_message(self, message: RegisterMessage) -> None:
        """Handle incoming message from server."""
        if message.type == "snapshot":
            with self._cache_lock:
                self._cache = dict(message.entries or {})
            self._snapshot_received.set()
        elif message.type == "changed" and message.key:
            with self._cache_lock:
                self._cache[message.key] = message.value
            self.subscribers.notify(message.key, message.value)
        else:
            logger.warning(f"Client '{self.client_name}' ignoring message type: {message.type}")

    def write(self, presentation_id: str, key: str, value: Dict[str, Any]) -> Dict[str, Any]:
        storage_key = register_key(presentation_id, key)
        payload = stamp(value)

        with self._cache_lock:
            self._cache[storage_key] = payload

        if not self.connected or not self.socket:
            logger.warning(f"Client '{self.client_name}' not connected; {storage_key} written locally only")
            return payload

        try:
            with self._send_lock:
                self.socket.sendall(_frame(RegisterMessage(type="write", key=storage_key, value=payload)))
        except OSError as e:
            logger.error(f"Failed to send write from client '{self.client_name}': {e}")

        return payload

    def read(self, presentation_id: str, key: str, default: Any = None) -> Any:
        with self._cache_lock:
            return self._cache.get(register_key(presentation_id, key), default)

    def subscribe(self, presentation_id: str, key: str, callback: RegisterCallback) -> Unsubscribe:
        return self.subscribers.add(register_key(presentation_id, key), callback)
