"""
Shared register: a persisted key/value slot per presentation.

Any surface may write a slot and every other surface is notified. The
writer's own process never receives its own write through ``subscribe``;
it already has the value synchronously from ``read``. Writes always
overwrite (last writer wins).

Backends:
- LocalRegisterHub: in-process loopback bus, one endpoint per surface
- RegisterSyncClient (register_sync.py): Unix domain socket service shared by processes
"""

import asyncio
import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar, Union
from uuid import uuid4

from ..const import CONTROL_KEY, OUTPUT_KEY, ROTATION_KEY
from .models import ControlState, OutputState, RotationState

logger = logging.getLogger(__name__)

RegisterCallback = Callable[[Any], None]
Unsubscribe = Callable[[], None]


def register_key(presentation_id: str, key: str) -> str:
    """Storage key for a presentation's slot, e.g. ``presentation-control-abc``."""
    return f"presentation-{key}-{presentation_id}"


def stamp(value: Dict[str, Any]) -> Dict[str, Any]:
    """Copy a payload with a fresh ``updatedAt``."""
    payload = dict(value)
    payload["updatedAt"] = time.time()
    return payload


class SharedRegister(ABC):
    """Write/read/subscribe contract shared by every register backend."""

    @abstractmethod
    def write(self, presentation_id: str, key: str, value: Dict[str, Any]) -> Dict[str, Any]:
        """Persist ``value`` with a fresh ``updatedAt`` and return the stored payload."""

    @abstractmethod
    def read(self, presentation_id: str, key: str, default: Any = None) -> Any:
        """Return the most recent payload for the slot, or ``default``."""

    @abstractmethod
    def subscribe(self, presentation_id: str, key: str, callback: RegisterCallback) -> Unsubscribe:
        """Invoke ``callback(payload)`` whenever another process writes the slot."""


class SubscriberRegistry:
    """Callbacks per storage key, optionally dispatched onto an event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop
        self._subscribers: Dict[str, List[RegisterCallback]] = {}
        self._lock = threading.Lock()

    def add(self, storage_key: str, callback: RegisterCallback) -> Unsubscribe:
        with self._lock:
            self._subscribers.setdefault(storage_key, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(storage_key, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def notify(self, storage_key: str, payload: Any) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(storage_key, []))

        for callback in callbacks:
            if self.loop is not None:
                if self.loop.is_closed():
                    logger.debug(f"Dropping notification for {storage_key}: event loop closed")
                    continue
                self.loop.call_soon_threadsafe(self._invoke, callback, storage_key, payload)
            else:
                self._invoke(callback, storage_key, payload)

    @staticmethod
    def _invoke(callback: RegisterCallback, storage_key: str, payload: Any) -> None:
        try:
            callback(payload)
        except Exception as e:
            logger.error(f"Register subscriber for {storage_key} failed: {e}")


class RegisterStore:
    """
    Thread-safe payload dictionary with optional JSON file persistence.

    A missing or corrupt file loads as an empty store.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._entries: Dict[str, Any] = {}
        self._lock = threading.Lock()
        if self.path is not None:
            self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                self._entries = data
                logger.info(f"Loaded {len(data)} register entries from {self.path}")
            else:
                logger.warning(f"Ignoring register store {self.path}: expected a JSON object")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable register store {self.path}: {e}")

    def _save(self) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._entries, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to persist register store {self.path}: {e}")

    def get(self, storage_key: str, default: Any = None) -> Any:
        with self._lock:
            return self._entries.get(storage_key, default)

    def put(self, storage_key: str, payload: Any) -> None:
        with self._lock:
            self._entries[storage_key] = payload
            self._save()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._entries)


class LocalRegisterHub:
    """
    In-process loopback bus.

    Each ``attach()`` returns an endpoint standing in for one surface
    process; a write on one endpoint notifies subscribers on all others.
    """

    def __init__(self, store: Optional[RegisterStore] = None):
        self.store = store or RegisterStore()
        self._endpoints: List["LocalRegister"] = []
        self._lock = threading.Lock()

    def attach(self, name: str = "", loop: Optional[asyncio.AbstractEventLoop] = None) -> "LocalRegister":
        endpoint = LocalRegister(self, name or f"endpoint-{len(self._endpoints)}", loop)
        with self._lock:
            self._endpoints.append(endpoint)
        return endpoint

    def detach(self, endpoint: "LocalRegister") -> None:
        with self._lock:
            if endpoint in self._endpoints:
                self._endpoints.remove(endpoint)

    def publish(self, origin: "LocalRegister", storage_key: str, payload: Dict[str, Any]) -> None:
        self.store.put(storage_key, payload)
        with self._lock:
            others = [endpoint for endpoint in self._endpoints if endpoint is not origin]
        for endpoint in others:
            endpoint.subscribers.notify(storage_key, payload)


class LocalRegister(SharedRegister):
    """One surface's view of a LocalRegisterHub."""

    def __init__(self, hub: LocalRegisterHub, name: str, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.hub = hub
        self.name = name
        self.id = str(uuid4())
        self.subscribers = SubscriberRegistry(loop)

    def write(self, presentation_id: str, key: str, value: Dict[str, Any]) -> Dict[str, Any]:
        payload = stamp(value)
        self.hub.publish(self, register_key(presentation_id, key), payload)
        return payload

    def read(self, presentation_id: str, key: str, default: Any = None) -> Any:
        return self.hub.store.get(register_key(presentation_id, key), default)

    def subscribe(self, presentation_id: str, key: str, callback: RegisterCallback) -> Unsubscribe:
        return self.subscribers.add(register_key(presentation_id, key), callback)

    def close(self) -> None:
        self.hub.detach(self)


StateT = TypeVar("StateT")


class RegisterChannel(Generic[StateT]):
    """
    Typed view of one register slot.

    Malformed or missing payloads read as the channel's default state and
    never raise.
    """

    key: str = ""
    state_type: Any = None

    def __init__(self, register: SharedRegister, presentation_id: str):
        self.register = register
        self.presentation_id = presentation_id

    def default(self) -> StateT:
        return self.state_type()

    def parse(self, payload: Any) -> Tuple[StateT, bool]:
        """Return ``(state, valid)``; invalid payloads yield the default."""
        if payload is None:
            return self.default(), False
        try:
            return self.state_type.from_payload(payload), True
        except (ValueError, TypeError) as e:
            logger.debug(f"Malformed {self.key} payload for {self.presentation_id}: {e}")
            return self.default(), False

    def read(self) -> StateT:
        return self.parse(self.register.read(self.presentation_id, self.key))[0]

    def exists(self) -> bool:
        """True if the slot holds a well-formed payload."""
        return self.parse(self.register.read(self.presentation_id, self.key))[1]

    def write(self, state: StateT) -> StateT:
        payload = self.register.write(self.presentation_id, self.key, state.to_payload())
        return self.state_type.from_payload(payload)

    def subscribe(self, callback: Callable[[StateT], None]) -> Unsubscribe:
        def on_payload(payload: Any) -> None:
            callback(self.parse(payload)[0])

        return self.register.subscribe(self.presentation_id, self.key, on_payload)


class ControlChannel(RegisterChannel[ControlState]):
    """Currently displayed slide index."""

    key = CONTROL_KEY
    state_type = ControlState

    def write_index(self, slide_index: int, slide_count: Optional[int] = None) -> ControlState:
        """
        Write a new slide index.

        Raises:
            ValueError: If ``slide_count`` is given and the index is out of range
        """
        if slide_count is not None and not 0 <= slide_index < slide_count:
            raise ValueError(f"Slide index {slide_index} out of range for {slide_count} slides")
        return self.write(ControlState(slide_index=slide_index))


class RotationChannel(RegisterChannel[RotationState]):
    """Whether rotation is active and which group drives it."""

    key = ROTATION_KEY
    state_type = RotationState


class OutputChannel(RegisterChannel[OutputState]):
    """Output surface lifecycle; carries the "closed" signal."""

    key = OUTPUT_KEY
    state_type = OutputState
