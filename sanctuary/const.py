"""
Global constants for the Sanctuary live presentation system.

This module contains the register key names, IPC defaults and slide geometry
shared by every surface process.
"""

# Shared register keys (one slot per key per presentation)
CONTROL_KEY = "control"  # {slideIndex, updatedAt}
ROTATION_KEY = "rotation"  # {active, groupId, updatedAt}
OUTPUT_KEY = "output"  # {open, updatedAt} - output surface "closed" signal
REGISTER_KEYS = (CONTROL_KEY, ROTATION_KEY, OUTPUT_KEY)

# Register sync service (Unix domain socket)
DEFAULT_SOCKET_PATH = "/tmp/sanctuary_register.sock"
SOCKET_RECV_SIZE = 4096
SNAPSHOT_TIMEOUT = 2.0  # Seconds a client waits for the initial snapshot

# Logical slide canvas - renderers scale from this size
SLIDE_WIDTH = 960
SLIDE_HEIGHT = 540

DEFAULT_BACKGROUND = {"type": "color", "value": "#1e3a8a"}
NO_NOTES_PLACEHOLDER = "No notes for this slide."

# Rotation defaults
DEFAULT_ROTATION_INTERVAL = 5.0
DEFAULT_TRANSITION = "fade"

# Web operator remote
DEFAULT_WEB_HOST = "127.0.0.1"
DEFAULT_WEB_PORT = 8090
DEFAULT_PRESENTER_PORT = 8091
