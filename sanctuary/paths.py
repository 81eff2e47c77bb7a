"""
Sanctuary Path Configuration.

Centralized path management for runtime data storage.
All runtime data is stored outside the source tree.

Directory structure with SANCTUARY_ROOT=/srv/sanctuary:
    /srv/sanctuary/config/         - Configuration files
    /srv/sanctuary/logs/           - Log files
    /srv/sanctuary/presentations/  - Presentation JSON documents
    /srv/sanctuary/register/       - Persisted shared register slots

Environment variable:
    SANCTUARY_ROOT - Base directory for all data (default: ~/.local/share/sanctuary)
"""

import os
from pathlib import Path

APP_NAME = "sanctuary"

# Get root directory from environment or use default
_root_override = os.environ.get("SANCTUARY_ROOT")
if _root_override:
    ROOT_DIR = Path(_root_override)
else:
    _xdg_data_home = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    ROOT_DIR = _xdg_data_home / APP_NAME

# All directories directly under root
CONFIG_DIR = ROOT_DIR / "config"
LOGS_DIR = ROOT_DIR / "logs"
PRESENTATIONS_DIR = ROOT_DIR / "presentations"
REGISTER_DIR = ROOT_DIR / "register"

# All directories that should be auto-created
_ALL_DIRS = [
    CONFIG_DIR,
    LOGS_DIR,
    PRESENTATIONS_DIR,
    REGISTER_DIR,
]


def ensure_directories() -> None:
    """Create all required directories if they don't exist."""
    for dir_path in _ALL_DIRS:
        dir_path.mkdir(parents=True, exist_ok=True)


def get_log_file_path(filename: str = "sanctuary.log") -> Path:
    """Get the full path for a log file."""
    return LOGS_DIR / filename


def get_register_store_path(filename: str = "register.json") -> Path:
    """Get the full path for the persisted register store."""
    return REGISTER_DIR / filename
