"""Key-name to navigation command mapping for navigating surfaces."""

from enum import Enum
from typing import Dict, Optional


class NavigationCommand(str, Enum):
    ADVANCE = "advance"
    BACK = "back"
    FIRST = "first"
    LAST = "last"
    EXIT = "exit"


KEY_BINDINGS: Dict[str, NavigationCommand] = {
    "ArrowRight": NavigationCommand.ADVANCE,
    "PageDown": NavigationCommand.ADVANCE,
    " ": NavigationCommand.ADVANCE,
    "Enter": NavigationCommand.ADVANCE,
    "ArrowLeft": NavigationCommand.BACK,
    "PageUp": NavigationCommand.BACK,
    "Backspace": NavigationCommand.BACK,
    "Home": NavigationCommand.FIRST,
    "End": NavigationCommand.LAST,
    "Escape": NavigationCommand.EXIT,
}

# Alternative spellings sent by terminals and HTTP clients
_ALIASES = {
    "space": " ",
    "spacebar": " ",
    "return": "Enter",
    "right": "ArrowRight",
    "left": "ArrowLeft",
    "esc": "Escape",
}


def normalize_key(key: str) -> str:
    if key == " ":
        return key
    stripped = key.strip()
    alias = _ALIASES.get(stripped.lower())
    if alias is not None:
        return alias
    for name in KEY_BINDINGS:
        if name.lower() == stripped.lower():
            return name
    return stripped


def command_for_key(key: str) -> Optional[NavigationCommand]:
    """Return the command bound to ``key``, or None if the key is unbound."""
    return KEY_BINDINGS.get(normalize_key(key))
