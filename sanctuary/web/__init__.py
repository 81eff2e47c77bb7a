"""
Web Interface Components.

This module contains the FastAPI operator remote:
- REST endpoints over the control surface
- WebSocket push of state changes and operator notices
"""

from typing import List

__all__: List[str] = []
