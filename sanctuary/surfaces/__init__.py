"""
Surface Controllers.

One module per surface variant:
- ControlSurface: operator navigation, rotation authoring and start/stop
- OutputSurface: audience display, consumer only
- PresenterSurface: notes, next slide and local timer, may also navigate
"""

from .base import NavigatingSurface, SurfaceController, SurfaceRole
from .control import ControlSurface
from .keyboard import KEY_BINDINGS, NavigationCommand, command_for_key
from .output import OutputSurface
from .presenter import PresenterSurface, PresenterTimer, format_elapsed
from .renderer import GeometryRenderer, LoggingRenderer, RenderedSlide, SlideRenderer, scale_for_width

__all__ = [
    "NavigatingSurface",
    "SurfaceController",
    "SurfaceRole",
    "ControlSurface",
    "KEY_BINDINGS",
    "NavigationCommand",
    "command_for_key",
    "OutputSurface",
    "PresenterSurface",
    "PresenterTimer",
    "format_elapsed",
    "GeometryRenderer",
    "LoggingRenderer",
    "RenderedSlide",
    "SlideRenderer",
    "scale_for_width",
]
