"""
Core Infrastructure Components.

This module contains the building blocks shared by every surface process:
- Presentation, slide and rotation group models
- Shared register channels and their cross-process sync service
- Rotation scheduler
- Presentation content store
"""

from .content_store import (
    ContentStoreError,
    PresentationNotFoundError,
    PresentationStore,
    RotationGroupNotFoundError,
    SlideNotFoundError,
)
from .models import (
    ControlState,
    OutputState,
    Presentation,
    RotationGroup,
    RotationMode,
    RotationState,
    Slide,
)
from .rotation import RotationScheduler, RotationStep, SchedulerState, next_rotation_step
from .shared_register import (
    ControlChannel,
    LocalRegisterHub,
    OutputChannel,
    RegisterStore,
    RotationChannel,
    SharedRegister,
)

__all__ = [
    "ContentStoreError",
    "PresentationNotFoundError",
    "PresentationStore",
    "RotationGroupNotFoundError",
    "SlideNotFoundError",
    "ControlState",
    "OutputState",
    "Presentation",
    "RotationGroup",
    "RotationMode",
    "RotationState",
    "Slide",
    "RotationScheduler",
    "RotationStep",
    "SchedulerState",
    "next_rotation_step",
    "ControlChannel",
    "LocalRegisterHub",
    "OutputChannel",
    "RegisterStore",
    "RotationChannel",
    "SharedRegister",
]
