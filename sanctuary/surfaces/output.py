"""
Output surface.

Audience-facing display. Pure consumer of the control and rotation channels:
its only write is the "closed" signal sent when its display is torn down.
"""

import logging

from ..core.models import OutputState
from .base import SurfaceController, SurfaceRole

logger = logging.getLogger(__name__)


class OutputSurface(SurfaceController):
    role = SurfaceRole.OUTPUT

    async def close(self) -> None:
        was_open = self.is_open
        await super().close()
        if was_open:
            self.output.write(OutputState(open=False))
            logger.info("Output surface sent closed signal")
