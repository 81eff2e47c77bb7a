"""
Slide renderers.

Surfaces hand each slide to a renderer together with a scale factor derived
from the surface width and the 960x540 logical canvas. Pixel-exact drawing
is the job of the display front-end; the renderers here produce element
geometry (numpy arrays, one row per element) that a front-end or a test can
consume.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import numpy as np

from ..const import DEFAULT_BACKGROUND, SLIDE_HEIGHT, SLIDE_WIDTH
from ..core.models import Slide

logger = logging.getLogger(__name__)


def scale_for_width(width: float) -> float:
    """Scale factor that fits the logical canvas into a surface ``width`` pixels wide."""
    if width <= 0:
        raise ValueError(f"Surface width must be positive, got {width}")
    return width / SLIDE_WIDTH


class SlideRenderer(Protocol):
    def render(self, slide: Slide, scale: float) -> Any:
        ...


@dataclass
class RenderedSlide:
    """Geometry of a slide scaled for one surface."""

    slide_id: str
    scale: float
    width: int
    height: int
    background: Dict[str, Any]
    element_ids: List[str] = field(default_factory=list)
    # (N, 4) float32: x, y, width, height in surface pixels
    boxes: np.ndarray = field(default_factory=lambda: np.zeros((0, 4), dtype=np.float32))
    opacity: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slide_id": self.slide_id,
            "scale": self.scale,
            "width": self.width,
            "height": self.height,
            "background": self.background,
            "elements": [
                {"id": element_id, "box": box.tolist(), "opacity": float(alpha)}
                for element_id, box, alpha in zip(self.element_ids, self.boxes, self.opacity)
            ],
        }


class GeometryRenderer:
    """Scale element boxes from slide coordinates to surface pixels."""

    def render(self, slide: Slide, scale: float) -> RenderedSlide:
        elements = slide.elements or []
        boxes = np.array(
            [
                [
                    float(element.get("x", 0)),
                    float(element.get("y", 0)),
                    float(element.get("width", 0)),
                    float(element.get("height", 0)),
                ]
                for element in elements
            ],
            dtype=np.float32,
        ).reshape(-1, 4)
        opacity = np.array(
            [float((element.get("style") or {}).get("opacity", 1.0)) for element in elements], dtype=np.float32
        )

        return RenderedSlide(
            slide_id=slide.id,
            scale=scale,
            width=int(round(SLIDE_WIDTH * scale)),
            height=int(round(SLIDE_HEIGHT * scale)),
            background=slide.background or dict(DEFAULT_BACKGROUND),
            element_ids=[str(element.get("id", index)) for index, element in enumerate(elements)],
            boxes=boxes * np.float32(scale),
            opacity=np.clip(opacity, 0.0, 1.0),
        )


class LoggingRenderer(GeometryRenderer):
    """Renderer for headless surface processes: computes geometry and logs what would be shown."""

    def __init__(self, surface: str = "surface"):
        self.surface = surface
        self.last: Optional[RenderedSlide] = None

    def render(self, slide: Slide, scale: float) -> RenderedSlide:
        rendered = super().render(slide, scale)
        self.last = rendered
        logger.info(
            f"{self.surface}: showing slide {slide.id} at {rendered.width}x{rendered.height} "
            f"({len(rendered.element_ids)} elements)"
        )
        return rendered
