"""
Shared pytest fixtures for the Sanctuary test suite.

Provides sample presentations, content stores and in-process shared
registers standing in for separate surface processes.
"""

import sys
import tempfile
from pathlib import Path
from typing import Generator, List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from sanctuary.core.content_store import PresentationStore
from sanctuary.core.models import Presentation, RotationGroup, RotationMode, Slide
from sanctuary.core.shared_register import LocalRegisterHub

PRESENTATION_ID = "sunday-service"


def make_presentation(
    slide_count: int = 6,
    groups: Optional[List[RotationGroup]] = None,
    presentation_id: str = PRESENTATION_ID,
) -> Presentation:
    """Presentation with slides s0..s<n-1>; every even slide has notes."""
    slides = [
        Slide(
            id=f"s{i}",
            notes=f"Notes for slide {i}" if i % 2 == 0 else "",
            elements=[{"id": f"e{i}", "type": "text", "x": 80, "y": 60, "width": 800, "height": 120}],
        )
        for i in range(slide_count)
    ]
    return Presentation(id=presentation_id, name="Sunday Service", slides=slides, rotation_groups=groups or [])


def make_group(
    group_id: str,
    slide_ids: List[str],
    mode: RotationMode = RotationMode.LOOP,
    repeat: bool = True,
    stop_on_interaction: bool = True,
    interval_seconds: float = 60.0,
) -> RotationGroup:
    return RotationGroup(
        id=group_id,
        name=group_id.title(),
        slide_ids=slide_ids,
        interval_seconds=interval_seconds,
        mode=mode,
        repeat=repeat,
        stop_on_interaction=stop_on_interaction,
    )


# =============================================================================
# Temporary Directory Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# =============================================================================
# Content Fixtures
# =============================================================================


@pytest.fixture
def presentation() -> Presentation:
    """Six slides with loop, ping-pong and single-slide groups."""
    return make_presentation(
        groups=[
            make_group("announcements", ["s2", "s4", "s5"]),
            make_group("worship", ["s1", "s3", "s4"], mode=RotationMode.PING_PONG),
            make_group("welcome", ["s2"]),
        ]
    )


@pytest.fixture
def content_store(presentation: Presentation) -> PresentationStore:
    """In-memory content store holding the sample presentation."""
    store = PresentationStore()
    store.put_presentation(presentation)
    return store


# =============================================================================
# Shared Register Fixtures
# =============================================================================


@pytest.fixture
def hub() -> LocalRegisterHub:
    """In-process register bus with an in-memory store."""
    return LocalRegisterHub()


@pytest.fixture
def presentation_factory():
    """Build presentations with custom slide counts and groups."""
    return make_presentation


@pytest.fixture
def group_factory():
    """Build rotation groups with a long default interval so only explicit ticks advance."""
    return make_group
