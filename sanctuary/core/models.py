"""
Data models for live presentation control.

Presentations, slides and rotation groups are owned by the content store;
ControlState, RotationState and OutputState are the payloads held in the
shared register slots.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..const import DEFAULT_BACKGROUND, DEFAULT_ROTATION_INTERVAL, DEFAULT_TRANSITION


class RotationMode(str, Enum):
    """Traversal order for a rotation group."""

    LOOP = "loop"
    PING_PONG = "ping-pong"


@dataclass
class Slide:
    """A slide. Only its id and position matter to live control."""

    id: str
    background: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_BACKGROUND))
    elements: List[Dict[str, Any]] = field(default_factory=list)
    notes: str = ""
    transition: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            "id": self.id,
            "background": dict(self.background),
            "elements": [dict(element) for element in self.elements],
            "notes": self.notes,
        }
        if self.transition is not None:
            data["transition"] = self.transition
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Slide":
        """Create from dictionary."""
        return cls(
            id=str(data["id"]),
            background=data.get("background") or dict(DEFAULT_BACKGROUND),
            elements=list(data.get("elements") or []),
            notes=data.get("notes") or "",
            transition=data.get("transition"),
        )


@dataclass
class RotationGroup:
    """A named, ordered subset of slides that auto-advances on a timer."""

    id: str
    name: str
    slide_ids: List[str] = field(default_factory=list)
    interval_seconds: float = DEFAULT_ROTATION_INTERVAL
    mode: RotationMode = RotationMode.LOOP
    repeat: bool = True
    stop_on_interaction: bool = True
    transition: str = DEFAULT_TRANSITION

    def __post_init__(self):
        self.mode = RotationMode(self.mode)
        self.interval_seconds = float(self.interval_seconds)
        if self.interval_seconds <= 0:
            raise ValueError(f"Rotation interval must be positive, got {self.interval_seconds}")

    def resolve_indices(self, slides: List[Slide]) -> List[int]:
        """Map member slide ids to their current positions, dropping ids that no longer exist."""
        index_by_id = {slide.id: index for index, slide in enumerate(slides)}
        return [index_by_id[slide_id] for slide_id in self.slide_ids if slide_id in index_by_id]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "slideIds": list(self.slide_ids),
            "intervalSeconds": self.interval_seconds,
            "mode": self.mode.value,
            "repeat": self.repeat,
            "stopOnInteraction": self.stop_on_interaction,
            "transition": self.transition,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RotationGroup":
        """Create from dictionary. ``loop`` is accepted as an older name for ``repeat``."""
        repeat = data.get("repeat", data.get("loop", True))
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            slide_ids=[str(slide_id) for slide_id in data.get("slideIds", data.get("slide_ids", []))],
            interval_seconds=data.get("intervalSeconds", data.get("interval_seconds", DEFAULT_ROTATION_INTERVAL)),
            mode=data.get("mode", RotationMode.LOOP.value),
            repeat=bool(repeat),
            stop_on_interaction=bool(data.get("stopOnInteraction", data.get("stop_on_interaction", True))),
            transition=data.get("transition", DEFAULT_TRANSITION),
        )


@dataclass
class SlideRemoval:
    """Result of removing a slide from a presentation."""

    slide: Slide
    pruned_group_ids: List[str] = field(default_factory=list)
    deleted_group_ids: List[str] = field(default_factory=list)


@dataclass
class Presentation:
    """An ordered slide deck plus its rotation groups."""

    id: str
    name: str = ""
    slides: List[Slide] = field(default_factory=list)
    rotation_groups: List[RotationGroup] = field(default_factory=list)

    @property
    def slide_count(self) -> int:
        return len(self.slides)

    def find_group(self, group_id: Optional[str]) -> Optional[RotationGroup]:
        if group_id is None:
            return None
        return next((group for group in self.rotation_groups if group.id == group_id), None)

    def resolve_group(self, group_id: Optional[str]) -> Tuple[Optional[RotationGroup], List[int]]:
        """Return the group and its resolved indices; ``(None, [])`` when it does not exist."""
        group = self.find_group(group_id)
        if group is None:
            return None, []
        return group, group.resolve_indices(self.slides)

    def slide_at(self, index: int) -> Optional[Slide]:
        if 0 <= index < len(self.slides):
            return self.slides[index]
        return None

    def remove_slide(self, slide_id: str) -> SlideRemoval:
        """
        Remove a slide and prune it from every rotation group.

        Groups whose membership becomes empty are deleted.

        Raises:
            KeyError: If no slide has this id
        """
        position = next((i for i, slide in enumerate(self.slides) if slide.id == slide_id), None)
        if position is None:
            raise KeyError(slide_id)

        removal = SlideRemoval(slide=self.slides.pop(position))

        surviving = []
        for group in self.rotation_groups:
            if slide_id in group.slide_ids:
                group.slide_ids = [member for member in group.slide_ids if member != slide_id]
                removal.pruned_group_ids.append(group.id)
            if group.slide_ids:
                surviving.append(group)
            else:
                removal.deleted_group_ids.append(group.id)
        self.rotation_groups = surviving

        return removal

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "slides": [slide.to_dict() for slide in self.slides],
            "rotationGroups": [group.to_dict() for group in self.rotation_groups],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Presentation":
        """Create from dictionary."""
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            slides=[Slide.from_dict(slide) for slide in data.get("slides", [])],
            rotation_groups=[RotationGroup.from_dict(group) for group in data.get("rotationGroups") or []],
        )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class ControlState:
    """Currently displayed slide, as held in the ``control`` register slot."""

    slide_index: int = 0
    updated_at: float = 0.0

    def clamped(self, slide_count: int) -> "ControlState":
        """Return a copy whose index is valid for a deck of ``slide_count`` slides."""
        if slide_count <= 0:
            index = 0
        else:
            index = min(max(self.slide_index, 0), slide_count - 1)
        if index == self.slide_index:
            return self
        return ControlState(slide_index=index, updated_at=self.updated_at)

    def to_payload(self) -> Dict[str, Any]:
        return {"slideIndex": self.slide_index}

    @classmethod
    def from_payload(cls, payload: Any) -> "ControlState":
        """
        Parse a register payload.

        Raises:
            ValueError: If the payload is malformed
        """
        if not isinstance(payload, dict):
            raise ValueError(f"Control payload must be an object, got {type(payload).__name__}")
        index = payload.get("slideIndex", payload.get("index"))
        if not _is_int(index) or index < 0:
            raise ValueError(f"Invalid slide index: {index!r}")
        updated_at = payload.get("updatedAt", 0.0)
        if not isinstance(updated_at, (int, float)) or isinstance(updated_at, bool):
            updated_at = 0.0
        return cls(slide_index=index, updated_at=float(updated_at))


@dataclass(frozen=True)
class RotationState:
    """Whether automatic rotation is active, as held in the ``rotation`` register slot."""

    active: bool = False
    group_id: Optional[str] = None
    updated_at: float = 0.0

    def to_payload(self) -> Dict[str, Any]:
        return {"active": self.active, "groupId": self.group_id}

    @classmethod
    def from_payload(cls, payload: Any) -> "RotationState":
        """
        Parse a register payload.

        Raises:
            ValueError: If the payload is malformed
        """
        if not isinstance(payload, dict) or not isinstance(payload.get("active"), bool):
            raise ValueError(f"Invalid rotation payload: {payload!r}")
        group_id = payload.get("groupId")
        updated_at = payload.get("updatedAt", 0.0)
        if not isinstance(updated_at, (int, float)) or isinstance(updated_at, bool):
            updated_at = 0.0
        return cls(
            active=payload["active"],
            group_id=group_id if isinstance(group_id, str) else None,
            updated_at=float(updated_at),
        )


@dataclass(frozen=True)
class OutputState:
    """Output surface lifecycle, as held in the ``output`` register slot."""

    open: bool = False
    updated_at: float = 0.0

    def to_payload(self) -> Dict[str, Any]:
        return {"open": self.open}

    @classmethod
    def from_payload(cls, payload: Any) -> "OutputState":
        if not isinstance(payload, dict) or not isinstance(payload.get("open"), bool):
            raise ValueError(f"Invalid output payload: {payload!r}")
        updated_at = payload.get("updatedAt", 0.0)
        if not isinstance(updated_at, (int, float)) or isinstance(updated_at, bool):
            updated_at = 0.0
        return cls(open=payload["open"], updated_at=float(updated_at))
