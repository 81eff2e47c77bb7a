"""
Presentation content store.

Holds presentations, slides and rotation groups. Live control only reads
from it, apart from rotation-group authoring and slide deletion (which
prunes group membership).

Presentations are kept in memory and, when a directory is configured,
persisted as one ``<id>.json`` document each. A document changed on disk by
another process is reloaded the next time it is read.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from .models import Presentation, RotationGroup, SlideRemoval

logger = logging.getLogger(__name__)

ContentListener = Callable[[str], None]


class ContentStoreError(Exception):
    """Base error for content store operations."""


class PresentationNotFoundError(ContentStoreError, KeyError):
    """No presentation with the requested id."""


class RotationGroupNotFoundError(ContentStoreError, KeyError):
    """No rotation group with the requested id."""


class SlideNotFoundError(ContentStoreError, KeyError):
    """No slide with the requested id."""


def new_group_id() -> str:
    return f"group-{uuid4().hex[:12]}"


def file_stamp(path: Path) -> Tuple[int, int]:
    """(mtime_ns, size) of a document; a change in either means another process rewrote it."""
    stat = path.stat()
    return stat.st_mtime_ns, stat.st_size


class PresentationStore:
    """In-memory presentation store with optional JSON file persistence."""

    def __init__(self, directory: Optional[Union[str, Path]] = None):
        self.directory = Path(directory) if directory else None
        self._presentations: Dict[str, Presentation] = {}
        self._stamps: Dict[str, Tuple[int, int]] = {}
        self._listeners: List[ContentListener] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------ listeners
    def add_listener(self, listener: ContentListener) -> Callable[[], None]:
        """Call ``listener(presentation_id)`` after every mutation. Returns a remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, presentation_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(presentation_id)
            except Exception as e:
                logger.error(f"Content listener failed for {presentation_id}: {e}")

    # ---------------------------------------------------------- persistence
    def _path_for(self, presentation_id: str) -> Optional[Path]:
        if self.directory is None:
            return None
        return self.directory / f"{presentation_id}.json"

    def _load_file(self, path: Path) -> Optional[Presentation]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                presentation = Presentation.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load presentation file {path}: {e}")
            return None
        self._stamps[presentation.id] = file_stamp(path)
        return presentation

    def _save(self, presentation: Presentation) -> None:
        path = self._path_for(presentation.id)
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".json.tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(presentation.to_dict(), f, indent=2)
            os.replace(tmp_path, path)
            self._stamps[presentation.id] = file_stamp(path)
        except OSError as e:
            raise ContentStoreError(f"Failed to save presentation {presentation.id}: {e}") from e

    def load_all(self) -> int:
        """Load every presentation document in the directory. Returns the number loaded."""
        if self.directory is None or not self.directory.exists():
            return 0
        loaded = 0
        with self._lock:
            for path in sorted(self.directory.glob("*.json")):
                presentation = self._load_file(path)
                if presentation is not None:
                    self._presentations[presentation.id] = presentation
                    loaded += 1
        logger.info(f"Loaded {loaded} presentations from {self.directory}")
        return loaded

    def _refresh(self, presentation_id: str) -> None:
        path = self._path_for(presentation_id)
        if path is None or not path.exists():
            return
        try:
            stamp = file_stamp(path)
        except OSError:
            return
        if self._stamps.get(presentation_id) == stamp and presentation_id in self._presentations:
            return
        presentation = self._load_file(path)
        if presentation is not None:
            logger.debug(f"Reloaded presentation {presentation_id} from disk")
            self._presentations[presentation_id] = presentation

    # ------------------------------------------------------------- queries
    def list_presentations(self) -> List[str]:
        with self._lock:
            return sorted(self._presentations)

    def get_presentation(self, presentation_id: str) -> Presentation:
        """
        Return the current presentation.

        Raises:
            PresentationNotFoundError: If it does not exist
        """
        with self._lock:
            self._refresh(presentation_id)
            presentation = self._presentations.get(presentation_id)
        if presentation is None:
            raise PresentationNotFoundError(presentation_id)
        return presentation

    def get_rotation_group(self, presentation_id: str, group_id: str) -> RotationGroup:
        group = self.get_presentation(presentation_id).find_group(group_id)
        if group is None:
            raise RotationGroupNotFoundError(group_id)
        return group

    # ------------------------------------------------------------ mutations
    def put_presentation(self, presentation: Presentation) -> Presentation:
        with self._lock:
            self._presentations[presentation.id] = presentation
            self._save(presentation)
        self._notify(presentation.id)
        return presentation

    def _validate_members(self, presentation: Presentation, group: RotationGroup) -> None:
        if not group.slide_ids:
            raise ContentStoreError(f"Rotation group '{group.name}' needs at least one slide")
        known = {slide.id for slide in presentation.slides}
        unknown = [slide_id for slide_id in group.slide_ids if slide_id not in known]
        if unknown:
            raise SlideNotFoundError(", ".join(unknown))

    def create_rotation_group(self, presentation_id: str, group: RotationGroup) -> RotationGroup:
        """
        Add a rotation group.

        Raises:
            ContentStoreError: If the id is taken or the group has no slides
            SlideNotFoundError: If a member slide does not exist
        """
        with self._lock:
            presentation = self.get_presentation(presentation_id)
            if presentation.find_group(group.id) is not None:
                raise ContentStoreError(f"Rotation group {group.id} already exists")
            self._validate_members(presentation, group)
            presentation.rotation_groups.append(group)
            self._save(presentation)
        logger.info(f"Created rotation group '{group.name}' ({len(group.slide_ids)} slides) in {presentation_id}")
        self._notify(presentation_id)
        return group

    def update_rotation_group(self, presentation_id: str, group: RotationGroup) -> RotationGroup:
        """Replace the rotation group with the same id."""
        with self._lock:
            presentation = self.get_presentation(presentation_id)
            for position, existing in enumerate(presentation.rotation_groups):
                if existing.id == group.id:
                    break
            else:
                raise RotationGroupNotFoundError(group.id)
            self._validate_members(presentation, group)
            presentation.rotation_groups[position] = group
            self._save(presentation)
        logger.info(f"Updated rotation group '{group.name}' in {presentation_id}")
        self._notify(presentation_id)
        return group

    def delete_rotation_group(self, presentation_id: str, group_id: str) -> RotationGroup:
        with self._lock:
            presentation = self.get_presentation(presentation_id)
            group = presentation.find_group(group_id)
            if group is None:
                raise RotationGroupNotFoundError(group_id)
            presentation.rotation_groups.remove(group)
            self._save(presentation)
        logger.info(f"Deleted rotation group '{group.name}' from {presentation_id}")
        self._notify(presentation_id)
        return group

    def delete_slide(self, presentation_id: str, slide_id: str) -> SlideRemoval:
        """Delete a slide and prune it from every rotation group."""
        with self._lock:
            presentation = self.get_presentation(presentation_id)
            try:
                removal = presentation.remove_slide(slide_id)
            except KeyError:
                raise SlideNotFoundError(slide_id) from None
            self._save(presentation)
        logger.info(
            f"Deleted slide {slide_id} from {presentation_id} "
            f"(pruned groups: {removal.pruned_group_ids}, deleted groups: {removal.deleted_group_ids})"
        )
        self._notify(presentation_id)
        return removal
