from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..domain.models import IMAGE_SLOTS, Banknote
from .constants import SLOT_LABELS, ZOOM_DEFAULT, ZOOM_MAGNIFIED
from .images import rotate_data_url


@dataclass(frozen=True)
class GalleryEntry:
    slot: str
    image: str
    label: str

    def as_dict(self, *, include_image: bool = True) -> Dict[str, Any]:
        out: Dict[str, Any] = {"slot": self.slot, "label": self.label}
        if include_image:
            out["image"] = self.image
        return out


def gallery_entries(note: Banknote) -> List[GalleryEntry]:
    """Filled slots in slot order (front, back, detail1, detail2)."""
    return [
        GalleryEntry(slot=slot, image=note.images[slot], label=SLOT_LABELS[slot])
        for slot in IMAGE_SLOTS
        if note.images.get(slot)
    ]


class GalleryCursor:
    """Viewer state over one record's images: active index and zoom."""

    def __init__(self, note: Banknote) -> None:
        self.note = note
        self.entries: Tuple[GalleryEntry, ...] = tuple(gallery_entries(note))
        if not self.entries:
            raise ValueError("record has no images")
        self.index = 0
        self.zoom = ZOOM_DEFAULT

    @property
    def current(self) -> GalleryEntry:
        return self.entries[self.index]

    def __len__(self) -> int:
        return len(self.entries)

    def next(self) -> GalleryEntry:
        self.index = (self.index + 1) % len(self.entries)
        self.zoom = ZOOM_DEFAULT
        return self.current

    def prev(self) -> GalleryEntry:
        self.index = (self.index - 1 + len(self.entries)) % len(self.entries)
        self.zoom = ZOOM_DEFAULT
        return self.current

    def select(self, index: int) -> GalleryEntry:
        if not 0 <= index < len(self.entries):
            raise IndexError(f"gallery index {index} out of range")
        self.index = index
        self.zoom = ZOOM_DEFAULT
        return self.current

    def toggle_zoom(self) -> float:
        self.zoom = ZOOM_MAGNIFIED if self.zoom == ZOOM_DEFAULT else ZOOM_DEFAULT
        return self.zoom

    def rotate(self, degrees: int) -> Banknote:
        """Rotate the active image; returns the updated record (cursor stays on the slot)."""
        slot = self.current.slot
        rotated = rotate_data_url(self.current.image, degrees)
        updated = copy.deepcopy(self.note)
        updated.images[slot] = rotated
        self.note = updated
        self.entries = tuple(gallery_entries(updated))
        return updated


def open_gallery(note: Banknote) -> Optional[GalleryCursor]:
    """Viewer for note, or None when it has no images."""
    if not gallery_entries(note):
        return None
    return GalleryCursor(note)


__all__ = ["GalleryEntry", "GalleryCursor", "gallery_entries", "open_gallery"]
