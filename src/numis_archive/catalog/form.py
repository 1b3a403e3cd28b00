"""Form rules for creating and editing catalog records.

The same rules back the HTTP API and the CLI: defaults for a fresh record,
field updates by JSON key or attribute name, image slots, merging of
AI-extracted metadata and validation before a record is stored.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Mapping, Optional

from ..domain.models import FIELD_KEYS, IMAGE_SLOTS, JSON_TO_ATTR, Banknote
from ..domain.normalize import clean_text, format_value, normalize_value, parse_value
from ..logging import get_logger
from .constants import GRADE_CHOICES, MATERIAL_CHOICES
from .images import ImageDataError, parse_data_url


LOG = get_logger("catalog-form")

REQUIRED_FIELDS = ("country", "currency", "denomination")

# Keys an extraction may fill in; identity, images and timestamps are never overwritten.
EXTRACTABLE_KEYS = tuple(k for k in FIELD_KEYS.values() if k != "id")

# Prefix -> material, checked after exact matches.
MATERIAL_ALIASES = (
    ("pap", "Papel"),
    ("cotton", "Papel"),
    ("algod", "Papel"),
    ("pol", "Polímero"),
    ("plast", "Polímero"),
    ("híb", "Híbrido"),
    ("hib", "Híbrido"),
    ("hyb", "Híbrido"),
)


class FormValidationError(ValueError):
    def __init__(self, errors: List[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


def _attr_for(name: str) -> str:
    if name in FIELD_KEYS:
        return name
    if name in JSON_TO_ATTR:
        return JSON_TO_ATTR[name]
    raise FormValidationError([f"unknown field: {name}"])


def new_note(initial: Optional[Mapping[str, Any]] = None) -> Banknote:
    """Start a form: every field from initial data (JSON keys) or its default."""
    if not initial:
        return Banknote()
    return Banknote.from_dict(dict(initial))


def apply_changes(note: Banknote, changes: Mapping[str, Any]) -> Banknote:
    """Return a copy of note with fields updated (JSON keys or attribute names)."""
    updated = copy.deepcopy(note)
    for name, value in changes.items():
        if name in ("images", "createdAt", "created_at"):
            continue
        attr = _attr_for(name)
        if attr == "id":
            continue
        setattr(updated, attr, clean_text(value) if attr != "comments" else str(value or "").strip())
    return updated


def set_image(note: Banknote, slot: str, data_url: Optional[str]) -> Banknote:
    if slot not in IMAGE_SLOTS:
        raise FormValidationError([f"unknown image slot: {slot}"])
    updated = copy.deepcopy(note)
    if data_url:
        updated.images[slot] = data_url
    else:
        updated.images.pop(slot, None)
    return updated


def remove_image(note: Banknote, slot: str) -> Banknote:
    return set_image(note, slot, None)


def coerce_material(value: Any) -> Optional[str]:
    """Map free-text material names (any language) onto the allowed choices."""
    text = clean_text(value).lower()
    if not text:
        return None
    for choice in MATERIAL_CHOICES:
        if text == choice.lower():
            return choice
    for prefix, choice in MATERIAL_ALIASES:
        if text.startswith(prefix):
            return choice
    return None


def merge_extraction(note: Banknote, partial: Optional[Mapping[str, Any]]) -> Banknote:
    """Overlay AI-extracted metadata onto the form; blanks never erase typed values."""
    if not partial:
        return note
    changes: Dict[str, Any] = {}
    for key in EXTRACTABLE_KEYS:
        if key not in partial:
            continue
        if key == "material":
            value = coerce_material(partial[key]) or ""
        elif key == "estimatedValue":
            value = normalize_value(partial[key]) or ""
        elif key == "grade":
            value = clean_text(partial[key]).upper()
            if value not in GRADE_CHOICES:
                value = ""
        else:
            value = clean_text(partial[key])
        if value:
            changes[key] = value
    ignored = sorted(k for k in partial if k not in EXTRACTABLE_KEYS)
    if ignored:
        LOG.debug("Ignoring extraction keys: %s", ignored)
    LOG.info("Merged %d extracted field(s) into %s", len(changes), note.id)
    return apply_changes(note, changes)


def autofill_source(note: Banknote) -> str:
    """Image used for auto-fill: front, else back."""
    source = note.images.get("front") or note.images.get("back")
    if not source:
        raise FormValidationError(["Load the front image first."])
    return source


def validate(note: Banknote) -> Banknote:
    """Check a record before it is stored; returns it with estimatedValue normalized."""
    errors: List[str] = []
    for attr in REQUIRED_FIELDS:
        if not str(getattr(note, attr) or "").strip():
            errors.append(f"{FIELD_KEYS[attr]} is required")
    if note.grade not in GRADE_CHOICES:
        errors.append(f"grade must be one of {', '.join(GRADE_CHOICES)}")
    if note.material not in MATERIAL_CHOICES:
        errors.append(f"material must be one of {', '.join(MATERIAL_CHOICES)}")
    for slot, data_url in note.images.items():
        if slot not in IMAGE_SLOTS:
            errors.append(f"unknown image slot: {slot}")
            continue
        try:
            parse_data_url(data_url)
        except ImageDataError as exc:
            errors.append(f"images.{slot}: {exc}")

    value_text = (note.estimated_value or "").strip()
    normalized_value = ""
    if value_text:
        value = parse_value(value_text)
        if value is None:
            errors.append("estimatedValue must be a number")
        elif value < 0:
            errors.append("estimatedValue must not be negative")
        else:
            normalized_value = format_value(value)

    if errors:
        raise FormValidationError(errors)
    if normalized_value != note.estimated_value:
        note = copy.deepcopy(note)
        note.estimated_value = normalized_value
    return note


__all__ = [
    "FormValidationError",
    "REQUIRED_FIELDS",
    "new_note",
    "apply_changes",
    "set_image",
    "remove_image",
    "coerce_material",
    "merge_extraction",
    "autofill_source",
    "validate",
]
