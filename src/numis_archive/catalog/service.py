from __future__ import annotations

import copy
from typing import Any, Dict, List, Mapping, Optional

from ..domain.models import IMAGE_SLOTS, Banknote
from ..logging import get_logger
from . import form
from .ai import BanknoteAIService, HistoricalContext
from .ai_clients import AIConfigurationError, AIServiceError
from .backup import export_notes, parse_backup
from .db import CatalogDatabase
from .images import ImageDataError, parse_data_url, rotate_data_url
from .query import collection_stats, filter_notes


LOG = get_logger("catalog-service")


class NoteNotFoundError(KeyError):
    pass


class CatalogService:
    """High-level service coordinating storage, form rules and the AI glue."""

    def __init__(self, db: Optional[CatalogDatabase] = None, ai: Optional[BanknoteAIService] = None) -> None:
        self.db = db or CatalogDatabase()
        self.ai = ai

    # ---- records -----------------------------------------------------------------
    def init_database(self) -> str:
        """Ensure the database exists and return its path."""
        LOG.info("Catalog database initialized.")
        return self.db.db_path

    def list_notes(self, search: str = "", **kwargs: Any) -> List[Banknote]:
        return filter_notes(self.db.get_all(), search, **kwargs)

    def get_note(self, note_id: str) -> Banknote:
        note = self.db.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def add_note(self, data: Optional[Mapping[str, Any]] = None) -> Banknote:
        """Create a record from JSON-keyed data; a fresh id is always assigned."""
        payload = dict(data or {})
        payload.pop("id", None)
        note = form.validate(form.new_note(payload))
        self.db.save(note)
        LOG.info("Registered banknote %s (%s, %s)", note.id, note.country, note.title)
        return note

    def update_note(self, note_id: str, changes: Mapping[str, Any]) -> Banknote:
        """Edit a record; id and createdAt are kept, images replaced only when given."""
        current = self.get_note(note_id)
        note = form.apply_changes(current, changes)
        if "images" in changes:
            images = changes.get("images") or {}
            if not isinstance(images, dict):
                raise form.FormValidationError(["images must be an object"])
            for slot in IMAGE_SLOTS:
                note = form.set_image(note, slot, images.get(slot))
            unknown = sorted(set(images) - set(IMAGE_SLOTS))
            if unknown:
                raise form.FormValidationError([f"unknown image slot: {s}" for s in unknown])
        note = form.validate(note)
        self.db.save(note)
        LOG.info("Updated banknote %s", note.id)
        return note

    def save_note(self, note: Banknote) -> Banknote:
        """Add-or-edit with a fully built record (keeps createdAt of the stored one)."""
        note = copy.deepcopy(note)
        existing = self.db.get(note.id)
        if existing is not None:
            note.created_at = existing.created_at
        note = form.validate(note)
        self.db.save(note)
        return note

    def delete_note(self, note_id: str) -> None:
        if not self.db.delete(note_id):
            raise NoteNotFoundError(note_id)
        LOG.info("Deleted banknote %s", note_id)

    def stats(self) -> Dict[str, Any]:
        return collection_stats(self.db.get_all())

    # ---- backup ------------------------------------------------------------------
    def export_json(self) -> str:
        notes = filter_notes(self.db.get_all())
        return export_notes(notes)

    def import_json(self, text: str) -> int:
        """Replace the whole catalog with a backup body; returns the record count."""
        notes = parse_backup(text)
        return self.db.replace_all(notes)

    # ---- images ------------------------------------------------------------------
    def rotate_note_image(self, note_id: str, slot: str, degrees: int) -> Banknote:
        note = self.get_note(note_id)
        if slot not in IMAGE_SLOTS:
            raise form.FormValidationError([f"unknown image slot: {slot}"])
        image = note.images.get(slot)
        if not image:
            raise form.FormValidationError([f"slot {slot} has no image"])
        note.images[slot] = rotate_data_url(image, degrees)
        self.db.save(note)
        LOG.info("Rotated %s/%s by %s", note_id, slot, degrees)
        return note

    # ---- AI ----------------------------------------------------------------------
    def _require_ai(self) -> BanknoteAIService:
        if self.ai is None:
            raise AIConfigurationError("AI service is not configured")
        return self.ai

    def extract(self, image_data_url: str) -> Optional[Dict[str, str]]:
        return self._require_ai().extract_banknote_data(image_data_url)

    def autofill(self, note: Banknote) -> Banknote:
        """Fill a form from its front (or back) image; unchanged when nothing is found."""
        source = form.autofill_source(note)
        data = self._require_ai().extract_banknote_data(source)
        return form.merge_extraction(note, data)

    def estimate_value(self, note_id: str, *, save: bool = False) -> Optional[str]:
        note = self.get_note(note_id)
        value = self._require_ai().estimate_market_value(note)
        if value and save:
            note.estimated_value = value
            self.db.save(form.validate(note))
            LOG.info("Stored estimated value %s for %s", value, note_id)
        return value

    def historical_context(self, note_id: str) -> HistoricalContext:
        return self._require_ai().get_historical_context(self.get_note(note_id))

    def edit_note_image(self, note_id: str, slot: str, prompt: str) -> Banknote:
        note = self.get_note(note_id)
        image = note.images.get(slot)
        if not image:
            raise form.FormValidationError([f"slot {slot} has no image"])
        edited = self._require_ai().edit_image(image, prompt)
        if not edited:
            raise AIServiceError("the model returned no image")
        try:
            parse_data_url(edited)
        except ImageDataError as exc:
            raise AIServiceError(f"the model returned an unreadable image: {exc}") from exc
        note.images[slot] = edited
        self.db.save(note)
        LOG.info("Stored AI-edited image for %s/%s", note_id, slot)
        return note


__all__ = ["CatalogService", "NoteNotFoundError"]
