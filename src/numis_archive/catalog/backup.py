from __future__ import annotations

import json
import os
from datetime import date
from typing import Iterable, List, Optional

from ..domain.models import Banknote
from ..logging import get_logger
from .constants import BACKUP_PREFIX
from .images import ImageDataError, parse_data_url


LOG = get_logger("catalog-backup")


class BackupFormatError(ValueError):
    pass


def backup_filename(today: Optional[date] = None) -> str:
    day = (today or date.today()).isoformat()
    return f"{BACKUP_PREFIX}-{day}.json"


def export_notes(notes: Iterable[Banknote]) -> str:
    """Serialize records as a pretty JSON array (2-space indent)."""
    return json.dumps([n.to_dict() for n in notes], ensure_ascii=False, indent=2)


def write_backup(notes: Iterable[Banknote], directory: str, *, today: Optional[date] = None) -> str:
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(os.path.abspath(directory), backup_filename(today))
    payload = export_notes(notes)
    with open(path, "w", encoding="utf-8") as f:
        f.write(payload)
    LOG.info("Wrote backup %s", path)
    return path


def parse_backup(text: str) -> List[Banknote]:
    """Parse a backup file body; it must be a JSON array of record objects."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise BackupFormatError(f"backup is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise BackupFormatError("backup must be a JSON array of records")
    notes: List[Banknote] = []
    for idx, item in enumerate(data):
        if not isinstance(item, dict):
            raise BackupFormatError(f"record #{idx} is not an object")
        note = Banknote.from_dict(item)
        for slot, data_url in note.images.items():
            try:
                parse_data_url(data_url)
            except ImageDataError as exc:
                raise BackupFormatError(f"record #{idx} images.{slot}: {exc}") from exc
        notes.append(note)
    ids = [n.id for n in notes]
    if len(set(ids)) != len(ids):
        # Duplicates collapse on import; the later record wins.
        LOG.warning("Backup contains %d duplicate id(s)", len(ids) - len(set(ids)))
    return notes


def read_backup(path: str) -> List[Banknote]:
    with open(path, "r", encoding="utf-8") as f:
        return parse_backup(f.read())


__all__ = [
    "BackupFormatError",
    "backup_filename",
    "export_notes",
    "write_backup",
    "parse_backup",
    "read_backup",
]
