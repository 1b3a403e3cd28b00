from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional

from ..domain.models import FIELD_KEYS, IMAGE_SLOTS, Banknote
from ..logging import get_logger
from ..paths import find_project_root, var_dir
from .images import ImageDataError, parse_data_url, to_data_url


LOG = get_logger("catalog-db")


DEFAULT_DB_FOLDER = "catalog"
DEFAULT_DB_FILENAME = "banknotes.sqlite3"
STORE_NAME = "banknotes"

# Column order shared by INSERT and SELECT.
_COLUMNS = tuple(FIELD_KEYS.keys()) + ("created_at",)


SCHEMA_SQL = f"""
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS {STORE_NAME} (
  id               TEXT PRIMARY KEY,
  pick_id          TEXT NOT NULL DEFAULT '',
  country          TEXT NOT NULL DEFAULT '',
  authority        TEXT NOT NULL DEFAULT '',
  currency         TEXT NOT NULL DEFAULT '',
  denomination     TEXT NOT NULL DEFAULT '',
  issue_date       TEXT NOT NULL DEFAULT '',
  items_in_set     TEXT NOT NULL DEFAULT '',
  set_item_number  TEXT NOT NULL DEFAULT '',
  set_details      TEXT NOT NULL DEFAULT '',
  type             TEXT NOT NULL DEFAULT '',
  material         TEXT NOT NULL DEFAULT '',
  size             TEXT NOT NULL DEFAULT '',
  grade            TEXT NOT NULL DEFAULT '',
  estimated_value  TEXT NOT NULL DEFAULT '',
  comments         TEXT NOT NULL DEFAULT '',
  created_at       INTEGER NOT NULL,     -- epoch milliseconds
  updated_at       TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS banknote_images (
  banknote_id  TEXT NOT NULL REFERENCES {STORE_NAME}(id) ON DELETE CASCADE,
  slot         TEXT NOT NULL CHECK (slot IN ({", ".join(f"'{s}'" for s in IMAGE_SLOTS)})),
  mime_type    TEXT NOT NULL,
  data         BLOB NOT NULL,
  PRIMARY KEY (banknote_id, slot)
);

CREATE INDEX IF NOT EXISTS idx_banknotes_created ON {STORE_NAME}(created_at);
"""


class CatalogStorageError(Exception):
    """Raised when a catalog store operation fails; ``operation`` names it."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation


class CatalogDatabase:
    """SQLite-backed key-value store of banknote records.

    - Places DB under `<repo-root>/var/catalog/banknotes.sqlite3` unless a
      path is given.
    - Ensures schema on first use.
    - `save` is a put: the stored record and its image set are replaced.
    """

    def __init__(self, root_dir: Optional[str] = None, *, db_path: Optional[str] = None) -> None:
        if db_path:
            self.db_path = os.path.abspath(db_path)
            os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        else:
            root = find_project_root(root_dir)
            folder = os.path.join(var_dir(root), DEFAULT_DB_FOLDER)
            os.makedirs(folder, exist_ok=True)
            self.db_path = os.path.join(folder, DEFAULT_DB_FILENAME)
        LOG.info("Catalog DB path: %s", self.db_path)
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        try:
            with self.connect() as conn:
                cur = conn.cursor()
                try:
                    cur.execute("PRAGMA journal_mode=WAL;")
                    cur.execute("PRAGMA synchronous=NORMAL;")
                except sqlite3.OperationalError:
                    LOG.debug("WAL journal mode unavailable; using SQLite defaults")
                cur.executescript(SCHEMA_SQL)
                conn.commit()
        except sqlite3.Error as exc:
            raise CatalogStorageError("open", str(exc)) from exc
        LOG.debug("Catalog schema ensured.")

    # --------------- Read helpers ---------------
    @staticmethod
    def _row_to_note(row: sqlite3.Row, images: Dict[str, str]) -> Banknote:
        values: Dict[str, Any] = {col: row[col] for col in _COLUMNS}
        values["created_at"] = int(values["created_at"])
        return Banknote(images=images, **values)

    @staticmethod
    def _images_by_note(rows: Iterable[sqlite3.Row]) -> Dict[str, Dict[str, str]]:
        grouped: Dict[str, Dict[str, str]] = {}
        for row in rows:
            grouped.setdefault(row["banknote_id"], {})[row["slot"]] = to_data_url(bytes(row["data"]), row["mime_type"])
        return grouped

    def get_all(self) -> List[Banknote]:
        """Return every stored record (storage order, not display order)."""
        try:
            with self.connect() as conn:
                cur = conn.cursor()
                cur.execute(f"SELECT {', '.join(_COLUMNS)} FROM {STORE_NAME} ORDER BY rowid;")
                rows = cur.fetchall()
                cur.execute("SELECT banknote_id, slot, mime_type, data FROM banknote_images;")
                images = self._images_by_note(cur.fetchall())
        except sqlite3.Error as exc:
            raise CatalogStorageError("get_all", str(exc)) from exc
        return [self._row_to_note(row, images.get(row["id"], {})) for row in rows]

    def get(self, note_id: str) -> Optional[Banknote]:
        try:
            with self.connect() as conn:
                cur = conn.cursor()
                cur.execute(f"SELECT {', '.join(_COLUMNS)} FROM {STORE_NAME} WHERE id = ?;", (note_id,))
                row = cur.fetchone()
                if row is None:
                    return None
                cur.execute(
                    "SELECT banknote_id, slot, mime_type, data FROM banknote_images WHERE banknote_id = ?;",
                    (note_id,),
                )
                images = self._images_by_note(cur.fetchall())
        except sqlite3.Error as exc:
            raise CatalogStorageError("get", str(exc)) from exc
        return self._row_to_note(row, images.get(note_id, {}))

    def count(self) -> int:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(f"SELECT COUNT(*) AS count FROM {STORE_NAME};")
            return int(cur.fetchone()["count"])

    # --------------- Write helpers ---------------
    @staticmethod
    def _put(cur: sqlite3.Cursor, note: Banknote) -> None:
        values = [getattr(note, col) for col in _COLUMNS]
        placeholders = ", ".join("?" for _ in _COLUMNS)
        updates = ", ".join(f"{col}=excluded.{col}" for col in _COLUMNS if col != "id")
        cur.execute(
            f"""
            INSERT INTO {STORE_NAME} ({', '.join(_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(id) DO UPDATE SET {updates}, updated_at=datetime('now');
            """,
            values,
        )
        cur.execute("DELETE FROM banknote_images WHERE banknote_id = ?;", (note.id,))
        for slot in IMAGE_SLOTS:
            data_url = note.images.get(slot)
            if not data_url:
                continue
            mime, raw = parse_data_url(data_url)
            cur.execute(
                "INSERT INTO banknote_images (banknote_id, slot, mime_type, data) VALUES (?, ?, ?, ?);",
                (note.id, slot, mime, sqlite3.Binary(raw)),
            )

    def save(self, note: Banknote) -> None:
        """Insert or fully replace a record (last write wins)."""
        try:
            with self.connect() as conn:
                cur = conn.cursor()
                try:
                    self._put(cur, note)
                    conn.commit()
                except (sqlite3.Error, ImageDataError):
                    conn.rollback()
                    raise
        except (sqlite3.Error, ImageDataError) as exc:
            raise CatalogStorageError("save", str(exc)) from exc
        LOG.debug("Saved banknote id=%s (%d image(s))", note.id, len(note.images))

    def delete(self, note_id: str) -> bool:
        """Remove a record; returns False when nothing matched."""
        try:
            with self.connect() as conn:
                cur = conn.cursor()
                cur.execute(f"DELETE FROM {STORE_NAME} WHERE id = ?;", (note_id,))
                removed = cur.rowcount > 0
                conn.commit()
        except sqlite3.Error as exc:
            raise CatalogStorageError("delete", str(exc)) from exc
        LOG.debug("Delete banknote id=%s removed=%s", note_id, removed)
        return removed

    def clear(self) -> None:
        try:
            with self.connect() as conn:
                conn.execute(f"DELETE FROM {STORE_NAME};")
                conn.commit()
        except sqlite3.Error as exc:
            raise CatalogStorageError("clear", str(exc)) from exc
        LOG.info("Catalog cleared.")

    def replace_all(self, notes: Iterable[Banknote]) -> int:
        """Swap the whole catalog for notes in one transaction."""
        count = 0
        try:
            with self.connect() as conn:
                cur = conn.cursor()
                try:
                    cur.execute(f"DELETE FROM {STORE_NAME};")
                    for note in notes:
                        self._put(cur, note)
                        count += 1
                    conn.commit()
                except (sqlite3.Error, ImageDataError):
                    conn.rollback()
                    raise
        except (sqlite3.Error, ImageDataError) as exc:
            raise CatalogStorageError("replace_all", str(exc)) from exc
        LOG.info("Catalog replaced with %d record(s).", count)
        return count


__all__ = ["CatalogDatabase", "CatalogStorageError", "STORE_NAME"]
