"""Banknote catalog package.

Modules:
- db: SQLite key-value store of records and their images
- query: search / filter / sort / stats over an in-memory list
- form: defaults, field updates and validation of a record
- images, gallery: data URL helpers, rotation and the viewer cursor
- backup: JSON export / import
- ai, ai_clients: hosted-model glue (extraction, value, history, image edit)
- service: orchestration used by the HTTP API and the CLI
"""

from .db import CatalogDatabase, CatalogStorageError
from .service import CatalogService, NoteNotFoundError
from .frontend.app import create_app

__all__ = [
    "CatalogDatabase",
    "CatalogStorageError",
    "CatalogService",
    "NoteNotFoundError",
    "create_app",
]
