from __future__ import annotations

from typing import Dict, Tuple

from ..domain.models import IMAGE_SLOTS

# Conservation grades, best first.
GRADE_CHOICES: Tuple[str, ...] = ("UNC", "AU", "XF", "VF", "F", "VG", "G")
GRADE_LABELS: Dict[str, str] = {
    "UNC": "UNC (Flor de Estampa)",
    "AU": "AU (Quase FE)",
    "XF": "XF (Soberba)",
    "VF": "VF (MBC)",
    "F": "F (BC)",
    "VG": "VG (Muito Gasta)",
    "G": "G (Gasta/Pobre)",
}

MATERIAL_CHOICES: Tuple[str, ...] = ("Papel", "Polímero", "Híbrido")

SLOT_LABELS: Dict[str, str] = {
    "front": "Frente",
    "back": "Verso",
    "detail1": "Detalhe 1",
    "detail2": "Detalhe 2",
}

# Fields the search box matches against (JSON keys).
SEARCH_KEYS: Tuple[str, ...] = ("country", "currency", "pickId", "denomination")

SORT_CHOICES: Tuple[str, ...] = ("created_at", "country", "denomination", "estimated_value", "pick_id")
SORT_DEFAULT = "created_at"

ZOOM_DEFAULT = 1.0
ZOOM_MAGNIFIED = 2.5

ROTATION_CHOICES: Tuple[int, ...] = (90, -90, 180, 270)

BACKUP_PREFIX = "backup-numismatica"

__all__ = [
    "IMAGE_SLOTS",
    "GRADE_CHOICES",
    "GRADE_LABELS",
    "MATERIAL_CHOICES",
    "SLOT_LABELS",
    "SEARCH_KEYS",
    "SORT_CHOICES",
    "SORT_DEFAULT",
    "ZOOM_DEFAULT",
    "ZOOM_MAGNIFIED",
    "ROTATION_CHOICES",
    "BACKUP_PREFIX",
]
