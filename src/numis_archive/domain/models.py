from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple


IMAGE_SLOTS: Tuple[str, ...] = ("front", "back", "detail1", "detail2")

DEFAULT_TYPE = "Circulação"
DEFAULT_MATERIAL = "Papel"
DEFAULT_GRADE = "UNC"

# attribute name -> JSON key used by backups and the HTTP API
FIELD_KEYS: Dict[str, str] = {
    "id": "id",
    "pick_id": "pickId",
    "country": "country",
    "authority": "authority",
    "currency": "currency",
    "denomination": "denomination",
    "issue_date": "issueDate",
    "items_in_set": "itemsInSet",
    "set_item_number": "setItemNumber",
    "set_details": "setDetails",
    "type": "type",
    "material": "material",
    "size": "size",
    "grade": "grade",
    "estimated_value": "estimatedValue",
    "comments": "comments",
}

JSON_TO_ATTR: Dict[str, str] = {v: k for k, v in FIELD_KEYS.items()}


def new_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Banknote:
    """A catalogued banknote; images map slot -> data URL."""

    id: str = field(default_factory=new_id)
    pick_id: str = ""
    country: str = ""
    authority: str = ""
    currency: str = ""
    denomination: str = ""
    issue_date: str = ""
    items_in_set: str = ""
    set_item_number: str = ""
    set_details: str = ""
    type: str = DEFAULT_TYPE
    material: str = DEFAULT_MATERIAL
    size: str = ""
    grade: str = DEFAULT_GRADE
    estimated_value: str = ""
    comments: str = ""
    images: Dict[str, str] = field(default_factory=dict)
    created_at: int = field(default_factory=now_ms)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Banknote":
        """Build from a JSON record; unknown keys are ignored, missing ones defaulted."""
        kwargs: Dict[str, Any] = {}
        for json_key, attr in JSON_TO_ATTR.items():
            value = data.get(json_key)
            if value is None:
                continue
            kwargs[attr] = str(value)
        if not kwargs.get("id"):
            kwargs.pop("id", None)

        images = data.get("images") or {}
        if isinstance(images, dict):
            kwargs["images"] = {
                slot: str(images[slot]) for slot in IMAGE_SLOTS if images.get(slot)
            }

        created = data.get("createdAt")
        if isinstance(created, (int, float)) and not isinstance(created, bool):
            kwargs["created_at"] = int(created)
        elif isinstance(created, str) and created.strip().isdigit():
            kwargs["created_at"] = int(created.strip())
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {json_key: getattr(self, attr) for attr, json_key in FIELD_KEYS.items()}
        out["images"] = {slot: self.images[slot] for slot in IMAGE_SLOTS if self.images.get(slot)}
        out["createdAt"] = self.created_at
        return out

    def summary(self) -> Dict[str, Any]:
        """Card view: everything except image payloads, plus the filled slots."""
        out = self.to_dict()
        out["images"] = [slot for slot in IMAGE_SLOTS if self.images.get(slot)]
        return out

    @property
    def title(self) -> str:
        parts = [p for p in (self.denomination, self.currency) if p]
        return " ".join(parts) or "?"
