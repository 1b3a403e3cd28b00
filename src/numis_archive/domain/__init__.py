"""Domain records and value normalization shared by the catalog layers."""

from .models import Banknote, IMAGE_SLOTS, FIELD_KEYS
from .normalize import clean_text, normalize_value, parse_value

__all__ = [
    "Banknote",
    "IMAGE_SLOTS",
    "FIELD_KEYS",
    "clean_text",
    "normalize_value",
    "parse_value",
]
