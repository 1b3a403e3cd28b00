from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..domain.models import Banknote
from ..domain.normalize import format_value, parse_value
from ..logging import get_logger
from .constants import SEARCH_KEYS, SORT_CHOICES, SORT_DEFAULT


LOG = get_logger("catalog-query")


def _normalise_direction(value: Optional[str]) -> str:
    if value and value.lower() == "asc":
        return "asc"
    return "desc"


def matches_search(note: Banknote, search: str) -> bool:
    """Case-insensitive substring match over country, currency, pick and denomination."""
    needle = (search or "").strip().lower()
    if not needle:
        return True
    record = note.to_dict()
    return any(needle in str(record.get(key) or "").lower() for key in SEARCH_KEYS)


def _same(value: str, wanted: Optional[str]) -> bool:
    if not wanted:
        return True
    return value.strip().lower() == wanted.strip().lower()


def _numeric_key(value: str) -> Tuple[int, Decimal]:
    parsed = parse_value(value)
    # Blanks and non-numbers sort after real values in either direction.
    if parsed is None:
        return (1, Decimal(0))
    return (0, parsed)


def _sort_key(sort: str):
    if sort == "country":
        return lambda n: (n.country.lower(), n.created_at)
    if sort == "pick_id":
        return lambda n: (n.pick_id.lower(), n.created_at)
    if sort == "denomination":
        return lambda n: (_numeric_key(n.denomination), n.denomination.lower())
    if sort == "estimated_value":
        return lambda n: _numeric_key(n.estimated_value)
    return lambda n: n.created_at


def filter_notes(
    notes: Iterable[Banknote],
    search: str = "",
    *,
    sort: str = SORT_DEFAULT,
    direction: str = "desc",
    country: Optional[str] = None,
    grade: Optional[str] = None,
    material: Optional[str] = None,
) -> List[Banknote]:
    """Return the visible list: search + filters applied, then sorted.

    Defaults to newest first (createdAt descending).
    """
    if sort not in SORT_CHOICES:
        LOG.debug("Unknown sort key %r; using %s", sort, SORT_DEFAULT)
        sort = SORT_DEFAULT
    reverse = _normalise_direction(direction) == "desc"

    selected = [
        n
        for n in notes
        if matches_search(n, search)
        and _same(n.country, country)
        and _same(n.grade, grade)
        and _same(n.material, material)
    ]
    key = _sort_key(sort)
    if sort in ("denomination", "estimated_value"):
        # Keep blanks last regardless of direction.
        valued = [n for n in selected if _numeric_key(getattr(n, sort))[0] == 0]
        blanks = [n for n in selected if _numeric_key(getattr(n, sort))[0] == 1]
        valued.sort(key=key, reverse=reverse)
        blanks.sort(key=lambda n: n.created_at, reverse=True)
        return valued + blanks
    selected.sort(key=key, reverse=reverse)
    return selected


def collection_stats(notes: Iterable[Banknote]) -> Dict[str, Any]:
    """Totals for the dashboard header."""
    items = list(notes)
    countries = {n.country for n in items}
    total_value = Decimal(0)
    valued = 0
    for n in items:
        v = parse_value(n.estimated_value)
        if v is None:
            continue
        total_value += v
        valued += 1
    return {
        "total": len(items),
        "countries": len(countries),
        "total_estimated_value": format_value(total_value),
        "valued_notes": valued,
    }


__all__ = ["filter_notes", "matches_search", "collection_stats"]
