from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Any, Optional


_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
_PLAIN_NUMBER_RE = re.compile(r"^[+-]?\d+(?:\.\d+)?$")


def clean_text(value: Any) -> str:
    """Coerce model/user output to a trimmed single string."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Sim" if value else "Não"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, (list, tuple)):
        return ", ".join(clean_text(v) for v in value if clean_text(v))
    return " ".join(str(value).split())


def normalize_value(text: Any) -> Optional[str]:
    """Return the first decimal number found in text, or None.

    Thousands separators are dropped and a decimal comma becomes a dot, so
    "€ 1.250,50" yields "1250.50" and "approx. 35 EUR" yields "35".
    """
    if text is None:
        return None
    s = str(text).strip()
    if not s:
        return None
    s = re.sub(r"(?<=\d)[.,](?=\d{3}(?:\D|$))", "", s)
    s = re.sub(r"(?<=\d),(?=\d)", ".", s)
    match = _NUMBER_RE.search(s)
    return match.group(0) if match else None


def parse_value(text: Any) -> Optional[Decimal]:
    """Strict numeric parse of a stored estimatedValue (blank -> None).

    Only plain decimals are accepted: no exponents, NaN or infinities.
    """
    if text is None:
        return None
    s = str(text).strip().replace(",", ".")
    if not s or not _PLAIN_NUMBER_RE.match(s):
        return None
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def format_value(value: Decimal) -> str:
    """Render a value with at most two decimals, dropping a trailing .00."""
    with localcontext() as ctx:
        # quantize needs room for every integer digit plus the two decimals
        ctx.prec = max(ctx.prec, value.adjusted() + 4)
        q = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        if q == q.to_integral_value():
            return format(q.to_integral_value(), "f")
        return format(q, "f")
