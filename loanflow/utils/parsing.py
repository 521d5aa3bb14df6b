import re
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def parse_amount(value: Any) -> Decimal:
    """Strip currency noise from ``value``; anything unparseable becomes zero."""
    if value is None:
        return Decimal("0")
    normalized = _NON_NUMERIC.sub("", str(value))
    try:
        amount = Decimal(normalized)
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not amount.is_finite() or amount < 0:
        return Decimal("0")
    return amount.quantize(Decimal("0.01"))


def join_present(parts: Iterable[Any], separator: str = ", ") -> str | None:
    cleaned = [str(part).strip() for part in parts if part is not None and str(part).strip()]
    return separator.join(cleaned) or None


def clean_text(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None
