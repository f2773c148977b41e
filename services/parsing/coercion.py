"""Locale-aware numeric, date, unit and line-type coercion.

Every function here follows a "never throw" contract: a malformed cell
degrades to a neutral value (0, the raw string, ``None`` plus a warning)
so a single bad token cannot abort a whole document.
"""

import math
import re
from dataclasses import dataclass
from datetime import date

from services.parsing.schema import ALLOWED_UOMS, LineType

SHIPPING_TAX_RATE = 19.0
REDUCED_TAX_RATE = 7.0

_THOUSANDS_DOT = re.compile(r"(?<=\d)\.(?=\d{3}(?:\D|$))")
_DECIMAL_COMMA = re.compile(r",(\d+)$")
_LEADING_FLOAT = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_DATE = re.compile(r"(\d{1,2})[./-](\d{1,2})[./-](\d{2,4})")

_PIECE_ALIASES = frozenset({"ST", "STK", "STUEK", "STCK"})
_SHIPPING_WORDS = re.compile(r"versand|fracht|shipping|lieferung")
# "fee" and "service" only as words, otherwise "Kaffee" would read as a fee
_SURCHARGE_WORDS = re.compile(r"gebühr|gebuehr|\bfees?\b|zuschlag|\bservice|aufschlag|porto")


@dataclass(frozen=True)
class UomMapping:
    """Result of mapping a free-form unit token onto the closed vocabulary."""

    uom: str | None
    warning: str | None = None
    converted: bool = False


def parse_locale_number(value: str | float | int | None, precision: int = 4) -> float:
    """Parse a German/English formatted number such as ``"1.234,50"``.

    Thousands dots are removed, a trailing decimal comma becomes a dot and the
    result is rounded to ``precision`` digits. Empty or non-numeric input
    yields ``0.0``.
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, int | float):
        return round(float(value), precision) if math.isfinite(value) else 0.0
    if not value:
        return 0.0

    cleaned = re.sub(r"\s+", "", str(value))
    cleaned = _THOUSANDS_DOT.sub("", cleaned)
    cleaned = _DECIMAL_COMMA.sub(r".\1", cleaned)

    match = _LEADING_FLOAT.match(cleaned)
    if not match:
        return 0.0
    parsed = float(match.group(0))
    if not math.isfinite(parsed):
        return 0.0
    return round(parsed, precision)


def format_locale_number(value: float, precision: int = 2) -> str:
    """Format a number the way German invoices print it (``1234.5`` -> ``"1.234,50"``)."""
    english = f"{value:,.{precision}f}"
    return english.replace(",", "_").replace(".", ",").replace("_", ".")


def to_iso_date(value: str | None) -> str:
    """Convert ``D.M.Y`` / ``D/M/Y`` / ``D-M-Y`` to ``YYYY-MM-DD``.

    Two-digit years are read as 20xx. Input that does not contain a valid
    calendar date is returned trimmed but otherwise unchanged.
    """
    if not value:
        return ""
    normalized = value.strip()
    match = _DATE.search(normalized)
    if not match:
        return normalized

    day, month, year = (int(part) for part in match.groups())
    if year < 100:
        year += 2000
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return normalized


def to_allowed_uom(raw: str) -> UomMapping:
    """Map a unit token onto {KG, TU, STUECK}.

    Common piece abbreviations map silently to STUECK. A bucket ("Eimer")
    is booked as KG with a warning, since that changes the physical meaning
    of the quantity. Unknown tokens map to ``None`` plus a warning.
    """
    upper = raw.strip().upper()
    if upper in ALLOWED_UOMS:
        return UomMapping(uom=upper)
    if upper in _PIECE_ALIASES:
        return UomMapping(uom="STUECK", converted=True)
    if "EIMER" in upper:
        return UomMapping(uom="KG", warning="unit 'Eimer' converted to kilograms", converted=True)
    if "KG" in upper:
        return UomMapping(uom="KG", converted=True)
    if "TU" in upper:
        return UomMapping(uom="TU", converted=True)
    return UomMapping(uom=None, warning=f"unexpected unit '{raw}'")


def guess_line_type(description: str) -> LineType:
    """Classify a line description as shipping, surcharge or product."""
    lower = description.lower()
    if _SHIPPING_WORDS.search(lower):
        return "shipping"
    if _SURCHARGE_WORDS.search(lower):
        return "surcharge"
    return "product"


def default_tax_rate(line_type: LineType) -> float:
    """Standard VAT for shipping, reduced VAT for everything else."""
    return SHIPPING_TAX_RATE if line_type == "shipping" else REDUCED_TAX_RATE
