"""Template for Beyers PDF invoices.

Beyers prints a "Pos Art-Nr" table; without that header the first
row-like line starts the table. Rows always start with the position
followed by the article number. Descriptions frequently wrap, so rows
are only parsed once the next position starts (deferred mode).
Between unit and description there may be a list price such as
"12,50 per KG" or "3,20/ST" that is not part of the description.
"""

import logging
import re
from collections.abc import Callable

from services.parsing.base import (
    LABELED_META_PATTERNS,
    HeaderFields,
    TemplateParser,
    extract_meta_fields,
    first_group,
    first_row_like_index,
    initial_confidence,
    parse_header_with,
    slice_table,
)
from services.parsing.coercion import (
    SHIPPING_TAX_RATE,
    default_tax_rate,
    guess_line_type,
    parse_locale_number,
    to_allowed_uom,
)
from services.parsing.schema import ALLOWED_UOMS, InvoiceLineDraft, InvoiceMetaField, LineSource
from services.parsing.text import collapse_whitespace, merge_warnings, transliterate_umlauts

logger = logging.getLogger(__name__)

_INVOICE_NO = re.compile(
    r"(?:Invoice\s*(?:No\.?|Number)|Rechnungsnummer|Rechnung\s*Nr\.?|Belegnr\.)"
    r"[:#]?\s*([A-Z0-9\-]+)",
    re.I,
)
_INVOICE_DATE = re.compile(
    r"(?:Invoice Date|Datum|Belegdatum)[:#]?\s*(\d{1,2}[./-]\d{1,2}[./-]\d{2,4})", re.I
)
_GROSS = re.compile(r"(?:Gesamtbetrag|Bruttobetrag|Total Due)[:#]?\s*([0-9.]+,[0-9]{2})", re.I)

TABLE_HEADER = re.compile(r"(Pos(?:ition)?|Pos\.)\s+Art(?:ikel)?-?Nr\.?", re.I)
TABLE_END = re.compile(r"(?:Zwischensumme|Subtotal|Nettobetrag|Brutto)", re.I)
_ROW_START = re.compile(r"^\d+\s")

UOM_HINTS = frozenset({*ALLOWED_UOMS, "ST", "STK", "STUEK", "STCK", "CT", "CTN", "BOX", "PKG"})
MIN_ROW_TOKENS = 5

_PLAIN_NUMBER = re.compile(r"^-?\d+(?:[.,]\d+)?$")
_PERCENT_NUMBER = re.compile(r"^-?\d+(?:[.,]\d+)?%$")
_PLAIN_NUMBER_OR_PERCENT = re.compile(r"^-?\d+(?:[.,]\d+)?%?$")
_UNSIGNED_NUMBER = re.compile(r"^\d+(?:[.,]\d+)?$")
_PRICE_PER_UNIT = re.compile(r"^\d+(?:[.,]\d+)?/[A-Za-zÄÖÜäöüß]{1,10}$")
_CURRENCY = re.compile(r"^(?:EUR|EURO|€)$", re.I)
_PER = re.compile(r"^(?:per|pro)$", re.I)
_TAX_LABEL = re.compile(r"^(?:VAT|BTW)$", re.I)
_UPPER_WORD = re.compile(r"^[A-Z]+$")
_DASHES = frozenset({"-", "\u2013", "\u2014"})


def clean_token(token: str) -> str:
    """Trim a token and strip trailing punctuation, except from plain numbers."""
    trimmed = collapse_whitespace(token)
    if not trimmed:
        return ""
    if _PLAIN_NUMBER_OR_PERCENT.match(trimmed):
        return trimmed
    return re.sub(r"[.,;:]+$", "", trimmed)


def normalize_uom_token(token: str) -> str:
    """Strip punctuation and transliterate umlauts ("Stück." -> "Stueck")."""
    return transliterate_umlauts(re.sub(r"[.,;:]", "", token))


def is_uom_token(token: str) -> bool:
    """Known unit hints, or any short all-letter token."""
    cleaned = normalize_uom_token(token).upper()
    if not cleaned:
        return False
    if cleaned in UOM_HINTS:
        return True
    return len(cleaned) <= 4 and _UPPER_WORD.match(cleaned) is not None


def _drop_trailing(tokens: list[str], predicate: Callable[[str], bool]) -> None:
    while tokens and predicate(tokens[-1]):
        tokens.pop()


def take_trailing_number(tokens: list[str]) -> str | None:
    """Remove and return the right-most plain number.

    Percentages and currency tokens passed on the way are discarded.
    """
    for index in range(len(tokens) - 1, -1, -1):
        normalized = re.sub(r"[€$]", "", tokens[index])
        if _PLAIN_NUMBER.match(normalized):
            del tokens[index]
            return normalized
        if _PERCENT_NUMBER.match(normalized) or _CURRENCY.match(normalized):
            del tokens[index]
    return None


def take_trailing_tax(tokens: list[str]) -> str | None:
    """Remove and return the right-most percentage, discarding tax labels on the way."""
    for index in range(len(tokens) - 1, -1, -1):
        token = tokens[index]
        if _PERCENT_NUMBER.match(token):
            del tokens[index]
            return token
        if _TAX_LABEL.match(token) or token == "%":
            del tokens[index]
    return None


def take_trailing_uom(tokens: list[str]) -> str | None:
    """Remove and return the right-most unit token, discarding "per"/"/" on the way."""
    for index in range(len(tokens) - 1, -1, -1):
        token = tokens[index]
        if is_uom_token(token):
            del tokens[index]
            return normalize_uom_token(token)
        if _PER.match(token) or token == "/":
            del tokens[index]
    return None


def trim_trailing_list_price(tokens: list[str]) -> None:
    """Drop list price fragments like "12,50 per KG", "12,50 / KG", "12,50 EUR / KG" or "3,20/ST"."""
    while len(tokens) >= 3:
        first, middle, last = tokens[-3], tokens[-2], tokens[-1]
        if not is_uom_token(last):
            break
        if (_PER.match(middle) or middle == "/") and _UNSIGNED_NUMBER.match(first):
            del tokens[-3:]
            continue
        if (
            len(tokens) >= 4
            and middle == "/"
            and _CURRENCY.match(first)
            and _UNSIGNED_NUMBER.match(tokens[-4])
        ):
            del tokens[-4:]
            continue
        break

    while tokens and _PRICE_PER_UNIT.match(tokens[-1]):
        tokens.pop()


class BeyersTemplate(TemplateParser):
    """Beyers PDF invoices with a "Pos Art-Nr" table."""

    template_id = "beyers"
    label = "Beyers PDF"
    version = "2024-11-15"
    description = "PDF parser for Beyers invoices with wrapped article descriptions."
    eager_rows = False

    def parse_header(self, text: str) -> HeaderFields:
        return parse_header_with(text, first_group(_INVOICE_NO, text), _INVOICE_DATE, _GROSS)

    def extract_meta(self, text: str) -> tuple[InvoiceMetaField, ...]:
        return extract_meta_fields(text, LABELED_META_PATTERNS)

    def locate_table(self, lines: list[str]) -> list[str]:
        header = next((index for index, line in enumerate(lines) if TABLE_HEADER.search(line)), -1)
        if header != -1:
            return slice_table(lines, header + 1, TABLE_END)

        start = first_row_like_index(lines)
        if start == -1:
            logger.info("Beyers: no table header and no row-like line found")
            return []
        logger.info(f"Beyers: table header not found, table starts at line {start + 1}")
        return slice_table(lines, start, TABLE_END)

    def is_row_start(self, line: str) -> bool:
        return _ROW_START.match(line.strip()) is not None

    def parse_row(self, raw: str, line_no: int) -> InvoiceLineDraft | None:
        tokens = [cleaned for cleaned in (clean_token(token) for token in raw.split()) if cleaned]
        if len(tokens) < MIN_ROW_TOKENS:
            return None

        position_token = tokens.pop(0)
        if not position_token.isdigit():
            return None
        sku = tokens.pop(0)
        working = tokens

        _drop_trailing(working, lambda token: token in _DASHES)

        line_total_raw = take_trailing_number(working)
        if line_total_raw is None:
            return None
        tax_raw = take_trailing_tax(working)
        _drop_trailing(working, lambda token: _CURRENCY.match(token) is not None)

        unit_price_raw = take_trailing_number(working)
        if unit_price_raw is None:
            return None
        _drop_trailing(
            working, lambda token: token == "/" or bool(_CURRENCY.match(token) or _PER.match(token))
        )

        uom_raw = take_trailing_uom(working)
        if uom_raw is None:
            return None
        qty_raw = take_trailing_number(working)
        if qty_raw is None:
            return None

        trim_trailing_list_price(working)
        _drop_trailing(working, lambda token: _CURRENCY.match(token) is not None)

        issues: list[str] = []
        mapping = to_allowed_uom(uom_raw)
        if mapping.warning:
            issues.append(mapping.warning)
        if mapping.uom is None:
            issues.append(f"unit '{uom_raw}' interpreted as STUECK")

        name = " ".join(working)
        line_type = guess_line_type(name)
        if line_type == "shipping":
            tax_rate = SHIPPING_TAX_RATE
        elif tax_raw is not None:
            tax_rate = parse_locale_number(tax_raw.replace("%", ""), 2)
        else:
            tax_rate = default_tax_rate(line_type)

        issues_tuple = merge_warnings(issues)
        return InvoiceLineDraft(
            line_no=line_no,
            position=int(position_token),
            line_type=line_type,
            product_sku=sku or None,
            product_name=name or None,
            qty=parse_locale_number(qty_raw),
            uom=mapping.uom or "STUECK",
            unit_price_net=parse_locale_number(unit_price_raw),
            tax_rate_percent=tax_rate,
            line_total_net=parse_locale_number(line_total_raw, 2),
            confidence=initial_confidence(bool(sku), issues_tuple),
            issues=issues_tuple,
            source=LineSource(raw=raw, template_hint=self.template_id),
        )
