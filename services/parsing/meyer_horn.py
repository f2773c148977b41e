"""Template for Meyer & Horn PDF invoices.

Layout notes:
- The invoice number label and its value are sometimes split across two
  extracted lines; the value may also only follow a bare "Nr."/"Nummer".
- The table header may wrap over up to four lines; some documents have no
  recognizable header at all, in which case the first line that looks like
  a table row starts the table.
- Rows are tokenized right to left (total, tax, unit price, unit,
  quantity) because the trailing numeric columns are far more regular
  than the free-text description.
- Positions 79007 and 79107 are energy/gas surcharges. They may be
  printed without quantity or unit and are re-expressed per kilogram of
  product delivered.
"""

import logging
import re
from dataclasses import dataclass

from services.parsing.base import (
    ISSUE_CONFIDENCE_CAP,
    LABELED_META_PATTERNS,
    NUMERIC_FIELD,
    HeaderFields,
    PostProcessResult,
    TemplateParser,
    extract_meta_fields,
    first_row_like_index,
    initial_confidence,
    is_numeric_field,
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
from services.parsing.schema import InvoiceLineDraft, InvoiceMetaField, LineSource
from services.parsing.text import merge_warnings, normalize_lines, split_tokens

logger = logging.getLogger(__name__)

SPECIAL_SURCHARGE_POSITIONS = frozenset({79007, 79107})

SPECIAL_FALLBACK_ISSUE = "special surcharge interpreted without complete quantity data"
SURCHARGE_NOT_ALLOCABLE_ISSUE = "surcharge could not be distributed without a kilogram quantity"
SURCHARGE_CONVERTED_WARNING = "energy and gas surcharges converted to kilograms"
SURCHARGE_NO_KG_WARNING = "energy and gas surcharge without a kilogram basis - please check"
SURCHARGE_ROUNDING_ISSUE = "surcharge per kilogram rounded - total deviates from printed amount"

_INVOICE_DATE = re.compile(
    r"(?:Rechnungsdatum|Invoice Date|Datum)[:#]?\s*(\d{1,2}[./-]\d{1,2}[./-]\d{2,4})", re.I
)
_GROSS = re.compile(r"(?:Bruttosumme|Gesamtbetrag|Total Due)[:#]?\s*([0-9.]+,[0-9]{2})", re.I)

_INVOICE_NO_LABEL = r"(?:Rechnungs?-?(?:nr\.|nummer)?|\bRechnung\b|Invoice)(?:\s*(?:Nr\.|No\.|Number|#))?"
_INVOICE_NO_PRIMARY = re.compile(_INVOICE_NO_LABEL + r"[:#]?\s*([A-Z0-9\-/]+)", re.I)
_INVOICE_NO_PRIMARY_LABEL_ONLY = re.compile(_INVOICE_NO_LABEL + r"[.:#]?\s*$", re.I)
_FALLBACK_LABEL = r"(?:\bNummer\b|(?:^|\s)(?:Nr\.|No\.|Number\b))"
_INVOICE_NO_FALLBACK = re.compile(_FALLBACK_LABEL + r"[:#]?\s*([A-Z0-9\-/]+)", re.I)
_INVOICE_NO_FALLBACK_LABEL_ONLY = re.compile(_FALLBACK_LABEL + r"[.:#]?\s*$", re.I)
_TAX_ID_LINE = re.compile(r"(?:Ident|USt|VAT|Steuer)", re.I)
# Deliberately case sensitive: invoice numbers are printed in upper case
_INVOICE_NO_VALUE = re.compile(r"^[A-Z0-9][A-Z0-9\-/]*\d[A-Z0-9\-/]*$")

_TABLE_HEADER_HINT = re.compile(
    r"(?:pos\.?\s*(?:nr\.|no\.)?|art\.?\s*nr\.?|artikel-?nr\.?|nr\.?|beschreibung|bezeichnung|menge"
    r"|anzahl|qty|einheit|einh\.|stk\.?|einzelpreis|preis|betrag|gesamt|summe|total|\bEP\b)",
    re.I,
)
_HEADER_POSITION = re.compile(r"\b(?:pos(?:ition)?\.?|nr\.?|no\.)\b", re.I)
_HEADER_DESCRIPTION = re.compile(r"\b(?:artikel|beschreibung|bezeichnung)\b", re.I)
_HEADER_QTY_OR_UNIT = re.compile(r"\b(?:menge|anzahl|qty|einheit|einh\.|stk\.?|st[üu]ck)\b", re.I)
_HEADER_PRICE_OR_TOTAL = re.compile(
    r"\b(?:einzelpreis|stk-?preis|preis|betrag|gesamt|summe|total|netto|\bEP\b)\b", re.I
)
_TABLE_END = re.compile(r"(?:Summe|Total|Rechnungsbetrag)", re.I)
MAX_HEADER_SPAN = 4

_LETTERS_AND_SYMBOLS = re.compile(r"[A-Za-z%€$]")
_LETTERS_AND_CURRENCY = re.compile(r"[A-Za-z€$]")
_POSITION = re.compile(r"^\d{1,5}$")
_LEADING_DIGITS = re.compile(r"^(\d+)")
_SKU_HINT = re.compile(r"[0-9]|[-/]")
_CURRENCY_TOKEN = re.compile(r"^(?:EUR|EURO|€|\$)$", re.I)

# Bare integers up to this value in the numeric tail are read as a tax rate
MAX_BARE_TAX_RATE = 25


@dataclass(frozen=True)
class _TailToken:
    cleaned: str
    had_percent: bool


def _is_likely_invoice_no(value: str | None) -> bool:
    return value is not None and _INVOICE_NO_VALUE.match(value.strip()) is not None


def _scan_invoice_no(
    lines: list[str],
    value_pattern: re.Pattern[str],
    label_pattern: re.Pattern[str],
    skip: re.Pattern[str] | None = None,
) -> str:
    for index, line in enumerate(lines):
        if skip is not None and skip.search(line):
            continue
        match = value_pattern.search(line)
        if match and _is_likely_invoice_no(match.group(1)):
            return match.group(1).strip()
        if label_pattern.search(line) and index + 1 < len(lines):
            candidate = lines[index + 1].strip()
            if _is_likely_invoice_no(candidate):
                return candidate
    return ""


def extract_invoice_no(lines: list[str]) -> str:
    """Find the invoice number, first via explicit invoice labels, then via bare "Nr."."""
    primary = _scan_invoice_no(lines, _INVOICE_NO_PRIMARY, _INVOICE_NO_PRIMARY_LABEL_ONLY)
    if primary:
        return primary
    return _scan_invoice_no(
        lines, _INVOICE_NO_FALLBACK, _INVOICE_NO_FALLBACK_LABEL_ONLY, skip=_TAX_ID_LINE
    )


def looks_like_header(text: str) -> bool:
    """A table header names a position, a description, a quantity/unit and a price column."""
    if not text:
        return False
    return bool(
        _HEADER_POSITION.search(text)
        and _HEADER_DESCRIPTION.search(text)
        and _HEADER_QTY_OR_UNIT.search(text)
        and _HEADER_PRICE_OR_TOTAL.search(text)
    )


def trailing_text_issue(tokens: list[str]) -> str:
    return f"text after line total ignored: '{' '.join(tokens)}'"


def _looks_like_position(token: str | None) -> bool:
    return token is not None and _POSITION.match(token.strip()) is not None


def _looks_like_sku(token: str | None) -> bool:
    return token is not None and len(token.strip()) >= 3 and _SKU_HINT.search(token) is not None


def _leading_int(token: str | None) -> int | None:
    match = _LEADING_DIGITS.match(token or "")
    return int(match.group(1)) if match else None


def _is_likely_tax(cleaned: str) -> bool:
    value = parse_locale_number(cleaned)
    rounded = round(value)
    return abs(value - rounded) < 0.001 and 0 <= rounded <= MAX_BARE_TAX_RATE


def _take_tax(tail: list[_TailToken]) -> str | None:
    """Remove and return the tax rate from the numeric tail.

    A token printed with "%" always wins. Otherwise the right-most bare
    integer <= MAX_BARE_TAX_RATE is taken as the tax rate, but only while
    another number remains for the unit price. This heuristic was tuned on
    Meyer & Horn layouts where tax and unit price are both bare numbers.
    """
    for index in range(len(tail) - 1, -1, -1):
        if tail[index].had_percent:
            return tail.pop(index).cleaned
    unit_price_candidates = sum(1 for token in tail if not token.had_percent)
    if unit_price_candidates < 2:
        return None
    for index in range(len(tail) - 1, -1, -1):
        if _is_likely_tax(tail[index].cleaned):
            return tail.pop(index).cleaned
    return None


class MeyerHornTemplate(TemplateParser):
    """Meyer & Horn PDF invoices (German, header-optional table)."""

    template_id = "meyer_horn"
    label = "Meyer & Horn PDF"
    version = "2025-03-05"
    description = "PDF parser for Meyer & Horn invoices including energy surcharge handling."
    eager_rows = True

    def parse_header(self, text: str) -> HeaderFields:
        return parse_header_with(text, extract_invoice_no(normalize_lines(text)), _INVOICE_DATE, _GROSS)

    def extract_meta(self, text: str) -> tuple[InvoiceMetaField, ...]:
        return extract_meta_fields(text, LABELED_META_PATTERNS)

    def locate_table(self, lines: list[str]) -> list[str]:
        header_end = -1
        for start in range(len(lines)):
            aggregated = ""
            for offset in range(MAX_HEADER_SPAN):
                if start + offset >= len(lines):
                    break
                candidate = lines[start + offset]
                aggregated = f"{aggregated} {candidate}" if aggregated else candidate
                if _TABLE_HEADER_HINT.search(aggregated) and looks_like_header(aggregated):
                    header_end = start + offset + 1
                    break
            if header_end != -1:
                break

        start_index = header_end
        if start_index == -1:
            start_index = first_row_like_index(lines)
            if start_index == -1:
                logger.info("Meyer & Horn: no table header and no row-like line found")
                return []

        return slice_table(lines, start_index, _TABLE_END)

    def is_row_start(self, line: str) -> bool:
        parts = split_tokens(line)
        if not parts:
            return False
        first = parts[0]
        if re.match(r"^\d+\b", first) is None:
            return False
        return len(parts) >= 6 or _leading_int(first) in SPECIAL_SURCHARGE_POSITIONS

    def parse_row(self, raw: str, line_no: int) -> InvoiceLineDraft | None:
        parts = split_tokens(raw)
        if not parts:
            return None
        position = int(parts[0]) if _looks_like_position(parts[0]) else None
        is_special = position in SPECIAL_SURCHARGE_POSITIONS
        if len(parts) < 6 and not is_special:
            return None

        work = list(parts)

        # (a) line total: right-most numeric token
        line_total_raw: str | None = None
        skipped: list[str] = []
        while work:
            candidate = work.pop()
            cleaned = _LETTERS_AND_SYMBOLS.sub("", candidate)
            if cleaned and NUMERIC_FIELD.match(cleaned):
                line_total_raw = cleaned
                break
            if not _CURRENCY_TOKEN.match(candidate):
                skipped.insert(0, candidate)
        if line_total_raw is None:
            return None

        # Contiguous numeric run left of the total: unit price and optional tax
        tail: list[_TailToken] = []
        while work:
            candidate = work[-1]
            cleaned = _LETTERS_AND_CURRENCY.sub("", candidate).replace("%", "").strip()
            if not cleaned or not NUMERIC_FIELD.match(cleaned):
                break
            work.pop()
            tail.insert(0, _TailToken(cleaned=cleaned, had_percent="%" in candidate))

        # (b) optional tax rate
        tax_raw = _take_tax(tail)

        # (c) unit price: left-most remaining number without a percent sign
        unit_price_raw = next((token.cleaned for token in tail if not token.had_percent), None)

        # (d) unit and (e) quantity; special positions may print neither
        uom_raw: str | None = None
        qty_raw: str | None = None
        has_qty_and_unit = len(work) >= 2 and is_numeric_field(work[-2])
        if has_qty_and_unit and (not is_special or to_allowed_uom(work[-1]).uom):
            uom_raw = work.pop()
            qty_raw = work.pop()
        elif not is_special:
            return None

        issues: list[str] = []
        if is_special:
            if unit_price_raw is None:
                unit_price_raw = line_total_raw
                issues.append(SPECIAL_FALLBACK_ISSUE)
            if qty_raw is None or uom_raw is None:
                qty_raw = "1"
                uom_raw = "STUECK"
                issues.append(SPECIAL_FALLBACK_ISSUE)

        if unit_price_raw is None or uom_raw is None or qty_raw is None:
            return None

        mapping = to_allowed_uom(uom_raw)
        if mapping.warning:
            issues.insert(0, mapping.warning)
        if mapping.uom is None:
            issues.append(f"unit '{uom_raw}' interpreted as STUECK")
        if skipped:
            issues.append(trailing_text_issue(skipped))

        sku, description_parts = self._split_head(work)
        name = " ".join(description_parts)
        line_type = guess_line_type(name)
        tax_rate = parse_locale_number(tax_raw) if tax_raw is not None else None
        if line_type == "shipping":
            effective_tax = SHIPPING_TAX_RATE
        elif tax_rate is not None:
            effective_tax = tax_rate
        else:
            effective_tax = default_tax_rate(line_type)

        issues_tuple = merge_warnings(issues)
        return InvoiceLineDraft(
            line_no=line_no,
            position=position,
            line_type=line_type,
            product_sku=sku,
            product_name=name or None,
            qty=parse_locale_number(qty_raw),
            uom=mapping.uom or "STUECK",
            unit_price_net=parse_locale_number(unit_price_raw),
            tax_rate_percent=effective_tax,
            line_total_net=parse_locale_number(line_total_raw, 2),
            confidence=initial_confidence(sku is not None, issues_tuple),
            issues=issues_tuple,
            source=LineSource(raw=raw, template_hint=self.template_id),
        )

    @staticmethod
    def _split_head(head: list[str]) -> tuple[str | None, list[str]]:
        """Split leading tokens into optional position, optional SKU and description."""
        first = head[0] if head else None
        second = head[1] if len(head) > 1 else None
        if _looks_like_position(first) and _looks_like_sku(second):
            return second, head[2:]
        if _looks_like_position(first):
            return None, head[1:]
        if _looks_like_sku(first):
            return first, head[1:]
        return None, head

    def post_process(self, items: list[InvoiceLineDraft]) -> PostProcessResult:
        """Re-express energy/gas surcharge positions per kilogram of product delivered."""
        if not any(item.position in SPECIAL_SURCHARGE_POSITIONS for item in items):
            return PostProcessResult(items=items)

        total_kg = sum(item.qty for item in items if item.line_type == "product" and item.uom == "KG")

        if total_kg <= 0:
            logger.warning("Meyer & Horn: surcharge positions found but no kilogram quantity")
            adjusted = [
                item.model_copy(
                    update={
                        "line_type": "surcharge",
                        "product_id": None,
                        "product_sku": None,
                        "uom": "KG",
                        "issues": merge_warnings(item.issues, SURCHARGE_NOT_ALLOCABLE_ISSUE),
                    }
                )
                if item.position in SPECIAL_SURCHARGE_POSITIONS
                else item
                for item in items
            ]
            return PostProcessResult(items=adjusted, warnings=(SURCHARGE_NO_KG_WARNING,))

        adjusted = [
            self._per_kg_surcharge(item, total_kg) if item.position in SPECIAL_SURCHARGE_POSITIONS else item
            for item in items
        ]
        return PostProcessResult(items=adjusted, warnings=(SURCHARGE_CONVERTED_WARNING,))

    @staticmethod
    def _per_kg_surcharge(item: InvoiceLineDraft, total_kg: float) -> InvoiceLineDraft:
        """Spread a surcharge over the delivered kilograms.

        The per-kg price keeps four decimals, so qty * price can drift from
        the printed amount; lines off by half a cent or more are tagged.
        """
        qty_kg = round(total_kg, 3)
        unit_price = round(item.line_total_net / total_kg, 4)
        issues = item.issues
        confidence = item.confidence
        if abs(qty_kg * unit_price - item.line_total_net) >= 0.005:
            issues = merge_warnings(issues, SURCHARGE_ROUNDING_ISSUE)
            confidence = min(confidence, ISSUE_CONFIDENCE_CAP)
        return item.model_copy(
            update={
                "line_type": "surcharge",
                "product_id": None,
                "product_sku": None,
                "qty": qty_kg,
                "uom": "KG",
                "unit_price_net": unit_price,
                "issues": issues,
                "confidence": confidence,
            }
        )
