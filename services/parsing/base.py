"""Abstract base class for supplier invoice templates.

Every supported supplier layout is a ``TemplateParser`` subclass. The
base class owns the parsing pipeline shared by all templates:

1. header extraction (invoice number, date, printed gross total)
2. labeled metadata extraction
3. table localization (header row, else the first row-like line)
4. row reassembly (see ``services.parsing.rows``)
5. per-row right-to-left tokenization (template specific)
6. template specific post-processing

Subclasses only describe *their* layout; they never build the draft
themselves. Feedback matching and validation are applied afterwards by
``services.parsing.service.parse_invoice_text``.
"""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import ClassVar

from services.parsing.coercion import parse_locale_number, to_iso_date
from services.parsing.rows import assemble_rows
from services.parsing.schema import (
    InvoiceDraft,
    InvoiceLineDraft,
    InvoiceMetaField,
    InvoiceTotals,
    ParserMeta,
)
from services.parsing.text import normalize_lines, split_tokens

logger = logging.getLogger(__name__)

NO_ITEMS_WARNING = "no line items recognized"

NUMERIC_FIELD = re.compile(r"^-?(?:\d{1,3}(?:[.\s]\d{3})+|\d+)(?:[,.]\d+)?$")
_LETTERS_AND_SYMBOLS = re.compile(r"[A-Za-z%€$]")


@dataclass(frozen=True)
class HeaderFields:
    """Header values found in the document text."""

    invoice_no: str = ""
    invoice_date: str = ""
    reported_gross: float | None = None


@dataclass(frozen=True)
class MetaPattern:
    """A labeled, optional header field and the pattern that finds it."""

    key: str
    label: str
    regex: re.Pattern[str]
    transform: Callable[[str], str] | None = None


@dataclass(frozen=True)
class PostProcessResult:
    """Items after template specific post-processing, plus parser warnings."""

    items: list[InvoiceLineDraft]
    warnings: tuple[str, ...] = ()


def first_group(pattern: re.Pattern[str], text: str) -> str:
    """Return the first capture group of ``pattern`` in ``text`` or an empty string."""
    match = pattern.search(text)
    return match.group(1).strip() if match and match.group(1) else ""


def extract_meta_fields(text: str, patterns: Sequence[MetaPattern]) -> tuple[InvoiceMetaField, ...]:
    """Apply labeled metadata patterns; absent fields are simply skipped."""
    fields: list[InvoiceMetaField] = []
    for pattern in patterns:
        raw = first_group(pattern.regex, text)
        if not raw:
            continue
        value = pattern.transform(raw) if pattern.transform else raw
        fields.append(InvoiceMetaField(key=pattern.key, label=pattern.label, value=value))
    return tuple(fields)


LABELED_META_PATTERNS: tuple[MetaPattern, ...] = (
    MetaPattern("customer_no", "Kunden-Nr.", re.compile(r"Kunden-?Nr\.?[:#]?\s*([A-Z0-9\-/]+)", re.I)),
    MetaPattern("order_no", "Bestellung", re.compile(r"Bestellung[:#]?\s*([A-Z0-9\-/]+)", re.I)),
    MetaPattern(
        "delivery_note",
        "Lieferschein",
        re.compile(r"Lieferschein(?:nr\.|nummer)?[:#]?\s*([A-Z0-9\-/]+)", re.I),
    ),
    MetaPattern(
        "delivery_date",
        "Lieferdatum",
        re.compile(r"Lieferdatum[:#]?\s*(\d{1,2}[./-]\d{1,2}[./-]\d{2,4})", re.I),
        to_iso_date,
    ),
    MetaPattern("debtor_no", "Debitorennr.", re.compile(r"Debitorennr\.?[:#]?\s*([A-Z0-9\-/]+)", re.I)),
)


def is_numeric_field(token: str) -> bool:
    """Whether a token is a number once letters, "%" and currency signs are removed."""
    cleaned = _LETTERS_AND_SYMBOLS.sub("", token)
    return bool(cleaned) and NUMERIC_FIELD.match(cleaned) is not None


def looks_like_line_start(line: str) -> bool:
    """Header-less fallback: a leading number, five or more tokens, two of them numeric."""
    if not line[:1].isdigit():
        return False
    parts = split_tokens(line)
    if len(parts) < 5:
        return False
    return sum(1 for part in parts[1:] if is_numeric_field(part)) >= 2


def slice_table(lines: list[str], start: int, end_pattern: re.Pattern[str]) -> list[str]:
    """Lines from ``start`` up to (excluding) the first line matching ``end_pattern``."""
    body = lines[start:]
    for index, line in enumerate(body):
        if end_pattern.search(line):
            return body[:index]
    return body


def first_row_like_index(lines: list[str]) -> int:
    """Index of the first line that looks like a table row, or -1."""
    return next((index for index, line in enumerate(lines) if looks_like_line_start(line)), -1)


SKU_CONFIDENCE = 0.92
NO_SKU_CONFIDENCE = 0.78
ISSUE_CONFIDENCE_CAP = 0.7


def initial_confidence(has_sku: bool, issues: Sequence[str]) -> float:
    """Starting confidence of a freshly tokenized row; any row level issue caps it."""
    confidence = SKU_CONFIDENCE if has_sku else NO_SKU_CONFIDENCE
    if issues:
        confidence = min(confidence, ISSUE_CONFIDENCE_CAP)
    return confidence


def reported_gross_from(raw: str) -> float | None:
    """Parse a printed gross total; zero or missing means "not reported"."""
    gross = parse_locale_number(raw, 2)
    return gross if gross > 0 else None


class TemplateParser(ABC):
    """Abstract base class for supplier specific invoice templates.

    Class attributes:
        template_id: Stable identifier used by the template registry
        label: Human readable template name
        version: Template revision, bumped whenever parsing rules change
        description: Short description for template listings
        eager_rows: Parse row buffers after every line (True) or only when
            the next row starts (False)
    """

    template_id: ClassVar[str]
    label: ClassVar[str]
    version: ClassVar[str]
    description: ClassVar[str] = ""
    eager_rows: ClassVar[bool] = True

    def parse(self, text: str, supplier: str) -> InvoiceDraft:
        """Parse raw invoice text into an unvalidated draft.

        Never raises for malformed content. A document without recognizable
        line items is returned with ``items=()`` and a warning.

        Args:
            text: Raw text from PDF extraction or OCR
            supplier: Supplier name as chosen by the user

        Returns:
            InvoiceDraft with zeroed totals (computed later by the validator)
        """
        header = self.parse_header(text or "")
        meta = self.extract_meta(text or "")
        lines = normalize_lines(text)
        table = self.locate_table(lines)
        items = assemble_rows(table, self.is_row_start, self.parse_row, eager=self.eager_rows)
        processed = self.post_process(items)

        logger.info(
            f"Template '{self.template_id}' recognized {len(processed.items)} line item(s) "
            f"from {len(table)} table line(s)"
        )

        return InvoiceDraft(
            supplier=supplier,
            invoice_no=header.invoice_no,
            invoice_date=header.invoice_date,
            currency="EUR",
            totals=InvoiceTotals(reported_gross=header.reported_gross),
            parser=ParserMeta(
                template=self.label,
                version=self.version,
                used_ocr=False,
                warnings=processed.warnings,
            ),
            meta=meta,
            warnings=() if processed.items else (NO_ITEMS_WARNING,),
            errors=(),
            items=tuple(processed.items),
        )

    @abstractmethod
    def parse_header(self, text: str) -> HeaderFields:
        """Find invoice number, invoice date and printed gross total."""

    def extract_meta(self, text: str) -> tuple[InvoiceMetaField, ...]:
        """Find optional labeled header fields. Templates without any return nothing."""
        return ()

    @abstractmethod
    def locate_table(self, lines: list[str]) -> list[str]:
        """Return the physical lines that make up the line-item table."""

    @abstractmethod
    def is_row_start(self, line: str) -> bool:
        """Whether ``line`` starts a new logical table row."""

    @abstractmethod
    def parse_row(self, raw: str, line_no: int) -> InvoiceLineDraft | None:
        """Tokenize one reassembled row, or return None if it is not (yet) valid."""

    def post_process(self, items: list[InvoiceLineDraft]) -> PostProcessResult:
        """Template specific adjustments after all rows were collected."""
        return PostProcessResult(items=items)


def parse_header_with(
    text: str,
    invoice_no: str,
    date_pattern: re.Pattern[str],
    gross_pattern: re.Pattern[str],
) -> HeaderFields:
    """Build HeaderFields from an already found invoice number and two patterns."""
    return HeaderFields(
        invoice_no=invoice_no,
        invoice_date=to_iso_date(first_group(date_pattern, text)),
        reported_gross=reported_gross_from(first_group(gross_pattern, text)),
    )
