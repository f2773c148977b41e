"""Invoice text parsing pipeline.

Combines template selection, template parsing, feedback matching and
validation into the single entry point used once text has been extracted
from a document:

    raw text -> template -> feedback matcher -> validator -> InvoiceDraft

Malformed document content never raises; every problem is reported as a
warning on the draft or an issue on the affected line.
"""

import logging
import time
from collections.abc import Iterable, Sequence

from prometheus_client import Counter, Histogram

from services.parsing.factory import fallback_warning, select_template
from services.parsing.feedback import apply_feedback, feedback_for_supplier
from services.parsing.schema import InvoiceDraft, ParserFeedbackEntry
from services.parsing.text import merge_warnings
from services.parsing.validation import validate_draft
from services.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

OCR_USED_WARNING = "OCR used"


# Prometheus metrics for invoice parsing
invoices_parsed_total = Counter(
    "invoice_parse_total",
    "Total invoice texts parsed",
    ["template", "outcome"],  # outcome: items, empty
)

invoice_line_items_total = Counter(
    "invoice_parse_line_items_total",
    "Total line items recognized",
    ["template"],
)

invoice_feedback_matches_total = Counter(
    "invoice_parse_feedback_matches_total",
    "Total document level feedback match summaries",
    ["template", "kind"],
)

invoice_template_fallbacks_total = Counter(
    "invoice_parse_template_fallbacks_total",
    "Total parses of unrecognized suppliers using the fallback template",
)

invoice_parse_duration_seconds = Histogram(
    "invoice_parse_duration_seconds",
    "Invoice text parsing duration in seconds",
    ["template"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
)


def parse_invoice_text(
    text: str,
    supplier_name: str,
    feedback: Iterable[ParserFeedbackEntry] | None = None,
    *,
    settings: Settings | None = None,
    used_ocr: bool = False,
    extraction_warnings: Sequence[str] = (),
    invoice_no_override: str | None = None,
    invoice_date_override: str | None = None,
) -> InvoiceDraft:
    """Parse extracted invoice text into a validated draft.

    Args:
        text: Raw text from PDF extraction or OCR
        supplier_name: Supplier name as chosen by the user
        feedback: Snapshot of prior feedback entries; entries of other suppliers are ignored
        settings: Application settings (defaults to environment configuration)
        used_ocr: Whether ``text`` came from the OCR fallback
        extraction_warnings: Warnings from the text extraction layer
        invoice_no_override: Invoice number entered by the user, replaces the parsed one
        invoice_date_override: Invoice date entered by the user, replaces the parsed one

    Returns:
        Validated InvoiceDraft. Zero recognized items yield ``items=()`` and
        the warning "no line items recognized".
    """
    settings = settings or get_settings()
    start_time = time.time()

    selection = select_template(supplier_name, settings)
    template = selection.template
    draft = template.parse(text or "", supplier_name)

    document_warnings = list(draft.warnings)
    if selection.is_fallback:
        invoice_template_fallbacks_total.inc()
        document_warnings.append(fallback_warning(template))

    supplier_feedback = feedback_for_supplier(feedback, supplier_name)
    matched = apply_feedback(draft.items, supplier_feedback)
    for kind in matched.warnings:
        invoice_feedback_matches_total.labels(template=template.template_id, kind=kind).inc()

    parser_warnings = merge_warnings(draft.parser.warnings, matched.warnings, extraction_warnings)
    if used_ocr:
        parser_warnings = merge_warnings(parser_warnings, OCR_USED_WARNING)

    update: dict[str, object] = {
        "items": tuple(matched.items),
        "warnings": merge_warnings(document_warnings),
        "parser": draft.parser.model_copy(update={"used_ocr": used_ocr, "warnings": parser_warnings}),
    }
    if invoice_no_override:
        update["invoice_no"] = invoice_no_override
    if invoice_date_override:
        update["invoice_date"] = invoice_date_override

    validated = validate_draft(
        draft.model_copy(update=update),
        variance_warning_percent=settings.variance_warning_percent,
    )

    duration = time.time() - start_time
    invoice_parse_duration_seconds.labels(template=template.template_id).observe(duration)
    invoices_parsed_total.labels(
        template=template.template_id, outcome="items" if validated.items else "empty"
    ).inc()
    invoice_line_items_total.labels(template=template.template_id).inc(len(validated.items))

    logger.info(
        f"Parsed invoice '{validated.invoice_no or '?'}' for supplier '{supplier_name}' "
        f"with template '{template.template_id}': {len(validated.items)} item(s), "
        f"{len(validated.warnings)} warning(s), {duration:.3f}s"
    )
    return validated
