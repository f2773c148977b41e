"""Evaluation metrics for invoice template parsing.

Computes precision, recall and F1 for the draft header fields and the
recall of expected line items. Based on standard information extraction
evaluation methodologies.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from services.parsing.schema import InvoiceDraft, InvoiceLineDraft

HEADER_FIELDS = ("invoice_no", "invoice_date", "reported_gross", "item_count")
NUMERIC_TOLERANCE = 0.01


class ExpectedItem(BaseModel):
    """A line item the template is expected to recover."""

    qty: float
    uom: str
    unit_price_net: float
    product_sku: str | None = None


class ExpectedDraft(BaseModel):
    """Ground truth for one gold invoice."""

    invoice_no: str | None = None
    invoice_date: str | None = None
    reported_gross: float | None = None
    item_count: int | None = None
    items: list[ExpectedItem] = []


class GoldSample(BaseModel):
    """One gold dataset entry: extracted text plus what parsing should yield."""

    supplier: str
    text: str
    expected: ExpectedDraft


@dataclass
class FieldMetrics:
    """Metrics for a single field."""

    precision: float
    recall: float
    f1: float
    support: int  # Number of samples


@dataclass
class EvaluationReport:
    """Complete evaluation report."""

    field_metrics: dict[str, FieldMetrics]
    macro_f1: float
    item_recall: float
    total_samples: int


def calculate_field_match(expected: Any, predicted: Any) -> bool:
    """Check if a parsed field matches the expected value.

    Args:
        expected: Ground truth value
        predicted: Parsed value

    Returns:
        True if values match (with tolerance for numeric fields)
    """
    if expected is None and predicted is None:
        return True
    if expected is None or predicted is None:
        return False

    if isinstance(expected, int | float | Decimal) and isinstance(predicted, int | float | Decimal):
        return abs(float(expected) - float(predicted)) < NUMERIC_TOLERANCE

    if isinstance(expected, date) or isinstance(predicted, date):
        return _iso(expected) == _iso(predicted)

    if isinstance(expected, str) and isinstance(predicted, str):
        return " ".join(expected.lower().split()) == " ".join(predicted.lower().split())

    return bool(expected == predicted)


def _iso(value: Any) -> str:
    return value.isoformat() if isinstance(value, date) else str(value).strip()


def header_value(draft: InvoiceDraft, field: str) -> Any:
    """Read a header field from a draft; empty strings count as missing."""
    if field == "item_count":
        return len(draft.items)
    if field == "reported_gross":
        return draft.totals.reported_gross
    value = getattr(draft, field)
    return value or None


def item_matches(expected: ExpectedItem, line: InvoiceLineDraft) -> bool:
    """An expected item is recovered when quantity, unit and unit price agree."""
    if expected.product_sku is not None and not calculate_field_match(expected.product_sku, line.product_sku):
        return False
    return (
        calculate_field_match(expected.qty, line.qty)
        and expected.uom.upper() == line.uom.upper()
        and calculate_field_match(expected.unit_price_net, line.unit_price_net)
    )


def count_matched_items(expected: list[ExpectedItem], lines: tuple[InvoiceLineDraft, ...]) -> int:
    """Greedily pair expected items with parsed lines; each line is used once."""
    unused = list(lines)
    matched = 0
    for item in expected:
        for index, line in enumerate(unused):
            if item_matches(item, line):
                matched += 1
                del unused[index]
                break
    return matched


def _scores(true_positives: int, false_positives: int, false_negatives: int) -> tuple[float, float, float]:
    precision = (
        true_positives / (true_positives + false_positives)
        if (true_positives + false_positives) > 0
        else 0.0
    )
    recall = (
        true_positives / (true_positives + false_negatives)
        if (true_positives + false_negatives) > 0
        else 0.0
    )
    f1 = 2 * (precision * recall) / (precision + recall) if (precision + recall) > 0 else 0.0
    return precision, recall, f1


def evaluate_templates(expected: list[ExpectedDraft], predicted: list[InvoiceDraft]) -> EvaluationReport:
    """Evaluate parsed drafts against ground truth.

    Header fields that are None in the ground truth and missing in the draft
    are true negatives and do not count. Line item recall is pooled over all
    samples.

    Args:
        expected: Ground truth per sample
        predicted: Parsed drafts in the same order

    Returns:
        Evaluation report with per-field and overall metrics

    Raises:
        ValueError: If the lists differ in length
    """
    if len(expected) != len(predicted):
        raise ValueError("Expected and predicted lists must have same length")

    field_metrics: dict[str, FieldMetrics] = {}
    for field in HEADER_FIELDS:
        true_positives = false_positives = false_negatives = 0
        for exp, draft in zip(expected, predicted, strict=True):
            exp_value = getattr(exp, field)
            pred_value = header_value(draft, field)
            if exp_value is not None and pred_value is not None:
                if calculate_field_match(exp_value, pred_value):
                    true_positives += 1
                else:
                    false_positives += 1
                    false_negatives += 1
            elif exp_value is not None:
                false_negatives += 1
            elif pred_value is not None and field != "item_count":
                false_positives += 1

        precision, recall, f1 = _scores(true_positives, false_positives, false_negatives)
        field_metrics[field] = FieldMetrics(precision=precision, recall=recall, f1=f1, support=len(expected))

    expected_items = sum(len(exp.items) for exp in expected)
    matched_items = sum(
        count_matched_items(exp.items, draft.items) for exp, draft in zip(expected, predicted, strict=True)
    )
    item_recall = matched_items / expected_items if expected_items else 0.0

    macro_f1 = sum(m.f1 for m in field_metrics.values()) / len(field_metrics)
    return EvaluationReport(
        field_metrics=field_metrics,
        macro_f1=macro_f1,
        item_recall=item_recall,
        total_samples=len(expected),
    )
