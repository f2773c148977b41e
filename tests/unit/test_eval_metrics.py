"""Unit tests for evaluation metrics.

Tests cover:
- Field matching logic
- Line item matching
- Metrics calculation (precision, recall, F1)
- Evaluation on the bundled gold dataset
"""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from pipeline.eval.eval import load_gold_dataset, run_evaluation
from pipeline.eval.metrics import (
    EvaluationReport,
    ExpectedDraft,
    ExpectedItem,
    FieldMetrics,
    calculate_field_match,
    count_matched_items,
    evaluate_templates,
)
from services.parsing.schema import InvoiceDraft, InvoiceLineDraft, InvoiceTotals, ParserMeta

GOLD_FILE = Path(__file__).resolve().parents[2] / "data" / "gold" / "invoices.json"


def make_draft(
    invoice_no: str = "MH-1",
    invoice_date: str = "2024-03-15",
    reported_gross: float | None = 21.4,
    items: tuple[InvoiceLineDraft, ...] = (),
) -> InvoiceDraft:
    return InvoiceDraft(
        supplier="Meyer & Horn",
        invoice_no=invoice_no,
        invoice_date=invoice_date,
        totals=InvoiceTotals(reported_gross=reported_gross),
        parser=ParserMeta(template="Meyer & Horn PDF", version="2025-03-05"),
        items=items,
    )


def make_line(qty: float, uom: str, price: float, sku: str | None = None) -> InvoiceLineDraft:
    return InvoiceLineDraft(line_no=1, qty=qty, uom=uom, unit_price_net=price, product_sku=sku)


def test_calculate_field_match_strings() -> None:
    """Test string field matching (case-insensitive, whitespace-collapsed)."""
    assert calculate_field_match("MH-1", "mh-1") is True
    assert calculate_field_match("  MH-1  ", "MH-1") is True
    assert calculate_field_match("MH-1", "MH-2") is False


def test_calculate_field_match_numeric() -> None:
    """Test numeric field matching with tolerance."""
    assert calculate_field_match(100.0, 100.0) is True
    assert calculate_field_match(100.0, 100.005) is True  # Within tolerance
    assert calculate_field_match(Decimal("100.0"), 100.0) is True
    assert calculate_field_match(100.0, 200.0) is False


def test_calculate_field_match_dates() -> None:
    """Test date objects against ISO strings."""
    assert calculate_field_match(date(2024, 1, 15), "2024-01-15") is True
    assert calculate_field_match(date(2024, 1, 15), date(2024, 1, 16)) is False


def test_calculate_field_match_none() -> None:
    """Test None field matching."""
    assert calculate_field_match(None, None) is True
    assert calculate_field_match(None, "value") is False
    assert calculate_field_match("value", None) is False


def test_count_matched_items() -> None:
    """Test that each parsed line satisfies at most one expected item."""
    expected = [
        ExpectedItem(qty=2, uom="KG", unit_price_net=10.0),
        ExpectedItem(qty=2, uom="KG", unit_price_net=10.0),
        ExpectedItem(qty=1, uom="STUECK", unit_price_net=8.9, product_sku="900001"),
    ]
    lines = (make_line(2, "kg", 10.0), make_line(1, "STUECK", 8.9, sku="900002"))

    assert count_matched_items(expected, lines) == 1


def test_evaluate_templates_perfect() -> None:
    """Test evaluation with a perfect parse."""
    expected = [
        ExpectedDraft(
            invoice_no="MH-1",
            invoice_date="2024-03-15",
            reported_gross=21.4,
            item_count=1,
            items=[ExpectedItem(qty=2, uom="KG", unit_price_net=10.0)],
        )
    ]
    predicted = [make_draft(items=(make_line(2, "KG", 10.0),))]

    report = evaluate_templates(expected, predicted)

    assert report.field_metrics["invoice_no"].f1 == 1.0
    assert report.field_metrics["item_count"].f1 == 1.0
    assert report.macro_f1 == 1.0
    assert report.item_recall == 1.0


def test_evaluate_templates_partial() -> None:
    """Test evaluation with a wrong date and a missing gross total."""
    expected = [ExpectedDraft(invoice_no="MH-1", invoice_date="2024-03-15", reported_gross=21.4)]
    predicted = [make_draft(invoice_date="2024-03-16", reported_gross=None)]

    report = evaluate_templates(expected, predicted)

    assert report.field_metrics["invoice_no"].f1 == 1.0
    assert report.field_metrics["invoice_date"].f1 == 0.0
    assert report.field_metrics["reported_gross"].recall == 0.0


def test_evaluate_templates_multiple_samples() -> None:
    """Test evaluation with multiple samples."""
    expected = [ExpectedDraft(invoice_no="MH-1"), ExpectedDraft(invoice_no="MH-2")]
    predicted = [make_draft(invoice_no="MH-1"), make_draft(invoice_no="MH-9")]

    report = evaluate_templates(expected, predicted)

    assert report.total_samples == 2
    assert report.field_metrics["invoice_no"].precision == 0.5


def test_evaluate_templates_mismatched_lengths() -> None:
    """Test that mismatched list lengths raise error."""
    with pytest.raises(ValueError, match="same length"):
        evaluate_templates([ExpectedDraft()], [make_draft(), make_draft()])


def test_evaluation_report_structure() -> None:
    """Test EvaluationReport structure."""
    metrics = FieldMetrics(precision=0.9, recall=0.85, f1=0.875, support=10)
    report = EvaluationReport(
        field_metrics={"test_field": metrics}, macro_f1=0.875, item_recall=0.5, total_samples=10
    )

    assert report.macro_f1 == 0.875
    assert report.total_samples == 10
    assert "test_field" in report.field_metrics


def test_load_gold_dataset() -> None:
    """Test loading the bundled gold dataset."""
    samples = load_gold_dataset(GOLD_FILE)

    assert [sample.supplier for sample in samples] == ["Meyer & Horn", "Beyers"]
    assert samples[0].expected.item_count == 3


def test_run_evaluation_on_gold_dataset() -> None:
    """Test that both templates fully recover the gold invoices."""
    results = run_evaluation(GOLD_FILE)

    assert results["total_samples"] == 2
    assert results["macro_f1"] == 1.0
    assert results["item_recall"] == 1.0
