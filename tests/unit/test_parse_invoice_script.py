"""Unit tests for the command line invoice parser.

Tests cover:
- Feedback and product catalog loading
- Text and PDF input dispatch
- Missing files
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from scripts.parse_invoice import load_feedback, load_products, parse_file
from services.parsing.schema import InvoiceDraft, ParserMeta
from services.shared.config import Settings

INVOICE_TEXT = "Rechnung Nr. 4711, Rechnungsdatum 02.01.2024\n1 SKU-9 Kaffeebohnen 250g 10 KG 3,50 2%  35,00"


@pytest.fixture
def settings() -> Settings:
    """Default settings."""
    return Settings()


def test_load_feedback(tmp_path: Path) -> None:
    """Test loading a feedback snapshot."""
    feedback_file = tmp_path / "feedback.json"
    feedback_file.write_text(
        json.dumps(
            [
                {
                    "supplier": "Meyer & Horn",
                    "detected_description": "Kaffeebohnen 250g",
                    "detected_sku": "SKU-9",
                    "assigned_product_id": 12,
                    "assigned_uom": "KG",
                }
            ]
        ),
        encoding="utf-8",
    )

    entries = load_feedback(feedback_file)

    assert len(entries) == 1
    assert entries[0].assigned_product_id == 12
    assert entries[0].assigned_uom == "KG"


def test_load_feedback_without_file() -> None:
    """Test that no feedback file means no feedback."""
    assert load_feedback(None) == []


def test_load_feedback_missing_file(tmp_path: Path) -> None:
    """Test that a missing feedback file raises."""
    with pytest.raises(FileNotFoundError, match="Feedback file not found"):
        load_feedback(tmp_path / "missing.json")


def test_load_products(tmp_path: Path) -> None:
    """Test loading catalog unit facts keyed by product id."""
    products_file = tmp_path / "products.json"
    products_file.write_text(
        json.dumps(
            [
                {"product_id": 1, "base_uom": "kg"},
                {"product_id": 2, "base_uom": "piece", "pieces_per_tu": 12},
            ]
        ),
        encoding="utf-8",
    )

    products = load_products(products_file)

    assert set(products) == {1, 2}
    assert products[2].pieces_per_tu == 12


def test_load_products_missing_file(tmp_path: Path) -> None:
    """Test that a missing catalog raises."""
    with pytest.raises(FileNotFoundError, match="Products file not found"):
        load_products(tmp_path / "missing.json")


def test_parse_text_file(tmp_path: Path, settings: Settings) -> None:
    """Test parsing a file holding extracted text."""
    invoice_file = tmp_path / "invoice.txt"
    invoice_file.write_text(INVOICE_TEXT, encoding="utf-8")

    draft = parse_file(invoice_file, "Meyer & Horn", [], settings)

    assert draft.invoice_no == "4711"
    assert len(draft.items) == 1


def test_parse_pdf_file(tmp_path: Path, settings: Settings) -> None:
    """Test that PDFs go through document extraction."""
    invoice_file = tmp_path / "invoice.PDF"
    invoice_file.write_bytes(b"%PDF-1.7")
    expected = InvoiceDraft(supplier="Beyers", parser=ParserMeta(template="Beyers PDF", version="2024-11-15"))

    with patch("scripts.parse_invoice.parse_invoice_document") as mock_parse:
        mock_parse.return_value = expected

        draft = parse_file(invoice_file, "Beyers", [], settings)

    assert draft is expected
    mock_parse.assert_called_once_with(b"%PDF-1.7", "Beyers", [], settings=settings)


def test_parse_missing_file(tmp_path: Path, settings: Settings) -> None:
    """Test that a missing invoice file raises."""
    with pytest.raises(FileNotFoundError, match="Invoice file not found"):
        parse_file(tmp_path / "missing.pdf", "Beyers", [], settings)
