"""Unit tests for PDF text extraction and document parsing.

Tests cover:
- Text layer extraction
- OCR fallback for scanned documents
- Extraction warnings for unreadable documents
- Document parsing with an injected extractor
"""

from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from services.ingest.service import (
    NO_READABLE_TEXT_WARNING,
    OCR_UNUSABLE_WARNING,
    DocumentTextExtractor,
    TextExtractionResult,
    parse_invoice_document,
    visible_length,
)
from services.ocr.service import OCRResult
from services.parsing.service import OCR_USED_WARNING
from services.shared.config import Settings

INVOICE_TEXT = "Rechnung Nr. 4711, Rechnungsdatum 02.01.2024\n1 SKU-9 Kaffeebohnen 250g 10 KG 3,50 2%  35,00"


@pytest.fixture
def settings() -> Settings:
    """Settings with a 20 character text threshold."""
    return Settings(min_text_length=20, ocr_render_scale=2.0)


@pytest.fixture
def mock_ocr() -> MagicMock:
    """OCR service double."""
    return MagicMock()


@pytest.fixture
def extractor(settings: Settings, mock_ocr: MagicMock) -> DocumentTextExtractor:
    """Extractor using the OCR double."""
    return DocumentTextExtractor(settings, ocr_service=mock_ocr)


def mock_text_layer(mock_open: MagicMock, texts: list[str | None]) -> None:
    """Make pdfplumber.open yield pages with the given text."""
    pages = []
    for text in texts:
        page = MagicMock()
        page.extract_text.return_value = text
        pages.append(page)
    mock_open.return_value.__enter__.return_value.pages = pages


def mock_rendered_pages(mock_document: MagicMock, page_count: int) -> MagicMock:
    """Make pypdfium2 return a document whose pages render to blank images."""
    page = MagicMock()
    page.render.return_value.to_pil.return_value = Image.new("RGB", (10, 10), color="white")
    pdf = MagicMock()
    pdf.__len__.return_value = page_count
    pdf.__getitem__.return_value = page
    mock_document.return_value = pdf
    return pdf


def test_visible_length() -> None:
    """Test that whitespace is not counted."""
    assert visible_length(" a b\n\tc ") == 3
    assert visible_length(None) == 0


@patch("services.ingest.service.pdfium.PdfDocument")
@patch("services.ingest.service.pdfplumber.open")
def test_extract_text_layer(
    mock_open: MagicMock, mock_document: MagicMock, extractor: DocumentTextExtractor, mock_ocr: MagicMock
) -> None:
    """Test that a usable text layer is returned without OCR."""
    mock_text_layer(mock_open, ["Rechnung Nr. 4711 Kaffeebohnen", None, "Summe 35,00"])

    result = extractor.extract(b"%PDF-1.7")

    assert result.text == "Rechnung Nr. 4711 Kaffeebohnen\n\nSumme 35,00"
    assert result.page_count == 3
    assert result.used_ocr is False
    assert result.warnings == []
    mock_document.assert_not_called()
    mock_ocr.extract_image_text.assert_not_called()


@patch("services.ingest.service.pdfium.PdfDocument")
@patch("services.ingest.service.pdfplumber.open")
def test_scanned_document_uses_ocr(
    mock_open: MagicMock, mock_document: MagicMock, extractor: DocumentTextExtractor, mock_ocr: MagicMock
) -> None:
    """Test the OCR fallback when the text layer is empty."""
    mock_text_layer(mock_open, ["", ""])
    pdf = mock_rendered_pages(mock_document, 2)
    mock_ocr.extract_image_text.side_effect = [
        OCRResult(text="Rechnung Nr. 4711 Kaffeebohnen", success=True),
        OCRResult(text="Summe 35,00", success=True),
    ]

    result = extractor.extract(b"%PDF-1.7")

    assert result.used_ocr is True
    assert result.text == "Rechnung Nr. 4711 Kaffeebohnen\nSumme 35,00"
    assert result.page_count == 2
    assert result.warnings == []
    pdf.__getitem__.return_value.render.assert_called_with(scale=2.0)
    assert pdf.__getitem__.return_value.close.call_count == 2
    pdf.close.assert_called_once()


@patch("services.ingest.service.pdfium.PdfDocument")
@patch("services.ingest.service.pdfplumber.open")
def test_failed_ocr_page_is_reported(
    mock_open: MagicMock, mock_document: MagicMock, extractor: DocumentTextExtractor, mock_ocr: MagicMock
) -> None:
    """Test that a failing page becomes a warning while the others are used."""
    mock_text_layer(mock_open, [""])
    mock_rendered_pages(mock_document, 2)
    mock_ocr.extract_image_text.side_effect = [
        OCRResult(text="Rechnung Nr. 4711 Kaffeebohnen", success=True),
        OCRResult(text="", success=False, error="OCR processing failed: timeout"),
    ]

    result = extractor.extract(b"%PDF-1.7")

    assert result.used_ocr is True
    assert result.text == "Rechnung Nr. 4711 Kaffeebohnen"
    assert result.warnings == ["OCR failed on page 2: OCR processing failed: timeout"]


@patch("services.ingest.service.pdfium.PdfDocument")
@patch("services.ingest.service.pdfplumber.open")
def test_unusable_ocr_output(
    mock_open: MagicMock, mock_document: MagicMock, extractor: DocumentTextExtractor, mock_ocr: MagicMock
) -> None:
    """Test warnings when neither text layer nor OCR yield enough text."""
    mock_text_layer(mock_open, ["Seite 1"])
    mock_rendered_pages(mock_document, 1)
    mock_ocr.extract_image_text.return_value = OCRResult(text="~ ~", success=True)

    result = extractor.extract(b"%PDF-1.7")

    assert result.used_ocr is False
    assert result.text == "~ ~"
    assert result.warnings == [OCR_UNUSABLE_WARNING, NO_READABLE_TEXT_WARNING]


@patch("services.ingest.service.pdfium.PdfDocument")
@patch("services.ingest.service.pdfplumber.open")
def test_broken_pdf_does_not_raise(
    mock_open: MagicMock, mock_document: MagicMock, extractor: DocumentTextExtractor
) -> None:
    """Test that unreadable bytes produce warnings instead of an exception."""
    mock_open.side_effect = Exception("No /Root object")
    mock_document.side_effect = Exception("Failed to load document")

    result = extractor.extract(b"not a pdf")

    assert result.text == ""
    assert result.page_count == 0
    assert result.warnings == [
        "PDF text extraction failed: No /Root object",
        "OCR failed: Failed to load document",
        OCR_UNUSABLE_WARNING,
        NO_READABLE_TEXT_WARNING,
    ]


def test_extractor_creates_ocr_service(settings: Settings) -> None:
    """Test that an OCR service is created when none is given."""
    assert DocumentTextExtractor(settings).ocr_service.settings is settings


def test_parse_invoice_document(settings: Settings) -> None:
    """Test that extraction results flow into the parsed draft."""
    extractor = MagicMock()
    extractor.extract.return_value = TextExtractionResult(
        text=INVOICE_TEXT, used_ocr=True, page_count=2, warnings=["OCR failed on page 2: timeout"]
    )

    draft = parse_invoice_document(
        b"%PDF-1.7", "Meyer & Horn", settings=settings, extractor=extractor, invoice_no_override="RE-1"
    )

    extractor.extract.assert_called_once_with(b"%PDF-1.7")
    assert draft.invoice_no == "RE-1"
    assert draft.invoice_date == "2024-01-02"
    assert len(draft.items) == 1
    assert draft.parser.used_ocr is True
    assert draft.parser.warnings == ("OCR failed on page 2: timeout", OCR_USED_WARNING)


def test_parse_unreadable_document(settings: Settings) -> None:
    """Test that a document without text yields an empty draft."""
    extractor = MagicMock()
    extractor.extract.return_value = TextExtractionResult(text="", warnings=[NO_READABLE_TEXT_WARNING])

    draft = parse_invoice_document(b"%PDF-1.7", "Beyers", settings=settings, extractor=extractor)

    assert draft.items == ()
    assert draft.parser.warnings == (NO_READABLE_TEXT_WARNING,)
    assert "no line items recognized" in draft.warnings
