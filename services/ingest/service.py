"""PDF text extraction with OCR fallback and the document parsing entry point.

The text layer of a PDF is read with pdfplumber. Scanned invoices have no
(or an unusable) text layer; their pages are rendered with pypdfium2 and
passed through Tesseract instead.

Based on:
- pdfplumber: https://github.com/jsvine/pdfplumber
- pypdfium2: https://github.com/pypdfium2-team/pypdfium2
"""

import io
import logging
import re
from collections.abc import Iterable

import pdfplumber
import pypdfium2 as pdfium
from prometheus_client import Counter
from pydantic import BaseModel

from services.ocr.service import OCRService
from services.parsing.schema import InvoiceDraft, ParserFeedbackEntry
from services.parsing.service import parse_invoice_text
from services.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

OCR_UNUSABLE_WARNING = "OCR could not extract usable text"
NO_READABLE_TEXT_WARNING = "PDF contains no readable text"

_WHITESPACE = re.compile(r"\s+")


# Extraction metrics
text_extractions_total = Counter(
    "document_text_extractions_total",
    "Total PDF text extractions",
    ["source"],  # text_layer, ocr, none
)


class TextExtractionResult(BaseModel):
    """Text recovered from a PDF.

    Attributes:
        text: Extracted text (text layer or OCR output)
        used_ocr: Whether the text came from the OCR fallback
        page_count: Number of pages seen
        warnings: Extraction diagnostics for the parser warnings
    """

    text: str
    used_ocr: bool = False
    page_count: int = 0
    warnings: list[str] = []


def visible_length(text: str | None) -> int:
    """Number of non-whitespace characters."""
    return len(_WHITESPACE.sub("", text or ""))


class DocumentTextExtractor:
    """Reads the text of PDF invoices, falling back to OCR for scans."""

    def __init__(self, settings: Settings, ocr_service: OCRService | None = None) -> None:
        """Initialize extractor.

        Args:
            settings: Application settings (min_text_length, ocr_render_scale)
            ocr_service: OCR service for the fallback; created from settings if omitted
        """
        self.settings = settings
        self.ocr_service = ocr_service or OCRService(settings)

    def extract_text_layer(self, pdf_bytes: bytes) -> tuple[str, int]:
        """Read the embedded text of every page, joined by newlines.

        Returns:
            Tuple of (text, page count)
        """
        pages: list[str] = []
        with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
            for page in pdf.pages:
                pages.append(page.extract_text() or "")
        return "\n".join(pages), len(pages)

    def ocr_pages(self, pdf_bytes: bytes) -> tuple[str, list[str]]:
        """Render each page and run Tesseract on it.

        Returns:
            Tuple of (joined page text, warnings)
        """
        texts: list[str] = []
        warnings: list[str] = []
        pdf = pdfium.PdfDocument(pdf_bytes)
        try:
            for page_index in range(len(pdf)):
                page = pdf[page_index]
                try:
                    image = page.render(scale=self.settings.ocr_render_scale).to_pil()
                finally:
                    page.close()
                result = self.ocr_service.extract_image_text(image)
                if result.success:
                    texts.append(result.text)
                else:
                    warnings.append(f"OCR failed on page {page_index + 1}: {result.error}")
        finally:
            pdf.close()
        return "\n".join(texts), warnings

    def extract(self, pdf_bytes: bytes) -> TextExtractionResult:
        """Extract text from a PDF, using OCR when the text layer is too short.

        Never raises for unreadable documents; problems are reported as
        warnings on the result.

        Args:
            pdf_bytes: Raw PDF content

        Returns:
            TextExtractionResult
        """
        min_length = self.settings.min_text_length
        warnings: list[str] = []
        text = ""
        page_count = 0
        used_ocr = False

        try:
            text, page_count = self.extract_text_layer(pdf_bytes)
        except Exception as e:
            logger.warning(f"PDF text layer extraction failed: {e}")
            warnings.append(f"PDF text extraction failed: {str(e)}")

        if visible_length(text) < min_length:
            logger.info(
                f"PDF text layer has {visible_length(text)} visible character(s), trying OCR fallback"
            )
            try:
                ocr_text, ocr_warnings = self.ocr_pages(pdf_bytes)
            except Exception as e:
                logger.warning(f"OCR fallback failed: {e}")
                ocr_text, ocr_warnings = "", [f"OCR failed: {str(e)}"]

            warnings.extend(ocr_warnings)
            if visible_length(ocr_text) >= min_length:
                text = ocr_text
                used_ocr = True
            else:
                warnings.append(OCR_UNUSABLE_WARNING)
                text = ocr_text or text

        if visible_length(text) < min_length:
            warnings.append(NO_READABLE_TEXT_WARNING)
            text_extractions_total.labels(source="none").inc()
        else:
            text_extractions_total.labels(source="ocr" if used_ocr else "text_layer").inc()

        return TextExtractionResult(text=text, used_ocr=used_ocr, page_count=page_count, warnings=warnings)


def parse_invoice_document(
    pdf_bytes: bytes,
    supplier: str,
    feedback: Iterable[ParserFeedbackEntry] | None = None,
    *,
    invoice_no_override: str | None = None,
    invoice_date_override: str | None = None,
    settings: Settings | None = None,
    extractor: DocumentTextExtractor | None = None,
) -> InvoiceDraft:
    """Extract text from a PDF invoice and parse it into a validated draft.

    Args:
        pdf_bytes: Raw PDF content
        supplier: Supplier name as chosen by the user
        feedback: Snapshot of prior feedback entries
        invoice_no_override: Invoice number entered by the user
        invoice_date_override: Invoice date entered by the user
        settings: Application settings (defaults to environment configuration)
        extractor: Text extractor (created from settings if omitted)

    Returns:
        Validated InvoiceDraft with extraction warnings in ``parser.warnings``
    """
    settings = settings or get_settings()
    extractor = extractor or DocumentTextExtractor(settings)
    extraction = extractor.extract(pdf_bytes)

    return parse_invoice_text(
        extraction.text,
        supplier,
        feedback,
        settings=settings,
        used_ocr=extraction.used_ocr,
        extraction_warnings=extraction.warnings,
        invoice_no_override=invoice_no_override,
        invoice_date_override=invoice_date_override,
    )
