"""OCR service using Tesseract.

Used as the fallback when a PDF carries no usable text layer:
- Configurable Tesseract path via environment variables
- Language selection from settings (German and English by default)
- Errors reported in the result model instead of raised

Based on pytesseract documentation:
https://github.com/madmaze/pytesseract
"""

import logging
import os
import time
from pathlib import Path

import pytesseract
from PIL import Image
from prometheus_client import Counter, Histogram
from pydantic import BaseModel

from services.shared.config import Settings

logger = logging.getLogger(__name__)


# OCR processing metrics
ocr_processing_duration_seconds = Histogram(
    "ocr_processing_duration_seconds",
    "OCR processing duration in seconds",
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

ocr_requests_total = Counter(
    "ocr_requests_total",
    "Total OCR processing requests",
    ["status"],  # success, failed
)


class OCRResult(BaseModel):
    """Result of OCR operation.

    Attributes:
        text: Extracted text content
        success: Whether operation succeeded
        error: Error message if operation failed
    """

    text: str
    success: bool
    error: str | None = None


class OCRService:
    """OCR service using Tesseract engine."""

    def __init__(self, settings: Settings) -> None:
        """Initialize OCR service.

        Args:
            settings: Application settings (uses ocr_languages)
        """
        self.settings = settings
        self._configure_tesseract()

    def _configure_tesseract(self) -> None:
        """Configure Tesseract command path from environment.

        Allows overriding default Tesseract path via TESSERACT_CMD environment variable.
        Common paths:
        - Linux: /usr/bin/tesseract
        - macOS: /opt/homebrew/bin/tesseract or /usr/local/bin/tesseract
        - Windows: C:\\Program Files\\Tesseract-OCR\\tesseract.exe
        """
        tesseract_cmd = os.getenv("TESSERACT_CMD")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def extract_image_text(self, image: Image.Image) -> OCRResult:
        """Run Tesseract on an in-memory image (e.g. a rendered PDF page).

        Args:
            image: PIL image

        Returns:
            OCRResult with extracted text or error information
        """
        start_time = time.time()
        try:
            text = pytesseract.image_to_string(image, lang=self.settings.ocr_languages)
        except Exception as e:
            ocr_requests_total.labels(status="failed").inc()
            logger.warning(f"Tesseract failed: {e}")
            return OCRResult(text="", success=False, error=f"OCR processing failed: {str(e)}")

        ocr_processing_duration_seconds.observe(time.time() - start_time)
        ocr_requests_total.labels(status="success").inc()
        return OCRResult(text=text, success=True)

    def extract_text(self, image_path: Path) -> OCRResult:
        """Extract text from image file.

        Args:
            image_path: Path to image file

        Returns:
            OCRResult with extracted text or error information
        """
        if not image_path.exists():
            return OCRResult(text="", success=False, error=f"Image file not found: {image_path}")

        try:
            image = Image.open(image_path)
        except Exception as e:
            return OCRResult(text="", success=False, error=f"OCR processing failed: {str(e)}")

        return self.extract_image_text(image)
