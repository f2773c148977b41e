"""Unit tests for OCR service.

Tests cover:
- Text extraction from image files and in-memory images
- Language selection from settings
- Error handling for invalid files and Tesseract failures
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from services.ocr.service import OCRResult, OCRService
from services.shared.config import Settings


@pytest.fixture
def test_image_path(tmp_path: Path) -> Path:
    """Create a simple test image."""
    img_path = tmp_path / "test_image.png"
    img = Image.new("RGB", (200, 50), color="white")
    img.save(img_path)
    return img_path


@pytest.fixture
def ocr_service() -> OCRService:
    """Create OCR service instance."""
    return OCRService(Settings(ocr_languages="deu+eng"))


def test_ocr_service_initialization(ocr_service: OCRService) -> None:
    """Test that OCR service initializes correctly."""
    assert isinstance(ocr_service.settings, Settings)


@patch("services.ocr.service.pytesseract.image_to_string")
def test_extract_text_success(
    mock_ocr: MagicMock, ocr_service: OCRService, test_image_path: Path
) -> None:
    """Test successful text extraction from image."""
    mock_ocr.return_value = "Rechnung Nr. 4711"

    result = ocr_service.extract_text(test_image_path)

    assert isinstance(result, OCRResult)
    assert result.text == "Rechnung Nr. 4711"
    assert result.success is True
    assert result.error is None
    mock_ocr.assert_called_once()


@patch("services.ocr.service.pytesseract.image_to_string")
def test_extract_image_text_uses_configured_languages(
    mock_ocr: MagicMock, ocr_service: OCRService
) -> None:
    """Test that Tesseract is called with the configured language codes."""
    mock_ocr.return_value = "text"
    image = Image.new("RGB", (10, 10), color="white")

    ocr_service.extract_image_text(image)

    assert mock_ocr.call_args.kwargs["lang"] == "deu+eng"


@patch("services.ocr.service.pytesseract.image_to_string")
def test_extract_image_text_tesseract_failure(mock_ocr: MagicMock, ocr_service: OCRService) -> None:
    """Test that Tesseract errors are reported instead of raised."""
    mock_ocr.side_effect = RuntimeError("tesseract is not installed")
    image = Image.new("RGB", (10, 10), color="white")

    result = ocr_service.extract_image_text(image)

    assert result.success is False
    assert result.text == ""
    assert result.error is not None
    assert "tesseract is not installed" in result.error


def test_extract_text_file_not_found(ocr_service: OCRService) -> None:
    """Test error handling for non-existent file."""
    result = ocr_service.extract_text(Path("/non/existent/file.png"))

    assert result.success is False
    assert result.text == ""
    assert result.error is not None
    assert "not found" in result.error.lower()


def test_extract_text_invalid_image(ocr_service: OCRService, tmp_path: Path) -> None:
    """Test error handling for invalid image file."""
    invalid_file = tmp_path / "not_an_image.txt"
    invalid_file.write_text("This is not an image")

    result = ocr_service.extract_text(invalid_file)

    assert result.success is False
    assert result.text == ""
    assert result.error is not None


def test_tesseract_cmd_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that TESSERACT_CMD overrides the Tesseract binary path."""
    monkeypatch.setenv("TESSERACT_CMD", "/opt/tesseract/bin/tesseract")

    with patch("services.ocr.service.pytesseract.pytesseract") as mock_module:
        OCRService(Settings())

    assert mock_module.tesseract_cmd == "/opt/tesseract/bin/tesseract"
