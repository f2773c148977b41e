"""Shared configuration management for the invoice draft engine.

Based on Pydantic Settings v2:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_DEFAULT_TEMPLATE=meyer_horn
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="invoice-draft-engine",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Template parsing
    default_template: Literal["meyer_horn", "beyers"] = Field(
        default="beyers",
        description="Template applied when the supplier name matches no known template",
    )
    variance_warning_percent: float = Field(
        default=0.5,
        ge=0,
        description="Warn when computed gross deviates from the printed gross by more than this",
    )

    # Price history
    outlier_threshold: float = Field(
        default=3.5,
        gt=0,
        description="Modified z-score above which a price point counts as an outlier",
    )

    # Text extraction / OCR
    min_text_length: int = Field(
        default=20,
        ge=0,
        description="Minimum non-whitespace characters before extracted PDF text is trusted",
    )
    ocr_languages: str = Field(
        default="deu+eng",
        description="Tesseract language codes used for the OCR fallback",
    )
    ocr_render_scale: float = Field(
        default=2.0,
        gt=0,
        description="Scale factor used when rendering PDF pages for OCR",
    )

    # API
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        gt=0,
        description="Maximum accepted upload size in bytes",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
