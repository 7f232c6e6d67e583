"""
Base classes and models for the OCR service.

Defines the abstract interface OCR engines implement, plus the
standardized response models.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from meal_analysis.models import ErrorCategory


class OCREngineResult(BaseModel):
    """Raw result from an OCR engine."""

    text: str = Field("", description="Recognized text, one line per text line")
    confidence: float = Field(
        0.0, ge=0.0, le=1.0, description="Mean word confidence 0-1"
    )
    word_count: int = Field(0, ge=0)
    provider: str = Field(..., description="Engine that produced this result")
    processing_time_ms: int = Field(0, ge=0)


class OCRResult(BaseModel):
    """Text handed to the text-only analyzer, always non-empty."""

    text: str = Field(..., min_length=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    engine_confidence: float = Field(
        0.0, ge=0.0, le=1.0, description="What the engine reported, before substitution"
    )
    is_low_confidence: bool = False
    used_canned_text: bool = Field(
        False, description="Text is one of the canned example meals, not from the image"
    )
    error: str | None = None
    error_category: ErrorCategory | None = None
    processing_time_ms: int = Field(0, ge=0)


class OCREngineError(Exception):
    """Error while running OCR."""

    def __init__(
        self,
        message: str,
        error_code: str = "OCR_ERROR",
        provider: str = "unknown",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider = provider
        self.details = details or {}


class OCREngine(ABC):
    """
    Abstract base class for OCR engines.

    Engines raise OCREngineError on failure; the adapter turns that into
    a result value.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this engine."""
        ...

    @abstractmethod
    async def extract_text(self, image_data: bytes) -> OCREngineResult:
        """
        Recognize text in an image.

        Args:
            image_data: Raw image bytes (decoded, not base64)

        Returns:
            OCREngineResult with text and 0-1 confidence

        Raises:
            OCREngineError: If the engine fails
        """
        ...
