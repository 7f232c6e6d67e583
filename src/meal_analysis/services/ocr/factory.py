"""
Factory for the OCR adapter.

Reads configuration from settings and wires the tesseract engine into the
confidence policy.
"""

import logging
from functools import lru_cache

from meal_analysis.core.config import get_settings

from .adapter import OCRAdapter
from .tesseract_provider import TesseractOCREngine

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_ocr_adapter() -> OCRAdapter:
    """
    Get the configured OCR adapter.

    Configuration is read from settings:
    - tesseract_cmd: Optional path to the tesseract binary
    - ocr_confidence_threshold: Low-confidence cut-off (0-1)
    - ocr_min_text_length: Minimum length of low-confidence text worth keeping
    """
    settings = get_settings()

    logger.info(
        f"Initializing tesseract OCR (threshold={settings.ocr_confidence_threshold})"
    )

    engine = TesseractOCREngine(tesseract_cmd=settings.tesseract_cmd or None)
    return OCRAdapter(
        engine,
        confidence_threshold=settings.ocr_confidence_threshold,
        min_text_length=settings.ocr_min_text_length,
    )


def clear_service_cache():
    """Clear the cached adapter instance (useful for testing)."""
    get_ocr_adapter.cache_clear()
