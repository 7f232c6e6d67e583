"""
OCR Service - text extraction from meal photos.

Tesseract is the only engine; the adapter applies the confidence policy
and canned-text substitution.
"""

from .adapter import FALLBACK_MEAL_TEXTS, OCRAdapter
from .base import OCREngine, OCREngineError, OCREngineResult, OCRResult
from .factory import get_ocr_adapter
from .tesseract_provider import TesseractOCREngine

__all__ = [
    "FALLBACK_MEAL_TEXTS",
    "OCRAdapter",
    "OCREngine",
    "OCREngineError",
    "OCREngineResult",
    "OCRResult",
    "TesseractOCREngine",
    "get_ocr_adapter",
]
