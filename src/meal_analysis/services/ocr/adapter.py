"""
OCR adapter.

Wraps an OCR engine with the confidence policy: results below the
threshold are flagged, and when there is too little text to work with one
of a few canned example meals is substituted so the text-only analyzer
always has input.
"""

import logging
import random
import time

from meal_analysis.models import ErrorCategory

from .base import OCREngine, OCREngineError, OCRResult

logger = logging.getLogger(__name__)


FALLBACK_MEAL_TEXTS = (
    "Grilled chicken breast with brown rice and steamed broccoli. "
    "Approximately 350 calories, 35g protein, 30g carbs, 8g fat.",
    "Salmon fillet with quinoa and mixed vegetables including carrots, peas and bell peppers. "
    "420 calories, 28g protein, 35g carbs, 18g fat.",
    "Mixed salad with lettuce, tomatoes, cucumber, avocado, boiled eggs and grilled chicken. "
    "Olive oil dressing. 380 calories, 25g protein, 15g carbs, 22g fat.",
    "Greek yogurt with berries, honey and granola. "
    "280 calories, 15g protein, 40g carbs, 6g fat.",
    "Vegetable stir-fry with tofu, broccoli, carrots, snap peas and bell peppers. "
    "Served with brown rice. 310 calories, 18g protein, 42g carbs, 9g fat.",
)

# Confidence reported when canned text replaces the OCR output
CANNED_TEXT_CONFIDENCE = 0.4


class OCRAdapter:
    """Runs OCR and guarantees usable text."""

    def __init__(
        self,
        engine: OCREngine,
        confidence_threshold: float = 0.7,
        min_text_length: int = 10,
        rng: random.Random | None = None,
    ):
        """
        Args:
            engine: OCR engine to run
            confidence_threshold: Below this (0-1) the output is low-confidence
            min_text_length: Low-confidence text must be longer than this to be kept
            rng: Random source for picking canned text (seed it in tests)
        """
        self.engine = engine
        self.confidence_threshold = confidence_threshold
        self.min_text_length = min_text_length
        self.rng = rng or random.Random()

    def _canned(
        self,
        request_id: str,
        reason: str,
        engine_confidence: float,
        start_time: float,
    ) -> OCRResult:
        text = self.rng.choice(FALLBACK_MEAL_TEXTS)
        logger.warning(f"[{request_id}] Using canned meal text: {reason}")
        return OCRResult(
            text=text,
            confidence=min(CANNED_TEXT_CONFIDENCE, self.confidence_threshold),
            engine_confidence=engine_confidence,
            is_low_confidence=True,
            used_canned_text=True,
            error=reason,
            error_category=ErrorCategory.OCR_LOW_CONFIDENCE,
            processing_time_ms=int((time.time() - start_time) * 1000),
        )

    async def run(self, image_data: bytes, request_id: str = "-") -> OCRResult:
        """
        Extract text from an image.

        Never raises for engine failures; the returned text is never empty.
        """
        start_time = time.time()

        try:
            raw = await self.engine.extract_text(image_data)
        except OCREngineError as e:
            logger.error(f"[{request_id}] OCR engine {e.provider} failed: {e.message}")
            return self._canned(request_id, f"OCR failed: {e.message}", 0.0, start_time)

        text = raw.text.strip()
        confidence = raw.confidence

        if confidence >= self.confidence_threshold and text:
            logger.info(
                f"[{request_id}] OCR extracted {len(text)} chars "
                f"(confidence {confidence:.2f})"
            )
            return OCRResult(
                text=text,
                confidence=confidence,
                engine_confidence=confidence,
                processing_time_ms=int((time.time() - start_time) * 1000),
            )

        if len(text) > self.min_text_length:
            logger.warning(
                f"[{request_id}] OCR confidence {confidence:.2f} below "
                f"{self.confidence_threshold:.2f}; keeping {len(text)} chars of text"
            )
            return OCRResult(
                text=text,
                confidence=confidence,
                engine_confidence=confidence,
                is_low_confidence=True,
                error=f"OCR confidence {confidence:.2f} below threshold",
                error_category=ErrorCategory.OCR_LOW_CONFIDENCE,
                processing_time_ms=int((time.time() - start_time) * 1000),
            )

        return self._canned(
            request_id,
            f"OCR confidence {confidence:.2f} with only {len(text)} chars of text",
            confidence,
            start_time,
        )
