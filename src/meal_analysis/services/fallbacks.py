"""
Fallback response builder.

Three severity tiers of synthetic, schema-valid results:

- partial: some structured data survived; salvage it and default the rest
- empty: nothing usable was recovered; a constant result
- emergency: an unexpected exception inside the pipeline; a hard-coded
  circuit-breaker result that never reads request data
"""

import logging
import uuid
from collections.abc import Sequence
from typing import Any

from meal_analysis.models import (
    AnalysisMetadata,
    AnalysisResult,
    ExtractionStrategy,
    ImageQualityLevel,
)

from .normalizer import CORE_NUTRIENTS, AnalysisNormalizer, NormalizedAnalysis, default_unit

logger = logging.getLogger(__name__)


EMPTY_DESCRIPTION = "We couldn't analyze this meal properly. Please try again with a clearer photo."
EMPTY_FEEDBACK = "Unable to analyze the image."
EMPTY_SUGGESTIONS = [
    "Try taking the photo with better lighting and make sure the food is clearly visible.",
]

EMERGENCY_DESCRIPTION = "We're unable to analyze your meal at this time."
EMERGENCY_FEEDBACK = "Our systems are experiencing high load. Please try again in a few minutes."
EMERGENCY_SUGGESTIONS = [
    "Try again with a clearer photo",
    "Make sure the lighting is good",
    "Ensure your meal is visible in the frame",
]
EMERGENCY_MODEL = "emergency_fallback"
EMERGENCY_ERROR = "Emergency fallback triggered"

# Confidence multiplier applied to partial results
PARTIAL_CONFIDENCE_FACTOR = 0.6


def _zero_nutrients() -> list[dict[str, Any]]:
    return [
        {"name": name, "value": "0", "unit": default_unit(name), "isHighlight": True}
        for name in CORE_NUTRIENTS
    ]


class FallbackResponseBuilder:
    """Builds degraded results for the orchestrator."""

    def __init__(self, normalizer: AnalysisNormalizer | None = None):
        self.normalizer = normalizer or AnalysisNormalizer()

    def partial(
        self,
        data: dict[str, Any] | NormalizedAnalysis | None,
        *,
        request_id: str,
        health_goals: Sequence[str] = (),
        error: str = "",
        model_used: str = "none",
        used_fallback_model: bool = False,
        confidence: float = 0.5,
        image_quality: ImageQualityLevel = ImageQualityLevel.UNKNOWN,
        extracted_from_text: bool = False,
        processing_time_ms: int = 0,
        extraction_strategy: ExtractionStrategy | None = None,
        token_usage: dict[str, int] | None = None,
        degradations: Sequence[str] = (),
    ) -> AnalysisResult:
        """
        Salvage every valid field of ``data`` and default the rest.

        ``confidence`` is the confidence the data would have had as a complete
        result; it is scaled down here.
        """
        if isinstance(data, NormalizedAnalysis):
            normalized = data
        else:
            normalized = self.normalizer.normalize(data, health_goals)

        logger.warning(
            f"[{request_id}] Building partial result; synthesized fields: "
            f"{', '.join(normalized.flags.synthesized_fields) or 'none'}"
        )

        metadata = AnalysisMetadata(
            **normalized.flags.model_dump(),
            request_id=request_id,
            model_used=model_used,
            used_fallback_model=used_fallback_model,
            processing_time_ms=processing_time_ms,
            confidence=round(max(0.0, min(1.0, confidence * PARTIAL_CONFIDENCE_FACTOR)), 4),
            error=error,
            image_quality=image_quality,
            is_partial_result=True,
            extracted_from_text=extracted_from_text,
            fallback=False,
            extraction_strategy=extraction_strategy,
            token_usage=token_usage,
            degradations=list(degradations),
        )
        return AnalysisResult.model_validate({**normalized.data, "metadata": metadata})

    def empty(
        self,
        *,
        request_id: str,
        error: str,
        model_used: str = "none",
        used_fallback_model: bool = False,
        image_quality: ImageQualityLevel = ImageQualityLevel.UNKNOWN,
        extracted_from_text: bool = False,
        processing_time_ms: int = 0,
        degradations: Sequence[str] = (),
    ) -> AnalysisResult:
        """Constant result used when nothing could be recovered."""
        logger.warning(f"[{request_id}] Building empty fallback result: {error}")

        metadata = AnalysisMetadata(
            request_id=request_id,
            model_used=model_used or "none",
            used_fallback_model=used_fallback_model,
            processing_time_ms=processing_time_ms,
            confidence=0.0,
            error=error or "Analysis failed",
            image_quality=image_quality,
            extracted_from_text=extracted_from_text,
            fallback=True,
            description_was_default=True,
            nutrients_were_default=True,
            core_nutrients_added=list(CORE_NUTRIENTS),
            feedback_was_default=True,
            suggestions_were_default=True,
            goal_score_was_default=True,
            ingredients_were_default=True,
            degradations=list(degradations),
        )
        return AnalysisResult.model_validate({
            "description": EMPTY_DESCRIPTION,
            "nutrients": _zero_nutrients(),
            "feedback": EMPTY_FEEDBACK,
            "suggestions": list(EMPTY_SUGGESTIONS),
            "detailedIngredients": [],
            "goalScore": {"overall": 0, "specific": {}},
            "metadata": metadata,
        })

    def emergency(self, processing_time_ms: int = 0) -> AnalysisResult:
        """
        Hard-coded last-resort result.

        Takes no request data on purpose; it gets a fresh request id.
        """
        metadata = AnalysisMetadata(
            request_id=str(uuid.uuid4()),
            model_used=EMERGENCY_MODEL,
            used_fallback_model=True,
            processing_time_ms=max(0, processing_time_ms),
            confidence=0.0,
            error=EMERGENCY_ERROR,
            image_quality=ImageQualityLevel.UNKNOWN,
            fallback=True,
            description_was_default=True,
            nutrients_were_default=True,
            core_nutrients_added=list(CORE_NUTRIENTS),
            feedback_was_default=True,
            suggestions_were_default=True,
            goal_score_was_default=True,
            ingredients_were_default=True,
        )
        return AnalysisResult.model_validate({
            "description": EMERGENCY_DESCRIPTION,
            "nutrients": _zero_nutrients(),
            "feedback": EMERGENCY_FEEDBACK,
            "suggestions": list(EMERGENCY_SUGGESTIONS),
            "detailedIngredients": [],
            "goalScore": {"overall": 0, "specific": {}},
            "metadata": metadata,
        })
