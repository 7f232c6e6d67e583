"""
Meal analysis pipeline orchestrator.

Sequences image assessment, path selection (vision model or OCR plus
text analysis), JSON extraction, normalization and the fallback tiers.
``analyze`` never raises: provider and parsing failures degrade to a
lower-confidence path or a fallback tier, and anything unexpected becomes
the emergency tier.
"""

import logging
import time
from functools import lru_cache
from typing import Any

from pydantic import ValidationError

from meal_analysis.core.config import Settings, get_settings
from meal_analysis.models import (
    AnalysisMetadata,
    AnalysisOutcome,
    AnalysisPath,
    AnalysisRequest,
    AnalysisResult,
    ErrorCategory,
    ExtractionStrategy,
    ImageQualityLevel,
    OutcomeStatus,
)

from .fallbacks import FallbackResponseBuilder
from .image_quality import ImageAssessment, ImageQualityAssessor
from .json_repair import ExtractionResult, JSONExtractor
from .normalizer import AnalysisNormalizer, NormalizedAnalysis
from .nutrition_lookup import get_nutrition_lookup_service
from .ocr import OCRAdapter, get_ocr_adapter
from .text_analysis import TextMealAnalyzer
from .vision import REQUIRED_RESPONSE_KEYS, VisionAnalysisResult, VisionAnalyzer, get_vision_analyzer

logger = logging.getLogger(__name__)


# Confidence of a clean vision result, by model
VISION_CONFIDENCE = 0.85
FALLBACK_MODEL_CONFIDENCE = 0.7
# Text-path confidence never exceeds this, whatever OCR reports
TEXT_ANALYSIS_CONFIDENCE = 0.7
# Deducted per extraction strategy beyond a direct parse
REPAIR_PENALTY = 0.1
# Deducted per field the normalizer had to synthesize
DEFAULTED_FIELD_PENALTY = 0.05

TEXT_ANALYSIS_MODEL = "text-based-analysis"

STRATEGY_ORDER = list(ExtractionStrategy)


def score_confidence(
    base: float,
    strategy: ExtractionStrategy | None = None,
    defaulted_fields: int = 0,
) -> float:
    """Lower a base confidence for repairs and synthesized fields."""
    steps = STRATEGY_ORDER.index(strategy) if strategy else 0
    confidence = base - steps * REPAIR_PENALTY - defaulted_fields * DEFAULTED_FIELD_PENALTY
    return round(max(0.0, min(1.0, confidence)), 4)


class _Run:
    """Per-request state: timing, degradations and what the image looked like."""

    def __init__(self, request: AnalysisRequest):
        self.request = request
        self.request_id = request.request_id
        self.start_time = time.time()
        self.degradations: list[str] = []
        self.image_quality = ImageQualityLevel.UNKNOWN

    def degrade(self, code: str, message: str) -> None:
        self.degradations.append(code)
        logger.warning(f"[{self.request_id}] {message}")

    @property
    def elapsed_ms(self) -> int:
        return int((time.time() - self.start_time) * 1000)


class MealAnalysisPipeline:
    """
    Entry point for meal analysis.

    Collaborators default to the factory-configured services; tests inject
    their own.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        vision: VisionAnalyzer | None = None,
        ocr: OCRAdapter | None = None,
        text_analyzer: TextMealAnalyzer | None = None,
        extractor: JSONExtractor | None = None,
        normalizer: AnalysisNormalizer | None = None,
        fallbacks: FallbackResponseBuilder | None = None,
        quality: ImageQualityAssessor | None = None,
    ):
        self.settings = settings or get_settings()
        self.vision = vision or get_vision_analyzer()
        self.ocr = ocr or get_ocr_adapter()
        self.text_analyzer = text_analyzer or TextMealAnalyzer(get_nutrition_lookup_service())
        self.extractor = extractor or JSONExtractor(max_chars=self.settings.max_extraction_chars)
        self.normalizer = normalizer or AnalysisNormalizer()
        self.fallbacks = fallbacks or FallbackResponseBuilder(self.normalizer)
        self.quality = quality or ImageQualityAssessor(max_bytes=self.settings.max_image_bytes)

    async def analyze(self, request: Any) -> tuple[AnalysisResult, AnalysisOutcome]:
        """
        Analyze one meal.

        Args:
            request: AnalysisRequest; None, raw image bytes/strings and dicts
                are accepted and coerced

        Returns:
            Tuple of (result, outcome). Never raises.
        """
        start_time = time.time()
        request_id = getattr(request, "request_id", None) or "-"

        try:
            request, error = self._coerce_request(request)
            run = _Run(request)
            if error:
                run.degrade("invalid_request", error)
                return self._empty(run, error, ErrorCategory.INVALID_IMAGE)
            return await self._analyze(run)
        except Exception:
            logger.exception(f"[{request_id}] Unexpected error in meal analysis pipeline")
            result = self.fallbacks.emergency(
                processing_time_ms=int((time.time() - start_time) * 1000)
            )
            logger.warning(
                f"[{request_id}] Emergency fallback issued as {result.metadata.request_id}"
            )
            return result, AnalysisOutcome(
                status=OutcomeStatus.EMERGENCY,
                path=AnalysisPath.NONE,
                degradations=["internal_error"],
                error_category=ErrorCategory.INTERNAL_ERROR,
            )

    @staticmethod
    def _coerce_request(request: Any) -> tuple[AnalysisRequest, str | None]:
        if isinstance(request, AnalysisRequest):
            return request, None
        if request is None:
            return AnalysisRequest(), "No analysis request provided"
        if isinstance(request, (str, bytes, bytearray)):
            return AnalysisRequest(image=request), None
        if isinstance(request, dict):
            try:
                return AnalysisRequest.model_validate(request), None
            except ValidationError as e:
                return AnalysisRequest(), f"Invalid analysis request: {e.error_count()} error(s)"
        return AnalysisRequest(), f"Unsupported request type: {type(request).__name__}"

    # -------------------------------------------------------------------------
    # Path selection
    # -------------------------------------------------------------------------

    async def _analyze(self, run: _Run) -> tuple[AnalysisResult, AnalysisOutcome]:
        request = run.request
        logger.info(
            f"[{run.request_id}] Starting meal analysis "
            f"({len(request.health_goals)} goals, {len(request.dietary_preferences)} preferences)"
        )

        assessment = self.quality.assess(request.image)
        run.image_quality = assessment.quality
        if not assessment.valid:
            run.degrade("invalid_image", f"Invalid image: {assessment.error}")
            return self._empty(run, assessment.error or "Invalid image", ErrorCategory.INVALID_IMAGE)

        logger.info(
            f"[{run.request_id}] Image quality {assessment.quality.value} "
            f"({assessment.size_kb:.1f} KB, {assessment.format})"
        )

        if self.settings.use_vision_model:
            handled = await self._vision_path(run, assessment)
            if handled is not None:
                return handled
        else:
            logger.info(f"[{run.request_id}] Vision model disabled; using OCR")

        return await self._ocr_path(run, assessment)

    async def _vision_path(
        self, run: _Run, assessment: ImageAssessment
    ) -> tuple[AnalysisResult, AnalysisOutcome] | None:
        """
        Run the vision model.

        Returns None when the pipeline should continue with OCR; in force
        mode every failure fails closed instead.
        """
        force = self.settings.force_vision_model
        request = run.request

        availability = await self.vision.check_model(run.request_id)
        if not availability.available:
            if force:
                reason = availability.failure.value if availability.failure else "unavailable"
                run.degrade(
                    "vision_unavailable",
                    f"Vision model unavailable ({reason}) in force mode; not falling back",
                )
                return self._empty(
                    run,
                    f"Vision model unavailable: {availability.reason}",
                    ErrorCategory.PROVIDER_UNAVAILABLE,
                    model_used="error",
                    path=AnalysisPath.VISION,
                )
            if self._vision_configured():
                run.degrade(
                    "fallback_model",
                    f"Using fallback model {availability.model}: {availability.reason}",
                )
            else:
                run.degrade("vision_not_configured", "Vision model not configured; using OCR")
                return None

        vision_result = await self.vision.analyze(
            assessment.data_url,
            request.health_goals,
            request.dietary_preferences,
            model=availability.model,
            request_id=run.request_id,
        )

        if not vision_result.success:
            if force:
                run.degrade("vision_failed", f"Vision call failed in force mode: {vision_result.error}")
                return self._empty(
                    run,
                    vision_result.error or "Vision model call failed",
                    ErrorCategory.PROVIDER_UNAVAILABLE,
                    model_used="error",
                    used_fallback_model=vision_result.used_fallback_model,
                    path=AnalysisPath.VISION,
                )
            run.degrade("vision_failed", f"Vision call failed, downgrading to OCR: {vision_result.error}")
            return None

        extraction = self.extractor.extract(vision_result.raw_text, run.request_id)
        if not extraction.success:
            if force:
                run.degrade("malformed_output", "Vision output unparseable in force mode")
                return self._empty(
                    run,
                    "Could not parse the vision model response",
                    ErrorCategory.MALFORMED_OUTPUT,
                    model_used=vision_result.model_used,
                    used_fallback_model=vision_result.used_fallback_model,
                    path=AnalysisPath.VISION,
                )
            run.degrade("malformed_output", "Vision output unparseable, downgrading to OCR")
            return None

        return self._from_vision(run, assessment, vision_result, extraction)

    def _vision_configured(self) -> bool:
        return bool(getattr(self.vision, "is_configured", True))

    def _from_vision(
        self,
        run: _Run,
        assessment: ImageAssessment,
        vision_result: VisionAnalysisResult,
        extraction: ExtractionResult,
    ) -> tuple[AnalysisResult, AnalysisOutcome]:
        request = run.request
        strategy = extraction.strategy
        if extraction.was_repaired:
            run.degrade(f"repaired_{strategy.value}", f"Model output repaired with {strategy.value}")

        base = FALLBACK_MODEL_CONFIDENCE if vision_result.used_fallback_model else VISION_CONFIDENCE
        present = self.normalizer.index_fields(extraction.data)
        missing = [key for key in REQUIRED_RESPONSE_KEYS if key not in present]

        if missing:
            run.degrade("incomplete_output", f"Model output missing: {', '.join(missing)}")
            result = self.fallbacks.partial(
                extraction.data,
                request_id=run.request_id,
                health_goals=request.health_goals,
                error=f"Model output missing required fields: {', '.join(missing)}",
                model_used=vision_result.model_used,
                used_fallback_model=vision_result.used_fallback_model,
                confidence=score_confidence(base, strategy),
                image_quality=assessment.quality,
                processing_time_ms=run.elapsed_ms,
                extraction_strategy=strategy,
                token_usage=vision_result.token_usage,
                degradations=run.degradations,
            )
            return result, self._outcome(
                run, OutcomeStatus.PARTIAL, AnalysisPath.VISION,
                ErrorCategory.INCOMPLETE_OUTPUT, strategy,
            )

        normalized = self.normalizer.normalize(extraction.data, request.health_goals)
        confidence = score_confidence(base, strategy, len(normalized.flags.synthesized_fields))
        result = self._complete(
            run,
            normalized,
            model_used=vision_result.model_used,
            used_fallback_model=vision_result.used_fallback_model,
            confidence=confidence,
            extraction_strategy=strategy,
            token_usage=vision_result.token_usage,
        )

        logger.info(
            f"[{run.request_id}] Vision analysis complete "
            f"(model={vision_result.model_used}, confidence={confidence})"
        )
        category = ErrorCategory.MALFORMED_OUTPUT if extraction.was_repaired else None
        return result, self._outcome(
            run, OutcomeStatus.COMPLETE, AnalysisPath.VISION, category, strategy
        )

    async def _ocr_path(
        self, run: _Run, assessment: ImageAssessment
    ) -> tuple[AnalysisResult, AnalysisOutcome]:
        request = run.request
        logger.info(f"[{run.request_id}] Running OCR path")

        ocr = await self.ocr.run(assessment.image_bytes, run.request_id)
        if ocr.is_low_confidence:
            run.degrade("ocr_low_confidence", f"Low OCR confidence: {ocr.error}")
        if ocr.used_canned_text:
            run.degrade("canned_text", "OCR text replaced with a canned meal description")

        analysis = await self.text_analyzer.analyze(
            ocr.text,
            request.health_goals,
            request.dietary_preferences,
            request_id=run.request_id,
        )
        confidence = min(ocr.confidence, TEXT_ANALYSIS_CONFIDENCE)

        if analysis.success:
            normalized = self.normalizer.normalize(analysis.document, request.health_goals)
            result = self._complete(
                run,
                normalized,
                model_used=TEXT_ANALYSIS_MODEL,
                confidence=score_confidence(
                    confidence, defaulted_fields=len(normalized.flags.synthesized_fields)
                ),
                extracted_from_text=True,
                error=ocr.error or "",
            )
            logger.info(
                f"[{run.request_id}] Text analysis complete "
                f"(confidence={result.metadata.confidence})"
            )
            return result, self._outcome(
                run, OutcomeStatus.COMPLETE, AnalysisPath.OCR, ocr.error_category
            )

        if analysis.error_category == ErrorCategory.NUTRIENT_LOOKUP_FAILED and analysis.food_items:
            run.degrade("nutrient_lookup_failed", f"Nutrient lookup failed: {analysis.error}")
            result = self.fallbacks.partial(
                analysis.document,
                request_id=run.request_id,
                health_goals=request.health_goals,
                error=analysis.error or "Nutrient lookup failed",
                model_used=TEXT_ANALYSIS_MODEL,
                confidence=confidence,
                image_quality=assessment.quality,
                extracted_from_text=True,
                processing_time_ms=run.elapsed_ms,
                degradations=run.degradations,
            )
            return result, self._outcome(
                run, OutcomeStatus.PARTIAL, AnalysisPath.OCR, ErrorCategory.NUTRIENT_LOOKUP_FAILED
            )

        run.degrade("no_food_items", f"Text analysis failed: {analysis.error}")
        return self._empty(
            run,
            analysis.error or "No food items identified",
            analysis.error_category or ErrorCategory.NO_FOOD_ITEMS,
            model_used=TEXT_ANALYSIS_MODEL,
            extracted_from_text=True,
            path=AnalysisPath.OCR,
        )

    # -------------------------------------------------------------------------
    # Result assembly
    # -------------------------------------------------------------------------

    def _complete(
        self,
        run: _Run,
        normalized: NormalizedAnalysis,
        *,
        model_used: str,
        confidence: float,
        used_fallback_model: bool = False,
        extracted_from_text: bool = False,
        error: str = "",
        extraction_strategy: ExtractionStrategy | None = None,
        token_usage: dict[str, int] | None = None,
    ) -> AnalysisResult:
        metadata = AnalysisMetadata(
            **normalized.flags.model_dump(),
            request_id=run.request_id,
            model_used=model_used,
            used_fallback_model=used_fallback_model,
            processing_time_ms=run.elapsed_ms,
            confidence=confidence,
            error=error,
            image_quality=run.image_quality,
            extracted_from_text=extracted_from_text,
            extraction_strategy=extraction_strategy,
            token_usage=token_usage,
            degradations=list(run.degradations),
        )
        return AnalysisResult.model_validate({**normalized.data, "metadata": metadata})

    def _empty(
        self,
        run: _Run,
        error: str,
        category: ErrorCategory,
        *,
        model_used: str = "none",
        used_fallback_model: bool = False,
        extracted_from_text: bool = False,
        path: AnalysisPath = AnalysisPath.NONE,
    ) -> tuple[AnalysisResult, AnalysisOutcome]:
        result = self.fallbacks.empty(
            request_id=run.request_id,
            error=error,
            model_used=model_used,
            used_fallback_model=used_fallback_model,
            image_quality=run.image_quality,
            extracted_from_text=extracted_from_text,
            processing_time_ms=run.elapsed_ms,
            degradations=run.degradations,
        )
        return result, self._outcome(run, OutcomeStatus.FALLBACK, path, category)

    @staticmethod
    def _outcome(
        run: _Run,
        status: OutcomeStatus,
        path: AnalysisPath,
        category: ErrorCategory | None = None,
        strategy: ExtractionStrategy | None = None,
    ) -> AnalysisOutcome:
        logger.info(
            f"[{run.request_id}] Analysis finished: status={status.value}, path={path.value}, "
            f"degradations={len(run.degradations)}, {run.elapsed_ms}ms"
        )
        return AnalysisOutcome(
            status=status,
            path=path,
            degradations=list(run.degradations),
            error_category=category,
            extraction_strategy=strategy,
        )


@lru_cache(maxsize=1)
def get_pipeline() -> MealAnalysisPipeline:
    """Get the process-wide pipeline built from settings."""
    return MealAnalysisPipeline()


def clear_pipeline_cache():
    """Clear the cached pipeline (useful for testing)."""
    get_pipeline.cache_clear()


async def analyze(request: Any) -> tuple[AnalysisResult, AnalysisOutcome]:
    """Analyze one meal with the default pipeline. Never raises."""
    try:
        pipeline = get_pipeline()
    except Exception:
        logger.exception("Could not build the meal analysis pipeline")
        result = FallbackResponseBuilder().emergency()
        return result, AnalysisOutcome(
            status=OutcomeStatus.EMERGENCY,
            degradations=["internal_error"],
            error_category=ErrorCategory.INTERNAL_ERROR,
        )
    return await pipeline.analyze(request)
