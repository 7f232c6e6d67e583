"""Pydantic models for the meal analysis contract.

Attributes are snake_case; every model serialises with camelCase aliases
(``model_dump(by_alias=True)``) so results keep the field names consumers
of the analysis payload already rely on.
"""

import base64
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Enums
# =============================================================================


class ErrorCategory(str, Enum):
    """Why a pipeline stage did not produce a clean result."""

    PROVIDER_UNAVAILABLE = "provider_unavailable"  # Vision probe or call failed
    OCR_LOW_CONFIDENCE = "ocr_low_confidence"  # OCR below threshold / too little text
    MALFORMED_OUTPUT = "malformed_output"  # Model text was not parseable JSON
    INCOMPLETE_OUTPUT = "incomplete_output"  # Valid JSON missing required keys
    NUTRIENT_LOOKUP_FAILED = "nutrient_lookup_failed"
    NO_FOOD_ITEMS = "no_food_items"  # Text analysis found nothing to look up
    INVALID_IMAGE = "invalid_image"
    INTERNAL_ERROR = "internal_error"  # Unexpected exception inside the pipeline


class OutcomeStatus(str, Enum):
    """Which tier produced the final result."""

    COMPLETE = "complete"
    PARTIAL = "partial"
    FALLBACK = "fallback"
    EMERGENCY = "emergency"


class AnalysisPath(str, Enum):
    """Which upstream path produced the data."""

    VISION = "vision"
    OCR = "ocr"
    NONE = "none"


class ImageQualityLevel(str, Enum):
    """Coarse image quality classification."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INVALID = "invalid"
    UNKNOWN = "unknown"


class ExtractionStrategy(str, Enum):
    """JSON recovery strategies, in the order they are attempted."""

    DIRECT = "direct"
    BRACE_SPAN = "brace_span"
    CODE_BLOCK = "code_block"
    KEY_VALUE = "key_value"
    SENTENCE_SCAN = "sentence_scan"


# =============================================================================
# Request
# =============================================================================


class AnalysisRequest(BaseModel):
    """
    One user-submitted meal photo plus personalisation context.

    The image may be given as raw bytes, a bare base64 string or a
    ``data:image/...;base64,`` URL; bytes are base64-encoded on the way in.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    image: str = Field("", description="Base64 image or data URL")
    health_goals: tuple[str, ...] = Field((), alias="healthGoals")
    dietary_preferences: tuple[str, ...] = Field((), alias="dietaryPreferences")
    request_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        alias="requestId",
        description="Correlation id used for tracing only",
    )

    @field_validator("image", mode="before")
    @classmethod
    def _encode_image(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (bytes, bytearray)):
            return base64.b64encode(bytes(value)).decode("ascii")
        return value

    @field_validator("health_goals", "dietary_preferences", mode="before")
    @classmethod
    def _clean_strings(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError(f"expected a list of strings, got {type(value).__name__}")
        return tuple(str(v).strip() for v in value if v is not None and str(v).strip())


# =============================================================================
# Result
# =============================================================================


class Nutrient(BaseModel):
    """A single nutrient line; ``value`` is always a non-negative numeric string."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    value: str = "0"
    unit: str = "g"
    is_highlight: bool = Field(False, alias="isHighlight")
    percent_of_daily_value: float | None = Field(None, alias="percentOfDailyValue")

    @property
    def amount(self) -> float:
        """Numeric value of the nutrient."""
        return float(self.value)


class Ingredient(BaseModel):
    """An ingredient detected in the meal."""

    name: str
    category: str = "unknown"
    confidence: float = Field(0.5, ge=0.0, le=1.0)


class GoalScore(BaseModel):
    """How well the meal fits the user's goals (0-100)."""

    overall: float = Field(..., ge=0, le=100)
    specific: dict[str, float] = Field(default_factory=dict)


class NormalizationFlags(BaseModel):
    """Which fields were synthesised or converted during normalisation."""

    model_config = ConfigDict(populate_by_name=True)

    nutrients_were_default: bool = Field(False, alias="nutrientsWereDefault")
    nutrients_were_converted: bool = Field(False, alias="nutrientsWereConverted")
    core_nutrients_added: list[str] = Field(default_factory=list, alias="coreNutrientsAdded")
    description_was_default: bool = Field(False, alias="descriptionWasDefault")
    feedback_was_default: bool = Field(False, alias="feedbackWasDefault")
    feedback_was_converted: bool = Field(False, alias="feedbackWasConverted")
    suggestions_were_default: bool = Field(False, alias="suggestionsWereDefault")
    suggestions_were_converted: bool = Field(False, alias="suggestionsWereConverted")
    goal_score_was_default: bool = Field(False, alias="goalScoreWasDefault")
    goal_score_was_converted: bool = Field(False, alias="goalScoreWasConverted")
    goal_score_specific_was_populated: bool = Field(
        False, alias="goalScoreSpecificWasPopulated"
    )
    ingredients_were_default: bool = Field(False, alias="ingredientsWereDefault")

    @property
    def synthesized_fields(self) -> list[str]:
        """Names of the fields that were filled from defaults."""
        fields = []
        if self.description_was_default:
            fields.append("description")
        if self.nutrients_were_default:
            fields.append("nutrients")
        if self.feedback_was_default:
            fields.append("feedback")
        if self.suggestions_were_default:
            fields.append("suggestions")
        if self.goal_score_was_default:
            fields.append("goalScore")
        if self.ingredients_were_default:
            fields.append("detailedIngredients")
        return fields


class AnalysisMetadata(NormalizationFlags):
    """Provenance and confidence information attached to every result."""

    request_id: str = Field(..., alias="requestId")
    model_used: str = Field("none", alias="modelUsed")
    used_fallback_model: bool = Field(False, alias="usedFallbackModel")
    processing_time_ms: int = Field(0, ge=0, alias="processingTimeMs")
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    error: str = ""
    image_quality: ImageQualityLevel = Field(ImageQualityLevel.UNKNOWN, alias="imageQuality")
    is_partial_result: bool = Field(False, alias="isPartialResult")
    extracted_from_text: bool = Field(False, alias="extractedFromText")
    fallback: bool = False
    generated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), alias="generatedAt"
    )
    extraction_strategy: ExtractionStrategy | None = Field(None, alias="extractionStrategy")
    token_usage: dict[str, int] | None = Field(None, alias="tokenUsage")
    degradations: list[str] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """Terminal, always-complete meal analysis."""

    model_config = ConfigDict(populate_by_name=True)

    description: str
    nutrients: list[Nutrient] = Field(..., min_length=1)
    feedback: str
    suggestions: list[str] = Field(..., min_length=1)
    detailed_ingredients: list[Ingredient] = Field(
        default_factory=list, alias="detailedIngredients"
    )
    goal_score: GoalScore = Field(..., alias="goalScore")
    metadata: AnalysisMetadata

    def get_nutrient(self, name: str) -> Nutrient | None:
        """Find a nutrient by (case-insensitive) name."""
        for nutrient in self.nutrients:
            if nutrient.name.lower() == name.lower():
                return nutrient
        return None


class AnalysisOutcome(BaseModel):
    """How the pipeline arrived at its result."""

    model_config = ConfigDict(populate_by_name=True)

    status: OutcomeStatus
    path: AnalysisPath = AnalysisPath.NONE
    degradations: list[str] = Field(default_factory=list)
    error_category: ErrorCategory | None = Field(None, alias="errorCategory")
    extraction_strategy: ExtractionStrategy | None = Field(None, alias="extractionStrategy")

    @property
    def degradation_count(self) -> int:
        return len(self.degradations)
