"""Data models for meal analysis."""

from .analysis import (
    AnalysisMetadata,
    AnalysisOutcome,
    AnalysisPath,
    AnalysisRequest,
    AnalysisResult,
    ErrorCategory,
    ExtractionStrategy,
    GoalScore,
    ImageQualityLevel,
    Ingredient,
    NormalizationFlags,
    Nutrient,
    OutcomeStatus,
)

__all__ = [
    "AnalysisMetadata",
    "AnalysisOutcome",
    "AnalysisPath",
    "AnalysisRequest",
    "AnalysisResult",
    "ErrorCategory",
    "ExtractionStrategy",
    "GoalScore",
    "ImageQualityLevel",
    "Ingredient",
    "NormalizationFlags",
    "Nutrient",
    "OutcomeStatus",
]
