"""Meal photo analysis with vision-model, OCR and fallback paths."""

from .models import (
    AnalysisMetadata,
    AnalysisOutcome,
    AnalysisRequest,
    AnalysisResult,
    GoalScore,
    Ingredient,
    Nutrient,
)
from .services import MealAnalysisPipeline, analyze

__all__ = [
    "AnalysisMetadata",
    "AnalysisOutcome",
    "AnalysisRequest",
    "AnalysisResult",
    "GoalScore",
    "Ingredient",
    "MealAnalysisPipeline",
    "Nutrient",
    "analyze",
]
