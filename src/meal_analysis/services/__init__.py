"""Meal analysis pipeline services."""

from .fallbacks import FallbackResponseBuilder
from .image_quality import ImageAssessment, ImageQualityAssessor
from .json_repair import ExtractionResult, JSONExtractor
from .normalizer import AnalysisNormalizer, NormalizedAnalysis
from .pipeline import MealAnalysisPipeline, analyze, get_pipeline
from .text_analysis import TextAnalysisResult, TextMealAnalyzer

__all__ = [
    "AnalysisNormalizer",
    "ExtractionResult",
    "FallbackResponseBuilder",
    "ImageAssessment",
    "ImageQualityAssessor",
    "JSONExtractor",
    "MealAnalysisPipeline",
    "NormalizedAnalysis",
    "TextAnalysisResult",
    "TextMealAnalyzer",
    "analyze",
    "get_pipeline",
]
