"""
Vision Analysis Service - meal analysis with vision-capable language models.

OpenAI is the only provider.
"""

from .base import (
    ModelAvailability,
    ProbeFailure,
    VisionAnalysisResult,
    VisionAnalyzer,
    VisionProviderError,
)
from .factory import get_openai_client, get_vision_analyzer
from .openai_provider import OpenAIVisionAnalyzer
from .prompts import REQUIRED_RESPONSE_KEYS

__all__ = [
    "ModelAvailability",
    "OpenAIVisionAnalyzer",
    "ProbeFailure",
    "REQUIRED_RESPONSE_KEYS",
    "VisionAnalysisResult",
    "VisionAnalyzer",
    "VisionProviderError",
    "get_openai_client",
    "get_vision_analyzer",
]
