"""
Factory for the vision analysis service.

The AsyncOpenAI client is created once per process on first use and shared
by every request; it holds no per-call state.
"""

import logging
from functools import lru_cache

from openai import AsyncOpenAI

from meal_analysis.core.config import get_settings

from .base import VisionAnalyzer
from .openai_provider import OpenAIVisionAnalyzer

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_openai_client() -> AsyncOpenAI | None:
    """
    Get the shared OpenAI client.

    Returns:
        AsyncOpenAI instance, or None if no API key is configured
    """
    settings = get_settings()

    if not settings.is_vision_configured:
        logger.warning("OpenAI vision not configured (missing API key)")
        return None

    logger.info("Initializing OpenAI client")
    # Each call is attempted once; failures fall through to the next tier
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        max_retries=0,
        timeout=settings.vision_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_vision_analyzer() -> VisionAnalyzer:
    """
    Get the configured vision analyzer.

    Configuration is read from settings:
    - vision_model / vision_fallback_model: Preferred and fallback model ids
    - vision_timeout_seconds: Bound on each call
    - vision_max_tokens / vision_temperature: Completion parameters
    """
    settings = get_settings()

    logger.info(
        f"Configuring OpenAI vision: model={settings.vision_model}, "
        f"fallback={settings.vision_fallback_model}"
    )

    return OpenAIVisionAnalyzer(
        client=get_openai_client(),
        model=settings.vision_model,
        fallback_model=settings.vision_fallback_model,
        timeout=settings.vision_timeout_seconds,
        max_tokens=settings.vision_max_tokens,
        temperature=settings.vision_temperature,
    )


def clear_service_cache():
    """Clear the cached client and analyzer (useful for testing)."""
    get_vision_analyzer.cache_clear()
    get_openai_client.cache_clear()
