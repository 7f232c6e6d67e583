"""
Factory for creating nutrition lookup service instances.

Reads configuration from settings and returns the appropriate provider.
"""

import logging
from functools import lru_cache

from meal_analysis.core.config import get_settings

from .base import NutritionLookupService
from .nutritionix_provider import NutritionixLookup

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_nutrition_lookup_service() -> NutritionLookupService | None:
    """
    Get the configured nutrition lookup service.

    Configuration is read from settings:
    - nutritionix_app_id / nutritionix_api_key: Nutritionix credentials
    - nutritionix_base_url: API base URL
    - nutritionix_timeout_seconds: Request timeout

    Returns:
        Configured NutritionLookupService instance, or None if not configured
    """
    settings = get_settings()

    if not settings.is_nutritionix_configured:
        logger.warning("Nutritionix lookup not configured (missing app id or key)")
        return None

    logger.info("Initializing Nutritionix nutrition lookup service")

    return NutritionixLookup(
        app_id=settings.nutritionix_app_id,
        api_key=settings.nutritionix_api_key,
        base_url=settings.nutritionix_base_url,
        timeout=settings.nutritionix_timeout_seconds,
    )


def clear_service_cache():
    """Clear the cached service instance (useful for testing)."""
    get_nutrition_lookup_service.cache_clear()
