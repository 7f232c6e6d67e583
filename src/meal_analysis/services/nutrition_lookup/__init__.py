"""
Nutrition Lookup Service - Facade pattern for nutrition database APIs.

Nutritionix natural-language lookup is the only provider.
"""

from .base import (
    MatchedFood,
    NutrientValue,
    NutritionLookupError,
    NutritionLookupService,
    NutritionResult,
)
from .factory import get_nutrition_lookup_service
from .nutritionix_provider import NutritionixLookup

__all__ = [
    "MatchedFood",
    "NutrientValue",
    "NutritionLookupError",
    "NutritionLookupService",
    "NutritionResult",
    "NutritionixLookup",
    "get_nutrition_lookup_service",
]
