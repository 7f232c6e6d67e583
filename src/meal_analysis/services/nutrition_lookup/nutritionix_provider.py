"""
Nutritionix provider for nutrition lookup.

Uses the natural-language nutrients endpoint, which parses free text into
foods and returns per-food nutrient values.
API Documentation: https://docx.nutritionix.com/
"""

import logging
from typing import Any

import httpx

from .base import (
    MatchedFood,
    NutrientValue,
    NutritionLookupError,
    NutritionLookupService,
    NutritionResult,
)

logger = logging.getLogger(__name__)


# Nutritionix field -> (our name, unit, highlighted)
NUTRIENT_FIELDS = {
    "nf_calories": ("calories", "kcal", True),
    "nf_protein": ("protein", "g", True),
    "nf_total_carbohydrate": ("carbs", "g", True),
    "nf_total_fat": ("fat", "g", True),
    "nf_dietary_fiber": ("fiber", "g", False),
    "nf_sugars": ("sugar", "g", False),
    "nf_sodium": ("sodium", "mg", False),
    "nf_potassium": ("potassium", "mg", False),
}


class NutritionixLookup(NutritionLookupService):
    """
    Nutrition lookup using the Nutritionix natural language API.
    """

    def __init__(
        self,
        app_id: str,
        api_key: str,
        base_url: str = "https://trackapi.nutritionix.com/v2",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize Nutritionix provider.

        Args:
            app_id: Nutritionix application id
            api_key: Nutritionix application key
            base_url: API base URL
            timeout: Request timeout in seconds
            client: Pre-built HTTP client (tests pass one with a mock transport)
        """
        self.app_id = app_id
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def provider_name(self) -> str:
        return "nutritionix"

    async def lookup(self, query: str) -> NutritionResult:
        """Sum nutrients across every food Nutritionix matches in ``query``."""
        url = f"{self.base_url}/natural/nutrients"
        headers = {
            "x-app-id": self.app_id,
            "x-app-key": self.api_key,
            "Content-Type": "application/json",
        }

        logger.info(f"Searching Nutritionix for: {query}")

        try:
            response = await self._client.post(url, headers=headers, json={"query": query})
        except httpx.RequestError as e:
            logger.error(f"Nutritionix request failed: {e}")
            raise NutritionLookupError(
                message=f"Failed to connect to Nutritionix API: {e}",
                error_code="CONNECTION_ERROR",
                provider=self.provider_name,
            ) from e

        if response.status_code == 404:
            # Nutritionix answers 404 when it matches no foods
            logger.info(f"No Nutritionix match for: {query}")
            return NutritionResult(found=False, search_query=query, provider=self.provider_name)

        if response.status_code != 200:
            logger.error(f"Nutritionix lookup failed: {response.status_code} - {response.text}")
            raise NutritionLookupError(
                message=f"Nutritionix API error: {response.status_code}",
                error_code="API_ERROR",
                provider=self.provider_name,
                details={"status_code": response.status_code},
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise NutritionLookupError(
                message="Nutritionix returned invalid JSON",
                error_code="INVALID_RESPONSE",
                provider=self.provider_name,
            ) from e

        foods = payload.get("foods") if isinstance(payload, dict) else None
        foods = [f for f in foods or [] if isinstance(f, dict)]
        if not foods:
            logger.info(f"No Nutritionix foods for: {query}")
            return NutritionResult(found=False, search_query=query, provider=self.provider_name)

        return NutritionResult(
            found=True,
            foods=[self._parse_food(food) for food in foods],
            nutrients=self._sum_nutrients(foods),
            search_query=query,
            provider=self.provider_name,
        )

    @staticmethod
    def _parse_food(food: dict[str, Any]) -> MatchedFood:
        def number(key: str) -> float | None:
            value = food.get(key)
            return float(value) if isinstance(value, (int, float)) and value >= 0 else None

        return MatchedFood(
            name=str(food.get("food_name") or "unknown"),
            serving_qty=number("serving_qty"),
            serving_unit=food.get("serving_unit"),
            serving_weight_grams=number("serving_weight_grams"),
        )

    @staticmethod
    def _sum_nutrients(foods: list[dict[str, Any]]) -> list[NutrientValue]:
        """Add up each nutrient field across all foods."""
        totals = {field: 0.0 for field in NUTRIENT_FIELDS}
        for food in foods:
            for field in NUTRIENT_FIELDS:
                value = food.get(field)
                if isinstance(value, (int, float)) and value > 0:
                    totals[field] += float(value)

        return [
            NutrientValue(
                name=name,
                value=round(totals[field], 2),
                unit=unit,
                is_highlight=highlight,
            )
            for field, (name, unit, highlight) in NUTRIENT_FIELDS.items()
        ]

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()
