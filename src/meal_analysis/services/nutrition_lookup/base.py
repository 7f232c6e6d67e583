"""
Base classes and models for nutrition lookup service.

Defines the abstract interface that all providers must implement,
plus standardized response models.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class NutrientValue(BaseModel):
    """One nutrient summed across every matched food."""

    name: str = Field(..., description="Canonical nutrient name, e.g. 'carbs'")
    value: float = Field(0.0, ge=0)
    unit: str = Field("g", description="'kcal', 'g' or 'mg'")
    is_highlight: bool = Field(False, description="Whether this is a headline macro")


class MatchedFood(BaseModel):
    """A food the provider matched in the query."""

    name: str
    serving_qty: float | None = Field(None, ge=0)
    serving_unit: str | None = None
    serving_weight_grams: float | None = Field(None, ge=0)


class NutritionResult(BaseModel):
    """Complete result from a natural-language nutrition lookup."""

    found: bool = Field(..., description="Whether any food was matched")
    foods: list[MatchedFood] = Field(default_factory=list)
    nutrients: list[NutrientValue] = Field(
        default_factory=list, description="Totals across all matched foods"
    )
    search_query: str = Field("", description="Original query")
    provider: str = Field(..., description="Provider that generated this result")

    def amount(self, name: str) -> float:
        """Total for a nutrient, 0 if the provider did not report it."""
        for nutrient in self.nutrients:
            if nutrient.name == name:
                return nutrient.value
        return 0.0


class NutritionLookupError(Exception):
    """Error during nutrition lookup."""

    def __init__(
        self,
        message: str,
        error_code: str = "LOOKUP_ERROR",
        provider: str = "unknown",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider = provider
        self.details = details or {}


class NutritionLookupService(ABC):
    """
    Abstract base class for nutrition lookup services.

    Providers accept a free-text food description ("2 eggs and toast")
    and return nutrient totals for everything they recognize in it.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this provider."""
        ...

    @abstractmethod
    async def lookup(self, query: str) -> NutritionResult:
        """
        Look up nutrients for a natural-language food description.

        Args:
            query: Comma-separated food items

        Returns:
            NutritionResult; ``found`` is False when nothing matched

        Raises:
            NutritionLookupError: If the provider cannot be reached or errors
        """
        ...

    async def close(self) -> None:
        """Release any open connections."""
        return None
