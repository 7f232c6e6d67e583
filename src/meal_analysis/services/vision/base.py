"""
Base classes and models for the vision analysis service.

Defines the abstract interface vision providers implement, plus the
standardized result models. Providers never raise to their caller; every
failure comes back as ``VisionAnalysisResult(success=False, ...)``.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from meal_analysis.models import ErrorCategory


class ProbeFailure(str, Enum):
    """Why the model availability probe failed."""

    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    OTHER = "other"


class ModelAvailability(BaseModel):
    """Result of probing the preferred model."""

    model: str = Field(..., description="Model the analysis should use")
    available: bool = Field(..., description="Whether the preferred model answered the probe")
    used_fallback_model: bool = False
    failure: ProbeFailure | None = None
    reason: str | None = None


class VisionAnalysisResult(BaseModel):
    """Raw outcome of one vision model call."""

    success: bool
    raw_text: str = Field("", description="Unparsed model output")
    model_used: str = Field("none", description="Model id, 'error' or 'none'")
    used_fallback_model: bool = False
    latency_ms: int = Field(0, ge=0)
    token_usage: dict[str, int] | None = None
    error: str | None = None
    error_category: ErrorCategory | None = None


class VisionProviderError(Exception):
    """Error talking to a vision provider."""

    def __init__(
        self,
        message: str,
        error_code: str = "VISION_ERROR",
        provider: str = "unknown",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider = provider
        self.details = details or {}


class VisionAnalyzer(ABC):
    """
    Abstract base class for vision analysis providers.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this provider."""
        ...

    @abstractmethod
    async def check_model(self, request_id: str = "-") -> ModelAvailability:
        """
        Probe whether the preferred model can be used.

        Returns:
            ModelAvailability naming the model to call
        """
        ...

    @abstractmethod
    async def analyze(
        self,
        data_url: str,
        health_goals: Sequence[str] = (),
        dietary_preferences: Sequence[str] = (),
        *,
        model: str | None = None,
        request_id: str = "-",
    ) -> VisionAnalysisResult:
        """
        Ask the model to analyze a meal image.

        Args:
            data_url: Image as a ``data:image/...;base64,`` URL
            health_goals: User's health goals
            dietary_preferences: User's dietary preferences
            model: Model to call (default: the preferred model)
            request_id: Correlation id for log lines

        Returns:
            VisionAnalysisResult; ``success`` is False on any provider failure
        """
        ...
