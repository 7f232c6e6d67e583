"""Pytest configuration and fixtures."""

import base64
import io
import random
from collections.abc import Sequence

import pytest
from PIL import Image

from meal_analysis.core.config import Settings
from meal_analysis.models import ErrorCategory
from meal_analysis.services.nutrition_lookup import (
    NutrientValue,
    NutritionLookupError,
    NutritionLookupService,
    NutritionResult,
)
from meal_analysis.services.ocr import OCREngine, OCREngineError, OCREngineResult
from meal_analysis.services.vision import (
    ModelAvailability,
    ProbeFailure,
    VisionAnalysisResult,
    VisionAnalyzer,
)

# Sample test image (1x1 red pixel PNG)
TINY_PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8DwHwAFBQIAX8jx0gAAAABJRU5ErkJggg=="
)
TINY_PNG_BYTES = base64.b64decode(TINY_PNG_BASE64)


def make_noise_png(width: int = 100, height: int = 100, seed: int = 0) -> bytes:
    """A PNG of random pixels; noise does not compress, so size ~ 3 * w * h bytes."""
    rng = random.Random(seed)
    img = Image.frombytes("RGB", (width, height), rng.randbytes(width * height * 3))
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


class FakeOCREngine(OCREngine):
    """OCR engine returning canned output."""

    def __init__(
        self,
        text: str = "",
        confidence: float = 0.9,
        error: OCREngineError | None = None,
    ):
        self.text = text
        self.confidence = confidence
        self.error = error
        self.calls = 0

    @property
    def provider_name(self) -> str:
        return "fake"

    async def extract_text(self, image_data: bytes) -> OCREngineResult:
        self.calls += 1
        if self.error:
            raise self.error
        return OCREngineResult(
            text=self.text,
            confidence=self.confidence,
            word_count=len(self.text.split()),
            provider=self.provider_name,
        )


class FakeNutritionLookup(NutritionLookupService):
    """Nutrition lookup returning a fixed result."""

    def __init__(
        self,
        result: NutritionResult | None = None,
        error: NutritionLookupError | None = None,
    ):
        self.result = result
        self.error = error
        self.queries: list[str] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    async def lookup(self, query: str) -> NutritionResult:
        self.queries.append(query)
        if self.error:
            raise self.error
        if self.result is None:
            return NutritionResult(found=False, search_query=query, provider="fake")
        return self.result


class FakeVisionAnalyzer(VisionAnalyzer):
    """Vision analyzer with scripted probe and call results."""

    def __init__(
        self,
        raw_text: str = "",
        available: bool = True,
        failure: ProbeFailure | None = None,
        call_error: str | None = None,
        configured: bool = True,
        model: str = "gpt-4o",
        fallback_model: str = "gpt-4o-mini",
    ):
        self.raw_text = raw_text
        self.available = available
        self.failure = failure
        self.call_error = call_error
        self.is_configured = configured
        self.model = model
        self.fallback_model = fallback_model
        self.probe_calls = 0
        self.analyze_calls: list[dict] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    async def check_model(self, request_id: str = "-") -> ModelAvailability:
        self.probe_calls += 1
        if self.available:
            return ModelAvailability(model=self.model, available=True)
        return ModelAvailability(
            model=self.fallback_model,
            available=False,
            used_fallback_model=True,
            failure=self.failure or ProbeFailure.OTHER,
            reason="scripted probe failure",
        )

    async def analyze(
        self,
        data_url: str,
        health_goals: Sequence[str] = (),
        dietary_preferences: Sequence[str] = (),
        *,
        model: str | None = None,
        request_id: str = "-",
    ) -> VisionAnalysisResult:
        model = model or self.model
        self.analyze_calls.append({"data_url": data_url, "model": model})
        if self.call_error:
            return VisionAnalysisResult(
                success=False,
                model_used="error",
                used_fallback_model=model != self.model,
                error=self.call_error,
                error_category=ErrorCategory.PROVIDER_UNAVAILABLE,
            )
        return VisionAnalysisResult(
            success=True,
            raw_text=self.raw_text,
            model_used=model,
            used_fallback_model=model != self.model,
            latency_ms=120,
            token_usage={"prompt_tokens": 900, "completion_tokens": 300, "total_tokens": 1200},
        )


@pytest.fixture
def settings() -> Settings:
    """Settings with vision configured and force mode off."""
    return Settings(
        openai_api_key="sk-test",
        use_vision_model=True,
        force_vision_model=False,
        nutritionix_app_id="app",
        nutritionix_api_key="key",
    )


@pytest.fixture
def meal_nutrition() -> NutritionResult:
    """Nutrient totals for a chicken and rice meal."""
    return NutritionResult(
        found=True,
        nutrients=[
            NutrientValue(name="calories", value=350, unit="kcal", is_highlight=True),
            NutrientValue(name="protein", value=35, unit="g", is_highlight=True),
            NutrientValue(name="carbs", value=30, unit="g", is_highlight=True),
            NutrientValue(name="fat", value=8, unit="g", is_highlight=True),
            NutrientValue(name="fiber", value=4, unit="g"),
            NutrientValue(name="sugar", value=2, unit="g"),
            NutrientValue(name="sodium", value=420, unit="mg"),
            NutrientValue(name="potassium", value=610, unit="mg"),
        ],
        search_query="grilled chicken, brown rice",
        provider="fake",
    )


@pytest.fixture
def medium_png_base64() -> str:
    """A valid ~30 KB PNG, base64-encoded."""
    return base64.b64encode(make_noise_png()).decode()
