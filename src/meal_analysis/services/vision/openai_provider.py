"""
OpenAI provider for vision meal analysis.

Sends the meal image as a high-detail data URL to a vision-capable chat
model and returns the raw text. Model availability is probed first with a
metadata lookup; any probe failure switches to a single fallback model.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Sequence
from typing import Any

import openai
from openai import AsyncOpenAI

from meal_analysis.models import ErrorCategory

from .base import (
    ModelAvailability,
    ProbeFailure,
    VisionAnalysisResult,
    VisionAnalyzer,
    VisionProviderError,
)
from .prompts import VISION_USER_PROMPT, build_system_prompt

logger = logging.getLogger(__name__)


PERMISSION_KEYWORDS = ("permission", "unauthorized", "access")
NOT_FOUND_KEYWORDS = ("not found", "does not exist")


def classify_probe_error(status_code: int | None, message: str) -> ProbeFailure:
    """Classify a failed model probe from its HTTP status and message."""
    lower = message.lower()
    if status_code in (401, 403) or any(k in lower for k in PERMISSION_KEYWORDS):
        return ProbeFailure.PERMISSION_DENIED
    if status_code == 404 or any(k in lower for k in NOT_FOUND_KEYWORDS):
        return ProbeFailure.NOT_FOUND
    return ProbeFailure.OTHER


class OpenAIVisionAnalyzer(VisionAnalyzer):
    """
    Meal analysis using OpenAI vision models.
    """

    def __init__(
        self,
        client: AsyncOpenAI | None,
        model: str = "gpt-4o",
        fallback_model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        max_tokens: int = 2000,
        temperature: float = 0.2,
    ):
        """
        Initialize OpenAI provider.

        Args:
            client: Shared AsyncOpenAI client, or None when no API key is set
            model: Preferred vision model
            fallback_model: Model used whenever the probe of ``model`` fails
            timeout: Bound on each outbound call, in seconds
            max_tokens: Completion token budget
            temperature: Sampling temperature
        """
        self.client = client
        self.model = model
        self.fallback_model = fallback_model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def check_model(self, request_id: str = "-") -> ModelAvailability:
        """Probe the preferred model with a metadata lookup."""
        if self.client is None:
            return ModelAvailability(
                model=self.model,
                available=False,
                failure=ProbeFailure.OTHER,
                reason="OpenAI client not configured",
            )

        try:
            await self._request(self.client.models.retrieve(self.model), "Model probe")
            logger.info(f"[{request_id}] Model {self.model} is available")
            return ModelAvailability(model=self.model, available=True)
        except VisionProviderError as e:
            failure = classify_probe_error(e.details.get("status_code"), e.message)
            reason = e.message

        if failure == ProbeFailure.PERMISSION_DENIED:
            logger.warning(f"[{request_id}] No permission to use {self.model}: {reason}")
        elif failure == ProbeFailure.NOT_FOUND:
            logger.warning(f"[{request_id}] Model {self.model} not found: {reason}")
        else:
            logger.warning(f"[{request_id}] Could not verify model {self.model}: {reason}")

        logger.info(f"[{request_id}] Falling back to {self.fallback_model}")

        return ModelAvailability(
            model=self.fallback_model,
            available=False,
            used_fallback_model=True,
            failure=failure,
            reason=reason,
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
        if self.client is None:
            return VisionAnalysisResult(
                success=False,
                model_used="none",
                error="Vision model not configured",
                error_category=ErrorCategory.PROVIDER_UNAVAILABLE,
            )

        model = model or self.model
        used_fallback_model = model != self.model
        system_prompt = build_system_prompt(health_goals, dietary_preferences, used_fallback_model)

        logger.info(f"[{request_id}] Sending image to {model}")
        start_time = time.time()

        try:
            response = await self._request(
                self.client.chat.completions.create(
                    model=model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {
                            "role": "user",
                            "content": [
                                {"type": "text", "text": VISION_USER_PROMPT},
                                {
                                    "type": "image_url",
                                    "image_url": {"url": data_url, "detail": "high"},
                                },
                            ],
                        },
                    ],
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    response_format={"type": "json_object"},
                ),
                "Vision model call",
            )
        except VisionProviderError as e:
            return self._failure(e.message, used_fallback_model, start_time, request_id)

        latency_ms = int((time.time() - start_time) * 1000)
        raw_text = self._response_text(response)
        token_usage = self._token_usage(response)

        logger.info(
            f"[{request_id}] {model} responded in {latency_ms}ms "
            f"({len(raw_text)} chars, tokens={token_usage})"
        )
        logger.debug(f"[{request_id}] Raw model output: {raw_text[:500]}")

        return VisionAnalysisResult(
            success=True,
            raw_text=raw_text,
            model_used=model,
            used_fallback_model=used_fallback_model,
            latency_ms=latency_ms,
            token_usage=token_usage,
        )

    async def _request(self, call: Awaitable[Any], what: str) -> Any:
        """Await an OpenAI call under the timeout, raising VisionProviderError."""
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise VisionProviderError(
                message=f"{what} timed out after {self.timeout}s",
                error_code="TIMEOUT",
                provider=self.provider_name,
            ) from e
        except openai.APIStatusError as e:
            raise VisionProviderError(
                message=f"{what} failed: {e}",
                error_code="API_ERROR",
                provider=self.provider_name,
                details={"status_code": e.status_code},
            ) from e
        except openai.OpenAIError as e:
            raise VisionProviderError(
                message=f"{what} failed: {e}",
                error_code="CONNECTION_ERROR",
                provider=self.provider_name,
            ) from e

    def _failure(
        self,
        error: str,
        used_fallback_model: bool,
        start_time: float,
        request_id: str,
    ) -> VisionAnalysisResult:
        logger.error(f"[{request_id}] {error}")
        return VisionAnalysisResult(
            success=False,
            model_used="error",
            used_fallback_model=used_fallback_model,
            latency_ms=int((time.time() - start_time) * 1000),
            error=error,
            error_category=ErrorCategory.PROVIDER_UNAVAILABLE,
        )

    @staticmethod
    def _response_text(response: Any) -> str:
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        return content if isinstance(content, str) else ""

    @staticmethod
    def _token_usage(response: Any) -> dict[str, int] | None:
        usage = getattr(response, "usage", None)
        if usage is None:
            return None
        counts = {}
        for field in ("prompt_tokens", "completion_tokens", "total_tokens"):
            value = getattr(usage, field, None)
            if isinstance(value, int):
                counts[field] = value
        return counts or None
