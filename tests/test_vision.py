"""Unit tests for the OpenAI vision analyzer."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from meal_analysis.core.config import Settings
from meal_analysis.models import ErrorCategory
from meal_analysis.services.vision import OpenAIVisionAnalyzer, ProbeFailure
from meal_analysis.services.vision.factory import (
    clear_service_cache,
    get_openai_client,
    get_vision_analyzer,
)
from meal_analysis.services.vision.openai_provider import classify_probe_error
from meal_analysis.services.vision.prompts import FALLBACK_MODEL_NOTE, build_system_prompt

from conftest import TINY_PNG_BASE64

DATA_URL = f"data:image/png;base64,{TINY_PNG_BASE64}"
MODEL_URL = "https://api.openai.com/v1/models/gpt-4o"

MODEL_JSON = json.dumps({
    "description": "Grilled salmon with rice",
    "nutrients": {"calories": 520, "protein": 38},
    "feedback": ["Good protein"],
    "suggestions": ["Add vegetables"],
    "detailedIngredients": [{"name": "salmon"}],
})


def status_error(cls, status: int, message: str):
    response = httpx.Response(status, request=httpx.Request("GET", MODEL_URL))
    return cls(message, response=response, body=None)


def make_completion(content: str | None = MODEL_JSON):
    """Create a chat completion shaped like the SDK's response."""
    usage = MagicMock()
    usage.prompt_tokens = 1100
    usage.completion_tokens = 250
    usage.total_tokens = 1350

    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    response.usage = usage
    return response


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.models.retrieve = AsyncMock(return_value=MagicMock(id="gpt-4o"))
    client.chat.completions.create = AsyncMock(return_value=make_completion())
    return client


@pytest.fixture
def analyzer(mock_client):
    return OpenAIVisionAnalyzer(client=mock_client, timeout=1.0)


class TestClassifyProbeError:
    """Tests for probe failure classification."""

    @pytest.mark.parametrize("status,message,expected", [
        (403, "Forbidden", ProbeFailure.PERMISSION_DENIED),
        (401, "bad key", ProbeFailure.PERMISSION_DENIED),
        (None, "You do not have access to this model", ProbeFailure.PERMISSION_DENIED),
        (404, "missing", ProbeFailure.NOT_FOUND),
        (None, "The model gpt-5 does not exist", ProbeFailure.NOT_FOUND),
        (500, "server error", ProbeFailure.OTHER),
        (None, "timed out", ProbeFailure.OTHER),
    ])
    def test_classify(self, status, message, expected):
        assert classify_probe_error(status, message) == expected


class TestPrompts:
    """Tests for prompt construction."""

    def test_system_prompt_includes_context(self):
        prompt = build_system_prompt(["weight loss"], ["vegetarian"])

        assert "User Health Goals: weight loss" in prompt
        assert "Dietary Preferences/Restrictions: vegetarian" in prompt
        assert FALLBACK_MODEL_NOTE not in prompt
        assert '"description"' in prompt

    def test_system_prompt_defaults_and_fallback_note(self):
        prompt = build_system_prompt([], [], used_fallback_model=True)

        assert "User Health Goals: general health" in prompt
        assert "Dietary Preferences/Restrictions: none" in prompt
        assert prompt.endswith(FALLBACK_MODEL_NOTE)


class TestCheckModel:
    """Tests for the model availability probe."""

    @pytest.mark.asyncio
    async def test_available(self, analyzer, mock_client):
        availability = await analyzer.check_model("req-1")

        assert availability.available
        assert availability.model == "gpt-4o"
        assert not availability.used_fallback_model
        mock_client.models.retrieve.assert_awaited_once_with("gpt-4o")

    @pytest.mark.asyncio
    async def test_permission_denied_falls_back(self, analyzer, mock_client):
        mock_client.models.retrieve.side_effect = status_error(
            openai.PermissionDeniedError, 403, "Project does not have access to model gpt-4o"
        )

        availability = await analyzer.check_model()

        assert not availability.available
        assert availability.failure == ProbeFailure.PERMISSION_DENIED
        assert availability.model == "gpt-4o-mini"
        assert availability.used_fallback_model

    @pytest.mark.asyncio
    async def test_not_found_falls_back(self, analyzer, mock_client):
        mock_client.models.retrieve.side_effect = status_error(
            openai.NotFoundError, 404, "The model does not exist"
        )

        availability = await analyzer.check_model()

        assert availability.failure == ProbeFailure.NOT_FOUND
        assert availability.model == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_connection_error_falls_back(self, analyzer, mock_client):
        mock_client.models.retrieve.side_effect = openai.APIConnectionError(
            request=httpx.Request("GET", MODEL_URL)
        )

        availability = await analyzer.check_model()

        assert availability.failure == ProbeFailure.OTHER
        assert availability.used_fallback_model

    @pytest.mark.asyncio
    async def test_probe_timeout(self, mock_client):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        mock_client.models.retrieve.side_effect = slow
        analyzer = OpenAIVisionAnalyzer(client=mock_client, timeout=0.01)

        availability = await analyzer.check_model()

        assert availability.failure == ProbeFailure.OTHER
        assert "timed out" in availability.reason

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        analyzer = OpenAIVisionAnalyzer(client=None)

        availability = await analyzer.check_model()

        assert not analyzer.is_configured
        assert not availability.available
        assert not availability.used_fallback_model


class TestAnalyze:
    """Tests for the vision model call."""

    @pytest.mark.asyncio
    async def test_success(self, analyzer, mock_client):
        result = await analyzer.analyze(DATA_URL, ["weight loss"], ["vegan"], request_id="req-2")

        assert result.success
        assert result.raw_text == MODEL_JSON
        assert result.model_used == "gpt-4o"
        assert not result.used_fallback_model
        assert result.token_usage == {
            "prompt_tokens": 1100, "completion_tokens": 250, "total_tokens": 1350,
        }

        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["response_format"] == {"type": "json_object"}
        system, user = kwargs["messages"]
        assert "weight loss" in system["content"]
        assert "vegan" in system["content"]
        assert user["content"][1]["image_url"] == {"url": DATA_URL, "detail": "high"}

    @pytest.mark.asyncio
    async def test_fallback_model_adds_note(self, analyzer, mock_client):
        result = await analyzer.analyze(DATA_URL, model="gpt-4o-mini")

        assert result.used_fallback_model
        assert result.model_used == "gpt-4o-mini"
        system = mock_client.chat.completions.create.call_args.kwargs["messages"][0]
        assert FALLBACK_MODEL_NOTE in system["content"]

    @pytest.mark.asyncio
    async def test_empty_choices(self, analyzer, mock_client):
        response = make_completion()
        response.choices = []
        mock_client.chat.completions.create.return_value = response

        result = await analyzer.analyze(DATA_URL)

        assert result.success
        assert result.raw_text == ""

    @pytest.mark.asyncio
    async def test_api_error(self, analyzer, mock_client):
        mock_client.chat.completions.create.side_effect = status_error(
            openai.RateLimitError, 429, "Rate limit reached"
        )

        result = await analyzer.analyze(DATA_URL)

        assert not result.success
        assert result.model_used == "error"
        assert result.error_category == ErrorCategory.PROVIDER_UNAVAILABLE
        assert "Rate limit reached" in result.error

    @pytest.mark.asyncio
    async def test_call_timeout(self, mock_client):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        mock_client.chat.completions.create.side_effect = slow
        analyzer = OpenAIVisionAnalyzer(client=mock_client, timeout=0.01)

        result = await analyzer.analyze(DATA_URL)

        assert not result.success
        assert result.model_used == "error"
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        analyzer = OpenAIVisionAnalyzer(client=None)

        result = await analyzer.analyze(DATA_URL)

        assert not result.success
        assert result.model_used == "none"


class TestVisionFactory:
    """Tests for the shared client and analyzer."""

    def test_no_key_means_no_client(self):
        clear_service_cache()
        with patch(
            "meal_analysis.services.vision.factory.get_settings",
            return_value=Settings(openai_api_key=""),
        ):
            analyzer = get_vision_analyzer()
        clear_service_cache()

        assert analyzer.client is None
        assert not analyzer.is_configured

    def test_client_shared_and_configured(self):
        clear_service_cache()
        settings = Settings(
            openai_api_key="sk-test", vision_model="gpt-4.1", vision_timeout_seconds=12
        )
        with patch("meal_analysis.services.vision.factory.get_settings", return_value=settings):
            client = get_openai_client()
            analyzer = get_vision_analyzer()
        clear_service_cache()

        assert analyzer.client is client
        assert analyzer.model == "gpt-4.1"
        assert client.max_retries == 0
        assert client.timeout == 12
