"""Unit tests for analysis document normalization."""

import json

import pytest

from meal_analysis.models import AnalysisResult
from meal_analysis.services.normalizer import (
    CORE_NUTRIENTS,
    DEFAULT_DESCRIPTION,
    DEFAULT_FEEDBACK,
    DEFAULT_GOAL_SCORE,
    DEFAULT_SUGGESTIONS,
    AnalysisNormalizer,
    clamp_confidence,
    coerce_number,
    format_number,
    normalize_goal_name,
)


@pytest.fixture
def normalizer():
    return AnalysisNormalizer()


def nutrient_names(data):
    return [n["name"] for n in data["nutrients"]]


class TestCoercionHelpers:
    """Tests for value coercion helpers."""

    @pytest.mark.parametrize("value,expected", [
        (12, 12.0),
        ("350 kcal", 350.0),
        ("1,200mg", 1200.0),
        ("about 3.5 g", 3.5),
        (-4, 0.0),
        ("n/a", 0.0),
        (None, 0.0),
        (True, 0.0),
        (float("nan"), 0.0),
    ])
    def test_coerce_number(self, value, expected):
        assert coerce_number(value) == expected

    @pytest.mark.parametrize("value,expected", [
        (12.0, "12"),
        (3.5, "3.5"),
        (12.999, "13"),
        (0.004, "0"),
        (3.456, "3.46"),
    ])
    def test_format_number_rounds_before_dropping_decimals(self, value, expected):
        assert format_number(value) == expected
        assert format_number(coerce_number(format_number(value))) == expected

    def test_clamp_confidence_rescales(self):
        """Test percent-style confidences are brought onto 0-1."""
        assert clamp_confidence(0.8) == 0.8
        assert clamp_confidence(85) == 0.85
        assert clamp_confidence(7) == 0.7
        assert clamp_confidence(500) == 1.0
        assert clamp_confidence("bad") == 0.0

    def test_normalize_goal_name(self):
        assert normalize_goal_name("Weight Loss") == "weightloss"
        assert normalize_goal_name("  heart\thealth ") == "hearthealth"


class TestAnalysisNormalizer:
    """Tests for AnalysisNormalizer."""

    def test_partial_document_gets_core_nutrients_and_defaults(self, normalizer):
        """Test a salad with only calories is completed with defaults."""
        raw = json.loads(
            '{"description":"Salad","nutrients":[{"name":"calories","value":"200",'
            '"unit":"kcal","isHighlight":true}]}'
        )

        result = normalizer.normalize(raw)

        assert result.data["description"] == "Salad"
        assert nutrient_names(result.data) == ["calories", "protein", "carbs", "fat"]
        assert result.data["nutrients"][0] == {
            "name": "calories", "value": "200", "unit": "kcal", "isHighlight": True,
        }
        for added in result.data["nutrients"][1:]:
            assert added["value"] == "0"
            assert added["unit"] == "g"
        assert result.data["feedback"] == DEFAULT_FEEDBACK
        assert result.data["suggestions"] == DEFAULT_SUGGESTIONS

        assert result.flags.nutrients_were_default is False
        assert result.flags.core_nutrients_added == ["protein", "carbs", "fat"]
        assert result.flags.suggestions_were_default is True
        assert result.flags.feedback_was_default is True
        assert result.flags.description_was_default is False

    @pytest.mark.parametrize("raw", [None, {}, [], "text", 42, {"unrelated": True}])
    def test_always_returns_complete_document(self, normalizer, raw):
        """Test any input yields a document that validates as AnalysisResult."""
        result = normalizer.normalize(raw)

        assert set(result.data) == {
            "description", "nutrients", "feedback", "suggestions",
            "detailedIngredients", "goalScore",
        }
        assert result.data["description"] == DEFAULT_DESCRIPTION
        assert nutrient_names(result.data) == list(CORE_NUTRIENTS)
        assert result.data["goalScore"] == {"overall": DEFAULT_GOAL_SCORE, "specific": {}}
        assert result.flags.nutrients_were_default
        assert result.flags.goal_score_was_default

        model = AnalysisResult.model_validate({
            **result.data,
            "metadata": {"requestId": "req-1", **result.flags.model_dump(by_alias=True)},
        })
        assert model.get_nutrient("calories").value == "0"

    def test_idempotent(self, normalizer):
        """Test normalizing a normalized document changes nothing."""
        raw = {
            "description": " Chicken bowl ",
            "nutrients": {
                "calories": "520 kcal", "sodium": 800, "Total Fat": "18g",
                "protein": 12.999, "iron": 0.004, "fiber": "3.456g",
            },
            "feedback": ["Good protein", "High sodium."],
            "suggestions": "Swap soy sauce for a low-sodium version",
            "ingredients": ["chicken", {"name": "rice", "confidence": 90}],
            "goalScore": "72",
        }

        first = normalizer.normalize(raw, ["Weight Loss"])
        second = normalizer.normalize(first.data, ["Weight Loss"])

        assert second.data == first.data
        assert second.flags.synthesized_fields == []

    def test_flat_nutrient_mapping_is_converted(self, normalizer):
        """Test the legacy name->value mapping becomes a nutrient list."""
        raw = {"nutrients": {"Calories": "450 kcal", "Protein": "30g", "carbohydrates": 40,
                             "fat": 12, "Sodium": "900"}}

        result = normalizer.normalize(raw)
        by_name = {n["name"]: n for n in result.data["nutrients"]}

        assert result.flags.nutrients_were_converted
        assert result.flags.core_nutrients_added == []
        assert by_name["calories"]["value"] == "450"
        assert by_name["calories"]["unit"] == "kcal"
        assert by_name["protein"]["unit"] == "g"
        assert by_name["carbs"]["value"] == "40"
        assert by_name["sodium"]["unit"] == "mg"
        assert by_name["sodium"]["isHighlight"] is False
        assert by_name["fat"]["isHighlight"] is True

    def test_duplicate_nutrients_keep_first(self, normalizer):
        raw = {"nutrients": [
            {"name": "protein", "value": 20},
            {"name": "Proteins", "value": 99},
            "Fiber: 6g",
            42,
        ]}

        result = normalizer.normalize(raw)
        by_name = {n["name"]: n for n in result.data["nutrients"]}

        assert by_name["protein"]["value"] == "20"
        assert by_name["fiber"]["value"] == "6"
        assert nutrient_names(result.data).count("protein") == 1

    def test_percent_of_daily_value_kept(self, normalizer):
        raw = {"nutrients": [{"name": "sodium", "value": "600mg", "percentOfDailyValue": "26%"}]}

        result = normalizer.normalize(raw)

        assert result.data["nutrients"][0]["percentOfDailyValue"] == 26

    def test_feedback_list_joined(self, normalizer):
        result = normalizer.normalize({"feedback": ["Good fiber", "Watch the sugar."]})

        assert result.data["feedback"] == "Good fiber. Watch the sugar."
        assert result.flags.feedback_was_converted

    def test_suggestion_string_wrapped(self, normalizer):
        result = normalizer.normalize({"suggestions": "Add a side salad"})

        assert result.data["suggestions"] == ["Add a side salad"]
        assert result.flags.suggestions_were_converted
        assert not result.flags.suggestions_were_default

    def test_numeric_goal_score_populates_specific(self, normalizer):
        """Test a bare number becomes overall and is copied to each goal."""
        result = normalizer.normalize(
            {"goalScore": 130}, ["Weight Loss", "heart health"]
        )

        assert result.data["goalScore"] == {
            "overall": 100,
            "specific": {"weightloss": 100, "hearthealth": 100},
        }
        assert result.flags.goal_score_was_converted
        assert result.flags.goal_score_specific_was_populated

    def test_goal_score_object_kept_and_clamped(self, normalizer):
        raw = {"goalScore": {"overall": 64.5, "specific": {"Low Carb": -5, "energy": "80"}}}

        result = normalizer.normalize(raw, ["weight loss"])

        assert result.data["goalScore"] == {
            "overall": 64.5,
            "specific": {"lowcarb": 0, "energy": 80},
        }
        assert not result.flags.goal_score_specific_was_populated

    def test_missing_goal_score_without_goals(self, normalizer):
        result = normalizer.normalize({"description": "Toast"})

        assert result.data["goalScore"] == {"overall": 50, "specific": {}}
        assert not result.flags.goal_score_specific_was_populated

    def test_ingredients_get_defaults(self, normalizer):
        raw = {"detailedIngredients": [
            "tomato",
            {"name": "basil", "category": "herb", "confidence": 0.95},
            {"category": "nameless"},
        ]}

        result = normalizer.normalize(raw)

        assert result.data["detailedIngredients"] == [
            {"name": "tomato", "category": "unknown", "confidence": 0.5},
            {"name": "basil", "category": "herb", "confidence": 0.95},
        ]
        assert not result.flags.ingredients_were_default

    def test_alternate_field_spellings(self, normalizer):
        raw = {"meal_description": "Pho", "Recommendations": ["Less broth"], "score": 70}

        result = normalizer.normalize(raw)

        assert result.data["description"] == "Pho"
        assert result.data["suggestions"] == ["Less broth"]
        assert result.data["goalScore"]["overall"] == 70
