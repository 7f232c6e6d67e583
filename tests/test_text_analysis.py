"""Unit tests for text-only meal analysis."""

import pytest

from meal_analysis.models import ErrorCategory
from meal_analysis.services.nutrition_lookup import NutritionLookupError
from meal_analysis.services.text_analysis import (
    GENERIC_SUGGESTIONS,
    DietaryPreferences,
    MacroTotals,
    TextMealAnalyzer,
    active_goals,
    describe_meal,
    extract_food_items,
    generate_feedback,
    generate_suggestions,
    score_goals,
)

from conftest import FakeNutritionLookup


@pytest.fixture
def totals(meal_nutrition):
    return MacroTotals.from_lookup(meal_nutrition)


class TestHelpers:
    """Tests for the deterministic text rules."""

    def test_extract_food_items(self):
        text = "Eggs, toast and 2\nOJ, eggs, 150\nturkey bacon"
        assert extract_food_items(text) == ["Eggs", "toast", "turkey bacon"]

    def test_active_goals(self):
        goals = active_goals(["Weight Loss", "Build Muscle", "more energy", "gut health"])
        assert goals == {"lose_weight", "build_muscle", "improve_energy", "improve_digestion"}

    def test_describe_meal(self):
        assert describe_meal(["soup"], 120.4) == (
            "This meal contains soup. It provides approximately 120 calories."
        )
        assert describe_meal(["rice", "beans", "salsa"], 500) == (
            "This meal contains rice, beans and salsa. It provides approximately 500 calories."
        )
        assert describe_meal([], 0) == "No food items were detected in the image."

    def test_macro_totals_from_lookup(self, totals):
        assert totals.calories == 350
        assert totals.sodium == 420
        assert totals.fiber == 4

    def test_feedback_for_goals(self, totals):
        feedback = generate_feedback(totals, {"lose_weight", "build_muscle"})

        assert feedback[0] == "This meal contains approximately 350 calories."
        assert feedback[1] == "Macronutrient breakdown: 35g protein, 30g carbs, 8g fat."
        assert "supports your weight loss goal" in feedback[2]
        assert "supports your muscle building goal" in feedback[3]

    def test_feedback_mentions_preferences(self, totals):
        preferences = DietaryPreferences.from_list(["rice", "Peanut allergy"])

        feedback = generate_feedback(totals, set(), ["chicken", "brown rice"], preferences)

        assert preferences.allergies == ["Peanut allergy"]
        assert any("rice, which you prefer to avoid" in line for line in feedback)
        assert any("Peanut allergy" in line for line in feedback)

    def test_suggestions_padded_with_generic_advice(self, totals):
        suggestions = generate_suggestions(totals, set(), has_ingredients=True)
        assert suggestions == GENERIC_SUGGESTIONS

    def test_suggestions_for_low_fiber_digestion_goal(self, totals):
        suggestions = generate_suggestions(totals, {"improve_digestion"}, has_ingredients=True)
        assert suggestions[0].startswith("Add more fiber-rich foods")
        assert len(suggestions) == 2

    def test_suggestions_without_ingredients(self, totals):
        suggestions = generate_suggestions(totals, {"lose_weight"}, has_ingredients=False)
        assert len(suggestions) == 1

    def test_score_goals(self, totals):
        scores = score_goals(["Weight Loss", "Build Muscle"], totals)

        assert scores == {
            "overall": 80,
            "specific": {"weightloss": 60, "buildmuscle": 70},
        }

    def test_score_goals_clamped(self):
        heavy = MacroTotals(calories=1500, protein=5, carbs=120, sugar=60, fiber=1)
        scores = score_goals(["weight loss", "keto", "diabetes", "muscle"], heavy)

        assert scores["overall"] == 10
        assert scores["specific"]["diabetes"] == 30

    def test_score_goals_no_goals(self, totals):
        assert score_goals([], totals) == {"overall": 50, "specific": {}}


class TestTextMealAnalyzer:
    """Tests for TextMealAnalyzer."""

    @pytest.mark.asyncio
    async def test_successful_analysis(self, meal_nutrition):
        lookup = FakeNutritionLookup(meal_nutrition)
        analyzer = TextMealAnalyzer(lookup)

        result = await analyzer.analyze(
            "grilled chicken, brown rice",
            health_goals=["Build Muscle"],
            request_id="req-1",
        )

        assert result.success
        assert lookup.queries == ["grilled chicken, brown rice"]
        assert result.food_items == ["grilled chicken", "brown rice"]

        document = result.document
        assert document["description"] == (
            "This meal contains grilled chicken and brown rice. "
            "It provides approximately 350 calories."
        )
        assert {"name": "calories", "value": "350", "unit": "kcal", "isHighlight": True} in (
            document["nutrients"]
        )
        assert document["detailedIngredients"][0] == {
            "name": "grilled chicken", "category": "detected from text", "confidence": 0.8,
        }
        assert isinstance(document["feedback"], list)
        assert document["goalScore"] == {"overall": 70, "specific": {"buildmuscle": 70}}

    @pytest.mark.asyncio
    async def test_lookup_error_keeps_food_items(self):
        lookup = FakeNutritionLookup(
            error=NutritionLookupError("timeout", "CONNECTION_ERROR", "fake")
        )
        analyzer = TextMealAnalyzer(lookup)

        result = await analyzer.analyze("grilled chicken, brown rice")

        assert not result.success
        assert result.error_category == ErrorCategory.NUTRIENT_LOOKUP_FAILED
        assert "timeout" in result.error
        assert result.food_items == ["grilled chicken", "brown rice"]
        assert result.document["detailedIngredients"] == [
            {"name": "grilled chicken", "category": "unknown", "confidence": 0.5},
            {"name": "brown rice", "category": "unknown", "confidence": 0.5},
        ]
        assert "nutrients" not in result.document

    @pytest.mark.asyncio
    async def test_no_match(self):
        analyzer = TextMealAnalyzer(FakeNutritionLookup())

        result = await analyzer.analyze("mystery casserole")

        assert not result.success
        assert result.error_category == ErrorCategory.NUTRIENT_LOOKUP_FAILED

    @pytest.mark.asyncio
    async def test_lookup_not_configured(self):
        analyzer = TextMealAnalyzer(None)

        result = await analyzer.analyze("mystery casserole")

        assert not result.success
        assert result.error == "Nutrition lookup not configured"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", [None, "", "rice", "12, 345, 6789"])
    async def test_nothing_to_analyze(self, text):
        lookup = FakeNutritionLookup()
        analyzer = TextMealAnalyzer(lookup)

        result = await analyzer.analyze(text)

        assert not result.success
        assert result.error_category == ErrorCategory.NO_FOOD_ITEMS
        assert lookup.queries == []
