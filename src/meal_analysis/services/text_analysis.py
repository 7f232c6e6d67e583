"""
Text-only meal analysis.

Turns free text (OCR output or a canned meal description) into an analysis
document: food items are split out of the text, their nutrients are looked
up, and description, feedback, suggestions and goal scores are generated
deterministically from the totals and the user's goals.
"""

import logging
import re
import time
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field

from meal_analysis.models import ErrorCategory

from .normalizer import format_number, normalize_goal_name
from .nutrition_lookup import NutritionLookupError, NutritionLookupService, NutritionResult

logger = logging.getLogger(__name__)


MIN_TEXT_LENGTH = 10
ITEM_SPLIT_RE = re.compile(r",|\n|\band\b", re.IGNORECASE)
NUMERIC_ITEM_RE = re.compile(r"^\d+$")

TEXT_INGREDIENT_CATEGORY = "detected from text"
TEXT_INGREDIENT_CONFIDENCE = 0.8
UNMATCHED_INGREDIENT_CONFIDENCE = 0.5

# Goal flag -> keywords that switch it on
GOAL_KEYWORDS = {
    "lose_weight": ("lose weight", "weight loss", "lose", "slim"),
    "build_muscle": ("muscle", "strength", "build"),
    "improve_energy": ("energy",),
    "improve_digestion": ("digest", "gut"),
    "lower_cholesterol": ("cholesterol",),
}

GENERIC_SUGGESTIONS = [
    "Try to include a variety of colorful fruits and vegetables in your meals "
    "for a wide range of nutrients.",
    "Balance your plate with approximately 1/4 protein, 1/4 whole grains, "
    "and 1/2 vegetables for optimal nutrition.",
]

# Goal score scale: neutral 50, one step = 10 points
NEUTRAL_SCORE = 50
SCORE_STEP = 10
MIN_SCORE = 10
MAX_SCORE = 100


class MacroTotals(BaseModel):
    """The nutrient totals the feedback rules read."""

    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0
    fiber: float = 0.0
    sugar: float = 0.0
    sodium: float = 0.0

    @classmethod
    def from_lookup(cls, result: NutritionResult) -> "MacroTotals":
        return cls(**{name: result.amount(name) for name in cls.model_fields})


class DietaryPreferences(BaseModel):
    """Dietary preferences split into allergies and avoidances."""

    allergies: list[str] = Field(default_factory=list)
    avoidances: list[str] = Field(default_factory=list)

    @classmethod
    def from_list(cls, preferences: Sequence[str]) -> "DietaryPreferences":
        allergies = [p for p in preferences if "allerg" in p.lower()]
        avoidances = [p for p in preferences if "allerg" not in p.lower()]
        return cls(allergies=allergies, avoidances=avoidances)


class TextAnalysisResult(BaseModel):
    """Outcome of analyzing meal text; ``document`` feeds the normalizer."""

    success: bool
    document: dict[str, Any] = Field(default_factory=dict)
    food_items: list[str] = Field(default_factory=list)
    error: str | None = None
    error_category: ErrorCategory | None = None
    processing_time_ms: int = Field(0, ge=0)


def extract_food_items(text: str) -> list[str]:
    """
    Split text into candidate food items.

    Splits on commas, newlines and the word "and"; drops items of two
    characters or fewer and pure numbers; removes duplicates in order.
    """
    items = []
    seen = set()
    for item in ITEM_SPLIT_RE.split(text):
        item = item.strip()
        if len(item) <= 2 or NUMERIC_ITEM_RE.match(item):
            continue
        key = item.lower()
        if key not in seen:
            seen.add(key)
            items.append(item)
    return items


def active_goals(health_goals: Sequence[str]) -> set[str]:
    """Map free-text goals onto the goal flags the rules understand."""
    flags = set()
    for goal in health_goals:
        lower = goal.lower()
        for flag, keywords in GOAL_KEYWORDS.items():
            if any(keyword in lower for keyword in keywords):
                flags.add(flag)
    return flags


def describe_meal(food_items: Sequence[str], calories: float) -> str:
    if not food_items:
        return "No food items were detected in the image."
    if len(food_items) > 1:
        foods = f"{', '.join(food_items[:-1])} and {food_items[-1]}"
    else:
        foods = food_items[0]
    return f"This meal contains {foods}. It provides approximately {round(calories)} calories."


def generate_feedback(
    totals: MacroTotals,
    goals: set[str],
    food_items: Sequence[str] = (),
    preferences: DietaryPreferences | None = None,
) -> list[str]:
    feedback = [
        f"This meal contains approximately {round(totals.calories)} calories.",
        f"Macronutrient breakdown: {round(totals.protein)}g protein, "
        f"{round(totals.carbs)}g carbs, {round(totals.fat)}g fat.",
    ]

    if "lose_weight" in goals:
        if totals.calories > 600:
            feedback.append(
                "This meal is relatively high in calories for a weight loss diet. "
                "Consider reducing portion sizes or choosing lower-calorie alternatives."
            )
        else:
            feedback.append("This meal is moderate in calories, which supports your weight loss goal.")

    if "build_muscle" in goals:
        if totals.protein < 20:
            feedback.append(
                "This meal is relatively low in protein for muscle building. "
                "Consider adding a protein source like chicken, fish, tofu, or legumes."
            )
        else:
            feedback.append("The protein content in this meal supports your muscle building goal.")

    if "improve_energy" in goals:
        if totals.carbs < 30:
            feedback.append(
                "For improved energy levels, you might benefit from adding more "
                "complex carbohydrates to this meal."
            )
        else:
            feedback.append("The carbohydrate content in this meal can help provide sustained energy.")

    if "improve_digestion" in goals:
        if totals.fiber < 5:
            feedback.append(
                "To support digestive health, consider adding more fiber-rich foods "
                "like whole grains, fruits, or vegetables."
            )
        else:
            feedback.append("This meal contains a good amount of fiber, which supports digestive health.")

    if "lower_cholesterol" in goals:
        if totals.fat > 20:
            feedback.append(
                "This meal is relatively high in fat. For cholesterol management, consider "
                "reducing saturated fats and focusing on heart-healthy fats like those "
                "found in fish, nuts, and olive oil."
            )
        else:
            feedback.append(
                "The moderate fat content in this meal is generally supportive of "
                "cholesterol management."
            )

    if preferences:
        text = " ".join(food_items).lower()
        for avoidance in preferences.avoidances:
            if avoidance.lower() in text:
                feedback.append(f"This meal may contain {avoidance}, which you prefer to avoid.")
        for allergy in preferences.allergies:
            feedback.append(
                f"Check the ingredients carefully for your allergy ({allergy}); "
                "text-based analysis cannot rule out allergens."
            )

    return feedback


def generate_suggestions(totals: MacroTotals, goals: set[str], has_ingredients: bool) -> list[str]:
    if not has_ingredients:
        return ["Consider providing a clearer image or description of your meal for better analysis."]

    suggestions = []

    if "lose_weight" in goals:
        if totals.calories > 600:
            suggestions.append(
                "Try smaller portion sizes or replacing high-calorie ingredients with "
                "lower-calorie alternatives like vegetables."
            )
        if totals.fat > 25:
            suggestions.append(
                "Reduce added oils or choose leaner protein sources to lower the fat content of this meal."
            )

    if "build_muscle" in goals:
        if totals.protein < 20:
            suggestions.append(
                "Add a high-quality protein source like chicken breast, salmon, "
                "Greek yogurt, or a protein shake."
            )
        if totals.carbs < 40 and totals.calories < 500:
            suggestions.append(
                "Consider adding complex carbs like brown rice, quinoa, or sweet "
                "potatoes to fuel your workouts."
            )

    if "improve_energy" in goals:
        if totals.carbs < 30:
            suggestions.append("Include more whole grains or starchy vegetables for sustained energy.")
        if totals.fat > 30 and totals.carbs < 40:
            suggestions.append(
                "Balance your macronutrients by reducing fat and increasing complex "
                "carbohydrates for better energy levels."
            )

    if "improve_digestion" in goals:
        if totals.fiber < 5:
            suggestions.append(
                "Add more fiber-rich foods like beans, lentils, whole grains, or "
                "vegetables to support digestive health."
            )
        suggestions.append("Stay hydrated by drinking water with your meals to aid digestion.")

    if "lower_cholesterol" in goals:
        if totals.fat > 20:
            suggestions.append(
                "Choose heart-healthy fats like those found in avocados, nuts, and "
                "olive oil instead of saturated fats."
            )
        suggestions.append(
            "Incorporate more soluble fiber from sources like oats, barley, and "
            "legumes to help manage cholesterol."
        )

    if len(suggestions) < 2:
        suggestions.extend(GENERIC_SUGGESTIONS)

    return suggestions


def score_goal(goal: str, totals: MacroTotals) -> int:
    """Score adjustment, in steps, for one free-text goal."""
    lower = goal.lower()
    steps = 0

    if "weight loss" in lower or "lose weight" in lower:
        if totals.calories < 500:
            steps += 1
        elif totals.calories > 800:
            steps -= 1
        if totals.fiber > 5:
            steps += 1

    if "muscle" in lower or "strength" in lower or "build" in lower:
        steps += 2 if totals.protein > 20 else -1

    if "low carb" in lower or "keto" in lower:
        if totals.carbs < 20:
            steps += 2
        elif totals.carbs > 50:
            steps -= 1

    if "heart" in lower or "blood pressure" in lower or "cholesterol" in lower:
        if totals.sodium > 1000:
            steps -= 1

    if "diabetes" in lower or "blood sugar" in lower:
        if totals.sugar > 20:
            steps -= 2
        if totals.fiber > 5:
            steps += 1

    return steps


def _scale(steps: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, NEUTRAL_SCORE + steps * SCORE_STEP))


def score_goals(health_goals: Sequence[str], totals: MacroTotals) -> dict[str, Any]:
    """Overall and per-goal scores on 0-100."""
    specific = {}
    total_steps = 0
    for goal in health_goals:
        steps = score_goal(goal, totals)
        total_steps += steps
        key = normalize_goal_name(goal)
        if key:
            specific[key] = _scale(steps)
    return {"overall": _scale(total_steps), "specific": specific}


class TextMealAnalyzer:
    """Analyzes meal text with a nutrient lookup collaborator."""

    def __init__(self, lookup: NutritionLookupService | None):
        self.lookup = lookup

    async def analyze(
        self,
        text: str,
        health_goals: Sequence[str] = (),
        dietary_preferences: Sequence[str] = (),
        request_id: str = "-",
    ) -> TextAnalysisResult:
        """
        Analyze free text describing a meal.

        Returns ``success=False`` with a specific error when the text holds
        no food items or the nutrient lookup fails; in the latter case the
        document still carries the food items as ingredients.
        """
        start_time = time.time()

        def elapsed() -> int:
            return int((time.time() - start_time) * 1000)

        text = (text or "").strip()
        if len(text) < MIN_TEXT_LENGTH:
            logger.warning(f"[{request_id}] Text too short for analysis ({len(text)} chars)")
            return TextAnalysisResult(
                success=False,
                error="Text too short for analysis",
                error_category=ErrorCategory.NO_FOOD_ITEMS,
                processing_time_ms=elapsed(),
            )

        food_items = extract_food_items(text)
        logger.info(f"[{request_id}] Extracted {len(food_items)} potential food items")

        if not food_items:
            return TextAnalysisResult(
                success=False,
                error="No food items identified",
                error_category=ErrorCategory.NO_FOOD_ITEMS,
                processing_time_ms=elapsed(),
            )

        query = ", ".join(food_items)
        lookup_result, lookup_error = await self._lookup(query, request_id)

        if lookup_result is None:
            return TextAnalysisResult(
                success=False,
                document={
                    "description": describe_meal(food_items, 0),
                    "detailedIngredients": [
                        {
                            "name": item,
                            "category": "unknown",
                            "confidence": UNMATCHED_INGREDIENT_CONFIDENCE,
                        }
                        for item in food_items
                    ],
                },
                food_items=food_items,
                error=lookup_error,
                error_category=ErrorCategory.NUTRIENT_LOOKUP_FAILED,
                processing_time_ms=elapsed(),
            )

        totals = MacroTotals.from_lookup(lookup_result)
        goals = active_goals(health_goals)
        preferences = DietaryPreferences.from_list(dietary_preferences)

        document = {
            "description": describe_meal(food_items, totals.calories),
            "nutrients": [
                {
                    "name": n.name,
                    "value": format_number(n.value),
                    "unit": n.unit,
                    "isHighlight": n.is_highlight,
                }
                for n in lookup_result.nutrients
            ],
            "feedback": generate_feedback(totals, goals, food_items, preferences),
            "suggestions": generate_suggestions(totals, goals, has_ingredients=True),
            "detailedIngredients": [
                {
                    "name": item,
                    "category": TEXT_INGREDIENT_CATEGORY,
                    "confidence": TEXT_INGREDIENT_CONFIDENCE,
                }
                for item in food_items
            ],
            "goalScore": score_goals(health_goals, totals),
        }

        logger.info(f"[{request_id}] Text-only meal analysis completed successfully")

        return TextAnalysisResult(
            success=True,
            document=document,
            food_items=food_items,
            processing_time_ms=elapsed(),
        )

    async def _lookup(
        self, query: str, request_id: str
    ) -> tuple[NutritionResult | None, str | None]:
        if self.lookup is None:
            logger.warning(f"[{request_id}] No nutrition lookup service configured")
            return None, "Nutrition lookup not configured"

        try:
            result = await self.lookup.lookup(query)
        except NutritionLookupError as e:
            logger.error(f"[{request_id}] Nutrition lookup failed ({e.error_code}): {e.message}")
            return None, f"Failed to retrieve nutrition data: {e.message}"

        if not result.found:
            logger.warning(f"[{request_id}] No nutrition data found for: {query}")
            return None, "No nutrition data found for the detected foods"

        return result, None
