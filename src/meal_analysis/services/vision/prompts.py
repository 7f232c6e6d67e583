"""Vision model prompt templates."""

from collections.abc import Sequence

VISION_SYSTEM_PROMPT = """You are an expert nutritionist AI that analyzes meal images and provides detailed nutritional information and health advice.

GOAL: Analyze the food in the image and return a JSON object with the following structure:
{{
  "description": "Detailed description of the meal and its components",
  "nutrients": {{
    "calories": number (kcal),
    "protein": number (grams),
    "carbs": number (grams),
    "fat": number (grams),
    "fiber": number (grams),
    "sugar": number (grams),
    "sodium": number (mg)
  }},
  "feedback": ["List of health feedback points about the meal"],
  "suggestions": ["List of suggestions to improve the meal's nutritional value"],
  "warnings": ["List of potential health concerns if applicable, or empty array"],
  "goalScore": number (0-100 representing how well this meal fits with the user's health goals),
  "scoreExplanation": "Brief explanation of the goal score",
  "detailedIngredients": [
    {{
      "name": "Name of ingredient",
      "estimatedAmount": "Portion estimate (e.g., '1 cup', '2 oz')",
      "calories": number (estimated kcal)
    }}
  ]
}}

User Health Goals: {health_goals}
Dietary Preferences/Restrictions: {dietary_preferences}

NOTE: Be accurate but conservative with nutrient estimates. If you don't see food clearly, say so. RETURN ONLY VALID JSON. All numeric values should be numbers, not strings.{fallback_note}"""

FALLBACK_MODEL_NOTE = (
    "\n\nNOTE: This analysis is being performed by a fallback model with limited capabilities."
)

VISION_USER_PROMPT = (
    "Analyze this meal image and provide nutritional information and health advice in JSON format."
)

# Keys a vision response must carry to count as complete
REQUIRED_RESPONSE_KEYS = ("description", "nutrients", "feedback", "suggestions", "detailedIngredients")


def build_system_prompt(
    health_goals: Sequence[str],
    dietary_preferences: Sequence[str],
    used_fallback_model: bool = False,
) -> str:
    """Fill the system prompt with the user's goals and preferences."""
    return VISION_SYSTEM_PROMPT.format(
        health_goals=", ".join(health_goals) or "general health",
        dietary_preferences=", ".join(dietary_preferences) or "none",
        fallback_note=FALLBACK_MODEL_NOTE if used_fallback_model else "",
    )
