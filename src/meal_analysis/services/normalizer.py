"""
Schema normalization for loosely-structured analysis documents.

Takes whatever the extraction step produced (a full object, a partial one
or nothing) and coerces it into the shape of ``AnalysisResult``. Each field
is handled on its own so a broken field never blocks the others, and every
coercion is recorded in ``NormalizationFlags``.

The output document uses the camelCase field names of the wire format and
is a fixed point: normalizing it again returns an equal document.
"""

import logging
import math
import re
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field

from meal_analysis.models import NormalizationFlags

logger = logging.getLogger(__name__)


CORE_NUTRIENTS = ("calories", "protein", "carbs", "fat")

NUTRIENT_ALIASES = {
    "calorie": "calories",
    "kcal": "calories",
    "energy": "calories",
    "proteins": "protein",
    "carb": "carbs",
    "carbohydrate": "carbs",
    "carbohydrates": "carbs",
    "total carbohydrate": "carbs",
    "total carbohydrates": "carbs",
    "fats": "fat",
    "total fat": "fat",
    "fibre": "fiber",
    "dietary fiber": "fiber",
    "sugars": "sugar",
    "total sugars": "sugar",
}

MILLIGRAM_NUTRIENTS = {"sodium", "potassium", "cholesterol", "calcium", "iron"}

UNIT_SUFFIX_RE = re.compile(r"\d\s*(kcal|mcg|mg|µg|g|cal|iu)\b", re.IGNORECASE)
NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")

DEFAULT_DESCRIPTION = "Meal analysis"
DEFAULT_FEEDBACK = (
    "We analyzed your meal, but detailed feedback is not available for this result."
)
DEFAULT_SUGGESTIONS = [
    "Include a variety of colorful vegetables for a wider range of nutrients.",
    "Balance your plate with lean protein, whole grains and vegetables.",
    "Stay hydrated by drinking water with your meal.",
]
DEFAULT_GOAL_SCORE = 50
DEFAULT_INGREDIENT_CATEGORY = "unknown"
DEFAULT_INGREDIENT_CONFIDENCE = 0.5

# Field name -> accepted spellings (compared lower-cased without "_" or " ")
FIELD_KEYS = {
    "description": ("description", "mealdescription", "summary"),
    "nutrients": ("nutrients", "nutrition", "nutritionfacts"),
    "feedback": ("feedback",),
    "suggestions": ("suggestions", "recommendations"),
    "goalScore": ("goalscore", "score"),
    "detailedIngredients": ("detailedingredients", "ingredients"),
}


class NormalizedAnalysis(BaseModel):
    """Normalized document plus the record of what had to be coerced."""

    data: dict[str, Any]
    flags: NormalizationFlags = Field(default_factory=NormalizationFlags)


# =============================================================================
# Value coercion helpers
# =============================================================================


def normalize_goal_name(goal: str) -> str:
    """Lower-case a goal name and remove all whitespace."""
    return re.sub(r"\s+", "", str(goal)).lower()


def canonical_nutrient_name(name: Any) -> str:
    key = re.sub(r"\s+", " ", str(name)).strip().lower()
    return NUTRIENT_ALIASES.get(key, key)


def default_unit(name: str) -> str:
    if name == "calories":
        return "kcal"
    if name in MILLIGRAM_NUTRIENTS:
        return "mg"
    return "g"


def coerce_number(value: Any) -> float:
    """
    Coerce anything to a non-negative finite float.

    Strings are stripped of non-numeric characters ("350 kcal" -> 350);
    unparseable or negative values become 0.
    """
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = NUMBER_RE.search(value.replace(",", ""))
        if not match:
            return 0.0
        number = float(match.group(0))
    else:
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def format_number(value: float) -> str:
    """Render a number the way nutrient values are stored ("12", "3.5")."""
    return str(_compact_number(value))


def _compact_number(value: float) -> int | float:
    value = round(float(value), 2)
    return int(value) if value.is_integer() else value


def clamp_score(value: Any) -> int | float:
    return _compact_number(min(100.0, max(0.0, coerce_number(value))))


def clamp_confidence(value: Any) -> float:
    """Bring a confidence onto 0-1, rescaling 0-10 and 0-100 style values."""
    number = coerce_number(value)
    if number > 1:
        number = number / 10 if number <= 10 else number / 100
    return round(min(1.0, max(0.0, number)), 4)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


# =============================================================================
# Normalizer
# =============================================================================


class AnalysisNormalizer:
    """Guarantees a complete analysis document from partial input."""

    def normalize(
        self,
        raw: Any,
        health_goals: Sequence[str] = (),
    ) -> NormalizedAnalysis:
        """
        Normalize a loosely-structured analysis.

        Args:
            raw: Parsed model output; anything that is not a dict is treated
                as an empty document
            health_goals: The request's goals, used to fill ``goalScore.specific``

        Returns:
            NormalizedAnalysis with all six result fields present
        """
        source = self.index_fields(raw if isinstance(raw, dict) else {})
        flags = NormalizationFlags()

        data = {
            "description": self._normalize_description(source.get("description"), flags),
            "nutrients": self._normalize_nutrients(source.get("nutrients"), flags),
            "feedback": self._normalize_feedback(source.get("feedback"), flags),
            "suggestions": self._normalize_suggestions(source.get("suggestions"), flags),
            "detailedIngredients": self._normalize_ingredients(
                source.get("detailedIngredients"), flags
            ),
            "goalScore": self._normalize_goal_score(
                source.get("goalScore"), health_goals, flags
            ),
        }

        synthesized = flags.synthesized_fields
        if synthesized:
            logger.debug(f"Normalization synthesized fields: {', '.join(synthesized)}")

        return NormalizedAnalysis(data=data, flags=flags)

    @staticmethod
    def index_fields(raw: dict[str, Any]) -> dict[str, Any]:
        """Map the document's keys onto the canonical field names."""
        by_key = {}
        for key, value in raw.items():
            compact = re.sub(r"[\s_-]+", "", str(key)).lower()
            by_key.setdefault(compact, value)

        source = {}
        for field, spellings in FIELD_KEYS.items():
            for spelling in spellings:
                if spelling in by_key:
                    source[field] = by_key[spelling]
                    break
        return source

    # -------------------------------------------------------------------------
    # Per-field rules
    # -------------------------------------------------------------------------

    def _normalize_description(self, value: Any, flags: NormalizationFlags) -> str:
        text = _text(value)
        if text:
            return text
        flags.description_was_default = True
        return DEFAULT_DESCRIPTION

    def _normalize_nutrients(
        self, value: Any, flags: NormalizationFlags
    ) -> list[dict[str, Any]]:
        nutrients: list[dict[str, Any]] = []

        if isinstance(value, dict) and value:
            # Legacy flat mapping: {"calories": 350, "protein": "20g", ...}
            flags.nutrients_were_converted = True
            for name, amount in value.items():
                if isinstance(amount, dict):
                    entry = self._nutrient_entry({"name": name, **amount})
                else:
                    entry = self._nutrient_entry({"name": name, "value": amount})
                if entry:
                    nutrients.append(entry)
        elif isinstance(value, list):
            for item in value:
                entry = self._nutrient_entry(item)
                if entry:
                    nutrients.append(entry)

        if not nutrients:
            flags.nutrients_were_default = True
            flags.core_nutrients_added = list(CORE_NUTRIENTS)
            return [self._zero_nutrient(name) for name in CORE_NUTRIENTS]

        # First occurrence of a name wins
        seen = set()
        unique = []
        for entry in nutrients:
            if entry["name"] not in seen:
                seen.add(entry["name"])
                unique.append(entry)

        for name in CORE_NUTRIENTS:
            if name not in seen:
                unique.append(self._zero_nutrient(name))
                flags.core_nutrients_added.append(name)

        return unique

    def _nutrient_entry(self, item: Any) -> dict[str, Any] | None:
        if isinstance(item, str):
            # "Protein: 20g"
            if ":" not in item:
                return None
            name, _, amount = item.partition(":")
            item = {"name": name, "value": amount}
        if not isinstance(item, dict):
            return None

        name = canonical_nutrient_name(item.get("name", ""))
        if not name:
            return None

        raw_value = item.get("value", item.get("amount"))
        unit = _text(item.get("unit"))
        if not unit and isinstance(raw_value, str):
            match = UNIT_SUFFIX_RE.search(raw_value)
            if match:
                unit = match.group(1).lower()
        if not unit:
            unit = default_unit(name)

        highlight = item.get("isHighlight", item.get("is_highlight"))
        entry: dict[str, Any] = {
            "name": name,
            "value": format_number(coerce_number(raw_value)),
            "unit": unit,
            "isHighlight": bool(highlight) if highlight is not None else name in CORE_NUTRIENTS,
        }

        percent = item.get("percentOfDailyValue", item.get("percent_of_daily_value"))
        if percent is not None and (_is_number(percent) or NUMBER_RE.search(str(percent))):
            entry["percentOfDailyValue"] = _compact_number(coerce_number(percent))
        return entry

    @staticmethod
    def _zero_nutrient(name: str) -> dict[str, Any]:
        return {"name": name, "value": "0", "unit": default_unit(name), "isHighlight": True}

    def _normalize_feedback(self, value: Any, flags: NormalizationFlags) -> str:
        if isinstance(value, str):
            if value.strip():
                return value.strip()
        elif isinstance(value, list):
            parts = [_text(v).rstrip(".") for v in value]
            parts = [p for p in parts if p]
            if parts:
                flags.feedback_was_converted = True
                return ". ".join(parts) + "."

        flags.feedback_was_default = True
        return DEFAULT_FEEDBACK

    def _normalize_suggestions(self, value: Any, flags: NormalizationFlags) -> list[str]:
        if isinstance(value, list):
            items = [_text(v) for v in value]
            items = [i for i in items if i]
            if items:
                return items
        elif isinstance(value, str) and value.strip():
            flags.suggestions_were_converted = True
            return [value.strip()]

        flags.suggestions_were_default = True
        return list(DEFAULT_SUGGESTIONS)

    def _normalize_ingredients(
        self, value: Any, flags: NormalizationFlags
    ) -> list[dict[str, Any]]:
        if not isinstance(value, list):
            flags.ingredients_were_default = True
            return []

        ingredients = []
        for item in value:
            if isinstance(item, str) and item.strip():
                item = {"name": item}
            if not isinstance(item, dict):
                continue
            name = _text(item.get("name"))
            if not name:
                continue
            confidence = item.get("confidence")
            ingredients.append({
                "name": name,
                "category": _text(item.get("category")) or DEFAULT_INGREDIENT_CATEGORY,
                "confidence": (
                    clamp_confidence(confidence)
                    if confidence is not None
                    else DEFAULT_INGREDIENT_CONFIDENCE
                ),
            })

        if value and not ingredients:
            flags.ingredients_were_default = True
        return ingredients

    def _normalize_goal_score(
        self,
        value: Any,
        health_goals: Sequence[str],
        flags: NormalizationFlags,
    ) -> dict[str, Any]:
        overall: int | float = DEFAULT_GOAL_SCORE
        specific: dict[str, int | float] = {}

        if _is_number(value) or (isinstance(value, str) and NUMBER_RE.search(value)):
            overall = clamp_score(value)
            flags.goal_score_was_converted = True
        elif isinstance(value, dict):
            raw_overall = value.get("overall", value.get("score"))
            if raw_overall is None:
                flags.goal_score_was_default = True
            else:
                overall = clamp_score(raw_overall)

            raw_specific = value.get("specific")
            if isinstance(raw_specific, dict):
                for goal, score in raw_specific.items():
                    key = normalize_goal_name(goal)
                    if key:
                        specific[key] = clamp_score(score)
            else:
                flags.goal_score_was_converted = True
        else:
            flags.goal_score_was_default = True

        if not specific and health_goals:
            for goal in health_goals:
                key = normalize_goal_name(goal)
                if key:
                    specific[key] = overall
            flags.goal_score_specific_was_populated = bool(specific)

        return {"overall": overall, "specific": specific}
