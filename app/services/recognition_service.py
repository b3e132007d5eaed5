"""
app/services/recognition_service.py

Purpose: Meal recognition

- Prompts for estimating a meal from a photo or a "dish, grams" entry
- Parses the JSON estimate returned by the completion service
- Detects "not food" answers
"""

import json
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from app.core.logging import get_logger

logger = get_logger(__name__)

NOT_FOOD = "not food"

_JSON_SHAPE = """{
  "dish_name": "Dish name",
  "ingredients": ["ingredient 1", "ingredient 2"],
  "weight_g": 250,
  "calories": 350,
  "protein": 20,
  "fat": 12,
  "carbs": 40
}"""

TEXT_SYSTEM_PROMPT = f"""You are an expert dietitian. Analyze the text description of a meal and its weight and return ONLY a JSON object with this structure:
{_JSON_SHAPE}
The weight must match the weight given by the user. Compute calories, protein, fat and carbs (grams) for that weight.
No text before or after the JSON object. If the text is not food, return JSON with "dish_name": "{NOT_FOOD}"."""

PHOTO_SYSTEM_PROMPT = f"""You are an expert dietitian. Analyze the photo of a meal and return ONLY a JSON object with this structure:
{_JSON_SHAPE}
Estimate the portion weight from the photo and compute calories, protein, fat and carbs (grams) for it.
No text before or after the JSON object. If the photo shows no food, return JSON with "dish_name": "{NOT_FOOD}"."""


@dataclass
class MealEstimate:
    dish_name: str
    weight_g: int
    calories: int
    protein: int
    fat: int
    carbs: int
    ingredients: List[str] = field(default_factory=list)

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)


def text_prompt(name: str, grams: int) -> str:
    return f'Analyze this meal and estimate its composition and nutrition: "{name}, {grams} g"'


PHOTO_USER_PROMPT = "What is in this photo? Estimate the nutrition of the meal."


def _extract_json(text: str) -> str:
    fenced = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
    if fenced:
        return fenced.group(1)
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in completion output")
    return text[start:end + 1]


def parse_meal_estimate(text: str) -> Optional[MealEstimate]:
    """
    Parses the completion output.

    Returns:
        MealEstimate, or None when the model says it is not food

    Raises:
        ValueError: If the output is not a usable estimate
    """
    data = json.loads(_extract_json(text))
    dish_name = str(data.get("dish_name") or "").strip()
    if not dish_name:
        raise ValueError("estimate has no dish_name")
    if dish_name.lower() == NOT_FOOD:
        return None

    def number(key: str) -> int:
        value = data.get(key, 0)
        try:
            return max(0, round(float(value)))
        except (TypeError, ValueError):
            raise ValueError(f"estimate field {key} is not a number: {value!r}")

    ingredients = data.get("ingredients") or []
    if not isinstance(ingredients, list):
        ingredients = [str(ingredients)]

    return MealEstimate(
        dish_name=dish_name[:120],
        weight_g=number("weight_g"),
        calories=number("calories"),
        protein=number("protein"),
        fat=number("fat"),
        carbs=number("carbs"),
        ingredients=[str(i) for i in ingredients][:20],
    )


async def estimate_from_text(completion, name: str, grams: int) -> Optional[MealEstimate]:
    output = await completion.complete(TEXT_SYSTEM_PROMPT, text_prompt(name, grams), max_tokens=500)
    estimate = parse_meal_estimate(output)
    if estimate is not None:
        # The user's weight wins over the model's
        estimate.weight_g = grams
    return estimate


async def estimate_from_photo(completion, image: bytes) -> Optional[MealEstimate]:
    output = await completion.complete_with_image(PHOTO_SYSTEM_PROMPT, PHOTO_USER_PROMPT, image)
    return parse_meal_estimate(output)
