"""
app/services/profile_service.py

Purpose: User profile management

- Create and read profiles
- Update single profile fields
- Compute daily calorie, macro and water norms
- Persist recomputed norms
"""

from typing import Any, Dict, Optional

from app.core.logging import get_logger
from app.services.resilience import guarded_store_call
from app.services.result import Result
from utils.constants import MSG_STORE_UNAVAILABLE

logger = get_logger(__name__)

ACTIVITY_FACTOR = 1.2
GOAL_MULTIPLIERS = {
    "lose_weight": 0.85,
    "maintain_weight": 1.0,
    "gain_mass": 1.15,
}
WATER_ML_PER_KG = 30


def compute_daily_norms(gender: str, age: int, height_cm: float, weight_kg: float, goal: str) -> Dict[str, int]:
    """
    Daily targets from the Harris-Benedict BMR.

    Calories = BMR * 1.2 (sedentary) adjusted by goal; macros split
    30% protein, 30% fat, 40% carbs of calories; water 30 ml per kg.

    Returns:
        Dict with daily_calories, daily_protein, daily_fat, daily_carbs,
        daily_water_ml
    """
    if gender == "male":
        bmr = 88.362 + 13.397 * weight_kg + 4.799 * height_cm - 5.677 * age
    else:
        bmr = 447.593 + 9.247 * weight_kg + 3.098 * height_cm - 4.330 * age

    calories = bmr * ACTIVITY_FACTOR * GOAL_MULTIPLIERS.get(goal, 1.0)

    return {
        "daily_calories": round(calories),
        "daily_protein": round(calories * 0.30 / 4),
        "daily_fat": round(calories * 0.30 / 9),
        "daily_carbs": round(calories * 0.40 / 4),
        "daily_water_ml": round(weight_kg * WATER_ML_PER_KG),
    }


async def get_profile(store, telegram_id: int) -> Result[Optional[Dict[str, Any]]]:
    return await guarded_store_call(
        lambda: store.select_one("profiles", {"telegram_id": telegram_id}),
        MSG_STORE_UNAVAILABLE,
        operation="profiles.select_one",
        user_id=telegram_id,
    )


async def create_profile(store, record: Dict[str, Any]) -> Result[Dict[str, Any]]:
    logger.info("Creating profile", extra={"user_id": record.get("telegram_id")})
    return await guarded_store_call(
        lambda: store.insert("profiles", record),
        MSG_STORE_UNAVAILABLE,
        operation="profiles.insert",
        user_id=record.get("telegram_id"),
    )


async def update_profile(store, telegram_id: int, values: Dict[str, Any]) -> Result[Dict[str, Any]]:
    return await guarded_store_call(
        lambda: store.update("profiles", {"telegram_id": telegram_id}, values),
        MSG_STORE_UNAVAILABLE,
        operation="profiles.update",
        user_id=telegram_id,
    )


async def save_norms(store, profile: Dict[str, Any]) -> Result[Dict[str, Any]]:
    """
    Recomputes norms from the profile's body fields and stores them.

    Returns:
        Result whose value is the norms dict on success
    """
    norms = compute_daily_norms(
        gender=profile["gender"],
        age=profile["age"],
        height_cm=profile["height_cm"],
        weight_kg=profile["weight_kg"],
        goal=profile.get("goal", "maintain_weight"),
    )
    result = await update_profile(store, profile["telegram_id"], norms)
    if not result.ok:
        return result

    logger.info(
        f"Norms saved: {norms['daily_calories']} kcal",
        extra={"user_id": profile["telegram_id"]}
    )
    return Result.success(norms)
