"""
app/db/indexes.py

Purpose: Database index management

- Creates unique and performance indexes
- Ensures fast lookups and data integrity
"""

from app.db.mongo import get_collection
from app.core.logging import get_logger

logger = get_logger(__name__)


async def create_indexes():
    """
    Creates all necessary database indexes for optimal performance.
    This function is idempotent - safe to run multiple times.
    """
    try:
        profiles = get_collection("profiles")
        meals = get_collection("meals")
        water = get_collection("water_intake")
        steps = get_collection("steps_tracking")
        challenges = get_collection("weekly_challenges")

        logger.info("Creating database indexes...")

        # One profile per Telegram user
        await profiles.create_index("telegram_id", unique=True, name="telegram_id_unique")

        # Stats and daily reports scan a user's meals by time
        await meals.create_index(
            [("telegram_id", 1), ("eaten_at", -1)],
            name="user_meals_idx"
        )
        await water.create_index(
            [("telegram_id", 1), ("recorded_at", -1)],
            name="user_water_idx"
        )

        # Steps are upserted once per user per day
        await steps.create_index(
            [("telegram_id", 1), ("date", 1)],
            unique=True,
            name="user_steps_day_unique"
        )

        for name in ("workout_preferences", "nutrition_preferences"):
            await get_collection(name).create_index(
                "telegram_id", unique=True, name=f"{name}_user_unique"
            )

        await challenges.create_index("week_start", unique=True, name="week_start_unique")

        await get_collection("medical_notes").create_index(
            [("telegram_id", 1), ("created_at", -1)],
            name="user_notes_idx"
        )

        logger.info("✅ All database indexes created successfully")

    except Exception as e:
        logger.error(f"Failed to create indexes: {str(e)}", exc_info=True)
        raise
