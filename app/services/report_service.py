"""
app/services/report_service.py

Purpose: Aggregates and scheduled broadcasts

- Meal totals over a period (used by statistics and the daily report)
- Daily report broadcast to every registered user
- Weekly step challenge: creation, announcement, reminders, progress

Broadcasts isolate users: one user's failure is logged and the loop
continues.
"""

from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.core.exceptions import CollaboratorFailureError
from app.core.logging import get_logger, LogContext
from utils import constants
from utils.telegram_utils import challenge_keyboard, progress_bar
from utils.time_utils import day_start, today_local, week_start

logger = get_logger(__name__)

MEAL_FIELDS = ("calories", "protein", "fat", "carbs")


def _data(response, operation: str) -> Any:
    """Unwraps a StoreResponse, turning a logical error into an exception."""
    if response.error:
        raise CollaboratorFailureError(f"{operation}: {response.error}", details={"operation": operation})
    return response.data


def sum_meals(meals: List[Dict[str, Any]]) -> Dict[str, float]:
    totals = {field: 0.0 for field in MEAL_FIELDS}
    for meal in meals:
        for field in MEAL_FIELDS:
            totals[field] += meal.get(field) or 0
    return totals


async def meals_between(store, telegram_id: int, start: datetime, end: datetime) -> List[Dict[str, Any]]:
    response = await store.select(
        "meals",
        {"telegram_id": telegram_id, "eaten_at": {"$gte": start, "$lt": end}},
    )
    return _data(response, "meals.select")


async def day_summary(store, telegram_id: int, day: date) -> Dict[str, float]:
    """Calories, water and steps for one local day."""
    start = day_start(day)
    end = day_start(day + timedelta(days=1))

    meals = await meals_between(store, telegram_id, start, end)
    water = _data(
        await store.select("water_intake", {"telegram_id": telegram_id, "recorded_at": {"$gte": start, "$lt": end}}),
        "water_intake.select",
    )
    steps = _data(
        await store.select_one("steps_tracking", {"telegram_id": telegram_id, "date": day.isoformat()}),
        "steps_tracking.select_one",
    )

    return {
        "calories": sum_meals(meals)["calories"],
        "water_ml": sum(row.get("amount_ml", 0) for row in water),
        "steps": (steps or {}).get("steps", 0),
    }


async def _registered_users(store) -> List[Dict[str, Any]]:
    return _data(await store.select("profiles", {}), "profiles.select")


def _chat_id(profile: Dict[str, Any]) -> int:
    # Private chats share the user's id
    return profile.get("chat_id") or profile["telegram_id"]


async def _deliver(telegram, profile: Dict[str, Any], text: str, reply_markup: Optional[dict] = None) -> None:
    response = await telegram.send_message(_chat_id(profile), text, reply_markup=reply_markup)
    if not response.get("ok"):
        raise CollaboratorFailureError("Telegram rejected the message", details=response)


async def _broadcast(
    store,
    job: str,
    per_user: Callable[[Dict[str, Any]], Awaitable[None]],
) -> Dict[str, int]:
    profiles = await _registered_users(store)
    sent = failed = 0

    for profile in profiles:
        with LogContext(job=job, user_id=profile.get("telegram_id")):
            try:
                await per_user(profile)
                sent += 1
            except Exception as e:
                failed += 1
                logger.error(f"❌ {job} failed for user: {e}", exc_info=True)

    logger.info(f"📬 {job}: {sent} sent, {failed} failed")
    return {"sent": sent, "failed": failed}


# ============================================================
# DAILY REPORT
# ============================================================

def render_daily_report(summary: Dict[str, float], profile: Dict[str, Any]) -> str:
    daily_calories = profile.get("daily_calories") or 0
    return constants.DAILY_REPORT_MESSAGE.format(
        calories=round(summary["calories"]),
        daily_calories=daily_calories,
        calories_bar=progress_bar(summary["calories"], daily_calories),
        water_ml=round(summary["water_ml"]),
        daily_water_ml=profile.get("daily_water_ml") or 0,
        steps=summary["steps"],
    )


async def send_daily_reports(store, telegram, day: Optional[date] = None) -> Dict[str, int]:
    day = day or today_local()

    async def report(profile: Dict[str, Any]) -> None:
        summary = await day_summary(store, profile["telegram_id"], day)
        await _deliver(telegram, profile, render_daily_report(summary, profile))

    return await _broadcast(store, "daily_report", report)


# ============================================================
# WEEKLY CHALLENGE
# ============================================================

def challenge_for_week(monday: date) -> Dict[str, Any]:
    """Rotates through the challenge list by ISO week number."""
    template = constants.WEEKLY_CHALLENGES[monday.isocalendar()[1] % len(constants.WEEKLY_CHALLENGES)]
    return {"week_start": monday.isoformat(), **template}


async def current_challenge(store, monday: Optional[date] = None) -> Optional[Dict[str, Any]]:
    monday = monday or week_start()
    response = await store.select_one("weekly_challenges", {"week_start": monday.isoformat()})
    return _data(response, "weekly_challenges.select_one")


async def week_steps(store, telegram_id: int, monday: date) -> int:
    rows = _data(
        await store.select("steps_tracking", {"telegram_id": telegram_id, "date": {"$gte": monday.isoformat()}}),
        "steps_tracking.select",
    )
    return sum(row.get("steps", 0) for row in rows)


def render_challenge_progress(challenge: Dict[str, Any], steps: int) -> str:
    return constants.CHALLENGE_REMINDER.format(
        title=challenge["title"],
        steps=steps,
        target_steps=challenge["target_steps"],
        bar=progress_bar(steps, challenge["target_steps"]),
    )


async def create_weekly_challenge(store, telegram, monday: Optional[date] = None) -> Dict[str, int]:
    """Upserts this week's challenge and announces it to every user."""
    monday = monday or week_start()
    challenge = challenge_for_week(monday)
    _data(
        await store.upsert("weekly_challenges", {"week_start": challenge["week_start"]}, challenge),
        "weekly_challenges.upsert",
    )
    logger.info(f"🏆 Weekly challenge created: {challenge['title']}")

    text = constants.CHALLENGE_ANNOUNCEMENT.format(
        title=challenge["title"],
        description=challenge["description"],
        target_steps=challenge["target_steps"],
    )

    async def announce(profile: Dict[str, Any]) -> None:
        await _deliver(telegram, profile, text, reply_markup=challenge_keyboard())

    return await _broadcast(store, "challenge_announcement", announce)


async def send_challenge_reminders(store, telegram, monday: Optional[date] = None) -> Dict[str, int]:
    monday = monday or week_start()
    challenge = await current_challenge(store, monday)
    if challenge is None:
        logger.info("No challenge this week, reminders skipped")
        return {"sent": 0, "failed": 0}

    async def remind(profile: Dict[str, Any]) -> None:
        steps = await week_steps(store, profile["telegram_id"], monday)
        await _deliver(
            telegram,
            profile,
            render_challenge_progress(challenge, steps),
            reply_markup=challenge_keyboard(),
        )

    return await _broadcast(store, "challenge_reminder", remind)
