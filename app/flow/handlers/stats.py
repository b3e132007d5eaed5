"""
app/flow/handlers/stats.py

Handles: Statistics and weekly challenge progress

- stats_<period>: meal totals for today / last 7 / last 30 days against the
  daily norms (scaled by the number of days), with a daily average for
  multi-day periods
- challenge_progress: this week's steps against the challenge target
"""

from app.core.logging import get_logger, LogContext
from app.flow.callbacks import ChallengeAction, StatsAction
from app.flow.context import FlowContext
from app.flow.handlers.welcome import require_profile
from app.schemas.webhook import CallbackEvent, InboundEvent
from app.services.report_service import render_challenge_progress, sum_meals
from utils import constants
from utils.telegram_utils import escape_markdown, format_number, progress_bar, stats_keyboard
from utils.time_utils import period_range, week_start

logger = get_logger(__name__)


async def show_stats_menu(ctx: FlowContext, event: InboundEvent) -> None:
    await ctx.reply(event.chat_id, constants.STATS_MENU_MESSAGE, reply_markup=stats_keyboard())


def render_stats(period: str, meals: list, profile: dict, days: int) -> str:
    title = constants.STATS_TITLES[period]
    if not meals:
        return constants.STATS_EMPTY_MESSAGE.format(title=title, name=escape_markdown(profile.get("first_name", "")))

    totals = sum_meals(meals)
    targets = {
        field: (profile.get(f"daily_{field}") or 0) * days
        for field in ("calories", "protein", "fat", "carbs")
    }
    average = ""
    if days > 1:
        average = constants.STATS_AVERAGE_LINE.format(average=format_number(totals["calories"] / days))

    return constants.STATS_MESSAGE.format(
        title=title,
        calories=format_number(totals["calories"]),
        target_calories=format_number(targets["calories"]),
        calories_bar=progress_bar(totals["calories"], targets["calories"]),
        average=average,
        protein=round(totals["protein"]),
        target_protein=targets["protein"],
        fat=round(totals["fat"]),
        target_fat=targets["fat"],
        carbs=round(totals["carbs"]),
        target_carbs=targets["carbs"],
        meal_count=len(meals),
    )


async def handle_callback(ctx: FlowContext, event: CallbackEvent, action: StatsAction) -> None:
    with LogContext(user_id=event.user_id, flow="stats"):
        profile = await require_profile(ctx, event)
        if profile is None:
            return

        start, end, days = period_range(action.period)
        meals = await ctx.store_call(
            lambda: ctx.store.select(
                "meals",
                {"telegram_id": event.user_id, "eaten_at": {"$gte": start, "$lt": end}},
            ),
            operation="meals.select",
            user_id=event.user_id,
        )
        if not meals.ok:
            await ctx.reply(event.chat_id, meals.error)
            return

        logger.info(f"📊 Stats for {action.period}: {len(meals.value)} meals")
        await ctx.reply(event.chat_id, render_stats(action.period, meals.value, profile, days))


async def handle_challenge_callback(ctx: FlowContext, event: CallbackEvent, action: ChallengeAction) -> None:
    monday = week_start()
    challenge = await ctx.store_call(
        lambda: ctx.store.select_one("weekly_challenges", {"week_start": monday.isoformat()}),
        operation="weekly_challenges.select_one",
        user_id=event.user_id,
    )
    if not challenge.ok:
        await ctx.reply(event.chat_id, challenge.error)
        return
    if challenge.value is None:
        await ctx.reply(event.chat_id, constants.CHALLENGE_NONE_MESSAGE)
        return

    rows = await ctx.store_call(
        lambda: ctx.store.select("steps_tracking", {"telegram_id": event.user_id, "date": {"$gte": monday.isoformat()}}),
        operation="steps_tracking.select",
        user_id=event.user_id,
    )
    if not rows.ok:
        await ctx.reply(event.chat_id, rows.error)
        return

    steps = sum(row.get("steps", 0) for row in rows.value)
    await ctx.reply(event.chat_id, render_challenge_progress(challenge.value, steps))
