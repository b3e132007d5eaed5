"""
app/flow/handlers/profile.py

Handles: Profile view and single-field edit

await_value(field) -> validate(field) -> PERSIST -> recompute norms if
field is age, height or weight
"""

from app.core.exceptions import InternalInconsistencyError, ValidationError
from app.core.logging import get_logger, LogContext
from app.flow.callbacks import ProfileAction
from app.flow.context import FlowContext
from app.flow.handlers.welcome import require_profile
from app.flow.states import EDITABLE_FIELDS, NORM_FIELDS, FlowKind, ProfileEditStep
from app.schemas.webhook import CallbackEvent, InboundEvent, TextMessage
from app.services.profile_service import save_norms, update_profile
from app.services.session_service import Slot
from utils import constants
from utils.telegram_utils import escape_markdown, main_menu_keyboard, profile_edit_keyboard

logger = get_logger(__name__)

FLOW = FlowKind.PROFILE_EDIT


def render_profile(profile: dict) -> str:
    values = {
        "first_name": escape_markdown(profile.get("first_name", "—")),
        "age": profile.get("age", "—"),
        "height_cm": profile.get("height_cm", "—"),
        "weight_kg": profile.get("weight_kg", "—"),
        "goal_label": constants.GOAL_LABELS.get(profile.get("goal"), "—"),
    }
    for key in ("daily_calories", "daily_protein", "daily_fat", "daily_carbs", "daily_water_ml"):
        values[key] = profile.get(key, "—")
    return constants.PROFILE_MESSAGE.format(**values)


async def show_profile(ctx: FlowContext, event: InboundEvent) -> None:
    profile = await require_profile(ctx, event)
    if profile is None:
        return
    await ctx.reply(event.chat_id, render_profile(profile), reply_markup=profile_edit_keyboard())


async def handle_callback(ctx: FlowContext, event: CallbackEvent, action: ProfileAction) -> None:
    if action.field not in EDITABLE_FIELDS:
        raise InternalInconsistencyError(flow=FLOW.value, message=f"Edit requested for unmapped field {action.field!r}")

    ctx.sessions.clear_all(event.user_id)
    ctx.sessions.start(event.user_id, FLOW, ProfileEditStep.AWAIT_VALUE.value, {"field": action.field})
    await ctx.reply(event.chat_id, constants.PROFILE_EDIT_PROMPTS[action.field])


async def handle_text(ctx: FlowContext, event: TextMessage, slot: Slot) -> None:
    field = slot.data.get("field")
    with LogContext(user_id=event.user_id, flow=FLOW.value, step=slot.step):
        mapping = EDITABLE_FIELDS.get(field)
        if mapping is None:
            raise InternalInconsistencyError(flow=FLOW.value, message=f"Edit slot names unmapped field {field!r}")

        store_key, parser = mapping
        try:
            value = parser(event.text)
        except ValidationError as e:
            await ctx.reply(event.chat_id, f"❌ {e.message}")
            return

        updated = await update_profile(ctx.store, event.user_id, {store_key: value})
        if not updated.ok:
            # Slot kept so the user can send the value again
            await ctx.reply(event.chat_id, updated.error)
            return

        ctx.sessions.clear(event.user_id, FLOW)
        logger.info(f"Profile field {field} updated")

        if field not in NORM_FIELDS:
            await ctx.reply(event.chat_id, constants.PROFILE_UPDATED_MESSAGE, reply_markup=main_menu_keyboard())
            return

        norms = await save_norms(ctx.store, updated.value)
        if not norms.ok:
            await ctx.reply(event.chat_id, norms.error, reply_markup=main_menu_keyboard())
            return

        await ctx.reply(
            event.chat_id,
            constants.PROFILE_NORMS_UPDATED_MESSAGE.format(daily_calories=norms.value["daily_calories"]),
            reply_markup=main_menu_keyboard(),
        )
