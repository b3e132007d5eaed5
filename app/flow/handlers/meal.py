"""
app/flow/handlers/meal.py

Handles: Meal logging

Manual entry: awaiting_input -> recognizing -> awaiting_confirmation(token) -> PERSIST | CANCEL
Photo entry:  photo -> recognize -> confirmation token -> PERSIST | CANCEL

- Recognition goes through the completion service under its time budget
- The meal card carries confirm/cancel buttons sharing one token
- A token is consumed once; a second tap shows "this choice has expired"
- A failed save re-issues a fresh token so the user can retry
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.core.exceptions import ValidationError
from app.core.logging import get_logger, LogContext
from app.flow.callbacks import MealAction
from app.flow.context import FlowContext
from app.flow.states import FlowKind, MealStep
from app.schemas.webhook import CallbackEvent, InboundEvent, PhotoMessage, TextMessage
from app.services.recognition_service import MealEstimate, estimate_from_photo, estimate_from_text
from app.services.session_service import Slot
from utils import constants
from utils.telegram_utils import escape_markdown, main_menu_keyboard, meal_confirmation_keyboard
from utils.validation_utils import parse_manual_meal

logger = get_logger(__name__)

FLOW = FlowKind.MANUAL_ADD


def _card_text(payload: Dict[str, Any]) -> str:
    return constants.MEAL_CARD_MESSAGE.format(**{**payload, "dish_name": escape_markdown(payload["dish_name"])})


async def start_manual_entry(ctx: FlowContext, event: InboundEvent) -> None:
    ctx.sessions.start(event.user_id, FLOW, MealStep.AWAITING_INPUT.value)
    await ctx.reply(event.chat_id, constants.MANUAL_PROMPT_MESSAGE)


async def prompt_photo(ctx: FlowContext, event: InboundEvent) -> None:
    await ctx.reply(event.chat_id, constants.PHOTO_PROMPT_MESSAGE)


async def _offer(ctx: FlowContext, event: InboundEvent, estimate: MealEstimate, source: str) -> str:
    payload = {**estimate.to_record(), "source": source}
    token = ctx.confirmations.issue(payload, owner=event.user_id)
    await ctx.reply(event.chat_id, _card_text(payload), reply_markup=meal_confirmation_keyboard(token))
    return token


async def handle_text(ctx: FlowContext, event: TextMessage, slot: Slot) -> None:
    with LogContext(user_id=event.user_id, flow=FLOW.value, step=slot.step):
        if slot.step == MealStep.AWAITING_CONFIRMATION:
            await ctx.reply(event.chat_id, constants.CONFIRM_PENDING_MESSAGE)
            return

        if slot.step == MealStep.RECOGNIZING:
            await ctx.reply(event.chat_id, constants.ANALYZING_MESSAGE)
            return

        try:
            name, grams = parse_manual_meal(event.text)
        except ValidationError as e:
            await ctx.reply(event.chat_id, f"❌ {e.message}")
            return

        slot = ctx.sessions.advance(event.user_id, FLOW, MealStep.RECOGNIZING.value, name=name, grams=grams)
        session_id = slot.session_id
        await ctx.typing(event.chat_id)

        result = await ctx.completion_call(
            lambda: estimate_from_text(ctx.completion, name, grams),
            operation="completion.meal_text",
            user_id=event.user_id,
        )

        if not ctx.sessions.is_current(event.user_id, FLOW, session_id):
            logger.info("Manual entry superseded while recognizing; result discarded")
            return

        if not result.ok:
            ctx.sessions.advance(event.user_id, FLOW, MealStep.AWAITING_INPUT.value)
            await ctx.reply(event.chat_id, result.error)
            return

        if result.value is None:
            ctx.sessions.advance(event.user_id, FLOW, MealStep.AWAITING_INPUT.value)
            await ctx.reply(event.chat_id, constants.NOT_FOOD_MESSAGE)
            return

        token = await _offer(ctx, event, result.value, source="manual")
        ctx.sessions.advance(event.user_id, FLOW, MealStep.AWAITING_CONFIRMATION.value, token=token)


async def handle_photo(ctx: FlowContext, event: PhotoMessage) -> None:
    with LogContext(user_id=event.user_id, flow="photo_meal"):
        await ctx.reply(event.chat_id, constants.ANALYZING_MESSAGE)
        await ctx.typing(event.chat_id)

        image = await ctx.completion_call(
            lambda: ctx.telegram.download_file(event.file_ref),
            operation="telegram.download_photo",
            fallback_text=constants.MSG_GENERIC_ERROR,
            user_id=event.user_id,
        )
        if not image.ok:
            await ctx.reply(event.chat_id, image.error)
            return

        result = await ctx.completion_call(
            lambda: estimate_from_photo(ctx.completion, image.value),
            operation="completion.meal_photo",
            user_id=event.user_id,
        )
        if not result.ok:
            await ctx.reply(event.chat_id, result.error)
            return

        if result.value is None:
            await ctx.reply(event.chat_id, constants.NOT_FOOD_MESSAGE)
            return

        await _offer(ctx, event, result.value, source="photo")


async def _finish_card(ctx: FlowContext, event: CallbackEvent, text: str, reply_markup: Optional[dict] = None) -> None:
    """Replaces the card's text so its buttons disappear; falls back to a new message."""
    if event.message_id is not None:
        response = await ctx.telegram.edit_message(event.chat_id, event.message_id, text, reply_markup=reply_markup)
        if response.get("ok"):
            return
    await ctx.reply(event.chat_id, text, reply_markup=reply_markup)


def _release_manual_slot(ctx: FlowContext, user_id: int, token: str) -> None:
    slot = ctx.sessions.get(user_id, FLOW)
    if slot is not None and slot.data.get("token") == token:
        ctx.sessions.clear(user_id, FLOW)


async def handle_callback(ctx: FlowContext, event: CallbackEvent, action: MealAction) -> None:
    with LogContext(user_id=event.user_id, flow="meal_confirmation"):
        payload = ctx.confirmations.consume(action.token, owner=event.user_id)
        _release_manual_slot(ctx, event.user_id, action.token)

        if payload is None:
            logger.info(f"Meal {action.verb} on expired token")
            await _finish_card(ctx, event, constants.CONFIRMATION_EXPIRED_MESSAGE)
            return

        if action.verb == "cancel":
            await _finish_card(ctx, event, constants.MEAL_CANCELLED_MESSAGE)
            return

        record = {
            "telegram_id": event.user_id,
            "description": payload["dish_name"],
            "ingredients": payload.get("ingredients", []),
            "weight_g": payload["weight_g"],
            "calories": payload["calories"],
            "protein": payload["protein"],
            "fat": payload["fat"],
            "carbs": payload["carbs"],
            "source": payload.get("source", "manual"),
            "eaten_at": datetime.now(timezone.utc),
        }
        saved = await ctx.store_call(
            lambda: ctx.store.insert("meals", record),
            operation="meals.insert",
            user_id=event.user_id,
        )

        if not saved.ok:
            retry_token = ctx.confirmations.issue(payload, owner=event.user_id)
            await _finish_card(
                ctx, event,
                f"{saved.error}\n\n{_card_text(payload)}",
                reply_markup=meal_confirmation_keyboard(retry_token),
            )
            return

        logger.info(f"🍽 Meal saved: {record['calories']} kcal")
        await _finish_card(
            ctx, event,
            constants.MEAL_SAVED_MESSAGE.format(dish_name=escape_markdown(payload["dish_name"]), calories=payload["calories"]),
        )
        await ctx.reply(event.chat_id, constants.MENU_PROMPT, reply_markup=main_menu_keyboard())
