"""
app/flow/handlers/registration.py

Handles: Registration flow

ask_name -> ask_gender -> ask_age -> ask_height -> ask_weight -> ask_goal -> PERSIST

- Typed steps are parsed by the step's validator; a rejection re-prompts
  the same step
- Gender and goal come from inline buttons
- PERSIST inserts the profile, computes daily norms once, clears the slot
"""

from typing import Any, Dict, Optional, Tuple

from app.core.exceptions import StaleReferenceError, ValidationError
from app.core.logging import get_logger, LogContext
from app.flow.callbacks import RegisterAction
from app.flow.context import FlowContext
from app.flow.states import FlowKind, InputKind, RegistrationStep, get_step_spec
from app.schemas.webhook import CallbackEvent, InboundEvent, TextMessage
from app.services.profile_service import create_profile, get_profile, save_norms
from app.services.session_service import Slot
from utils import constants
from utils.telegram_utils import escape_markdown, gender_keyboard, goal_keyboard, main_menu_keyboard, remove_keyboard

logger = get_logger(__name__)

FLOW = FlowKind.REGISTRATION


def step_prompt(step: str, data: Dict[str, Any]) -> Tuple[str, Optional[dict]]:
    """Prompt text and keyboard for a registration step."""
    if step == RegistrationStep.ASK_NAME:
        return constants.ASK_NAME_MESSAGE, remove_keyboard()
    if step == RegistrationStep.ASK_GENDER:
        return constants.ASK_GENDER_MESSAGE.format(name=escape_markdown(data.get("first_name", ""))), gender_keyboard()
    if step == RegistrationStep.ASK_AGE:
        return constants.ASK_AGE_MESSAGE, None
    if step == RegistrationStep.ASK_HEIGHT:
        return constants.ASK_HEIGHT_MESSAGE, None
    if step == RegistrationStep.ASK_WEIGHT:
        return constants.ASK_WEIGHT_MESSAGE, None
    return constants.ASK_GOAL_MESSAGE, goal_keyboard()


async def prompt_step(ctx: FlowContext, chat_id: int, slot: Slot) -> None:
    text, markup = step_prompt(slot.step, slot.data)
    await ctx.reply(chat_id, text, reply_markup=markup)


async def start_registration(ctx: FlowContext, event: InboundEvent) -> None:
    """Starts registration with a fresh slot and asks for the name."""
    ctx.sessions.start(event.user_id, FLOW, RegistrationStep.ASK_NAME.value)
    await ctx.reply(event.chat_id, constants.WELCOME_NEW_USER_MESSAGE, reply_markup=remove_keyboard())


async def handle_text(ctx: FlowContext, event: TextMessage, slot: Slot) -> None:
    with LogContext(user_id=event.user_id, flow=FLOW.value, step=slot.step):
        spec = get_step_spec(FLOW, slot.step)

        if spec.expects != InputKind.TEXT:
            await ctx.reply(event.chat_id, constants.USE_BUTTONS_MESSAGE)
            await prompt_step(ctx, event.chat_id, slot)
            return

        try:
            value = spec.parser(event.text)
        except ValidationError as e:
            logger.info(f"Rejected {slot.step} input: {e.message}")
            await ctx.reply(event.chat_id, f"❌ {e.message}")
            return

        slot = ctx.sessions.advance(event.user_id, FLOW, spec.next_step, **{spec.field: value})
        await prompt_step(ctx, event.chat_id, slot)


async def handle_callback(ctx: FlowContext, event: CallbackEvent, action: RegisterAction) -> None:
    slot = ctx.sessions.get(event.user_id, FLOW)
    if slot is None:
        raise StaleReferenceError(flow=FLOW.value, message="registration button pressed without a registration slot")

    with LogContext(user_id=event.user_id, flow=FLOW.value, step=slot.step):
        spec = get_step_spec(FLOW, slot.step)

        if spec.expects != InputKind.CALLBACK or spec.field != action.field or action.value not in spec.choices:
            # Button from an earlier or later question
            await prompt_step(ctx, event.chat_id, slot)
            return

        if spec.next_step is not None:
            slot = ctx.sessions.advance(event.user_id, FLOW, spec.next_step, **{spec.field: action.value})
            await prompt_step(ctx, event.chat_id, slot)
            return

        data = {**slot.data, spec.field: action.value}
        await _persist(ctx, event, data)


async def _persist(ctx: FlowContext, event: InboundEvent, data: Dict[str, Any]) -> None:
    record = {
        "telegram_id": event.user_id,
        "chat_id": event.chat_id,
        "username": event.username,
        "last_name": event.last_name,
        "first_name": data["first_name"],
        "gender": data["gender"],
        "age": data["age"],
        "height_cm": data["height_cm"],
        "weight_kg": data["weight_kg"],
        "goal": data["goal"],
    }

    existing = await get_profile(ctx.store, event.user_id)
    if not existing.ok:
        await ctx.reply(event.chat_id, existing.error)
        return
    if existing.value:
        # Registered from another device while this slot was open
        ctx.sessions.clear(event.user_id, FLOW)
        await ctx.reply(
            event.chat_id,
            constants.ALREADY_REGISTERED_MESSAGE.format(name=escape_markdown(existing.value.get("first_name", ""))),
            reply_markup=main_menu_keyboard(),
        )
        return

    created = await create_profile(ctx.store, record)
    if not created.ok:
        # Slot stays at ask_goal so the user can tap the goal again
        await ctx.reply(event.chat_id, created.error)
        return

    ctx.sessions.clear(event.user_id, FLOW)
    logger.info("✅ Registration complete")

    norms = await save_norms(ctx.store, record)
    if not norms.ok:
        await ctx.reply(event.chat_id, norms.error, reply_markup=main_menu_keyboard())
        return

    await ctx.reply(
        event.chat_id,
        constants.REGISTRATION_COMPLETE_MESSAGE.format(**norms.value),
        reply_markup=main_menu_keyboard(),
    )
