"""
app/flow/handlers/plans.py

Handles: Workout and nutrition plan questionnaires

confirm_reuse -(yes)-> generating
              -(no)-> hand off to open question
              -(restart)-> delete preferences -> first question
question_1 -> ... -> question_n -> generating -> document delivered

- Entry branch is offered only when preferences are already stored
- Choice questions use buttons carrying the question index; numeric
  questions are typed
- Preferences are upserted before synthesis
- A plan that finishes after the user restarted or cancelled is dropped
- On synthesis failure the slot rolls back to the last question
"""

from typing import Any, Dict

from app.core.exceptions import StaleReferenceError, ValidationError
from app.core.logging import get_logger, LogContext
from app.flow.callbacks import PlanAction
from app.flow.context import FlowContext
from app.flow.handlers.welcome import require_profile
from app.flow.states import (
    QUESTIONNAIRES,
    FlowKind,
    InputKind,
    get_step_spec,
    question_index,
)
from app.schemas.webhook import CallbackEvent, InboundEvent, TextMessage
from app.services.plan_service import PLAN_MAX_TOKENS, plan_prompts, render_plan_document
from app.services.session_service import Slot
from utils import constants
from utils.telegram_utils import main_menu_keyboard, plan_reuse_keyboard, question_keyboard

logger = get_logger(__name__)

CONFIRM_REUSE = "confirm_reuse"
GENERATING = "generating"

DOMAIN_FLOWS = {
    "workout": FlowKind.WORKOUT_PLAN,
    "nutrition": FlowKind.NUTRITION_PLAN,
}
FLOW_DOMAINS = {flow: domain for domain, flow in DOMAIN_FLOWS.items()}
PREFERENCE_TABLES = {
    FlowKind.WORKOUT_PLAN: "workout_preferences",
    FlowKind.NUTRITION_PLAN: "nutrition_preferences",
}


def _plan_name(flow: FlowKind) -> str:
    return constants.PLAN_NAMES[flow.value]


async def _send_question(ctx: FlowContext, chat_id: int, flow: FlowKind, step: str) -> None:
    index = question_index(flow, step)
    question = QUESTIONNAIRES[flow][index]
    markup = question_keyboard(FLOW_DOMAINS[flow], index, question) if question.is_choice else None
    await ctx.reply(chat_id, question.prompt, reply_markup=markup)


async def _reprompt(ctx: FlowContext, chat_id: int, flow: FlowKind, slot: Slot) -> None:
    if slot.step == CONFIRM_REUSE:
        await ctx.reply(
            chat_id,
            constants.PLAN_REUSE_MESSAGE.format(plan_name=_plan_name(flow)),
            reply_markup=plan_reuse_keyboard(FLOW_DOMAINS[flow]),
        )
    elif slot.step == GENERATING:
        await ctx.reply(chat_id, constants.PLAN_GENERATING_MESSAGE.format(plan_name=_plan_name(flow)))
    else:
        await _send_question(ctx, chat_id, flow, slot.step)


async def start_plan(ctx: FlowContext, event: InboundEvent, flow: FlowKind) -> None:
    """Entry from the menu: offer reuse if preferences exist, else ask the first question."""
    with LogContext(user_id=event.user_id, flow=flow.value):
        if await require_profile(ctx, event) is None:
            return

        stored = await ctx.store_call(
            lambda: ctx.store.select_one(PREFERENCE_TABLES[flow], {"telegram_id": event.user_id}),
            operation=f"{PREFERENCE_TABLES[flow]}.select_one",
            user_id=event.user_id,
        )
        if not stored.ok:
            await ctx.reply(event.chat_id, stored.error)
            return

        answers = (stored.value or {}).get("answers")
        if answers:
            slot = ctx.sessions.start(event.user_id, flow, CONFIRM_REUSE, {"answers": answers})
        else:
            first = QUESTIONNAIRES[flow][0].step
            slot = ctx.sessions.start(event.user_id, flow, first, {"answers": {}})

        await _reprompt(ctx, event.chat_id, flow, slot)


async def handle_text(ctx: FlowContext, event: TextMessage, flow: FlowKind, slot: Slot) -> None:
    with LogContext(user_id=event.user_id, flow=flow.value, step=slot.step):
        spec = get_step_spec(flow, slot.step)

        if spec.expects == InputKind.NONE:
            await _reprompt(ctx, event.chat_id, flow, slot)
            return

        if spec.expects != InputKind.TEXT:
            await ctx.reply(event.chat_id, constants.USE_BUTTONS_MESSAGE)
            await _reprompt(ctx, event.chat_id, flow, slot)
            return

        try:
            value = spec.parser(event.text)
        except ValidationError as e:
            await ctx.reply(event.chat_id, f"❌ {e.message}")
            return

        await _record_answer(ctx, event, flow, slot, value)


async def handle_callback(ctx: FlowContext, event: CallbackEvent, action: PlanAction) -> None:
    flow = DOMAIN_FLOWS[action.domain]
    slot = ctx.sessions.get(event.user_id, flow)
    if slot is None:
        raise StaleReferenceError(flow=flow.value, message=f"{action.domain} button pressed without a slot")

    with LogContext(user_id=event.user_id, flow=flow.value, step=slot.step):
        if action.verb == "ans":
            await _handle_answer_button(ctx, event, flow, slot, action)
            return

        if slot.step != CONFIRM_REUSE:
            await _reprompt(ctx, event.chat_id, flow, slot)
            return

        if action.verb == "yes":
            slot = ctx.sessions.advance(event.user_id, flow, GENERATING)
            await _synthesize(ctx, event, flow, slot)
        elif action.verb == "no":
            ctx.sessions.clear(event.user_id, flow)
            ctx.sessions.start(event.user_id, FlowKind.QUESTION_WAIT)
            await ctx.reply(event.chat_id, constants.PLAN_QUESTION_HANDOFF)
        else:
            await _restart(ctx, event, flow)


async def _restart(ctx: FlowContext, event: InboundEvent, flow: FlowKind) -> None:
    deleted = await ctx.store_call(
        lambda: ctx.store.delete(PREFERENCE_TABLES[flow], {"telegram_id": event.user_id}),
        operation=f"{PREFERENCE_TABLES[flow]}.delete",
        user_id=event.user_id,
    )
    if not deleted.ok:
        await ctx.reply(event.chat_id, deleted.error)
        return

    first = QUESTIONNAIRES[flow][0].step
    slot = ctx.sessions.advance(event.user_id, flow, first, answers={})
    logger.info("Preferences deleted, questionnaire restarted")
    await _reprompt(ctx, event.chat_id, flow, slot)


async def _handle_answer_button(ctx: FlowContext, event: CallbackEvent, flow: FlowKind, slot: Slot, action: PlanAction) -> None:
    current = question_index(flow, slot.step)
    if current is None or action.step_index != current:
        await ctx.reply(event.chat_id, constants.PLAN_ALREADY_ANSWERED)
        await _reprompt(ctx, event.chat_id, flow, slot)
        return

    spec = get_step_spec(flow, slot.step)
    if spec.expects != InputKind.CALLBACK or action.value not in spec.choices:
        await _reprompt(ctx, event.chat_id, flow, slot)
        return

    await _record_answer(ctx, event, flow, slot, action.value)


async def _record_answer(ctx: FlowContext, event: InboundEvent, flow: FlowKind, slot: Slot, value: Any) -> None:
    spec = get_step_spec(flow, slot.step)
    answers = {**slot.data.get("answers", {}), spec.field: value}
    slot = ctx.sessions.advance(event.user_id, flow, spec.next_step, answers=answers)

    if slot.step == GENERATING:
        await _synthesize(ctx, event, flow, slot)
    else:
        await _send_question(ctx, event.chat_id, flow, slot.step)


async def _roll_back(ctx: FlowContext, event: InboundEvent, flow: FlowKind, message: str) -> None:
    """Returns the slot to the last question so re-sending the answer retries."""
    slot = ctx.sessions.advance(event.user_id, flow, QUESTIONNAIRES[flow][-1].step)
    await ctx.reply(event.chat_id, message)
    await _reprompt(ctx, event.chat_id, flow, slot)


async def _synthesize(ctx: FlowContext, event: InboundEvent, flow: FlowKind, slot: Slot) -> None:
    session_id = slot.session_id
    answers: Dict[str, Any] = slot.data.get("answers", {})
    table = PREFERENCE_TABLES[flow]

    saved = await ctx.store_call(
        lambda: ctx.store.upsert(table, {"telegram_id": event.user_id}, {"telegram_id": event.user_id, "answers": answers}),
        operation=f"{table}.upsert",
        user_id=event.user_id,
    )
    if not saved.ok:
        if ctx.sessions.is_current(event.user_id, flow, session_id):
            await _roll_back(ctx, event, flow, saved.error)
        return

    await ctx.reply(event.chat_id, constants.PLAN_GENERATING_MESSAGE.format(plan_name=_plan_name(flow)))
    await ctx.typing(event.chat_id)

    profile = await ctx.store_call(
        lambda: ctx.store.select_one("profiles", {"telegram_id": event.user_id}),
        operation="profiles.select_one",
        user_id=event.user_id,
    )
    system_prompt, user_prompt = plan_prompts(flow, answers, profile.unwrap_or(None))

    result = await ctx.completion_call(
        lambda: ctx.completion.complete(system_prompt, user_prompt, PLAN_MAX_TOKENS),
        operation=f"completion.{flow.value}",
        user_id=event.user_id,
    )

    if not ctx.sessions.is_current(event.user_id, flow, session_id):
        logger.info("Plan finished for a superseded session; discarded")
        return

    if not result.ok:
        await _roll_back(ctx, event, flow, constants.PLAN_FAILED_MESSAGE)
        return

    filename, content = render_plan_document(flow, result.value, answers)
    ctx.sessions.clear(event.user_id, flow)
    await ctx.telegram.send_document(
        event.chat_id,
        content,
        filename,
        caption=constants.PLAN_READY_CAPTION.format(plan_name=_plan_name(flow)),
    )
    logger.info(f"📄 {flow.value} delivered")
    await ctx.reply(event.chat_id, constants.MENU_PROMPT, reply_markup=main_menu_keyboard())
