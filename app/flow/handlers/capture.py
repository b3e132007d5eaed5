"""
app/flow/handlers/capture.py

Handles: Single-step free-text capture flows

await_text -> validate/interpret -> PERSIST or ANSWER

- Water: quick-add buttons (each tap is an independent add) or a typed amount
- Steps: today's count, upserted per day
- Open question: answered by the completion service
- Medical text: interpreted by the completion service and stored; a .txt
  document is accepted as the text

A failed collaborator call keeps the slot so the user can simply resend.
"""

from datetime import datetime, timezone
from typing import Optional

from app.core.exceptions import ValidationError
from app.core.logging import get_logger, LogContext
from app.flow.callbacks import WaterAction
from app.flow.context import FlowContext
from app.flow.states import FlowKind, get_step_spec
from app.schemas.webhook import CallbackEvent, DocumentMessage, InboundEvent, TextMessage
from app.services.plan_service import (
    ANSWER_MAX_TOKENS,
    MEDICAL_MAX_TOKENS,
    MEDICAL_SYSTEM_PROMPT,
    QUESTION_SYSTEM_PROMPT,
)
from app.services.session_service import Slot
from utils import constants
from utils.telegram_utils import main_menu_keyboard, split_long_text, water_keyboard
from utils.time_utils import day_start, today_local

logger = get_logger(__name__)

DEFAULT_WATER_NORM_ML = 2000
TEXT_MIME_TYPES = ("text/plain",)


# ============================================================
# WATER
# ============================================================

async def show_water_menu(ctx: FlowContext, event: InboundEvent) -> None:
    await ctx.reply(event.chat_id, constants.WATER_MENU_MESSAGE, reply_markup=water_keyboard())


async def handle_water_callback(ctx: FlowContext, event: CallbackEvent, action: WaterAction) -> None:
    if action.verb == "custom":
        ctx.sessions.clear_all(event.user_id)
        ctx.sessions.start(event.user_id, FlowKind.WATER_WAIT)
        await ctx.reply(event.chat_id, constants.WATER_CUSTOM_PROMPT)
        return

    await _add_water(ctx, event, action.amount_ml)


async def _add_water(ctx: FlowContext, event: InboundEvent, amount_ml: int) -> bool:
    saved = await ctx.store_call(
        lambda: ctx.store.insert("water_intake", {
            "telegram_id": event.user_id,
            "amount_ml": amount_ml,
            "recorded_at": datetime.now(timezone.utc),
        }),
        operation="water_intake.insert",
        user_id=event.user_id,
    )
    if not saved.ok:
        await ctx.reply(event.chat_id, saved.error)
        return False

    since = day_start(today_local())
    today = await ctx.store_call(
        lambda: ctx.store.select("water_intake", {"telegram_id": event.user_id, "recorded_at": {"$gte": since}}),
        operation="water_intake.select",
        user_id=event.user_id,
    )
    total = sum(row.get("amount_ml", 0) for row in today.value) if today.ok else amount_ml

    profile = await ctx.store_call(
        lambda: ctx.store.select_one("profiles", {"telegram_id": event.user_id}),
        operation="profiles.select_one",
        user_id=event.user_id,
    )
    norm = (profile.unwrap_or(None) or {}).get("daily_water_ml") or DEFAULT_WATER_NORM_ML

    await ctx.reply(
        event.chat_id,
        constants.WATER_ADDED_MESSAGE.format(amount_ml=amount_ml, total_ml=total, norm_ml=norm),
    )
    return True


# ============================================================
# STEPS
# ============================================================

async def start_steps(ctx: FlowContext, event: InboundEvent) -> None:
    ctx.sessions.start(event.user_id, FlowKind.STEPS_WAIT)
    await ctx.reply(event.chat_id, constants.STEPS_PROMPT)


async def _save_steps(ctx: FlowContext, event: InboundEvent, steps: int) -> bool:
    day = today_local().isoformat()
    saved = await ctx.store_call(
        lambda: ctx.store.upsert(
            "steps_tracking",
            {"telegram_id": event.user_id, "date": day},
            {"telegram_id": event.user_id, "date": day, "steps": steps},
        ),
        operation="steps_tracking.upsert",
        user_id=event.user_id,
    )
    if not saved.ok:
        await ctx.reply(event.chat_id, saved.error)
        return False

    await ctx.reply(
        event.chat_id,
        constants.STEPS_SAVED_MESSAGE.format(steps=steps),
        reply_markup=main_menu_keyboard(),
    )
    return True


# ============================================================
# QUESTION & MEDICAL
# ============================================================

async def start_question(ctx: FlowContext, event: InboundEvent) -> None:
    ctx.sessions.start(event.user_id, FlowKind.QUESTION_WAIT)
    await ctx.reply(event.chat_id, constants.QUESTION_PROMPT)


async def start_medical(ctx: FlowContext, event: InboundEvent) -> None:
    ctx.sessions.start(event.user_id, FlowKind.MEDICAL_WAIT)
    await ctx.reply(event.chat_id, constants.MEDICAL_PROMPT)


async def _send_long(ctx: FlowContext, chat_id: int, text: str, reply_markup: Optional[dict] = None) -> None:
    # Model output is sent as plain text; its Markdown rarely fits Telegram's parser
    parts = split_long_text(text)
    for index, part in enumerate(parts):
        markup = reply_markup if index == len(parts) - 1 else None
        await ctx.reply(chat_id, part, reply_markup=markup, parse_mode=None)


async def _answer_question(ctx: FlowContext, event: InboundEvent, slot: Slot, question: str) -> None:
    await ctx.typing(event.chat_id)
    result = await ctx.completion_call(
        lambda: ctx.completion.complete(QUESTION_SYSTEM_PROMPT, question, ANSWER_MAX_TOKENS),
        operation="completion.question",
        user_id=event.user_id,
    )
    if not ctx.sessions.is_current(event.user_id, FlowKind.QUESTION_WAIT, slot.session_id):
        logger.info("Question answered after the slot changed; discarded")
        return
    if not result.ok:
        await ctx.reply(event.chat_id, result.error)
        return

    ctx.sessions.clear(event.user_id, FlowKind.QUESTION_WAIT)
    await _send_long(ctx, event.chat_id, result.value, reply_markup=main_menu_keyboard())


async def interpret_medical_text(ctx: FlowContext, event: InboundEvent, slot: Slot, text: str) -> None:
    await ctx.typing(event.chat_id)
    result = await ctx.completion_call(
        lambda: ctx.completion.complete(MEDICAL_SYSTEM_PROMPT, text, MEDICAL_MAX_TOKENS),
        operation="completion.medical",
        user_id=event.user_id,
    )
    if not ctx.sessions.is_current(event.user_id, FlowKind.MEDICAL_WAIT, slot.session_id):
        logger.info("Medical interpretation finished after the slot changed; discarded")
        return
    if not result.ok:
        await ctx.reply(event.chat_id, result.error)
        return

    saved = await ctx.store_call(
        lambda: ctx.store.insert("medical_notes", {
            "telegram_id": event.user_id,
            "text": text,
            "interpretation": result.value,
        }),
        operation="medical_notes.insert",
        user_id=event.user_id,
    )
    if not saved.ok:
        # The slot stays open so sending the text again stores it
        await _send_long(ctx, event.chat_id, result.value + constants.MEDICAL_DISCLAIMER)
        await ctx.reply(event.chat_id, f"{saved.error}\n\n{constants.MEDICAL_NOT_SAVED}")
        return

    ctx.sessions.clear(event.user_id, FlowKind.MEDICAL_WAIT)
    await _send_long(ctx, event.chat_id, result.value + constants.MEDICAL_DISCLAIMER, reply_markup=main_menu_keyboard())


async def handle_medical_document(ctx: FlowContext, event: DocumentMessage, slot: Slot) -> None:
    is_text = (event.mime_type or "") in TEXT_MIME_TYPES or (event.file_name or "").lower().endswith(".txt")
    if not is_text:
        await ctx.reply(event.chat_id, constants.MEDICAL_TEXT_ONLY)
        return

    content = await ctx.completion_call(
        lambda: ctx.telegram.download_file(event.file_ref),
        operation="telegram.download_document",
        fallback_text=constants.MSG_GENERIC_ERROR,
        user_id=event.user_id,
    )
    if not content.ok:
        await ctx.reply(event.chat_id, content.error)
        return

    text = content.value.decode("utf-8", errors="replace")
    spec = get_step_spec(FlowKind.MEDICAL_WAIT, slot.step)
    try:
        text = spec.parser(text)
    except ValidationError as e:
        await ctx.reply(event.chat_id, f"❌ {e.message}")
        return
    if not text:
        await ctx.reply(event.chat_id, constants.MEDICAL_TEXT_ONLY)
        return
    await interpret_medical_text(ctx, event, slot, text)


# ============================================================
# TEXT ROUTING FOR CAPTURE SLOTS
# ============================================================

async def handle_text(ctx: FlowContext, event: TextMessage, flow: FlowKind, slot: Slot) -> None:
    with LogContext(user_id=event.user_id, flow=flow.value, step=slot.step):
        spec = get_step_spec(flow, slot.step)
        try:
            value = spec.parser(event.text)
        except ValidationError as e:
            await ctx.reply(event.chat_id, f"❌ {e.message}")
            return

        if flow == FlowKind.WATER_WAIT:
            if await _add_water(ctx, event, value):
                ctx.sessions.clear(event.user_id, flow)
        elif flow == FlowKind.STEPS_WAIT:
            if await _save_steps(ctx, event, value):
                ctx.sessions.clear(event.user_id, flow)
        elif flow == FlowKind.QUESTION_WAIT:
            if not value:
                await ctx.reply(event.chat_id, constants.QUESTION_PROMPT)
                return
            await _answer_question(ctx, event, slot, value)
        elif flow == FlowKind.MEDICAL_WAIT:
            if not value:
                await ctx.reply(event.chat_id, constants.MEDICAL_TEXT_ONLY)
                return
            await interpret_medical_text(ctx, event, slot, value)
