"""
app/flow/dispatcher.py

Purpose: Central event dispatcher

- Receives normalized events from the webhook
- Applies the per-user rate limit
- Serializes each user's events (one step in flight per user)
- Routes commands, menu buttons, callbacks, media and free text to flow
  handlers based on which slots the user has set
- Converts domain errors into user-facing replies at one boundary
"""

import asyncio
import math
from collections import defaultdict
from typing import Awaitable, Callable, Dict, Optional

from app.core.exceptions import CallbackDecodeError, InternalInconsistencyError, StaleReferenceError
from app.core.logging import get_logger, LogContext
from app.flow import callbacks
from app.flow.callbacks import (
    ChallengeAction,
    MealAction,
    PlanAction,
    ProfileAction,
    RegisterAction,
    StatsAction,
    WaterAction,
)
from app.flow.context import FlowContext, build_context
from app.flow.handlers import capture, meal, plans, profile, registration, stats, welcome
from app.flow.states import FlowKind, accepts_text
from app.schemas.webhook import (
    CallbackEvent,
    DocumentMessage,
    Event,
    InboundEvent,
    PhotoMessage,
    TextMessage,
    VoiceMessage,
)
from app.services.session_service import Slot
from utils import constants
from utils.telegram_utils import main_menu_keyboard

logger = get_logger(__name__)

Handler = Callable[[FlowContext, InboundEvent], Awaitable[None]]
TextHandler = Callable[[FlowContext, TextMessage, FlowKind, Slot], Awaitable[None]]

COMMANDS: Dict[str, Handler] = {
    "/start": welcome.handle_start,
    "/cancel": welcome.handle_cancel,
    "/help": welcome.handle_help,
    "/menu": welcome.handle_menu,
}

MENU_ACTIONS: Dict[str, Handler] = {
    constants.BTN_PHOTO: meal.prompt_photo,
    constants.BTN_MANUAL: meal.start_manual_entry,
    constants.BTN_STATS: stats.show_stats_menu,
    constants.BTN_WATER: capture.show_water_menu,
    constants.BTN_STEPS: capture.start_steps,
    constants.BTN_WORKOUT: lambda ctx, event: plans.start_plan(ctx, event, FlowKind.WORKOUT_PLAN),
    constants.BTN_NUTRITION: lambda ctx, event: plans.start_plan(ctx, event, FlowKind.NUTRITION_PLAN),
    constants.BTN_PROFILE: profile.show_profile,
    constants.BTN_QUESTION: capture.start_question,
    constants.BTN_MEDICAL: capture.start_medical,
}

TEXT_HANDLERS: Dict[FlowKind, TextHandler] = {
    FlowKind.REGISTRATION: lambda ctx, event, flow, slot: registration.handle_text(ctx, event, slot),
    FlowKind.MANUAL_ADD: lambda ctx, event, flow, slot: meal.handle_text(ctx, event, slot),
    FlowKind.WORKOUT_PLAN: plans.handle_text,
    FlowKind.NUTRITION_PLAN: plans.handle_text,
    FlowKind.WATER_WAIT: capture.handle_text,
    FlowKind.STEPS_WAIT: capture.handle_text,
    FlowKind.PROFILE_EDIT: lambda ctx, event, flow, slot: profile.handle_text(ctx, event, slot),
    FlowKind.QUESTION_WAIT: capture.handle_text,
    FlowKind.MEDICAL_WAIT: capture.handle_text,
}

CALLBACK_HANDLERS = {
    RegisterAction: registration.handle_callback,
    MealAction: meal.handle_callback,
    StatsAction: stats.handle_callback,
    WaterAction: capture.handle_water_callback,
    PlanAction: plans.handle_callback,
    ProfileAction: profile.handle_callback,
    ChallengeAction: stats.handle_challenge_callback,
}


def _flow_from(name: Optional[str]) -> Optional[FlowKind]:
    try:
        return FlowKind(name) if name else None
    except ValueError:
        return None


class Dispatcher:
    """
    Routes every inbound event for the process.

    Each user has an asyncio.Lock so that at most one step per user is in
    flight; different users proceed concurrently.
    """

    def __init__(self, ctx: FlowContext):
        self.ctx = ctx
        self._locks: Dict[int, asyncio.Lock] = {}
        self._pending: Dict[int, int] = defaultdict(int)

    def _lock_for(self, user_id: int) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def prune_locks(self) -> int:
        """Drops locks of users with nothing in flight or waiting."""
        idle = [user_id for user_id in self._locks if not self._pending.get(user_id)]
        for user_id in idle:
            del self._locks[user_id]
            self._pending.pop(user_id, None)
        if idle:
            logger.debug(f"Pruned {len(idle)} idle user locks")
        return len(idle)

    def lock_count(self) -> int:
        return len(self._locks)

    async def dispatch(self, event: Event) -> None:
        user_id = event.user_id
        with LogContext(user_id=user_id):
            if not self.ctx.rate_limiter.admit(user_id):
                await self._reject(event)
                return

            # Acknowledge before queueing so the client's spinner stops
            if isinstance(event, CallbackEvent):
                await self.ctx.telegram.answer_callback_query(event.callback_id)

            self._pending[user_id] += 1
            try:
                async with self._lock_for(user_id):
                    await self._route_safely(event)
            finally:
                self._pending[user_id] -= 1

    async def _reject(self, event: Event) -> None:
        if isinstance(event, CallbackEvent):
            await self.ctx.telegram.answer_callback_query(event.callback_id)
        if self.ctx.rate_limiter.should_notify(event.user_id):
            seconds = max(1, math.ceil(self.ctx.rate_limiter.retry_after(event.user_id)))
            await self.ctx.reply(event.chat_id, constants.MSG_RATE_LIMITED.format(seconds=seconds))

    async def _route_safely(self, event: Event) -> None:
        try:
            await self._route(event)
        except StaleReferenceError as e:
            logger.info(f"Stale reference: {e.message}", extra={"flow": e.flow})
            flow = _flow_from(e.flow)
            if flow is not None:
                self.ctx.sessions.clear(event.user_id, flow)
            await self.ctx.reply(event.chat_id, constants.MSG_PLEASE_REDO, reply_markup=main_menu_keyboard())
        except InternalInconsistencyError as e:
            logger.error(f"Internal inconsistency: {e.message}", extra={"flow": e.flow})
            flow = _flow_from(e.flow)
            if flow is not None:
                self.ctx.sessions.clear(event.user_id, flow)
            await self.ctx.reply(event.chat_id, constants.MSG_RETRY, reply_markup=main_menu_keyboard())
        except Exception as e:
            logger.error(f"❌ Dispatcher error: {e}", exc_info=True)
            await self.ctx.reply(event.chat_id, constants.MSG_GENERIC_ERROR)

    async def _route(self, event: Event) -> None:
        if isinstance(event, CallbackEvent):
            await self._route_callback(event)
        elif isinstance(event, TextMessage):
            await self._route_text(event)
        elif isinstance(event, VoiceMessage):
            await self._route_voice(event)
        elif isinstance(event, PhotoMessage):
            await self._route_photo(event)
        elif isinstance(event, DocumentMessage):
            await self._route_document(event)

    # ============================================================
    # CALLBACKS
    # ============================================================

    async def _route_callback(self, event: CallbackEvent) -> None:
        try:
            action = callbacks.decode(event.data)
        except CallbackDecodeError as e:
            logger.warning(f"Unsupported button: {e.message}")
            await self.ctx.reply(event.chat_id, constants.MSG_UNSUPPORTED_BUTTON)
            return

        logger.info(f"🔘 Callback {type(action).__name__}")
        await CALLBACK_HANDLERS[type(action)](self.ctx, event, action)

    # ============================================================
    # TEXT
    # ============================================================

    async def _route_text(self, event: TextMessage) -> None:
        text = event.text.strip()

        if text.startswith("/"):
            command = text.split()[0].split("@")[0].lower()
            handler = COMMANDS.get(command)
            if handler is not None:
                logger.info(f"⌨️ Command {command}")
                await handler(self.ctx, event)
                return

        menu_handler = MENU_ACTIONS.get(text)
        if menu_handler is not None:
            await self._start_from_menu(event, menu_handler)
            return

        await self._route_free_text(event)

    async def _start_from_menu(self, event: TextMessage, handler: Handler) -> None:
        slot = self.ctx.sessions.get(event.user_id, FlowKind.REGISTRATION)
        if slot is not None:
            # Registration has to finish before any other flow starts
            await registration.prompt_step(self.ctx, event.chat_id, slot)
            return

        cleared = self.ctx.sessions.clear_all(event.user_id)
        if cleared:
            logger.info(f"Menu superseded flows: {[f.value for f in cleared]}")
        await handler(self.ctx, event)

    async def _route_free_text(self, event: TextMessage) -> None:
        """
        Hands the text to the first set slot (in priority order) whose
        step accepts typed input. If every set slot waits for a button, the
        highest-priority one re-prompts. Without any slot, the fallback.
        """
        active = self.ctx.sessions.active_flows(event.user_id)
        if not active:
            await self.ctx.reply(event.chat_id, constants.FALLBACK_MESSAGE, reply_markup=main_menu_keyboard())
            return

        flow, slot = next(
            ((flow, slot) for flow, slot in active if accepts_text(flow, slot.step)),
            active[0],
        )
        await TEXT_HANDLERS[flow](self.ctx, event, flow, slot)

    # ============================================================
    # MEDIA
    # ============================================================

    async def _route_voice(self, event: VoiceMessage) -> None:
        await self.ctx.typing(event.chat_id)

        audio = await self.ctx.completion_call(
            lambda: self.ctx.telegram.download_file(event.file_ref),
            operation="telegram.download_voice",
            fallback_text=constants.MSG_TRANSCRIPTION_FAILED,
        )
        if not audio.ok:
            await self.ctx.reply(event.chat_id, audio.error)
            return

        transcript = await self.ctx.completion_call(
            lambda: self.ctx.completion.transcribe(audio.value, "voice.ogg", event.mime_type or "audio/ogg"),
            operation="completion.transcribe",
            fallback_text=constants.MSG_TRANSCRIPTION_FAILED,
        )
        if not transcript.ok or not (transcript.value or "").strip():
            await self.ctx.reply(event.chat_id, transcript.error or constants.MSG_TRANSCRIPTION_FAILED)
            return

        logger.info("🎤 Voice transcribed, routing as text")
        await self._route_text(TextMessage(
            user_id=event.user_id,
            chat_id=event.chat_id,
            username=event.username,
            first_name=event.first_name,
            last_name=event.last_name,
            text=transcript.value.strip(),
        ))

    async def _route_photo(self, event: PhotoMessage) -> None:
        sessions = self.ctx.sessions
        registering = sessions.get(event.user_id, FlowKind.REGISTRATION)
        if registering is not None:
            await registration.prompt_step(self.ctx, event.chat_id, registering)
            return
        if sessions.get(event.user_id, FlowKind.MEDICAL_WAIT) is not None:
            await self.ctx.reply(event.chat_id, constants.MEDICAL_TEXT_ONLY)
            return
        await meal.handle_photo(self.ctx, event)

    async def _route_document(self, event: DocumentMessage) -> None:
        slot = self.ctx.sessions.get(event.user_id, FlowKind.MEDICAL_WAIT)
        if slot is None:
            await self.ctx.reply(event.chat_id, constants.FALLBACK_MESSAGE, reply_markup=main_menu_keyboard())
            return
        await capture.handle_medical_document(self.ctx, event, slot)


_dispatcher: Optional[Dispatcher] = None


def get_dispatcher() -> Dispatcher:
    """Get or create the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = Dispatcher(build_context())
    return _dispatcher
