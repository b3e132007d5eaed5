import asyncio

import pytest

from conftest import USER_ID, button, text
import app.flow.dispatcher as dispatcher_module
from app.flow.dispatcher import Dispatcher
from app.flow.states import FlowKind
from app.schemas.webhook import DocumentMessage, PhotoMessage, VoiceMessage
from app.services.rate_limit_service import RateLimiter
from utils import constants


@pytest.fixture
def dispatcher(ctx):
    return Dispatcher(ctx)


@pytest.mark.asyncio
async def test_button_step_slot_does_not_leak_text_to_other_flows(dispatcher, ctx, store, telegram):
    ctx.sessions.start(USER_ID, FlowKind.WORKOUT_PLAN, "ask_experience", {"answers": {"goal": "endurance"}})

    await dispatcher.dispatch(text("500"))

    assert store.count("insert", "water_intake") == 0
    assert ctx.sessions.get(USER_ID, FlowKind.WORKOUT_PLAN).step == "ask_experience"
    assert constants.USE_BUTTONS_MESSAGE in telegram.texts


@pytest.mark.asyncio
async def test_text_goes_to_first_slot_that_accepts_text(dispatcher, ctx, store):
    ctx.sessions.start(USER_ID, FlowKind.WORKOUT_PLAN, "ask_experience", {"answers": {"goal": "endurance"}})
    ctx.sessions.start(USER_ID, FlowKind.WATER_WAIT)

    await dispatcher.dispatch(text("500"))

    assert store.rows("water_intake")[0]["amount_ml"] == 500
    assert ctx.sessions.get(USER_ID, FlowKind.WATER_WAIT) is None
    assert ctx.sessions.get(USER_ID, FlowKind.WORKOUT_PLAN).step == "ask_experience"


@pytest.mark.asyncio
async def test_free_text_without_slot_gets_fallback(dispatcher, telegram):
    await dispatcher.dispatch(text("hello there"))

    assert telegram.last_text == constants.FALLBACK_MESSAGE
    assert telegram.messages[-1]["reply_markup"]["keyboard"]


@pytest.mark.asyncio
async def test_menu_button_supersedes_other_slots(dispatcher, ctx, telegram):
    ctx.sessions.start(USER_ID, FlowKind.QUESTION_WAIT)

    await dispatcher.dispatch(text(constants.BTN_STEPS))

    assert ctx.sessions.get(USER_ID, FlowKind.QUESTION_WAIT) is None
    assert ctx.sessions.get(USER_ID, FlowKind.STEPS_WAIT) is not None


@pytest.mark.asyncio
async def test_menu_during_registration_reprompts(dispatcher, ctx, telegram):
    ctx.sessions.start(USER_ID, FlowKind.REGISTRATION, "ask_age", {"first_name": "Ann", "gender": "female"})

    await dispatcher.dispatch(text(constants.BTN_WATER))

    assert ctx.sessions.get(USER_ID, FlowKind.REGISTRATION).step == "ask_age"
    assert constants.WATER_MENU_MESSAGE not in telegram.texts


@pytest.mark.asyncio
async def test_commands_ignore_bot_suffix_and_case(dispatcher, ctx, telegram):
    ctx.sessions.start(USER_ID, FlowKind.STEPS_WAIT)

    await dispatcher.dispatch(text("/Cancel@nutripal_bot"))

    assert ctx.sessions.active(USER_ID) is None


@pytest.mark.asyncio
async def test_callbacks_are_acknowledged(dispatcher, telegram):
    await dispatcher.dispatch(button("stats_today"))

    assert telegram.answered == ["cb-stats_today"]


@pytest.mark.asyncio
async def test_unknown_button_is_reported(dispatcher, telegram):
    await dispatcher.dispatch(button("gstin_confirm_yes"))

    assert telegram.last_text == constants.MSG_UNSUPPORTED_BUTTON


@pytest.mark.asyncio
async def test_plan_button_without_slot_asks_to_redo(dispatcher, telegram):
    await dispatcher.dispatch(button("workout_yes"))

    assert telegram.last_text == constants.MSG_PLEASE_REDO


@pytest.mark.asyncio
async def test_unexpected_error_becomes_generic_reply(dispatcher, ctx, telegram, monkeypatch):
    async def explode(ctx, event):
        raise RuntimeError("boom")

    monkeypatch.setitem(dispatcher_module.COMMANDS, "/help", explode)

    await dispatcher.dispatch(text("/help"))

    assert telegram.last_text == constants.MSG_GENERIC_ERROR


@pytest.mark.asyncio
async def test_throttled_user_gets_one_notice(dispatcher, ctx, store, telegram):
    ctx.rate_limiter = RateLimiter(max_requests=2, window_seconds=60)
    ctx.sessions.start(USER_ID, FlowKind.STEPS_WAIT)

    for _ in range(5):
        await dispatcher.dispatch(text("hello"))

    notices = [t for t in telegram.texts if t.startswith("🐢")]
    assert len(notices) == 1


@pytest.mark.asyncio
async def test_throttle_is_per_user(dispatcher, ctx, telegram):
    ctx.rate_limiter = RateLimiter(max_requests=1, window_seconds=60)

    await dispatcher.dispatch(text("hi", user_id=1))
    await dispatcher.dispatch(text("hi", user_id=2))

    assert not any(t.startswith("🐢") for t in telegram.texts)


@pytest.mark.asyncio
async def test_voice_is_routed_as_text(dispatcher, ctx, store, completion):
    completion.transcript = "  750 "
    ctx.sessions.start(USER_ID, FlowKind.WATER_WAIT)

    await dispatcher.dispatch(VoiceMessage(user_id=USER_ID, chat_id=USER_ID, file_ref="voice-1"))

    assert store.rows("water_intake")[0]["amount_ml"] == 750


@pytest.mark.asyncio
async def test_empty_transcript_is_reported(dispatcher, telegram):
    await dispatcher.dispatch(VoiceMessage(user_id=USER_ID, chat_id=USER_ID, file_ref="voice-1"))

    assert telegram.last_text == constants.MSG_TRANSCRIPTION_FAILED


@pytest.mark.asyncio
async def test_photo_while_waiting_for_lab_text(dispatcher, ctx, completion, telegram):
    ctx.sessions.start(USER_ID, FlowKind.MEDICAL_WAIT)

    await dispatcher.dispatch(PhotoMessage(user_id=USER_ID, chat_id=USER_ID, file_ref="photo-1"))

    assert telegram.last_text == constants.MEDICAL_TEXT_ONLY
    assert completion.calls == []


@pytest.mark.asyncio
async def test_document_outside_medical_flow_gets_fallback(dispatcher, telegram):
    await dispatcher.dispatch(DocumentMessage(user_id=USER_ID, chat_id=USER_ID, file_ref="doc-1", file_name="a.txt"))

    assert telegram.last_text == constants.FALLBACK_MESSAGE


@pytest.mark.asyncio
async def test_one_step_in_flight_per_user(dispatcher, ctx, store):
    in_flight = []
    peak = []
    original_insert = store.insert

    async def slow_insert(table, record):
        in_flight.append(record["telegram_id"])
        peak.append(len(in_flight))
        await asyncio.sleep(0.01)
        in_flight.remove(record["telegram_id"])
        return await original_insert(table, record)

    store.insert = slow_insert

    await asyncio.gather(
        dispatcher.dispatch(button("water_add_200")),
        dispatcher.dispatch(button("water_add_300")),
    )

    assert max(peak) == 1
    assert len(store.rows("water_intake")) == 2
    assert dispatcher.prune_locks() == 1
    assert dispatcher.lock_count() == 0


@pytest.mark.asyncio
async def test_different_users_run_concurrently(dispatcher, ctx, store):
    in_flight = []
    peak = []
    original_insert = store.insert

    async def slow_insert(table, record):
        in_flight.append(record["telegram_id"])
        peak.append(len(in_flight))
        await asyncio.sleep(0.01)
        in_flight.remove(record["telegram_id"])
        return await original_insert(table, record)

    store.insert = slow_insert

    await asyncio.gather(
        dispatcher.dispatch(button("water_add_200", user_id=1)),
        dispatcher.dispatch(button("water_add_200", user_id=2)),
    )

    assert max(peak) == 2
