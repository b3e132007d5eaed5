import asyncio

import pytest

from conftest import USER_ID, button, text
from app.flow.callbacks import PlanAction
from app.flow.handlers import plans, welcome
from app.flow.states import FlowKind

WORKOUT = FlowKind.WORKOUT_PLAN


def _answer_button(index, value):
    return button(f"workout_ans_{index}_{value}"), PlanAction(domain="workout", verb="ans", step_index=index, value=value)


async def _tap(ctx, index, value):
    event, action = _answer_button(index, value)
    await plans.handle_callback(ctx, event, action)


async def _type(ctx, body):
    slot = ctx.sessions.get(USER_ID, WORKOUT)
    await plans.handle_text(ctx, text(body), WORKOUT, slot)


@pytest.mark.asyncio
async def test_questionnaire_delivers_document(ctx, store, telegram, completion, profile):
    completion.answers.append("## Day 1\nSquats 3x10")

    await plans.start_plan(ctx, text("🏋️ Workout plan"), WORKOUT)
    assert ctx.sessions.get(USER_ID, WORKOUT).step == "ask_goal"

    await _tap(ctx, 0, "build_muscle")
    await _tap(ctx, 1, "beginner")
    await _tap(ctx, 2, "home")
    await _type(ctx, "3")
    await _type(ctx, "45")

    assert ctx.sessions.get(USER_ID, WORKOUT) is None
    saved = store.rows("workout_preferences")[0]
    assert saved["answers"] == {
        "goal": "build_muscle", "experience": "beginner", "location": "home",
        "days_per_week": 3, "session_minutes": 45,
    }
    document = telegram.documents[-1]
    assert document["filename"].startswith("workout_plan_")
    assert b"Squats 3x10" in document["content"]
    assert "Height: 168 cm" in completion.calls[-1]["user"]


@pytest.mark.asyncio
async def test_stored_preferences_offer_reuse(ctx, store, telegram, completion, profile):
    store.rows("workout_preferences").append({"telegram_id": USER_ID, "answers": {"goal": "endurance"}})

    await plans.start_plan(ctx, text("🏋️ Workout plan"), WORKOUT)

    assert ctx.sessions.get(USER_ID, WORKOUT).step == "confirm_reuse"
    callbacks = [b["callback_data"] for row in telegram.messages[-1]["reply_markup"]["inline_keyboard"] for b in row]
    assert callbacks == ["workout_yes", "workout_no", "workout_restart"]

    await plans.handle_callback(ctx, button("workout_yes"), PlanAction(domain="workout", verb="yes"))

    assert ctx.sessions.get(USER_ID, WORKOUT) is None
    assert len(telegram.documents) == 1


@pytest.mark.asyncio
async def test_reuse_no_hands_off_to_question(ctx, store, profile):
    store.rows("workout_preferences").append({"telegram_id": USER_ID, "answers": {"goal": "endurance"}})
    await plans.start_plan(ctx, text("🏋️ Workout plan"), WORKOUT)

    await plans.handle_callback(ctx, button("workout_no"), PlanAction(domain="workout", verb="no"))

    assert ctx.sessions.get(USER_ID, WORKOUT) is None
    assert ctx.sessions.get(USER_ID, FlowKind.QUESTION_WAIT) is not None


@pytest.mark.asyncio
async def test_restart_deletes_preferences(ctx, store, profile):
    store.rows("workout_preferences").append({"telegram_id": USER_ID, "answers": {"goal": "endurance"}})
    await plans.start_plan(ctx, text("🏋️ Workout plan"), WORKOUT)

    await plans.handle_callback(ctx, button("workout_restart"), PlanAction(domain="workout", verb="restart"))

    assert store.rows("workout_preferences") == []
    slot = ctx.sessions.get(USER_ID, WORKOUT)
    assert slot.step == "ask_goal"
    assert slot.data["answers"] == {}


@pytest.mark.asyncio
async def test_synthesis_failure_rolls_back_to_last_question(ctx, store, telegram, completion, profile):
    ctx.sessions.start(USER_ID, WORKOUT, "ask_duration", {"answers": {
        "goal": "endurance", "experience": "advanced", "location": "outdoor", "days_per_week": 4,
    }})
    completion.answers.append(RuntimeError("upstream 500"))

    await _type(ctx, "60")

    slot = ctx.sessions.get(USER_ID, WORKOUT)
    assert slot.step == "ask_duration"
    assert slot.data["answers"]["session_minutes"] == 60
    assert store.count("upsert", "workout_preferences") == 1
    assert telegram.documents == []
    assert any("couldn't build the plan" in t for t in telegram.texts)


@pytest.mark.asyncio
async def test_stale_question_button_reprompts_current(ctx, telegram, profile):
    await plans.start_plan(ctx, text("🏋️ Workout plan"), WORKOUT)
    await _tap(ctx, 0, "endurance")

    await _tap(ctx, 0, "build_muscle")

    slot = ctx.sessions.get(USER_ID, WORKOUT)
    assert slot.step == "ask_experience"
    assert slot.data["answers"]["goal"] == "endurance"
    assert "already answered" in telegram.texts[-2]


@pytest.mark.asyncio
async def test_out_of_range_days_reprompts(ctx, telegram):
    ctx.sessions.start(USER_ID, WORKOUT, "ask_days", {"answers": {"goal": "endurance"}})

    await _type(ctx, "9")

    assert ctx.sessions.get(USER_ID, WORKOUT).step == "ask_days"
    assert telegram.last_text.startswith("❌")


@pytest.mark.asyncio
async def test_plan_finishing_after_restart_is_discarded(ctx, telegram, completion, profile):
    ctx.sessions.start(USER_ID, WORKOUT, "ask_duration", {"answers": {
        "goal": "endurance", "experience": "advanced", "location": "outdoor", "days_per_week": 4,
    }})
    completion.hold()
    completion.answers.append("## Day 1\nRun 5 km")

    generating = asyncio.create_task(_type(ctx, "60"))
    await completion.entered.wait()

    await welcome.handle_start(ctx, text("/start"))
    await plans.start_plan(ctx, text("🏋️ Workout plan"), WORKOUT)
    fresh = ctx.sessions.get(USER_ID, WORKOUT)
    fresh_id, fresh_step, fresh_data = fresh.session_id, fresh.step, dict(fresh.data)
    sent = len(telegram.messages)

    completion.gate.set()
    await generating

    current = ctx.sessions.get(USER_ID, WORKOUT)
    assert telegram.documents == []
    assert len(telegram.messages) == sent
    assert (current.session_id, current.step, current.data) == (fresh_id, fresh_step, fresh_data)


@pytest.mark.asyncio
async def test_preferences_save_failure_is_reported(ctx, store, telegram, completion, profile):
    ctx.sessions.start(USER_ID, WORKOUT, "ask_duration", {"answers": {
        "goal": "endurance", "experience": "advanced", "location": "outdoor", "days_per_week": 4,
    }})
    store.unreachable.add(("upsert", "workout_preferences"))

    await _type(ctx, "60")

    assert ctx.sessions.get(USER_ID, WORKOUT).step == "ask_duration"
    assert completion.calls == []
    assert telegram.documents == []
    assert any("couldn't save" in t for t in telegram.texts)
