import asyncio

import pytest

from conftest import MEAL_JSON, USER_ID, button, text
from app.flow.callbacks import MealAction
from app.flow.handlers import meal, welcome
from app.flow.states import FlowKind
from app.schemas.webhook import PhotoMessage


def _token_from_card(telegram):
    markup = telegram.messages[-1]["reply_markup"]
    confirm = markup["inline_keyboard"][0][0]["callback_data"]
    return confirm[len("meal_confirm_"):]


async def _manual_card(ctx, completion, entry="Oatmeal, 250"):
    completion.answers.append(MEAL_JSON)
    await meal.start_manual_entry(ctx, text("✍️ Add manually"))
    slot = ctx.sessions.get(USER_ID, FlowKind.MANUAL_ADD)
    await meal.handle_text(ctx, text(entry), slot)


@pytest.mark.asyncio
async def test_manual_entry_offers_card_with_shared_token(ctx, completion, telegram):
    await _manual_card(ctx, completion)

    slot = ctx.sessions.get(USER_ID, FlowKind.MANUAL_ADD)
    assert slot.step == "awaiting_confirmation"
    token = _token_from_card(telegram)
    assert slot.data["token"] == token
    buttons = telegram.messages[-1]["reply_markup"]["inline_keyboard"][0]
    assert buttons[1]["callback_data"] == f"meal_cancel_{token}"
    assert "Oatmeal" in telegram.last_text


@pytest.mark.asyncio
async def test_confirm_saves_once_and_second_tap_expires(ctx, completion, store, telegram):
    await _manual_card(ctx, completion)
    token = _token_from_card(telegram)

    await meal.handle_callback(ctx, button(f"meal_confirm_{token}"), MealAction(verb="confirm", token=token))
    await meal.handle_callback(ctx, button(f"meal_cancel_{token}"), MealAction(verb="cancel", token=token))

    assert store.count("insert", "meals") == 1
    assert store.rows("meals")[0]["weight_g"] == 250
    assert ctx.sessions.get(USER_ID, FlowKind.MANUAL_ADD) is None
    assert "expired" in telegram.edits[-1]["text"]


@pytest.mark.asyncio
async def test_cancel_discards_meal(ctx, completion, store, telegram):
    await _manual_card(ctx, completion)
    token = _token_from_card(telegram)

    await meal.handle_callback(ctx, button(f"meal_cancel_{token}"), MealAction(verb="cancel", token=token))

    assert store.count("insert", "meals") == 0
    assert "cancelled" in telegram.edits[-1]["text"]


@pytest.mark.asyncio
async def test_failed_save_reissues_token(ctx, completion, store, telegram):
    await _manual_card(ctx, completion)
    token = _token_from_card(telegram)
    store.fail("insert", "meals")

    await meal.handle_callback(ctx, button(f"meal_confirm_{token}"), MealAction(verb="confirm", token=token))

    retry_markup = telegram.edits[-1]["reply_markup"]
    retry_token = retry_markup["inline_keyboard"][0][0]["callback_data"][len("meal_confirm_"):]
    assert retry_token != token
    assert ctx.confirmations.consume(retry_token, owner=USER_ID)["dish_name"] == "Oatmeal"


@pytest.mark.asyncio
async def test_bad_manual_format_reprompts(ctx, telegram):
    await meal.start_manual_entry(ctx, text("✍️ Add manually"))
    slot = ctx.sessions.get(USER_ID, FlowKind.MANUAL_ADD)

    await meal.handle_text(ctx, text("just some soup"), slot)

    assert ctx.sessions.get(USER_ID, FlowKind.MANUAL_ADD).step == "awaiting_input"
    assert telegram.last_text.startswith("❌")


@pytest.mark.asyncio
async def test_recognition_failure_returns_to_input(ctx, completion, telegram):
    completion.answers.append(RuntimeError("model overloaded"))
    await meal.start_manual_entry(ctx, text("✍️ Add manually"))
    slot = ctx.sessions.get(USER_ID, FlowKind.MANUAL_ADD)

    await meal.handle_text(ctx, text("Soup, 300"), slot)

    assert ctx.sessions.get(USER_ID, FlowKind.MANUAL_ADD).step == "awaiting_input"
    assert "busy" in telegram.last_text


@pytest.mark.asyncio
async def test_photo_not_food(ctx, completion, telegram):
    completion.answers.append('{"dish_name": "not food"}')
    photo = PhotoMessage(user_id=USER_ID, chat_id=USER_ID, file_ref="photo-1")

    await meal.handle_photo(ctx, photo)

    assert "couldn't find any food" in telegram.last_text
    assert len(ctx.confirmations) == 0


@pytest.mark.asyncio
async def test_dish_name_with_markdown_characters_still_shows_card(ctx, completion, store, telegram):
    telegram.strict_markdown = True
    completion.answers.append(MEAL_JSON.replace('"Oatmeal"', '"Chicken_soup *spicy*"'))
    await meal.start_manual_entry(ctx, text("✍️ Add manually"))
    await meal.handle_text(ctx, text("Soup, 300"), ctx.sessions.get(USER_ID, FlowKind.MANUAL_ADD))

    token = _token_from_card(telegram)
    assert "Chicken\\_soup \\*spicy\\*" in telegram.last_text

    await meal.handle_callback(ctx, button(f"meal_confirm_{token}"), MealAction(verb="confirm", token=token))

    assert telegram.rejected == []
    assert store.rows("meals")[0]["description"] == "Chicken_soup *spicy*"
    assert "Chicken\\_soup" in telegram.edits[-1]["text"]


@pytest.mark.asyncio
async def test_recognition_finishing_after_restart_is_discarded(ctx, completion, telegram, profile):
    completion.hold()
    completion.answers.append(MEAL_JSON)
    await meal.start_manual_entry(ctx, text("✍️ Add manually"))
    slot = ctx.sessions.get(USER_ID, FlowKind.MANUAL_ADD)

    recognizing = asyncio.create_task(meal.handle_text(ctx, text("Oatmeal, 250"), slot))
    await completion.entered.wait()

    await welcome.handle_start(ctx, text("/start"))
    await meal.start_manual_entry(ctx, text("✍️ Add manually"))
    fresh = ctx.sessions.get(USER_ID, FlowKind.MANUAL_ADD)
    fresh_id, fresh_data = fresh.session_id, dict(fresh.data)
    sent = len(telegram.messages)

    completion.gate.set()
    await recognizing

    current = ctx.sessions.get(USER_ID, FlowKind.MANUAL_ADD)
    assert len(telegram.messages) == sent
    assert len(ctx.confirmations) == 0
    assert (current.session_id, current.step, current.data) == (fresh_id, "awaiting_input", fresh_data)
