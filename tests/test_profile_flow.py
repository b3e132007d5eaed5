import pytest

from conftest import USER_ID, button, text
from app.core.exceptions import InternalInconsistencyError
from app.flow.callbacks import ProfileAction
from app.flow.handlers import profile as profile_handler
from app.flow.states import FlowKind
from app.services.profile_service import compute_daily_norms


async def _edit(ctx, field, value):
    await profile_handler.handle_callback(ctx, button(f"profile_edit_{field}"), ProfileAction(verb="edit", field=field))
    slot = ctx.sessions.get(USER_ID, FlowKind.PROFILE_EDIT)
    await profile_handler.handle_text(ctx, text(value), slot)


@pytest.mark.asyncio
async def test_show_profile_lists_targets(ctx, telegram, profile):
    await profile_handler.show_profile(ctx, text("👤 Profile"))

    assert "1700" in telegram.last_text
    assert telegram.messages[-1]["reply_markup"]["inline_keyboard"]


@pytest.mark.asyncio
async def test_show_profile_requires_registration(ctx, telegram):
    await profile_handler.show_profile(ctx, text("👤 Profile"))

    assert "/start" in telegram.last_text


@pytest.mark.asyncio
async def test_weight_edit_recomputes_norms(ctx, store, telegram, profile):
    await _edit(ctx, "weight", "58.5")

    saved = store.rows("profiles")[0]
    expected = compute_daily_norms("female", 29, 168, 58.5, "maintain_weight")
    assert saved["weight_kg"] == 58.5
    assert saved["daily_calories"] == expected["daily_calories"]
    assert ctx.sessions.get(USER_ID, FlowKind.PROFILE_EDIT) is None
    assert str(expected["daily_calories"]) in telegram.last_text


@pytest.mark.asyncio
async def test_name_edit_keeps_norms(ctx, store, profile):
    await _edit(ctx, "name", "Anna")

    saved = store.rows("profiles")[0]
    assert saved["first_name"] == "Anna"
    assert saved["daily_calories"] == 1700
    assert store.count("update", "profiles") == 1


@pytest.mark.asyncio
async def test_invalid_value_keeps_slot(ctx, telegram, profile):
    await _edit(ctx, "height", "3 meters")

    assert ctx.sessions.get(USER_ID, FlowKind.PROFILE_EDIT) is not None
    assert telegram.last_text.startswith("❌")


@pytest.mark.asyncio
async def test_slot_with_unmapped_field_is_inconsistent(ctx):
    slot = ctx.sessions.start(USER_ID, FlowKind.PROFILE_EDIT, "await_value", {"field": "shoe_size"})

    with pytest.raises(InternalInconsistencyError):
        await profile_handler.handle_text(ctx, text("42"), slot)


@pytest.mark.asyncio
async def test_profile_card_escapes_name(ctx, store, telegram, profile):
    telegram.strict_markdown = True
    store.rows("profiles")[0]["first_name"] = "Ann_Marie"

    await profile_handler.show_profile(ctx, text("👤 Profile"))

    assert telegram.rejected == []
    assert "Name: Ann\\_Marie" in telegram.last_text
