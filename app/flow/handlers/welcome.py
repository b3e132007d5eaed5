"""
app/flow/handlers/welcome.py

Handles: Entry commands

- /start: superseding restart, clears every slot, then either greets a
  registered user or starts registration
- /cancel: clears every slot
- /help and /menu
"""

from app.core.logging import get_logger, LogContext
from app.flow.context import FlowContext
from app.flow.handlers.registration import start_registration
from app.schemas.webhook import InboundEvent
from app.services.profile_service import get_profile
from utils import constants
from utils.telegram_utils import escape_markdown, main_menu_keyboard

logger = get_logger(__name__)


async def handle_start(ctx: FlowContext, event: InboundEvent) -> None:
    with LogContext(user_id=event.user_id):
        cleared = ctx.sessions.clear_all(event.user_id)
        if cleared:
            logger.info(f"/start superseded flows: {[f.value for f in cleared]}")

        profile = await get_profile(ctx.store, event.user_id)
        if not profile.ok:
            await ctx.reply(event.chat_id, profile.error)
            return

        if profile.value:
            name = profile.value.get("first_name") or event.first_name or ""
            await ctx.reply(
                event.chat_id,
                constants.WELCOME_BACK_MESSAGE.format(name=escape_markdown(name)),
                reply_markup=main_menu_keyboard(),
            )
            return

        logger.info("New user, starting registration")
        await start_registration(ctx, event)


async def handle_cancel(ctx: FlowContext, event: InboundEvent) -> None:
    ctx.sessions.clear_all(event.user_id)
    await ctx.reply(event.chat_id, constants.CANCELLED_MESSAGE, reply_markup=main_menu_keyboard())


async def handle_help(ctx: FlowContext, event: InboundEvent) -> None:
    await ctx.reply(event.chat_id, constants.HELP_MESSAGE, reply_markup=main_menu_keyboard())


async def handle_menu(ctx: FlowContext, event: InboundEvent) -> None:
    await ctx.reply(event.chat_id, constants.MENU_PROMPT, reply_markup=main_menu_keyboard())


async def require_profile(ctx: FlowContext, event: InboundEvent):
    """
    Loads the user's profile for flows that need one.

    Returns:
        The profile dict, or None after telling the user what to do
    """
    profile = await get_profile(ctx.store, event.user_id)
    if not profile.ok:
        await ctx.reply(event.chat_id, profile.error)
        return None
    if not profile.value:
        await ctx.reply(event.chat_id, constants.MSG_NOT_REGISTERED)
        return None
    return profile.value
