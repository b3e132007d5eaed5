"""
app/api/webhook.py

Purpose: Telegram webhook endpoint

- Verifies the platform secret header when one is configured
- Parses the Update and normalizes it into an inbound event
- Hands the event to the dispatcher as a background task so Telegram
  gets its 200 immediately
"""

import hmac
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header

from app.core.config import settings
from app.core.exceptions import AuthenticationError
from app.core.logging import get_logger
from app.flow.dispatcher import Dispatcher, get_dispatcher
from app.schemas.response import WebhookAck
from app.schemas.telegram import TelegramUpdate
from app.schemas.webhook import parse_telegram_update

logger = get_logger(__name__)
router = APIRouter()


def _secret_matches(provided: Optional[str]) -> bool:
    return hmac.compare_digest((provided or "").encode(), settings.TELEGRAM_WEBHOOK_SECRET.encode())


@router.post("/telegram-webhook", response_model=WebhookAck)
async def telegram_webhook(
    update: TelegramUpdate,
    background_tasks: BackgroundTasks,
    x_telegram_bot_api_secret_token: Optional[str] = Header(None),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """
    Receives Telegram updates.

    Unsupported updates (edits, group chats, bots) are acknowledged and
    dropped.
    """
    if settings.TELEGRAM_WEBHOOK_SECRET and not _secret_matches(x_telegram_bot_api_secret_token):
        logger.warning(f"Rejected webhook call with bad secret (update {update.update_id})")
        raise AuthenticationError("Invalid webhook secret")

    event = parse_telegram_update(update)
    if event is None:
        logger.debug(f"Ignored update {update.update_id}")
        return WebhookAck(status="ignored")

    logger.info(f"📨 Update {update.update_id}: {type(event).__name__} from {event.user_id}")
    background_tasks.add_task(dispatcher.dispatch, event)
    return WebhookAck(status="accepted")
