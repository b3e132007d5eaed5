"""
app/schemas/webhook.py

Purpose: Inbound event schemas and parser

- Normalizes a Telegram Update into one of five events:
  TextMessage, PhotoMessage, VoiceMessage, DocumentMessage, CallbackEvent
- Drops updates the bot does not handle (edits, bots, group chats)
- Ensures predictable request handling
"""

from typing import Optional, Union

from pydantic import BaseModel, Field

from app.schemas.telegram import TelegramMessage, TelegramUpdate, TelegramUser


class InboundEvent(BaseModel):
    """Fields shared by every event."""
    user_id: int = Field(..., description="Telegram user id")
    chat_id: int = Field(..., description="Chat to reply to")
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class TextMessage(InboundEvent):
    text: str


class PhotoMessage(InboundEvent):
    file_ref: str = Field(..., description="file_id of the largest photo size")
    caption: Optional[str] = None


class VoiceMessage(InboundEvent):
    file_ref: str
    mime_type: Optional[str] = None


class DocumentMessage(InboundEvent):
    file_ref: str
    mime_type: Optional[str] = None
    file_name: Optional[str] = None


class CallbackEvent(InboundEvent):
    callback_id: str
    message_id: Optional[int] = None
    data: str = ""


Event = Union[TextMessage, PhotoMessage, VoiceMessage, DocumentMessage, CallbackEvent]


def _identity(user: TelegramUser, chat_id: int) -> dict:
    return {
        "user_id": user.id,
        "chat_id": chat_id,
        "username": user.username,
        "first_name": user.first_name or None,
        "last_name": user.last_name,
    }


def _parse_message(message: TelegramMessage) -> Optional[Event]:
    if message.from_user is None or message.from_user.is_bot:
        return None
    if message.chat.type != "private":
        return None

    base = _identity(message.from_user, message.chat.id)

    if message.text is not None:
        return TextMessage(**base, text=message.text)
    if message.photo:
        largest = max(message.photo, key=lambda p: (p.file_size or 0, p.width * p.height))
        return PhotoMessage(**base, file_ref=largest.file_id, caption=message.caption)
    if message.voice is not None:
        return VoiceMessage(**base, file_ref=message.voice.file_id, mime_type=message.voice.mime_type)
    if message.document is not None:
        return DocumentMessage(
            **base,
            file_ref=message.document.file_id,
            mime_type=message.document.mime_type,
            file_name=message.document.file_name,
        )
    return None


def parse_telegram_update(update: TelegramUpdate) -> Optional[Event]:
    """
    Converts an Update into an inbound event.

    Returns:
        The event, or None if the update is not something the bot handles
    """
    if update.callback_query is not None:
        query = update.callback_query
        chat_id = query.message.chat.id if query.message else query.from_user.id
        return CallbackEvent(
            **_identity(query.from_user, chat_id),
            callback_id=query.id,
            message_id=query.message.message_id if query.message else None,
            data=query.data or "",
        )

    if update.message is not None:
        return _parse_message(update.message)

    return None
