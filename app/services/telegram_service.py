"""
app/services/telegram_service.py

Purpose: Telegram Bot API transport

- Send / edit messages with inline or reply keyboards
- Send documents (generated plans) and typing indicators
- Acknowledge callback queries
- Resolve and download user files (photos, voice notes, documents)
- Webhook registration and getMe probe

Send failures are logged and reported as {"ok": False}; delivery is
best-effort. File downloads raise CollaboratorFailureError so callers can
guard them.
"""

from typing import Any, Dict, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import CollaboratorFailureError
from app.core.logging import get_logger

logger = get_logger(__name__)


class TelegramService:
    """Async client for the Telegram Bot API."""

    def __init__(self, bot_token: Optional[str] = None, api_url: Optional[str] = None, timeout: Optional[float] = None):
        self.bot_token = bot_token or settings.TELEGRAM_BOT_TOKEN or ""
        self.api_url = (api_url or settings.TELEGRAM_API_URL).rstrip("/")
        self.base_url = f"{self.api_url}/bot{self.bot_token}"
        self.file_url = f"{self.api_url}/file/bot{self.bot_token}"
        self._timeout = timeout or settings.TRANSPORT_TIMEOUT_SECONDS
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _make_request(self, method: str, data: Optional[dict] = None, files: Optional[dict] = None) -> Dict[str, Any]:
        """Make request to Telegram API."""
        url = f"{self.base_url}/{method}"
        try:
            client = self._get_client()
            if files:
                response = await client.post(url, data=data or {}, files=files)
            else:
                response = await client.post(url, json=data or {})
            result = response.json()
            if not result.get("ok"):
                logger.warning(f"Telegram {method} rejected: {result.get('description')}")
            return result
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram API error on {method}: {e}")
            return {"ok": False, "error": str(e)}

    async def _with_plain_fallback(self, method: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Sends formatted text; if Telegram cannot parse the markup, sends the
        same text once more without a parse mode so the user still gets it.
        """
        result = await self._make_request(method, data)
        if result.get("ok") or "parse_mode" not in data:
            return result
        if "can't parse entities" not in str(result.get("description", "")).lower():
            return result

        logger.warning(f"Telegram {method}: markup rejected, resending as plain text")
        plain = {key: value for key, value in data.items() if key != "parse_mode"}
        return await self._make_request(method, plain)

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = "Markdown",
    ) -> Dict[str, Any]:
        """Send message to Telegram chat."""
        data: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            data["parse_mode"] = parse_mode
        if reply_markup:
            data["reply_markup"] = reply_markup
        return await self._with_plain_fallback("sendMessage", data)

    async def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = "Markdown",
    ) -> Dict[str, Any]:
        """Edit an existing message (used to retire confirmation buttons)."""
        data: Dict[str, Any] = {"chat_id": chat_id, "message_id": message_id, "text": text}
        if parse_mode:
            data["parse_mode"] = parse_mode
        if reply_markup:
            data["reply_markup"] = reply_markup
        return await self._with_plain_fallback("editMessageText", data)

    async def send_document(
        self,
        chat_id: int,
        content: bytes,
        filename: str,
        caption: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Send a generated file as a document."""
        data: Dict[str, Any] = {"chat_id": str(chat_id)}
        if caption:
            data["caption"] = caption
        files = {"document": (filename, content, "text/markdown")}
        return await self._make_request("sendDocument", data=data, files=files)

    async def send_chat_action(self, chat_id: int, action: str = "typing") -> Dict[str, Any]:
        return await self._make_request("sendChatAction", {"chat_id": chat_id, "action": action})

    async def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> Dict[str, Any]:
        """Acknowledge a button press so the client stops its spinner."""
        data: Dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            data["text"] = text
        return await self._make_request("answerCallbackQuery", data)

    async def get_file_url(self, file_id: str) -> str:
        result = await self._make_request("getFile", {"file_id": file_id})
        if not result.get("ok"):
            raise CollaboratorFailureError("Telegram getFile failed", details=result)
        return f"{self.file_url}/{result['result']['file_path']}"

    async def download_file(self, file_id: str) -> bytes:
        url = await self.get_file_url(file_id)
        try:
            response = await self._get_client().get(url)
            response.raise_for_status()
            return response.content
        except httpx.HTTPError as e:
            raise CollaboratorFailureError(f"Telegram file download failed: {e}") from e

    async def set_webhook(self, url: str, secret_token: Optional[str] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "url": url,
            "allowed_updates": ["message", "callback_query"],
        }
        if secret_token:
            data["secret_token"] = secret_token
        result = await self._make_request("setWebhook", data)
        if result.get("ok"):
            logger.info(f"✅ Telegram webhook set to {url}")
        return result

    async def get_me(self) -> Dict[str, Any]:
        result = await self._make_request("getMe")
        if not result.get("ok"):
            raise CollaboratorFailureError("Telegram getMe failed", details=result)
        return result["result"]

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None


_telegram_service: Optional[TelegramService] = None


def get_telegram_service() -> TelegramService:
    """Get or create Telegram service singleton."""
    global _telegram_service
    if _telegram_service is None:
        _telegram_service = TelegramService()
    return _telegram_service


async def close_telegram_service():
    """Close Telegram service (call on shutdown)."""
    global _telegram_service
    if _telegram_service:
        await _telegram_service.close()
        _telegram_service = None
