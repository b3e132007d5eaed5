"""
app/services/completion_service.py

Purpose: Completion collaborator (OpenAI-compatible API)

- Chat completions for plans, answers and medical interpretation
- Vision completions for meal photos
- Speech-to-text for voice notes
- Model listing as a health probe

The core treats completion output as opaque text; parsing lives in the
recognition and plan services.
"""

import base64
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import CollaboratorFailureError
from app.core.logging import get_logger

logger = get_logger(__name__)


class CompletionService:
    """OpenAI-compatible completion client."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        transcribe_model: Optional[str] = None,
    ):
        self.api_key = api_key or settings.OPENAI_API_KEY or ""
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.model = model or settings.OPENAI_MODEL
        self.transcribe_model = transcribe_model or settings.OPENAI_TRANSCRIBE_MODEL
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.COMPLETION_TIMEOUT_MS / 1000 + 5,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        return self._client

    async def _chat(self, messages: List[Dict[str, Any]], max_tokens: int, temperature: float) -> str:
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        logger.debug(f"Completion request: model={self.model}, messages_count={len(messages)}")

        try:
            response = await self._get_client().post(f"{self.base_url}/chat/completions", json=payload)
        except httpx.HTTPError as e:
            raise CollaboratorFailureError(f"Completion request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Completion error: {response.status_code} {response.text[:300]}")
            raise CollaboratorFailureError(
                f"Completion API error: {response.status_code}",
                details={"status_code": response.status_code}
            )

        data = response.json()
        content = ""
        if data.get("choices"):
            content = data["choices"][0].get("message", {}).get("content") or ""
        if not content.strip():
            raise CollaboratorFailureError("Completion returned empty content")
        return content.strip()

    async def complete(self, system_prompt: str, user_prompt: str, max_tokens: int = 1000, temperature: float = 0.7) -> str:
        """Plain chat completion."""
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        return await self._chat(messages, max_tokens, temperature)

    async def complete_with_image(
        self,
        system_prompt: str,
        user_prompt: str,
        image: bytes,
        mime_type: str = "image/jpeg",
        max_tokens: int = 500,
    ) -> str:
        """Completion over a user photo, sent inline as a data URL."""
        encoded = base64.b64encode(image).decode("ascii")
        messages = [
            {"role": "system", "content": system_prompt},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": user_prompt},
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                ],
            },
        ]
        return await self._chat(messages, max_tokens, temperature=0.2)

    async def transcribe(self, audio: bytes, filename: str = "voice.ogg", mime_type: str = "audio/ogg") -> str:
        """Speech-to-text for a voice note."""
        if not audio:
            raise ValueError("audio is empty")

        files = {"file": (filename, audio, mime_type)}
        data = {"model": self.transcribe_model, "response_format": "text"}
        try:
            response = await self._get_client().post(
                f"{self.base_url}/audio/transcriptions", files=files, data=data
            )
        except httpx.HTTPError as e:
            raise CollaboratorFailureError(f"Transcription request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Transcription error: {response.status_code} {response.text[:300]}")
            raise CollaboratorFailureError(f"Transcription API error: {response.status_code}")

        transcript = (response.text or "").strip()
        if not transcript:
            raise CollaboratorFailureError("Transcription returned empty text")
        return transcript

    async def ping(self) -> bool:
        """Lists models; any non-200 counts as unavailable."""
        response = await self._get_client().get(f"{self.base_url}/models")
        if response.status_code != 200:
            raise CollaboratorFailureError(f"Completion service unavailable: {response.status_code}")
        return True

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None


_completion_service: Optional[CompletionService] = None


def get_completion_service() -> CompletionService:
    global _completion_service
    if _completion_service is None:
        _completion_service = CompletionService()
    return _completion_service


async def close_completion_service():
    global _completion_service
    if _completion_service:
        await _completion_service.close()
        _completion_service = None
