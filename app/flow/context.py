"""
app/flow/context.py

Purpose: Shared dependencies for flow handlers

- The three in-memory stores (sessions, confirmations, rate windows)
- The three collaborators (store, Telegram transport, completion service)
- Time budgets for collaborator calls
- Small helpers every handler uses (reply, guarded completion, guarded store)
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from app.core.config import settings
from app.services.completion_service import get_completion_service
from app.services.confirmation_service import ConfirmationCache, get_confirmation_cache
from app.services.rate_limit_service import RateLimiter, get_rate_limiter
from app.services.resilience import guarded_call, guarded_store_call
from app.services.result import Result
from app.services.session_service import SessionStore
from app.services.store_service import store_client
from app.services.telegram_service import get_telegram_service
from utils.constants import MSG_COMPLETION_UNAVAILABLE, MSG_STORE_UNAVAILABLE


@dataclass
class FlowContext:
    sessions: SessionStore
    confirmations: ConfirmationCache
    rate_limiter: RateLimiter
    store: Any
    telegram: Any
    completion: Any
    completion_budget_ms: int = settings.COMPLETION_TIMEOUT_MS
    store_budget_ms: int = settings.STORE_TIMEOUT_MS

    async def reply(self, chat_id: int, text: str, reply_markup: Optional[dict] = None, parse_mode: Optional[str] = "Markdown") -> Dict[str, Any]:
        return await self.telegram.send_message(chat_id, text, reply_markup=reply_markup, parse_mode=parse_mode)

    async def typing(self, chat_id: int) -> None:
        await self.telegram.send_chat_action(chat_id, "typing")

    async def completion_call(
        self,
        op: Callable[[], Awaitable[Any]],
        operation: str,
        fallback_text: str = MSG_COMPLETION_UNAVAILABLE,
        **context: Any,
    ) -> Result[Any]:
        """Runs a completion-service call under the completion budget."""
        return await guarded_call(
            op, fallback_text, operation=operation, budget_ms=self.completion_budget_ms, **context
        )

    async def store_call(
        self,
        op: Callable[[], Awaitable[Any]],
        operation: str,
        fallback_text: str = MSG_STORE_UNAVAILABLE,
        **context: Any,
    ) -> Result[Any]:
        return await guarded_store_call(
            op, fallback_text, operation=operation, budget_ms=self.store_budget_ms, **context
        )


def build_context() -> FlowContext:
    """Context wired to the process-wide singletons."""
    return FlowContext(
        sessions=SessionStore(),
        confirmations=get_confirmation_cache(),
        rate_limiter=get_rate_limiter(),
        store=store_client,
        telegram=get_telegram_service(),
        completion=get_completion_service(),
    )
