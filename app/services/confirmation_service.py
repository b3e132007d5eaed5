"""
app/services/confirmation_service.py

Purpose: One-shot confirmation tokens

- Issues an unguessable token for a proposed action (e.g. a recognized meal)
- The confirm and cancel buttons carry the same token with different verbs
- consume() removes and returns the payload exactly once
- Unconsumed tokens expire after a TTL and are dropped by sweep()

Process-local; the single event loop is the only writer.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class PendingConfirmation:
    payload: Any
    owner: int
    created_at: float = field(default_factory=time.monotonic)


class ConfirmationCache:
    """
    Token -> pending action. A token is consumable at most once:
    confirm, cancel and expiry are mutually exclusive outcomes.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, PendingConfirmation] = {}

    def issue(self, payload: Any, owner: int) -> str:
        token = uuid.uuid4().hex
        self._entries[token] = PendingConfirmation(
            payload=payload, owner=owner, created_at=self._clock()
        )
        logger.debug(f"Issued confirmation token {token[:8]}…", extra={"user_id": owner})
        return token

    def _expired(self, entry: PendingConfirmation, now: float) -> bool:
        return now - entry.created_at >= self.ttl_seconds

    def consume(self, token: str, owner: int) -> Optional[Any]:
        """
        Removes the token and returns its payload.

        Returns None when the token is unknown, already consumed, expired,
        or belongs to another user. A foreign token is left in place.
        """
        entry = self._entries.get(token)
        if entry is None:
            return None

        if entry.owner != owner:
            logger.warning(
                "Confirmation token presented by a different user",
                extra={"user_id": owner, "owner": entry.owner}
            )
            return None

        del self._entries[token]

        if self._expired(entry, self._clock()):
            logger.info("Confirmation token expired", extra={"user_id": owner})
            return None

        return entry.payload

    def sweep(self) -> int:
        now = self._clock()
        expired = [t for t, e in self._entries.items() if self._expired(e, now)]
        for token in expired:
            del self._entries[token]
        if expired:
            logger.debug(f"Confirmation sweep removed {len(expired)} expired tokens")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


_confirmation_cache: Optional[ConfirmationCache] = None


def get_confirmation_cache() -> ConfirmationCache:
    global _confirmation_cache
    if _confirmation_cache is None:
        _confirmation_cache = ConfirmationCache(
            ttl_seconds=settings.CONFIRMATION_TTL_MINUTES * 60
        )
    return _confirmation_cache
