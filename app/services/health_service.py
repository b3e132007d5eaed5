"""
app/services/health_service.py

Purpose: Periodic collaborator probe

- Pings the store, the Telegram transport (getMe) and the completion service
- Any failing check marks the status "degraded"
- Never raises; the last result is served on /health
"""

import time
from typing import Any, Awaitable, Callable, Dict, Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.services.resilience import timed_call

logger = get_logger(__name__)

STATUS_OK = "ok"
STATUS_DEGRADED = "degraded"


class HealthMonitor:
    """Holds the outcome of the most recent probe."""

    def __init__(self):
        self.status = STATUS_OK
        self.checks: Dict[str, str] = {}
        self.checked_at: Optional[float] = None

    async def _check(self, name: str, op: Callable[[], Awaitable[Any]], budget_ms: int) -> bool:
        try:
            result = await timed_call(op, budget_ms, operation=f"health.{name}")
            # Transport calls report failure as {"ok": False} instead of raising
            if isinstance(result, dict) and not result.get("ok", True):
                raise RuntimeError(result.get("description") or result.get("error") or "not ok")
            self.checks[name] = "healthy"
            return True
        except Exception as e:
            logger.warning(f"⚠️ Health check {name} failed: {e}", extra={"collaborator": name})
            self.checks[name] = "unhealthy"
            return False

    async def probe(self, store, telegram, completion) -> str:
        results = [
            await self._check("store", store.ping, settings.STORE_TIMEOUT_MS),
            await self._check("transport", telegram.get_me, settings.STORE_TIMEOUT_MS),
            await self._check("completion", completion.ping, settings.COMPLETION_TIMEOUT_MS),
        ]
        self.status = STATUS_OK if all(results) else STATUS_DEGRADED
        self.checked_at = time.time()

        if self.status == STATUS_DEGRADED:
            logger.warning(f"⚠️ Health degraded: {self.checks}")
        else:
            logger.info("✅ Health probe passed")
        return self.status

    def snapshot(self) -> Dict[str, Any]:
        return {"status": self.status, "checks": dict(self.checks), "checked_at": self.checked_at}


_health_monitor: Optional[HealthMonitor] = None


def get_health_monitor() -> HealthMonitor:
    global _health_monitor
    if _health_monitor is None:
        _health_monitor = HealthMonitor()
    return _health_monitor
