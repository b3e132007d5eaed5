"""
app/services/resilience.py

Purpose: Resilience wrappers around collaborator calls

- timed_call: bounds the wait on a collaborator, abandons (never cancels)
  the underlying operation on expiry
- guarded_call: converts any failure into a tagged Result carrying the
  user-facing fallback text
- guarded_store_call: same, but tells a logical store error apart from an
  unreachable store in the logs

Collaborator errors never propagate past these wrappers.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Set, TypeVar

from app.core.config import settings
from app.core.exceptions import CollaboratorTimeoutError
from app.core.logging import get_logger
from app.services.result import Result

logger = get_logger(__name__)

T = TypeVar("T")

# Abandoned operations are kept referenced until they settle
_abandoned: Set["asyncio.Future[Any]"] = set()


def _log_late_outcome(operation: str, task: "asyncio.Future[Any]") -> None:
    _abandoned.discard(task)
    if task.cancelled():
        logger.info(f"Abandoned {operation} was cancelled", extra={"collaborator": operation})
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(
            f"Abandoned {operation} failed late: {exc}",
            extra={"collaborator": operation, "error_kind": type(exc).__name__}
        )
    else:
        logger.info(
            f"Abandoned {operation} completed late; result discarded",
            extra={"collaborator": operation}
        )


async def timed_call(op: Callable[[], Awaitable[T]], budget_ms: int, operation: str = "collaborator") -> T:
    """
    Awaits `op()` for at most `budget_ms`.

    Raises:
        CollaboratorTimeoutError: If the budget expires. The operation keeps
            running in the background and its outcome is only logged.
    """
    task = asyncio.ensure_future(op())
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout=budget_ms / 1000)
    except asyncio.TimeoutError:
        _abandoned.add(task)
        task.add_done_callback(lambda t: _log_late_outcome(operation, t))
        logger.warning(
            f"⏱ {operation} exceeded {budget_ms}ms, abandoning",
            extra={"collaborator": operation, "error_kind": "timeout"}
        )
        raise CollaboratorTimeoutError(operation, budget_ms)


async def guarded_call(
    op: Callable[[], Awaitable[T]],
    fallback_text: str,
    operation: str = "collaborator",
    budget_ms: Optional[int] = None,
    **context: Any,
) -> Result[T]:
    """
    Runs `op()` (optionally under a time budget) and never raises.

    Returns:
        Result.success(value), or Result.failure(fallback_text, code) with
        code "timeout" or "failure"
    """
    try:
        if budget_ms is not None:
            value = await timed_call(op, budget_ms, operation)
        else:
            value = await op()
        return Result.success(value)
    except CollaboratorTimeoutError:
        return Result.failure(fallback_text, "timeout")
    except Exception as e:
        logger.error(
            f"❌ {operation} failed: {e}",
            extra={"collaborator": operation, "error_kind": type(e).__name__, **context},
            exc_info=True
        )
        return Result.failure(fallback_text, "failure")


async def guarded_store_call(
    op: Callable[[], Awaitable[Any]],
    fallback_text: str,
    operation: str = "store",
    budget_ms: Optional[int] = None,
    **context: Any,
) -> Result[Any]:
    """
    Runs a store operation returning a StoreResponse and never raises.

    A response carrying `error` is logged as a logical error, an exception
    or timeout as an unreachable store. Callers see the same failure shape
    for both; `value` on success is the response data.
    """
    budget = budget_ms if budget_ms is not None else settings.STORE_TIMEOUT_MS
    try:
        response = await timed_call(op, budget, operation)
    except Exception as e:
        logger.error(
            f"❌ Store unreachable during {operation}: {e}",
            extra={"collaborator": operation, "error_kind": "store_unreachable", **context},
            exc_info=not isinstance(e, CollaboratorTimeoutError)
        )
        return Result.failure(fallback_text, "store_unreachable")

    if response.error:
        logger.error(
            f"❌ Store rejected {operation}: {response.error}",
            extra={"collaborator": operation, "error_kind": "store_error", **context}
        )
        return Result.failure(fallback_text, "store_error")

    return Result.success(response.data)
