"""
app/services/scheduler_service.py

Purpose: Time-triggered jobs

- Cron registration on APScheduler's AsyncIOScheduler
- Every run is isolated: exceptions are logged and swallowed, the job
  stays registered for its next trigger
- Jobs: daily report, health probe, maintenance sweep, weekly challenge
  creation and reminders
"""

from typing import Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.core.config import settings
from app.core.logging import get_logger, LogContext
from app.flow.dispatcher import Dispatcher
from app.services import report_service
from app.services.health_service import HealthMonitor

logger = get_logger(__name__)

JobHandler = Callable[[], Awaitable[object]]


class Scheduler:
    """Thin wrapper over AsyncIOScheduler with failure-isolated jobs."""

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self._scheduler = scheduler or AsyncIOScheduler(timezone=settings.SCHEDULER_TIMEZONE)
        self._runners: Dict[str, Callable[[], Awaitable[None]]] = {}

    @staticmethod
    def _isolated(name: str, handler: JobHandler) -> Callable[[], Awaitable[None]]:
        async def run() -> None:
            with LogContext(job=name):
                try:
                    logger.info(f"⏰ Job {name} started")
                    result = await handler()
                    logger.info(f"✅ Job {name} finished: {result}")
                except Exception as e:
                    logger.error(f"❌ Job {name} failed: {e}", exc_info=True)
        return run

    def register(self, trigger_spec: str, timezone: str, handler: JobHandler, name: str) -> None:
        """
        Registers `handler` on a crontab expression evaluated in `timezone`.

        Raises:
            ValueError: If the crontab expression is invalid
        """
        trigger = CronTrigger.from_crontab(trigger_spec, timezone=timezone)
        runner = self._isolated(name, handler)
        self._runners[name] = runner
        self._scheduler.add_job(
            runner,
            trigger,
            id=name,
            name=name,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info(f"Registered job {name} ({trigger_spec} {timezone})")

    async def run_now(self, name: str) -> None:
        """Runs a registered job immediately, with the same isolation."""
        await self._runners[name]()

    def job_names(self) -> List[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info(f"🕒 Scheduler started with jobs: {self.job_names()}")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")


def run_maintenance(dispatcher: Dispatcher) -> Dict[str, int]:
    """Drops idle rate windows, expired confirmations and idle user locks."""
    ctx = dispatcher.ctx
    return {
        "rate_windows": ctx.rate_limiter.sweep(),
        "confirmations": ctx.confirmations.sweep(),
        "locks": dispatcher.prune_locks(),
    }


def register_jobs(scheduler: Scheduler, dispatcher: Dispatcher, health: HealthMonitor) -> None:
    ctx = dispatcher.ctx
    tz = settings.SCHEDULER_TIMEZONE

    async def maintenance():
        return run_maintenance(dispatcher)

    scheduler.register(
        settings.DAILY_REPORT_CRON, tz,
        lambda: report_service.send_daily_reports(ctx.store, ctx.telegram),
        "daily_report",
    )
    scheduler.register(
        settings.HEALTH_PROBE_CRON, tz,
        lambda: health.probe(ctx.store, ctx.telegram, ctx.completion),
        "health_probe",
    )
    scheduler.register(settings.MAINTENANCE_CRON, tz, maintenance, "maintenance")
    scheduler.register(
        settings.CHALLENGE_CREATE_CRON, tz,
        lambda: report_service.create_weekly_challenge(ctx.store, ctx.telegram),
        "challenge_create",
    )
    scheduler.register(
        settings.CHALLENGE_REMIND_CRON, tz,
        lambda: report_service.send_challenge_reminders(ctx.store, ctx.telegram),
        "challenge_remind",
    )


_scheduler: Optional[Scheduler] = None


def get_scheduler() -> Scheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = Scheduler()
    return _scheduler


def close_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown()
        _scheduler = None
