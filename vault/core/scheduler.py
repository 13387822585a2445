"""
Background jobs.

Each ``ScheduledJob`` is built explicitly in the application lifespan with its
own enabled flag, cron expression and clock. ``run_once`` never raises, so a
failing run is logged and the next tick still fires.
"""
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from vault.core.alerting import notify_ops
from vault.core.config import settings
from vault.services.metal_price_service import MetalPriceService
from vault.services.reconciliation_service import Notifier, ReconciliationSweep
from vault.services.stripe_service import StripeService
from vault.utils.utils import utcnow

logger = logging.getLogger(__name__)


class ScheduledJob:
    def __init__(
        self,
        job_id: str,
        name: str,
        func: Callable[[], Awaitable[object]],
        cron_expression: str,
        timezone: str,
        enabled: bool = True,
        clock: Callable[[], datetime] = utcnow,
        notifier: Optional[Notifier] = None
    ):
        self.job_id = job_id
        self.name = name
        self.func = func
        self.cron_expression = cron_expression
        self.timezone = timezone
        self.enabled = enabled
        self.clock = clock
        self.notifier = notifier
        self.last_run_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

    def trigger(self) -> CronTrigger:
        return CronTrigger.from_crontab(self.cron_expression, timezone=self.timezone)

    async def run_once(self) -> bool:
        started = self.clock()
        self.last_run_at = started
        try:
            await self.func()
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"❌ Scheduled job {self.job_id} failed: {str(e)}")
            if self.notifier:
                await self.notifier(f"{self.name} fatal error", {"error": str(e)})
            return False
        self.last_error = None
        logger.info(f"✅ Scheduled job {self.job_id} finished in {(self.clock() - started).total_seconds():.1f}s")
        return True


class JobScheduler:
    """Owns the AsyncIOScheduler and the jobs registered on it"""

    def __init__(self, jobs: List[ScheduledJob], scheduler: Optional[AsyncIOScheduler] = None):
        self.jobs = jobs
        self.scheduler = scheduler or AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 120},
            timezone="UTC",
        )

    def setup_jobs(self) -> List[ScheduledJob]:
        scheduled = []
        for job in self.jobs:
            if not job.enabled:
                logger.info(f"Scheduled job {job.job_id} disabled by configuration")
                continue
            self.scheduler.add_job(
                job.run_once,
                trigger=job.trigger(),
                id=job.job_id,
                name=job.name,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            scheduled.append(job)
            logger.info(f"📅 {job.name} scheduled with \"{job.cron_expression}\" ({job.timezone})")
        return scheduled

    def start(self) -> None:
        if self.setup_jobs():
            self.scheduler.start()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("📴 Job scheduler stopped")


def build_jobs(
    session_factory: async_sessionmaker,
    stripe_service: StripeService,
    price_service: Optional[MetalPriceService] = None,
    clock: Callable[[], datetime] = utcnow
) -> List[ScheduledJob]:
    """Daily metal price refresh and hourly order reconciliation"""
    price_service = price_service or MetalPriceService(clock=clock)
    sweep = ReconciliationSweep(stripe_service, clock=clock)

    async def refresh_metal_prices():
        async with session_factory() as db:
            await price_service.sync_prices(db)

    async def reconcile_orders():
        async with session_factory() as db:
            await sweep.run(db)

    return [
        ScheduledJob(
            job_id="metal_price_refresh",
            name="Metal price refresh",
            func=refresh_metal_prices,
            cron_expression=settings.metal_price_cron_expression,
            timezone=settings.metal_price_cron_timezone,
            enabled=settings.metal_price_cron_enabled,
            clock=clock,
        ),
        ScheduledJob(
            job_id="order_reconciliation",
            name="Order reconciliation sweep",
            func=reconcile_orders,
            cron_expression=settings.checkout_cleanup_cron_expression,
            timezone=settings.checkout_cleanup_cron_timezone,
            enabled=settings.checkout_cleanup_cron_enabled,
            clock=clock,
            notifier=notify_ops,
        ),
    ]
