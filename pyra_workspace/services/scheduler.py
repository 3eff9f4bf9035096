"""Background scheduler for webhook retries and the invoice overdue check."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from pyra_workspace.db import AsyncSessionLocal
from pyra_workspace.services import webhook_dispatcher
from pyra_workspace.services.invoice_service import InvoiceService
from pyra_workspace.services.settings_service import SettingsService

logger = logging.getLogger(__name__)

WEBHOOK_RETRY_JOB = "webhook_retries"
OVERDUE_CHECK_JOB = "invoice_overdue_check"

DEFAULT_RETRY_SCHEDULE = "* * * * *"
DEFAULT_OVERDUE_SCHEDULE = "0 1 * * *"


class SchedulerService:
    """Service for managing background scheduled tasks."""

    def __init__(self) -> None:
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._retry_enabled: bool = True
        self._retry_schedule: str = DEFAULT_RETRY_SCHEDULE
        self._overdue_enabled: bool = True
        self._overdue_schedule: str = DEFAULT_OVERDUE_SCHEDULE
        self._last_runs: dict[str, str] = {}

    async def _load_config(self, db: AsyncSession) -> tuple[bool, str, bool, str]:
        return (
            await SettingsService.get_bool(db, "webhook_retry_enabled", default=True),
            await SettingsService.get(db, "webhook_retry_schedule", default=DEFAULT_RETRY_SCHEDULE)
            or DEFAULT_RETRY_SCHEDULE,
            await SettingsService.get_bool(db, "overdue_check_enabled", default=True),
            await SettingsService.get(db, "overdue_check_schedule", default=DEFAULT_OVERDUE_SCHEDULE)
            or DEFAULT_OVERDUE_SCHEDULE,
        )

    def _config(self) -> tuple[bool, str, bool, str]:
        return (self._retry_enabled, self._retry_schedule, self._overdue_enabled, self._overdue_schedule)

    async def start(self) -> None:
        """Load schedules from settings and start APScheduler.

        Raises:
            ValueError: A configured schedule is not a valid crontab
        """
        try:
            async with AsyncSessionLocal() as db:
                (
                    self._retry_enabled,
                    self._retry_schedule,
                    self._overdue_enabled,
                    self._overdue_schedule,
                ) = await self._load_config(db)

            self.scheduler = AsyncIOScheduler(timezone=timezone.utc)

            if self._retry_enabled:
                self.scheduler.add_job(
                    self._run_webhook_retries,
                    CronTrigger.from_crontab(self._retry_schedule, timezone=timezone.utc),
                    id=WEBHOOK_RETRY_JOB,
                    name="Webhook Delivery Retries",
                    replace_existing=True,
                    max_instances=1,  # Prevent overlapping runs
                )
            else:
                logger.info("Webhook retry processing is disabled in settings")

            if self._overdue_enabled:
                self.scheduler.add_job(
                    self._run_overdue_check,
                    CronTrigger.from_crontab(self._overdue_schedule, timezone=timezone.utc),
                    id=OVERDUE_CHECK_JOB,
                    name="Invoice Overdue Check",
                    replace_existing=True,
                    max_instances=1,
                )
            else:
                logger.info("Invoice overdue check is disabled in settings")

            self.scheduler.start()
            logger.info(
                f"Background scheduler started (retries: {self._retry_schedule}, "
                f"overdue check: {self._overdue_schedule})"
            )

        except OperationalError as e:
            logger.error(f"Database connection error during scheduler start: {e}")
            raise
        except ValueError as e:
            logger.error(f"Invalid cron schedule or configuration: {e}")
            raise

    async def stop(self) -> None:
        """Shut down APScheduler without waiting for running jobs."""
        if self.scheduler and not self.scheduler.running:
            # start() failed before the scheduler was started
            self.scheduler = None
        if self.scheduler:
            try:
                self.scheduler.shutdown(wait=False)
                # Give event loop a chance to process shutdown
                await asyncio.sleep(0)
                logger.info("Background scheduler stopped")
            except RuntimeError as e:
                logger.error(f"Scheduler shutdown error: {e}")
            finally:
                self.scheduler = None

    async def reload_schedule(self, db: AsyncSession) -> None:
        """Restart the scheduler when schedules or enabled flags changed.

        Does nothing when the scheduler was never started (tests, CLI use).
        """
        if self.scheduler is None:
            return
        try:
            new_config = await self._load_config(db)
            if new_config == self._config():
                return

            logger.info(f"Schedule changed: {self._config()} -> {new_config}")
            await self.stop()
            await self.start()

        except OperationalError as e:
            logger.error(f"Database error reloading schedule: {e}")
        except ValueError as e:
            logger.error(f"Invalid schedule configuration: {e}")
        except RuntimeError as e:
            logger.error(f"Scheduler restart error: {e}")

    async def _run_webhook_retries(self) -> None:
        """Scheduled job: retry due webhook deliveries."""
        start_time = datetime.now(timezone.utc)
        try:
            async with AsyncSessionLocal() as db:
                stats = await webhook_dispatcher.process_retries(db)
            if stats["processed"]:
                duration = (datetime.now(timezone.utc) - start_time).total_seconds()
                logger.info(f"Webhook retries completed in {duration:.2f}s: {stats}")
            self._last_runs[WEBHOOK_RETRY_JOB] = start_time.isoformat()
        except (OperationalError, IntegrityError) as e:
            logger.error(f"Database error during webhook retry processing: {e}")

    async def _run_overdue_check(self) -> None:
        """Scheduled job: flag invoices past their due date."""
        logger.info("Starting scheduled invoice overdue check")
        start_time = datetime.now(timezone.utc)
        try:
            async with AsyncSessionLocal() as db:
                updated = await InvoiceService.check_overdue(db)
            duration = (datetime.now(timezone.utc) - start_time).total_seconds()
            logger.info(f"Overdue check completed in {duration:.2f}s: {updated} invoice(s) updated")
            self._last_runs[OVERDUE_CHECK_JOB] = start_time.isoformat()
        except (OperationalError, IntegrityError) as e:
            logger.error(f"Database error during overdue check: {e}")

    def get_status(self) -> dict:
        """Get scheduler status information.

        Returns:
            Dict with running flag and per-job schedule, next and last run
        """
        running = bool(self.scheduler and self.scheduler.running)
        jobs = {}
        for job_id, enabled, schedule in (
            (WEBHOOK_RETRY_JOB, self._retry_enabled, self._retry_schedule),
            (OVERDUE_CHECK_JOB, self._overdue_enabled, self._overdue_schedule),
        ):
            job = self.scheduler.get_job(job_id) if running else None
            next_run = job.next_run_time if job else None
            jobs[job_id] = {
                "enabled": enabled,
                "schedule": schedule,
                "next_run": next_run.isoformat() if next_run else None,
                "last_run": self._last_runs.get(job_id),
            }
        return {"running": running, "jobs": jobs}


# Global scheduler instance
scheduler_service = SchedulerService()
