import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from recurrence import sync_all_users
from services import ReportService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _sync_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: job=is_future_sync source={source}")
        with session_scope() as session:
            count = sync_all_users(session)
            logger.info(f"scheduler_run: job=is_future_sync source={source} flipped={count}")

    def _timeout_job(self, source: str = "manual") -> None:
        with session_scope() as session:
            count = ReportService(session).mark_timeout_reports(
                timeout_minutes=self.settings.report_timeout_minutes
            )
        if count:
            logger.info(f"scheduler_run: job=report_timeouts source={source} failed={count}")

    def start(self) -> None:
        self._sync_job("startup")

        trigger = CronTrigger(hour=0, minute=5)
        self.scheduler.add_job(
            self._sync_job,
            trigger,
            args=["daily_00:05"],
            id="is_future_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(minutes=10)
        self.scheduler.add_job(
            self._timeout_job,
            trigger,
            args=["every_10m"],
            id="report_timeouts",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 00:05 sync and 10 minute report timeouts")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
