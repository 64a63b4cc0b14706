import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from services import BatchSummary, MonthlyBalanceService


settings = get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.hour = settings.snapshot_hour
        self.minute = settings.snapshot_minute
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> Optional[BatchSummary]:
        logger.info(f"scheduler_run: source={source}")
        try:
            with session_scope() as session:
                summary = MonthlyBalanceService(session).generate_for_all_users()
        except Exception:
            # a failed run must not kill the scheduler thread; next fire retries
            logger.exception(f"scheduler_run_failed: source={source}")
            return None
        logger.info(
            f"scheduler_run: source={source} period={summary.label} "
            f"generated={summary.generated} existing={summary.existing} "
            f"failed={len(summary.failed_user_ids)}"
        )
        return summary

    def start(self) -> None:
        # previous month may have been missed while the process was down
        self.scheduler.add_job(
            self._run_job,
            args=["startup"],
            id="monthly_balance_catch_up",
            replace_existing=True,
            next_run_time=datetime.now(self.scheduler.timezone),
            misfire_grace_time=86400,
        )

        trigger = CronTrigger(day=1, hour=self.hour, minute=self.minute)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"monthly_{self.hour:02d}:{self.minute:02d}"],
            id="monthly_balance_snapshot",
            replace_existing=True,
            coalesce=True,
            misfire_grace_time=86400,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with monthly snapshot on day 1 at "
            f"{self.hour:02d}:{self.minute:02d}"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
