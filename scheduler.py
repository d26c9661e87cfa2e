import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import sessionmaker

from config import get_settings
from database import session_scope
from services import reconcile_orphaned_transactions


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Runs the orphaned-transaction reconciliation in the background.

    Category cascades commit in one transaction, so this only repairs rows
    written around the API (imports, manual edits, older data).
    """

    def __init__(self, factory: Optional[sessionmaker] = None) -> None:
        settings = get_settings()
        self.factory = factory
        self.interval_minutes = settings.reconcile_interval_minutes
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        logger.info(f"reconcile_run: source={source}")
        with session_scope(self.factory) as session:
            count = reconcile_orphaned_transactions(session)
        logger.info(f"reconcile_run: source={source} transactions_reassigned={count}")
        return count

    def start(self) -> None:
        self._run_job("startup")

        trigger = IntervalTrigger(minutes=self.interval_minutes)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="reconcile_orphans",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with reconciliation every {self.interval_minutes}m"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
