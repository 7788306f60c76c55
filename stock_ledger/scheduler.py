"""Background scheduler for the periodic ledger consistency audit.

Supports two modes:
  - **Standalone** (``python -m stock_ledger.scheduler``): runs a
    ``BlockingScheduler`` as a separate worker process.
  - **Embedded** (``create_background_scheduler()``): returns a
    ``BackgroundScheduler`` that the FastAPI process starts in its
    ``lifespan`` handler.
"""

import signal
import sys
from datetime import datetime, timedelta
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .services.audit_service import AuditService
from .storage.database import Database
from .storage.repository import LedgerStore
from .utils.config import get_config
from .utils.logger import get_audit_logger, get_scheduler_logger

AUDIT_JOB_ID = "ledger_consistency_audit"


# ------------------------------------------------------------------
# Shared audit-job factory
# ------------------------------------------------------------------

def make_audit_job(store: Optional[LedgerStore] = None) -> Callable[[], None]:
    """Create and return the audit-job callable."""
    logger = get_audit_logger()
    get_scheduler_logger()

    if store is None:
        database = Database()
        database.create_all()
        store = LedgerStore(database)

    audit_service = AuditService(store)

    def audit_job():
        logger.info("=" * 70)
        logger.info(f"Scheduled audit started at {datetime.now()}")
        logger.info("=" * 70)

        try:
            result = audit_service.run_audit()

            logger.info("Audit job completed:")
            logger.info(f"  Products checked: {result.checked_count}")
            logger.info(f"  Consistent:       {result.consistent_count}")
            logger.info(f"  Inconsistent:     {result.inconsistent_count}")
            logger.info(f"  Duration:         {result.duration:.2f}s")

            if not result.consistent:
                logger.warning(f"Audit found {result.inconsistent_count} mismatched product(s)")

        except Exception as e:
            logger.error(f"Audit job failed with exception: {str(e)}", exc_info=True)

        logger.info("=" * 70)

    return audit_job


# ------------------------------------------------------------------
# Embedded (non-blocking) scheduler, used by the web process
# ------------------------------------------------------------------

def create_background_scheduler(store: Optional[LedgerStore] = None) -> BackgroundScheduler:
    """Create a ``BackgroundScheduler`` for embedding inside FastAPI.

    The scheduler is returned **not started**; the caller must invoke
    ``scheduler.start()`` when ready. A first audit runs shortly after
    startup so the web server can finish starting first.
    """
    config = get_config()
    logger = get_audit_logger()
    interval = config.env.audit_interval_minutes
    delay = config.scheduler.initial_delay_seconds

    scheduler = BackgroundScheduler(timezone=config.scheduler.timezone)
    audit_job = make_audit_job(store)

    scheduler.add_job(
        func=audit_job,
        trigger=IntervalTrigger(minutes=interval),
        id=AUDIT_JOB_ID,
        name="Ledger consistency audit",
        max_instances=config.scheduler.max_instances,
        coalesce=config.scheduler.coalesce,
        misfire_grace_time=config.scheduler.misfire_grace_time,
        replace_existing=True
    )

    scheduler.add_job(
        func=audit_job,
        trigger="date",
        run_date=datetime.now() + timedelta(seconds=delay),
        id="initial_audit",
        name="Initial audit on startup",
    )

    logger.info(
        f"Background scheduler configured: audit every {interval} min "
        f"(initial run in ~{delay} s)"
    )
    return scheduler


# ------------------------------------------------------------------
# Standalone (blocking) scheduler, for a separate worker process
# ------------------------------------------------------------------

class AuditScheduler:
    """Scheduler for the periodic consistency audit."""

    def __init__(self, store: Optional[LedgerStore] = None):
        """Initialize scheduler."""
        self.config = get_config()
        self.logger = get_audit_logger()
        self.audit_job = make_audit_job(store)

        self.scheduler = BlockingScheduler(
            timezone=self.config.scheduler.timezone
        )

        signal.signal(signal.SIGINT, self._shutdown_handler)
        signal.signal(signal.SIGTERM, self._shutdown_handler)

    def _shutdown_handler(self, signum, frame):
        self.logger.info(f"Received shutdown signal ({signum}). Stopping scheduler...")
        self.scheduler.shutdown(wait=True)
        sys.exit(0)

    def start(self):
        """Start the blocking scheduler (runs forever)."""
        interval = self.config.env.audit_interval_minutes

        self.logger.info("=" * 70)
        self.logger.info("Stock Ledger Audit Scheduler Starting (standalone)")
        self.logger.info("=" * 70)
        self.logger.info(f"Environment:      {self.config.env.environment}")
        self.logger.info(f"Timezone:         {self.config.scheduler.timezone}")
        self.logger.info(f"Audit interval:   {interval} minutes")
        self.logger.info(f"Max instances:    {self.config.scheduler.max_instances}")
        self.logger.info(f"Coalesce:         {self.config.scheduler.coalesce}")
        self.logger.info("=" * 70)

        self.scheduler.add_job(
            func=self.audit_job,
            trigger=IntervalTrigger(minutes=interval),
            id=AUDIT_JOB_ID,
            name="Ledger consistency audit",
            max_instances=self.config.scheduler.max_instances,
            coalesce=self.config.scheduler.coalesce,
            misfire_grace_time=self.config.scheduler.misfire_grace_time,
            replace_existing=True
        )

        self.logger.info("Running initial audit...")
        self.audit_job()

        self.logger.info("Scheduler started. Press Ctrl+C to stop.")
        self.logger.info("=" * 70)

        try:
            self.scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            self.logger.info("Scheduler stopped.")


def main():
    """Main entry point for standalone scheduler."""
    try:
        scheduler = AuditScheduler()
        scheduler.start()
    except Exception as e:
        logger = get_audit_logger()
        logger.error(f"Scheduler failed to start: {str(e)}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
