import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.orm import Session

from . import call_queue
from .config import settings
from .db import SessionLocal, init_db
from .imap_listener import imap_configured, process_mailbox
from .models import CallQueueEntry
from .propensity import recompute_all

logger = logging.getLogger(__name__)


# ----------------------------
# Jobs: each opens its own session and runs to completion
# ----------------------------
def run_sweep() -> dict:
    db: Session = SessionLocal()
    try:
        return call_queue.reactivation_sweep(db)
    finally:
        db.close()


def run_propensity() -> int:
    db: Session = SessionLocal()
    try:
        return recompute_all(db)
    finally:
        db.close()


def run_top_up(count: int | None = None) -> int:
    """Fill the active queue up to `count` (QUEUE_DAILY_TARGET by default)."""
    db: Session = SessionLocal()
    try:
        target = settings.QUEUE_DAILY_TARGET if count is None else count
        active = db.query(CallQueueEntry).filter(CallQueueEntry.status == "active").count()
        wanted = target - active
        if wanted <= 0:
            logger.info("[top-up] queue already holds %d active rows (target=%d)", active, target)
            return 0
        return len(call_queue.top_up(db, wanted))
    finally:
        db.close()


async def _in_thread(fn, *args):
    # keep blocking IO (sqlite, imap, geocoder) off the event loop
    try:
        return await asyncio.to_thread(fn, *args)
    except Exception:
        logger.exception("[scheduler] job %s failed", fn.__name__)


# ----------------------------
# Scheduler bootstrap
# ----------------------------
def build_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone=settings.TIMEZONE)

    # 1) Reactivation sweep, hourly
    scheduler.add_job(
        _in_thread, "interval", args=[run_sweep],
        minutes=60, id="reactivation_sweep",
        replace_existing=True, coalesce=True, max_instances=1,
    )

    # 2) Mailbox poll, every 15 minutes
    if imap_configured():
        scheduler.add_job(
            _in_thread, "interval", args=[process_mailbox],
            minutes=15, id="mailbox_poll",
            replace_existing=True, coalesce=True, max_instances=1,
        )

    # 3) Propensity recompute, nightly
    scheduler.add_job(
        _in_thread, "cron", args=[run_propensity],
        hour=2, minute=0, id="propensity_daily",
        replace_existing=True, coalesce=True, max_instances=1,
    )

    # 4) Morning top-up before the calling block
    scheduler.add_job(
        _in_thread, "cron", args=[run_top_up],
        hour=7, minute=30, id="queue_top_up",
        replace_existing=True, coalesce=True, max_instances=1,
    )
    return scheduler


async def run_scheduler():
    init_db()
    scheduler = build_scheduler()
    scheduler.start()
    logger.info("[scheduler] started with jobs: %s", scheduler.get_jobs())

    # Keep loop alive (Uvicorn lifespan)
    while True:
        await asyncio.sleep(3600)
