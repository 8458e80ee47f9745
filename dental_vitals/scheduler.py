"""
Scheduler for the monthly insight run

Uses APScheduler to regenerate every active client's insight report at the
start of each month.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from zoneinfo import ZoneInfo
import time

from dental_vitals.models.base import SessionLocal
from dental_vitals.services.dashboard_service import DashboardService
from dental_vitals.config import get_settings
from dental_vitals.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()


def run_monthly_insights(session_factory=SessionLocal) -> dict:
    """Generate insights (force refresh) for all active clients"""
    start = time.time()
    db = session_factory()
    try:
        log.info("Starting monthly insights run...")
        result = DashboardService(db).run_monthly_insights()
        log.info(
            f"Monthly insights run completed: {result['succeeded']} succeeded, "
            f"{result['failed']} failed in {time.time() - start:.1f}s"
        )
        return result
    except Exception as e:
        log.error(f"Monthly insights run error: {str(e)}")
        return {"success": False, "error": str(e)}
    finally:
        db.close()


async def monthly_insights_job():
    """Scheduled wrapper (1st of the month by default)"""
    run_monthly_insights()


def setup_scheduler():
    """
    Configure scheduled jobs.

    - Monthly insights: day `monthly_insights_day` at `monthly_insights_hour`
      in `scheduler_timezone`
    """
    scheduler.add_job(
        monthly_insights_job,
        trigger=CronTrigger(
            day=settings.monthly_insights_day,
            hour=settings.monthly_insights_hour,
            minute=0,
            timezone=ZoneInfo(settings.scheduler_timezone)
        ),
        id='monthly_insights',
        name='Monthly Patient Journey Insights',
        replace_existing=True,
        max_instances=1
    )
    log.info(
        f"Scheduled monthly insights on day {settings.monthly_insights_day} "
        f"at {settings.monthly_insights_hour:02d}:00 {settings.scheduler_timezone}"
    )


def start_scheduler():
    """Start the scheduler"""
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")


def run_monthly_insights_now() -> dict:
    """Manually trigger the monthly insights run"""
    log.info("Manually triggering monthly insights run...")
    return run_monthly_insights()
