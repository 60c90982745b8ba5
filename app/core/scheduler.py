"""
APScheduler Setup for Background Jobs

Handles automatic challenge lifecycle transitions:
- Auto-start voting: every interval
- Auto-end voting: every interval
- Retry pending results: every interval
- Reconcile badges: every interval

Note: Jobs run with the service graph built at application start-up.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from typing import Any, Awaitable, Callable, Dict

import structlog

from app.config import SCHEDULER_INTERVAL_MINUTES
from app.core.clock import utc_now_naive
from app.core.container import Services
from app.services.scheduler.challenge_scheduler import ChallengeScheduler

logger = structlog.get_logger()

# Global scheduler instance
scheduler = AsyncIOScheduler()

# Sweeps bound to the service graph by setup_scheduler()
_sweeps: Dict[str, Callable[[], Awaitable[Dict[str, Any]]]] = {}

# Job status tracking
job_status = {
    "last_run": None,
    "auto_start_voting": {"runs": 0, "last_result": None},
    "auto_end_voting": {"runs": 0, "last_result": None},
    "retry_pending_results": {"runs": 0, "last_result": None},
    "reconcile_badges": {"runs": 0, "last_result": None}
}


async def _run_job(name: str):
    sweep = _sweeps.get(name)
    if sweep is None:
        logger.warning("Scheduler not configured, skipping job", job=name)
        return

    try:
        result = await sweep()
    except Exception as e:
        # Keep the job scheduled; the next run retries
        logger.exception("Scheduler job failed", job=name, error=str(e))
        return

    job_status[name]["runs"] += 1
    job_status[name]["last_result"] = result
    job_status["last_run"] = utc_now_naive().isoformat()

    if result.get("processed", 0) > 0 or result.get("errors"):
        logger.info(
            "Scheduler job finished",
            job=name,
            processed=result.get("processed", 0),
            errors=len(result.get("errors", []))
        )


async def run_auto_start_voting():
    """Job: open voting for ACTIVE challenges when voting_start_date is reached."""
    await _run_job("auto_start_voting")


async def run_auto_end_voting():
    """Job: complete VOTING challenges when voting_end_date is reached."""
    await _run_job("auto_end_voting")


async def run_retry_pending_results():
    """Job: finish result distribution interrupted after completion."""
    await _run_job("retry_pending_results")


async def run_reconcile_badges():
    """Job: award badges whose triggering events were lost."""
    await _run_job("reconcile_badges")


def setup_scheduler(services: Services, interval_minutes: int = SCHEDULER_INTERVAL_MINUTES):
    """Configure and setup all scheduled jobs."""
    challenge_scheduler = ChallengeScheduler(services.challenges)
    _sweeps.clear()
    _sweeps.update({
        "auto_start_voting": challenge_scheduler.auto_start_voting,
        "auto_end_voting": challenge_scheduler.auto_end_voting,
        "retry_pending_results": challenge_scheduler.retry_pending_results,
        "reconcile_badges": services.achievements.reconcile_badges,
    })

    # Clear any existing jobs
    scheduler.remove_all_jobs()

    jobs = [
        (run_auto_start_voting, "challenge_auto_start_voting", "Open voting for ACTIVE challenges"),
        (run_auto_end_voting, "challenge_auto_end_voting", "Complete VOTING challenges and reward winners"),
        (run_retry_pending_results, "challenge_retry_results", "Retry interrupted result distribution"),
        (run_reconcile_badges, "achievement_reconcile_badges", "Award badges missed by lost events"),
    ]
    for func, job_id, name in jobs:
        scheduler.add_job(
            func,
            IntervalTrigger(minutes=interval_minutes),
            id=job_id,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )

    logger.info("Challenge scheduler configured", jobs=len(jobs), interval_minutes=interval_minutes)


def start_scheduler():
    """Start the scheduler if not already running."""
    if not scheduler.running:
        scheduler.start()
        logger.info("Background scheduler started")


def stop_scheduler():
    """Stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")


def get_scheduler_status() -> dict:
    """Get current scheduler status for monitoring."""
    return {
        "running": scheduler.running,
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None
            }
            for job in scheduler.get_jobs()
        ],
        "job_status": job_status
    }
