"""
APScheduler job runner for periodic polling and queue sweeps.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from email_intake.config import settings
from email_intake.core.logging import get_logger
from email_intake.processors.orchestrator import EmailProcessor
from email_intake.services.poller import EmailPoller

log = get_logger(__name__)

# Global scheduler instance
_scheduler: AsyncIOScheduler | None = None


async def poll_emails_job(
    poller: EmailPoller,
    processor: EmailProcessor | None = None,
    auto_process: bool = False,
):
    """Scheduled job: pick up new emails and, with auto_process, sweep the queue.

    Errors are logged so one bad tick never kills the schedule.
    """
    log.info("scheduled_job_starting", job="poll_emails")
    try:
        result = await poller.poll()
        log.info("scheduled_job_complete", job="poll_emails", new_count=result.new_count)
    except Exception as e:
        log.error("scheduled_job_error", job="poll_emails", error=str(e))
        return

    if not auto_process or processor is None or processor.llm is None:
        return

    try:
        results = await processor.process_queue()
        log.info("scheduled_job_complete", job="process_queue", processed=len(results))
    except Exception as e:
        log.error("scheduled_job_error", job="process_queue", error=str(e))


def start_scheduler(
    poller: EmailPoller,
    processor: EmailProcessor | None = None,
    interval_seconds: float | None = None,
    auto_process: bool | None = None,
) -> AsyncIOScheduler:
    """
    Start the poll scheduler on the running event loop.

    Args:
        poller: Poller used by the job
        processor: Processor used for sweeps when auto_process is on
        interval_seconds: Poll interval (default: settings.poll_interval_seconds)
        auto_process: Sweep after each poll (default: settings.auto_process)

    Returns:
        The scheduler instance
    """
    global _scheduler

    if _scheduler is not None:
        log.warning("scheduler_already_running")
        return _scheduler

    interval = interval_seconds or settings.poll_interval_seconds
    sweep = settings.auto_process if auto_process is None else auto_process

    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        poll_emails_job,
        trigger=IntervalTrigger(seconds=interval),
        kwargs={"poller": poller, "processor": processor, "auto_process": sweep},
        id="poll_emails",
        name="Poll for new emails",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    _scheduler.start()
    log.info("scheduler_started", interval_seconds=interval, auto_process=sweep)

    return _scheduler


def stop_scheduler():
    """Stop the scheduler."""
    global _scheduler

    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        log.info("scheduler_stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    """Get the current scheduler instance."""
    return _scheduler
