"""Delay schedulers for Delay nodes and future-dated trigger dispatch.

Two implementations behind one interface:

- InProcessDelayScheduler: asyncio timers. Pending delays live only in this
  process and are lost on shutdown or crash.
- APSchedulerDelayScheduler: APScheduler DateTrigger jobs. With a SQLAlchemy
  job store, pending delays survive restarts and fire once the scheduler is
  started again (late jobs still run).

Usage:
    scheduler = create_delay_scheduler(settings)
    scheduler.set_handler(dispatcher.handle_scheduled_job)
    await scheduler.start()
    scheduler.schedule(30, ScheduledJob.resume(workflow_id, lead_id, node_id))
"""

import asyncio
import weakref
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional, Protocol, Set, TYPE_CHECKING

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from core.logging import get_logger
from .models import ScheduledJob

if TYPE_CHECKING:
    from core.config import Settings

logger = get_logger(__name__)

JobHandler = Callable[[ScheduledJob], Awaitable[None]]


class DelayScheduler(Protocol):
    def set_handler(self, handler: JobHandler) -> None:
        """Set the coroutine invoked with each job when it comes due."""
        ...

    async def start(self) -> None:
        ...

    async def shutdown(self) -> None:
        ...

    def schedule(self, delay_seconds: float, job: ScheduledJob) -> str:
        """Fire ``job`` once after ``delay_seconds``; returns the job id."""
        ...


async def _run_job(handler: Optional[JobHandler], job: ScheduledJob) -> None:
    if handler is None:
        logger.error("No handler for scheduled job", job_id=job.job_id, kind=job.kind)
        return
    try:
        await handler(job)
    except Exception as e:
        logger.error("Scheduled job failed", job_id=job.job_id, kind=job.kind, error=str(e))


# =============================================================================
# IN-PROCESS
# =============================================================================

class InProcessDelayScheduler:
    """asyncio timer scheduler; not durable."""

    def __init__(self):
        self._handler: Optional[JobHandler] = None
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    def set_handler(self, handler: JobHandler) -> None:
        self._handler = handler

    @property
    def pending_count(self) -> int:
        return len(self._timers)

    async def start(self) -> None:
        logger.info("In-process delay scheduler started")

    async def shutdown(self) -> None:
        lost = len(self._timers)
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        if lost:
            logger.warning("In-process delay scheduler stopped with pending delays; they are lost",
                           pending=lost)
        else:
            logger.info("In-process delay scheduler stopped")

    def schedule(self, delay_seconds: float, job: ScheduledJob) -> str:
        loop = asyncio.get_running_loop()
        self._timers[job.job_id] = loop.call_later(max(delay_seconds, 0), self._fire, job)
        logger.debug("Delay scheduled", job_id=job.job_id, kind=job.kind, delay_seconds=delay_seconds)
        return job.job_id

    def _fire(self, job: ScheduledJob) -> None:
        self._timers.pop(job.job_id, None)
        task = asyncio.ensure_future(_run_job(self._handler, job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


# =============================================================================
# APSCHEDULER
# =============================================================================

# Persisted jobs reference a module-level callable by name, so live schedulers
# are looked up here when a job fires.
_live_schedulers: "weakref.WeakValueDictionary[str, APSchedulerDelayScheduler]" = (
    weakref.WeakValueDictionary()
)


async def fire_scheduled_job(scheduler_name: str, payload: Dict) -> None:
    """APScheduler job entry point."""
    scheduler = _live_schedulers.get(scheduler_name)
    if scheduler is None:
        logger.warning("Scheduled job fired with no live scheduler", scheduler=scheduler_name,
                       job_id=payload.get("jobId"))
        return
    await _run_job(scheduler._handler, ScheduledJob.from_dict(payload))


class APSchedulerDelayScheduler:
    """Delay scheduler backed by APScheduler DateTrigger jobs."""

    def __init__(self, timezone_name: str = "UTC", jobstore_url: Optional[str] = None,
                 name: str = "leadflow-delays"):
        if jobstore_url:
            jobstore = SQLAlchemyJobStore(url=jobstore_url, tablename="leadflow_delay_jobs")
        else:
            jobstore = MemoryJobStore()

        self.name = name
        self.durable = bool(jobstore_url)
        self._handler: Optional[JobHandler] = None
        self._scheduler = AsyncIOScheduler(jobstores={"default": jobstore}, timezone=timezone_name)
        _live_schedulers[name] = self

    def set_handler(self, handler: JobHandler) -> None:
        self._handler = handler

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("APScheduler delay scheduler started", durable=self.durable,
                        pending=len(self._scheduler.get_jobs()))

    async def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("APScheduler delay scheduler stopped", durable=self.durable)

    def schedule(self, delay_seconds: float, job: ScheduledJob) -> str:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=max(delay_seconds, 0))
        self._scheduler.add_job(
            fire_scheduled_job,
            trigger=DateTrigger(run_date=run_date),
            id=job.job_id,
            kwargs={"scheduler_name": self.name, "payload": job.to_dict()},
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug("Delay scheduled", job_id=job.job_id, kind=job.kind, run_date=run_date.isoformat())
        return job.job_id

    def get_job_ids(self):
        return [job.id for job in self._scheduler.get_jobs()]


def create_delay_scheduler(settings: "Settings") -> DelayScheduler:
    """Build the delay scheduler selected by settings."""
    if settings.delay_scheduler == "apscheduler":
        return APSchedulerDelayScheduler(
            timezone_name=settings.scheduler_timezone,
            jobstore_url=settings.scheduler_jobstore_url,
        )
    return InProcessDelayScheduler()
