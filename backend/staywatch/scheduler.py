"""
Scheduling: an APScheduler tick feeding a bounded work queue.

Every ``scheduler_tick_minutes`` (with jitter) the tick lists enabled profiles that
are due and enqueues one job per profile. A fixed pool of workers drains the queue,
so however many profiles are due, at most ``worker_count`` checks run at once.

Profiles already queued or in flight are skipped. A full queue leaves the rest for
the next tick. After a failed check the profile backs off exponentially.

Once a day a separate job scans every provider's offers page for promotions.
"""

import asyncio
import logging
import os
import random
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from staywatch.config import get_settings
from staywatch.database import SessionLocal
from staywatch.services.deal_service import DealService
from staywatch.services.monitoring_service import MonitoringService
from staywatch.services.profile_store import ProfileStore
from staywatch.utils.clock import utcnow

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None
job_queue: Optional["JobQueue"] = None
worker_pool: Optional["WorkerPool"] = None
session_pool = None


class JobQueue:
    """Bounded queue of profile ids with per-profile dedup and failure backoff."""

    def __init__(
        self,
        maxsize: Optional[int] = None,
        backoff_base_minutes: Optional[float] = None,
        backoff_max_minutes: Optional[float] = None,
    ):
        settings = get_settings()
        self.maxsize = maxsize or settings.job_queue_size
        self.backoff_base_minutes = (
            backoff_base_minutes if backoff_base_minutes is not None else settings.backoff_base_minutes
        )
        self.backoff_max_minutes = (
            backoff_max_minutes if backoff_max_minutes is not None else settings.backoff_max_minutes
        )
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=self.maxsize)
        self.pending: set[str] = set()
        self.in_flight: set[str] = set()
        self.failures: dict[str, int] = {}
        self.retry_after: dict[str, datetime] = {}

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    def backoff_for(self, failures: int) -> timedelta:
        minutes = self.backoff_base_minutes * 2 ** max(failures - 1, 0)
        return timedelta(minutes=min(minutes, self.backoff_max_minutes))

    def is_backing_off(self, profile_id: str, now: datetime) -> bool:
        retry_at = self.retry_after.get(profile_id)
        return retry_at is not None and now < retry_at

    def offer(self, profile_id: str, now: datetime) -> bool:
        """Enqueue one profile. Returns False when skipped or the queue is full."""
        if profile_id in self.pending or profile_id in self.in_flight:
            return False
        if self.is_backing_off(profile_id, now):
            return False
        try:
            self._queue.put_nowait(profile_id)
        except asyncio.QueueFull:
            return False
        self.pending.add(profile_id)
        return True

    def enqueue_due_profiles(self, profiles: ProfileStore, now: datetime) -> dict:
        due = profiles.list_active_profiles_due_for_check(now)
        enqueued = skipped = deferred = 0
        for profile in due:
            if profile.id in self.pending or profile.id in self.in_flight or self.is_backing_off(profile.id, now):
                skipped += 1
                continue
            if self._queue.full():
                deferred += 1
                continue
            if self.offer(profile.id, now):
                enqueued += 1
        return {"due": len(due), "enqueued": enqueued, "skipped": skipped, "deferred": deferred}

    async def get(self) -> str:
        profile_id = await self._queue.get()
        self.pending.discard(profile_id)
        self.in_flight.add(profile_id)
        return profile_id

    def record_result(self, profile_id: str, success: bool, now: Optional[datetime] = None) -> None:
        """Mark a job finished and update the profile's backoff."""
        now = now or utcnow()
        self.in_flight.discard(profile_id)
        self._queue.task_done()
        if success:
            self.failures.pop(profile_id, None)
            self.retry_after.pop(profile_id, None)
            return
        failures = self.failures.get(profile_id, 0) + 1
        self.failures[profile_id] = failures
        delay = self.backoff_for(failures)
        self.retry_after[profile_id] = now + delay
        logger.info(f"Profile {profile_id} backing off {delay.total_seconds() / 60:.0f} min after {failures} failure(s)")

    async def join(self) -> None:
        await self._queue.join()

    def snapshot(self, now: Optional[datetime] = None) -> dict:
        now = now or utcnow()
        return {
            "depth": self.depth,
            "capacity": self.maxsize,
            "in_flight": sorted(self.in_flight),
            "backing_off": sorted(pid for pid in self.retry_after if self.is_backing_off(pid, now)),
        }


class WorkerPool:
    """Fixed number of workers draining a JobQueue, one profile check at a time each."""

    def __init__(
        self,
        queue: JobQueue,
        service: MonitoringService,
        worker_count: Optional[int] = None,
        start_jitter_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.queue = queue
        self.service = service
        self.worker_count = worker_count or settings.worker_count
        self.start_jitter_seconds = (
            start_jitter_seconds if start_jitter_seconds is not None else settings.job_start_jitter_seconds
        )
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._worker(n), name=f"staywatch-worker-{n}")
            for n in range(self.worker_count)
        ]
        logger.info(f"Started {self.worker_count} extraction workers")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Extraction workers stopped")

    async def _worker(self, number: int) -> None:
        while True:
            profile_id = await self.queue.get()
            success = False
            try:
                if self.start_jitter_seconds > 0:
                    await asyncio.sleep(random.uniform(0, self.start_jitter_seconds))
                check = await self.service.check_profile(profile_id)
                # A deleted profile is not a failure
                success = check is None or check.is_success
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Worker {number}: check of profile {profile_id} crashed")
            finally:
                self.queue.record_result(profile_id, success)


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the global scheduler instance."""
    global scheduler
    if scheduler is None:
        tz = os.environ.get("TZ", "UTC")
        logger.info(f"Scheduler using timezone: {tz}")

        scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            timezone=tz,
        )
        _setup_scheduled_jobs()

    return scheduler


def _setup_scheduled_jobs():
    settings = get_settings()
    scheduler.add_job(
        enqueue_due_profiles_job,
        trigger=IntervalTrigger(
            minutes=settings.scheduler_tick_minutes,
            jitter=settings.scheduler_jitter_seconds or None,
        ),
        id="enqueue_due_profiles",
        name="Enqueue Due Profiles",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        f"Scheduled jobs configured: profile tick every {settings.scheduler_tick_minutes} min "
        f"(±{settings.scheduler_jitter_seconds}s)"
    )

    if settings.offers_scan_enabled:
        scheduler.add_job(
            scan_offers_job,
            trigger=CronTrigger(hour=settings.offers_scan_hour, jitter=settings.scheduler_jitter_seconds or None),
            id="scan_offers",
            name="Scan Provider Offers",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Offers scan daily at {settings.offers_scan_hour:02d}:00")


async def enqueue_due_profiles_job():
    """Tick: enqueue every enabled profile that is due for a check."""
    if job_queue is None:
        logger.warning("Tick fired before the job queue was created")
        return

    db = SessionLocal()
    try:
        result = job_queue.enqueue_due_profiles(ProfileStore(db), utcnow())
    finally:
        db.close()

    if result["due"]:
        logger.info(
            f"Tick: {result['due']} due, {result['enqueued']} enqueued, "
            f"{result['skipped']} skipped, {result['deferred']} deferred (queue full)"
        )
    return result


async def scan_offers_job(deal_service_factory=DealService):
    """Scan every provider's offers page, one provider at a time."""
    db = SessionLocal()
    try:
        results = await deal_service_factory(db, pool=session_pool).scan_all_providers()
    finally:
        db.close()

    new = sum(result.get("new", 0) for result in results.values())
    failed = [code for code, result in results.items() if "error" in result]
    if failed:
        logger.warning(f"Offers scan failed for: {', '.join(failed)}")
    logger.info(f"Offers scan: {new} new deal(s) from {len(results)} provider(s)")
    return results


async def start_scheduler(service: MonitoringService):
    """Create the queue and workers, then start the tick (call from FastAPI startup)."""
    global job_queue, worker_pool, session_pool
    session_pool = service.pipeline.pool
    if job_queue is None:
        job_queue = JobQueue()
    if worker_pool is None:
        worker_pool = WorkerPool(job_queue, service)
    worker_pool.start()

    scheduler_instance = get_scheduler()
    if not scheduler_instance.running:
        scheduler_instance.start()
        logger.info("APScheduler started successfully")
        for job in scheduler_instance.get_jobs():
            logger.info(f"Next '{job.name}': {job.next_run_time}")
    else:
        logger.warning("Scheduler already running")


async def stop_scheduler():
    """Stop the tick and the workers (call from FastAPI shutdown)."""
    global scheduler, job_queue, worker_pool, session_pool
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler stopped")
    scheduler = None
    if worker_pool is not None:
        await worker_pool.stop()
    worker_pool = None
    job_queue = None
    session_pool = None


def get_scheduler_status() -> dict:
    """Get scheduler status for the status endpoint."""
    queue = job_queue.snapshot() if job_queue is not None else None
    workers = worker_pool.worker_count if worker_pool is not None and worker_pool.running else 0

    if scheduler is None or not scheduler.running:
        return {
            "running": False,
            "jobs": [],
            "next_run": None,
            "queue": queue,
            "workers": workers,
        }

    jobs = []
    next_run = None
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "func": job.func.__name__ if job.func else None,
        })
        if job.next_run_time and (next_run is None or job.next_run_time < next_run):
            next_run = job.next_run_time

    return {
        "running": True,
        "jobs": jobs,
        "next_run": next_run.isoformat() if next_run else None,
        "queue": queue,
        "workers": workers,
    }
