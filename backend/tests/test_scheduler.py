"""
Tests for the job queue and worker pool behind the scheduler tick.
"""
import asyncio
import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

from staywatch import scheduler as scheduler_module
from staywatch.scheduler import JobQueue, WorkerPool, get_scheduler_status
from staywatch.services.profile_store import ProfileStore
from staywatch.utils.clock import utcnow


NOW = datetime(2026, 3, 1, 12, 0)


class FakeProfiles:
    def __init__(self, *profile_ids):
        self.profiles = [SimpleNamespace(id=pid) for pid in profile_ids]

    def list_active_profiles_due_for_check(self, now):
        return self.profiles


def make_queue(maxsize=10):
    return JobQueue(maxsize=maxsize, backoff_base_minutes=30, backoff_max_minutes=240)


class TestJobQueue:
    """Tests for JobQueue."""

    async def test_enqueues_due_profiles(self):
        queue = make_queue()

        result = queue.enqueue_due_profiles(FakeProfiles("a", "b"), NOW)

        assert result == {"due": 2, "enqueued": 2, "skipped": 0, "deferred": 0}
        assert queue.depth == 2

    async def test_profile_is_never_queued_twice(self):
        queue = make_queue()
        queue.enqueue_due_profiles(FakeProfiles("a"), NOW)

        result = queue.enqueue_due_profiles(FakeProfiles("a"), NOW)

        assert result["skipped"] == 1
        assert queue.depth == 1

    async def test_in_flight_profile_is_skipped(self):
        queue = make_queue()
        queue.offer("a", NOW)
        assert await queue.get() == "a"

        assert queue.offer("a", NOW) is False
        assert queue.in_flight == {"a"}

    async def test_full_queue_defers_the_rest(self):
        queue = make_queue(maxsize=2)

        result = queue.enqueue_due_profiles(FakeProfiles("a", "b", "c"), NOW)

        assert result == {"due": 3, "enqueued": 2, "skipped": 0, "deferred": 1}

    async def test_failure_backs_off_exponentially(self):
        queue = make_queue()

        for expected in (30, 60, 120, 240, 240):
            queue.offer("a", NOW)
            await queue.get()
            queue.record_result("a", success=False, now=NOW)
            assert queue.retry_after["a"] == NOW + timedelta(minutes=expected)
            # Let the backoff lapse before the next attempt
            queue.retry_after.pop("a")

        assert queue.failures["a"] == 5

    async def test_backing_off_profile_is_skipped_until_due(self):
        queue = make_queue()
        queue.offer("a", NOW)
        await queue.get()
        queue.record_result("a", success=False, now=NOW)

        assert queue.offer("a", NOW + timedelta(minutes=10)) is False
        assert queue.offer("a", NOW + timedelta(minutes=31)) is True

    async def test_success_clears_backoff(self):
        queue = make_queue()
        queue.failures["a"] = 3
        queue.retry_after["a"] = NOW - timedelta(minutes=1)
        queue.offer("a", NOW)
        await queue.get()

        queue.record_result("a", success=True, now=NOW)

        assert "a" not in queue.failures
        assert "a" not in queue.retry_after
        assert queue.in_flight == set()

    async def test_snapshot(self):
        queue = make_queue(maxsize=5)
        queue.offer("a", NOW)
        queue.offer("b", NOW)
        await queue.get()

        snapshot = queue.snapshot(NOW)

        assert snapshot == {"depth": 1, "capacity": 5, "in_flight": ["a"], "backing_off": []}

    async def test_with_profile_store(self, db_session, make_profile):
        make_profile(id="due-1")
        make_profile(id="recent", last_checked_at=NOW - timedelta(hours=1))
        make_profile(id="disabled", enabled=False)
        queue = make_queue()

        result = queue.enqueue_due_profiles(ProfileStore(db_session), NOW)

        assert result["enqueued"] == 1
        assert await queue.get() == "due-1"


class TestWorkerPool:
    """Tests for WorkerPool."""

    async def test_drains_queue_with_bounded_concurrency(self):
        queue = make_queue(maxsize=20)
        running = 0
        peak = 0
        checked = []

        async def check_profile(profile_id):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            checked.append(profile_id)
            return SimpleNamespace(is_success=True)

        service = SimpleNamespace(check_profile=check_profile)
        pool = WorkerPool(queue, service, worker_count=3, start_jitter_seconds=0)
        for n in range(10):
            queue.offer(f"p{n}", NOW)

        pool.start()
        await asyncio.wait_for(queue.join(), timeout=2)
        await pool.stop()

        assert sorted(checked) == sorted(f"p{n}" for n in range(10))
        assert peak <= 3
        assert not pool.running

    async def test_crash_counts_as_failure(self):
        queue = make_queue()
        service = SimpleNamespace(check_profile=AsyncMock(side_effect=RuntimeError("boom")))
        pool = WorkerPool(queue, service, worker_count=1, start_jitter_seconds=0)
        queue.offer("a", utcnow())

        pool.start()
        await asyncio.wait_for(queue.join(), timeout=2)
        await pool.stop()

        assert queue.failures["a"] == 1
        assert queue.is_backing_off("a", utcnow())

    async def test_failed_check_and_deleted_profile(self):
        queue = make_queue()
        results = {
            "failed": SimpleNamespace(is_success=False),
            "deleted": None,
        }
        service = SimpleNamespace(check_profile=AsyncMock(side_effect=lambda pid: results[pid]))
        pool = WorkerPool(queue, service, worker_count=2, start_jitter_seconds=0)
        queue.offer("failed", NOW)
        queue.offer("deleted", NOW)

        pool.start()
        await asyncio.wait_for(queue.join(), timeout=2)
        await pool.stop()

        assert queue.failures == {"failed": 1}


class TestSchedulerStatus:
    def test_status_when_stopped(self, monkeypatch):
        monkeypatch.setattr(scheduler_module, "scheduler", None)
        monkeypatch.setattr(scheduler_module, "job_queue", None)
        monkeypatch.setattr(scheduler_module, "worker_pool", None)

        status = get_scheduler_status()

        assert status == {"running": False, "jobs": [], "next_run": None, "queue": None, "workers": 0}

    async def test_tick_without_queue_is_a_noop(self, monkeypatch):
        monkeypatch.setattr(scheduler_module, "job_queue", None)

        assert await scheduler_module.enqueue_due_profiles_job() is None
