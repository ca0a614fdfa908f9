"""
ジョブキューのテスト
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from calendar_sync.core.job_queue import JobQueue, JobQueueError
from calendar_sync.layers.data_acquisition.error_handler import ConfigurationError

NOW = datetime(2026, 3, 10, 12, 1, tzinfo=timezone.utc)


class TestJobQueue:
    """ジョブ投入と消費"""

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self):
        queue = JobQueue()
        running = 0
        peak = 0

        async def handler(payload):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        await queue.consume("sync-calendar-account", handler, concurrency=2)
        for index in range(6):
            await queue.enqueue("sync-calendar-account", {'accountId': f"acc-{index}"})

        await asyncio.wait_for(queue.join("sync-calendar-account"), timeout=5)
        await queue.stop()

        assert peak == 2
        assert queue.stats['completed'] == 6

    @pytest.mark.asyncio
    async def test_failed_job_is_retried(self):
        queue = JobQueue(retry_limit=2)
        handler = AsyncMock(side_effect=[RuntimeError("boom"), None])

        await queue.consume("job", handler)
        await queue.enqueue("job", {'n': 1})
        await asyncio.wait_for(queue.join("job"), timeout=5)
        await queue.stop()

        assert handler.await_count == 2
        assert queue.stats['retried'] == 1
        assert queue.stats['completed'] == 1

    @pytest.mark.asyncio
    async def test_retry_limit(self):
        queue = JobQueue(retry_limit=3)
        handler = AsyncMock(side_effect=RuntimeError("always"))

        await queue.consume("job", handler)
        await queue.enqueue("job", {})
        await asyncio.wait_for(queue.join("job"), timeout=5)
        await queue.stop()

        assert handler.await_count == 4
        assert queue.stats['failed'] == 1

    @pytest.mark.asyncio
    async def test_enqueue_after_stop_fails(self):
        queue = JobQueue()
        await queue.stop()

        with pytest.raises(JobQueueError):
            await queue.enqueue("job", {})


class TestCronSchedule:
    """定期実行"""

    @pytest.mark.asyncio
    async def test_schedule_fires_on_cron(self):
        queue = JobQueue(clock=lambda: NOW)
        handler = AsyncMock()

        assert await queue.schedule("calendar-sync-check", "*/5 * * * *", {}, dedupe_key="check")
        await queue.consume("calendar-sync-check", handler)

        # 12:01 の次は 12:05
        assert await queue.run_due_schedules(NOW + timedelta(minutes=3)) == 0
        assert await queue.run_due_schedules(NOW + timedelta(minutes=4)) == 1
        await asyncio.wait_for(queue.join("calendar-sync-check"), timeout=5)
        await queue.stop()

        handler.assert_awaited_once_with({})

    @pytest.mark.asyncio
    async def test_dedupe_key(self):
        queue = JobQueue()

        assert await queue.schedule("check", "*/5 * * * *", dedupe_key="calendar-sync-check-schedule")
        assert not await queue.schedule("check", "*/10 * * * *", dedupe_key="calendar-sync-check-schedule")

    @pytest.mark.asyncio
    async def test_invalid_cron(self):
        queue = JobQueue()

        with pytest.raises(ConfigurationError):
            await queue.schedule("check", "every five minutes")
