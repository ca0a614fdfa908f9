"""
ジョブキュー（プロセス内・asyncio）
cronスケジュール、単発ジョブの投入、並列数を制限した消費を提供する
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from croniter import croniter

from ..layers.data_acquisition.error_handler import CalendarSyncError, ConfigurationError

logger = logging.getLogger(__name__)

JobHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class JobQueueError(CalendarSyncError):
    """ジョブ投入の失敗"""


@dataclass
class Job:
    """キュー上のジョブ"""
    name: str
    payload: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    attempts: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CronSchedule:
    """定期実行の登録内容"""
    job_name: str
    cron_expression: str
    payload: Dict[str, Any]
    timezone: str
    dedupe_key: str
    next_run_at: datetime

    def compute_next(self, after: datetime) -> datetime:
        anchor = after.astimezone(ZoneInfo(self.timezone))
        return croniter(self.cron_expression, anchor).get_next(datetime).astimezone(timezone.utc)


class JobQueue:
    """最低1回配信のインメモリジョブキュー"""

    def __init__(self, retry_limit: int = 3, poll_interval: float = 1.0,
                 clock: Optional[Callable[[], datetime]] = None):
        self.retry_limit = retry_limit
        self.poll_interval = poll_interval
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self._queues: Dict[str, asyncio.Queue] = {}
        self._schedules: Dict[str, CronSchedule] = {}
        self._workers: List[asyncio.Task] = []
        self._scheduler_task: Optional[asyncio.Task] = None
        self._closed = False

        self.stats = {'enqueued': 0, 'completed': 0, 'retried': 0, 'failed': 0}

    def _queue(self, job_name: str) -> asyncio.Queue:
        if job_name not in self._queues:
            self._queues[job_name] = asyncio.Queue()
        return self._queues[job_name]

    async def schedule(self, job_name: str, cron_expression: str, payload: Optional[Dict[str, Any]] = None,
                       timezone: str = "UTC", dedupe_key: Optional[str] = None) -> bool:
        """定期ジョブ登録（同じdedupe_keyは再登録しない）"""
        if not croniter.is_valid(cron_expression):
            raise ConfigurationError(f"Invalid cron expression: {cron_expression}")

        key = dedupe_key or job_name
        if key in self._schedules:
            logger.debug(f"Schedule already registered: {key}")
            return False

        cron_schedule = CronSchedule(
            job_name=job_name,
            cron_expression=cron_expression,
            payload=dict(payload or {}),
            timezone=timezone,
            dedupe_key=key,
            next_run_at=self.clock(),
        )
        cron_schedule.next_run_at = cron_schedule.compute_next(self.clock())
        self._schedules[key] = cron_schedule

        logger.info(f"Scheduled {job_name} ({cron_expression} {timezone}), next run at {cron_schedule.next_run_at}")
        return True

    async def enqueue(self, job_name: str, payload: Dict[str, Any]) -> str:
        """単発ジョブ投入"""
        if self._closed:
            raise JobQueueError(f"Job queue is stopped, cannot enqueue {job_name}")

        job = Job(name=job_name, payload=dict(payload))
        await self._queue(job_name).put(job)
        self.stats['enqueued'] += 1
        logger.debug(f"Enqueued job {job.id} ({job_name})")
        return job.id

    async def consume(self, job_name: str, handler: JobHandler, concurrency: int = 1):
        """ワーカー登録（concurrency個のタスクで並列消費）"""
        queue = self._queue(job_name)
        for index in range(max(1, concurrency)):
            task = asyncio.create_task(self._worker_loop(job_name, queue, handler), name=f"{job_name}-{index}")
            self._workers.append(task)
        logger.info(f"Registered {concurrency} workers for {job_name}")

    async def _worker_loop(self, job_name: str, queue: asyncio.Queue, handler: JobHandler):
        while True:
            job: Job = await queue.get()
            try:
                job.attempts += 1
                await handler(job.payload)
                self.stats['completed'] += 1

            except asyncio.CancelledError:
                raise

            except Exception as e:
                if job.attempts <= self.retry_limit and not self._closed:
                    self.stats['retried'] += 1
                    logger.warning(f"Job {job.id} ({job_name}) failed on attempt {job.attempts}, retrying: {e}")
                    queue.put_nowait(job)
                else:
                    self.stats['failed'] += 1
                    logger.error(f"Job {job.id} ({job_name}) failed after {job.attempts} attempts: {e}")

            finally:
                queue.task_done()

    async def run_due_schedules(self, now: Optional[datetime] = None) -> int:
        """期限を迎えた定期ジョブを投入"""
        now = now or self.clock()
        fired = 0

        for cron_schedule in self._schedules.values():
            if cron_schedule.next_run_at <= now:
                await self.enqueue(cron_schedule.job_name, cron_schedule.payload)
                cron_schedule.next_run_at = cron_schedule.compute_next(now)
                fired += 1

        return fired

    async def _scheduler_loop(self):
        while True:
            try:
                await self.run_due_schedules()
            except JobQueueError as e:
                logger.error(f"Failed to enqueue scheduled job: {e}")
            await asyncio.sleep(self.poll_interval)

    async def start(self):
        self._closed = False
        if self._scheduler_task is None:
            self._scheduler_task = asyncio.create_task(self._scheduler_loop(), name="job-queue-scheduler")
        logger.info("Job queue started")

    async def join(self, job_name: str):
        """指定ジョブのキューが空になるまで待機"""
        await self._queue(job_name).join()

    async def stop(self):
        """停止（実行中のワーカーはキャンセル）"""
        self._closed = True
        tasks = list(self._workers)
        if self._scheduler_task:
            tasks.append(self._scheduler_task)

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._workers.clear()
        self._scheduler_task = None
        logger.info(f"Job queue stopped: {self.stats}")
