"""
同期エンジン
設定から各コンポーネントを組み立て、ジョブキューへ登録して実行する
"""

import asyncio
import signal
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .config.sync_config import SecretsCodec, SyncConfig
from .core.job_queue import JobQueue
from .core.models import SyncJobPayload, SyncOutcome
from .layers.notification_layer.sync_notifier import SyncNotifier, create_notifier
from .layers.sync_layer.account_sync_worker import AccountSyncWorker
from .layers.sync_layer.event_storage import EventStorage
from .layers.sync_layer.sync_scheduler import (
    SYNC_ACCOUNT_JOB_NAME, SyncScheduler, register_calendar_sync_jobs
)
from .utils.sync_logger import SyncLogger, get_logger


class CalendarSyncEngine:
    """カレンダー同期エンジン"""

    def __init__(self, config: SyncConfig,
                 notifier: Optional[SyncNotifier] = None,
                 logger: Optional[SyncLogger] = None):
        self.config = config
        self.logger = logger or get_logger()

        self.storage = EventStorage(Path(config.storage.database_path))
        self.codec = SecretsCodec(config.security.encryption_key)
        self.queue = JobQueue(retry_limit=config.worker.retry_limit)
        self.notifier = notifier or create_notifier(config.notifications)

        self.worker = AccountSyncWorker(
            self.storage, self.codec, config, notifier=self.notifier, logger=self.logger
        )
        self.scheduler = SyncScheduler(self.storage, self.queue, config, logger=self.logger)
        self._stop_event = asyncio.Event()

    async def initialize(self) -> bool:
        return await self.storage.initialize()

    async def start(self) -> bool:
        """ジョブ登録とキュー起動"""
        if not await self.initialize():
            return False

        registered = await register_calendar_sync_jobs(self.queue, self.scheduler, self.worker, self.config)
        if registered:
            await self.queue.start()
        return registered

    async def stop(self):
        await self.queue.stop()
        await self.storage.cleanup_old_data(self.config.storage.retention_days)
        self.logger.info("Calendar sync engine stopped", health=self.logger.get_health_status())

    def request_stop(self):
        self._stop_event.set()

    async def run_forever(self):
        """SIGINT/SIGTERMを受けるまで実行"""
        if not await self.start():
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except NotImplementedError:
                self.logger.debug("Signal handlers not supported on this platform")

        self.logger.info("Calendar sync engine running")
        try:
            await self._stop_event.wait()
        finally:
            await self.stop()

    async def sync_now(self, account_id: str) -> Optional[SyncOutcome]:
        """指定アカウントを即時同期（確保できない場合はNone）"""
        await self.initialize()
        account = await self.storage.get_account(account_id)
        if account is None:
            return None

        claimed = await self.storage.claim_account_for_sync(
            account.id, datetime.now(timezone.utc), interval_minutes=0,
            lease_minutes=self.config.scheduler.syncing_lease_minutes
        )
        if not claimed:
            self.logger.warning("Account is not eligible for an immediate sync", account_id=account.id,
                                sync_status=account.sync_status.value if account.sync_status else None)
            return None

        payload = SyncJobPayload(account_id=account.id, user_id=account.user_id, provider=account.provider.value)
        return await self.worker.process(payload)

    async def check_now(self) -> int:
        """スケジューラを1回実行し、投入されたジョブの完了まで待つ"""
        await self.initialize()
        await self.queue.consume(SYNC_ACCOUNT_JOB_NAME, self.worker.process,
                                 concurrency=self.config.worker.concurrency)
        try:
            queued = await self.scheduler.run_check()
            await self.queue.join(SYNC_ACCOUNT_JOB_NAME)
        finally:
            await self.queue.stop()
        return queued
