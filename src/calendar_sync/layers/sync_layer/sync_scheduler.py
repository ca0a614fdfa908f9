"""
同期スケジューラ
同期期限を過ぎたアカウントを選択し、syncingへ遷移させてから同期ジョブを投入する
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from ...config.sync_config import SyncConfig
from ...core.job_queue import JobQueue
from ...core.models import SyncJobPayload
from ...utils.sync_logger import SyncLogger, get_logger
from ..data_acquisition.error_handler import ErrorHandler
from .account_sync_worker import AccountSyncWorker
from .event_storage import EventStorage

CHECK_JOB_NAME = "calendar-sync-check"
SYNC_ACCOUNT_JOB_NAME = "sync-calendar-account"


class SyncScheduler:
    """同期スケジューラ"""

    def __init__(self, storage: EventStorage, queue: JobQueue,
                 config: Optional[SyncConfig] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 logger: Optional[SyncLogger] = None):
        self.storage = storage
        self.queue = queue
        self.config = config or SyncConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logger or get_logger()

    async def run_check(self) -> int:
        """1回分のチェック（戻り値: 投入したジョブ数）"""
        scheduler_config = self.config.scheduler
        now = self.clock()
        operation = self.logger.log_operation_start("sync_check")

        candidates = await self.storage.find_accounts_due(
            now,
            interval_minutes=scheduler_config.sync_interval_minutes,
            max_failures=scheduler_config.max_consecutive_failures,
            lease_minutes=scheduler_config.syncing_lease_minutes
        )

        queued = 0
        for account in candidates:
            # 選択と遷移は条件付きUPDATE1回で行う（重複実行時は片方のみ成功）
            claimed = await self.storage.claim_account_for_sync(
                account.id, now,
                interval_minutes=scheduler_config.sync_interval_minutes,
                max_failures=scheduler_config.max_consecutive_failures,
                lease_minutes=scheduler_config.syncing_lease_minutes
            )
            if not claimed:
                self.logger.debug("Account already claimed, skipping", account_id=account.id)
                continue

            payload = SyncJobPayload(
                account_id=account.id, user_id=account.user_id, provider=account.provider.value
            )
            try:
                await self.queue.enqueue(SYNC_ACCOUNT_JOB_NAME, payload.to_dict())
                queued += 1

            except Exception as e:
                # syncingのまま放置しない
                message = f"Failed to queue sync: {ErrorHandler.describe(e)}"
                self.logger.error("Failed to queue sync job", error=e, account_id=account.id,
                                  operation="sync_check")
                await self.storage.mark_sync_failed(account.id, message, now)

        self.logger.log_operation_end(operation, success=True, candidates=len(candidates), queued=queued)
        return queued

    async def handle_check_job(self, payload=None) -> int:
        """定期ジョブのハンドラ"""
        return await self.run_check()


async def register_calendar_sync_jobs(queue: JobQueue, scheduler: SyncScheduler,
                                      worker: AccountSyncWorker,
                                      config: Optional[SyncConfig] = None) -> bool:
    """定期チェックと同期ワーカーをジョブキューへ登録"""
    config = config or scheduler.config
    logger = scheduler.logger

    if not config.enabled:
        logger.info("Calendar sync disabled, jobs not registered")
        return False

    await queue.schedule(
        CHECK_JOB_NAME,
        config.scheduler.check_cron,
        {},
        timezone=config.scheduler.timezone,
        dedupe_key=config.scheduler.dedupe_key
    )
    await queue.consume(CHECK_JOB_NAME, scheduler.handle_check_job, concurrency=1)
    await queue.consume(SYNC_ACCOUNT_JOB_NAME, worker.process, concurrency=config.worker.concurrency)

    logger.info(
        "Calendar sync jobs registered",
        check_cron=config.scheduler.check_cron,
        concurrency=config.worker.concurrency
    )
    return True
