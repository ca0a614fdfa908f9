"""
アカウント同期ワーカー
1アカウント分の同期（トークン更新→取得→リコンシリエーション→ステータス更新→通知）
"""

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Union

from ...config.sync_config import SecretsCodec, SyncConfig
from ...core.models import (
    AccountSyncStatus, Calendar, CalendarAccount, FetchResult, ProviderKind, SyncJobPayload,
    SyncOutcome, SyncWindow
)
from ...utils.sync_logger import SyncLogger, get_logger
from ..data_acquisition.base_provider import (
    CalDAVCredentials, CalendarProvider, OAuthCredentials, OAuthProvider
)
from ..data_acquisition.error_handler import ConfigurationError, CredentialError, ErrorHandler
from ..data_acquisition.provider_registry import create_provider
from ..data_acquisition.token_manager import TokenRefreshManager
from ..notification_layer.sync_notifier import SYNC_COMPLETED_EVENT, SyncNotifier, create_notifier
from .event_storage import EventStorage
from .reconciler import ReconciliationEngine


class AccountSyncWorker:
    """アカウント同期ワーカー

    同期中の例外はすべてこの境界で捕捉し、アカウントの error 状態として記録する。
    ジョブキューへは再送出しないため、回復は次回のスケジューラ実行に任せる。
    """

    def __init__(self,
                 storage: EventStorage,
                 codec: SecretsCodec,
                 config: Optional[SyncConfig] = None,
                 notifier: Optional[SyncNotifier] = None,
                 providers: Optional[Dict[ProviderKind, CalendarProvider]] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 logger: Optional[SyncLogger] = None):
        self.storage = storage
        self.codec = codec
        self.config = config or SyncConfig()
        self.notifier = notifier or create_notifier(self.config.notifications)
        self.providers: Dict[ProviderKind, CalendarProvider] = dict(providers or {})
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logger or get_logger()

        self.reconciler = ReconciliationEngine(storage)
        self.token_manager = TokenRefreshManager(
            storage, codec,
            margin_seconds=self.config.worker.token_refresh_margin_seconds,
            clock=self.clock
        )
        self.error_handler = ErrorHandler()

    def get_provider(self, kind: ProviderKind) -> CalendarProvider:
        """プロバイダーアダプター取得（未登録なら設定から作成）"""
        if kind not in self.providers:
            self.providers[kind] = create_provider(
                kind, self.config.providers, timeout_seconds=self.config.worker.provider_timeout_seconds
            )
        return self.providers[kind]

    async def process(self, payload: Union[SyncJobPayload, Dict[str, str]]) -> Optional[SyncOutcome]:
        """ジョブハンドラ（例外を送出しない）"""
        if isinstance(payload, dict):
            try:
                payload = SyncJobPayload.from_dict(payload)
            except KeyError as e:
                self.logger.error("Invalid sync job payload", error=e, operation="account_sync")
                return None

        operation = self.logger.log_operation_start(
            "account_sync", account_id=payload.account_id, provider=payload.provider
        )

        # アカウントIDが分かった時点以降の例外はすべてerror状態として記録する
        try:
            account = await self.storage.get_account(payload.account_id)
            if account is None:
                self.logger.info("Account no longer exists, skipping sync", account_id=payload.account_id)
                return None

            if account.provider.value != payload.provider:
                self.logger.warning(
                    "Job provider does not match stored account, using stored provider",
                    account_id=account.id, job_provider=payload.provider, provider=account.provider.value
                )

            if not account.is_active:
                await self.storage.mark_sync_idle(account.id, self.clock())
                self.logger.info("Account inactive, skipping sync", account_id=account.id)
                return SyncOutcome(account_id=account.id, status=AccountSyncStatus.IDLE)

            calendars = await self.storage.list_calendars(account.id)
            if not calendars:
                now = self.clock()
                await self.storage.mark_sync_idle(account.id, now)
                self.logger.info("No calendars to sync", account_id=account.id)
                return SyncOutcome(account_id=account.id, status=AccountSyncStatus.IDLE, synced_at=now)

            outcome = await self._sync(account, calendars)

        except Exception as e:
            return await self._handle_failure(payload.account_id, operation, e)

        self.logger.log_operation_end(
            operation, success=True,
            events_upserted=outcome.events_upserted,
            events_deleted=outcome.events_deleted,
            calendars=len(calendars)
        )
        if self.logger.metrics:
            self.logger.metrics.record_event("events_upserted", outcome.events_upserted)
            self.logger.metrics.record_event("events_deleted", outcome.events_deleted)

        await self.storage.log_sync(outcome)
        await self.notifier.publish(account.user_id, SYNC_COMPLETED_EVENT, {
            'accountId': account.id,
            'eventsUpserted': outcome.events_upserted,
            'eventsDeleted': outcome.events_deleted,
        })
        return outcome

    async def _sync(self, account: CalendarAccount, calendars: List[Calendar]) -> SyncOutcome:
        """同期本体（手順3〜7）"""
        window = SyncWindow.around(
            self.clock(),
            days_past=self.config.worker.days_past,
            days_future=self.config.worker.days_future
        )

        provider = self.get_provider(account.provider)
        credentials = await self._resolve_credentials(account, provider)
        fetched = await provider.fetch_events(credentials, calendars, window)

        deleted_ids = list(fetched.deleted_external_ids)
        if not provider.reports_deletions:
            deleted_ids.extend(await self._diff_deleted_ids(calendars, fetched, window))

        result = await self.reconciler.reconcile(
            account.user_id, fetched.events, deleted_ids,
            known_calendar_ids=[calendar.id for calendar in calendars],
            now=self.clock()
        )

        # 同期トークンは反映が成功した後にのみ進める
        account_sync_token = None
        for token in fetched.next_sync_tokens.values():
            if token:
                account_sync_token = token

        synced_at = self.clock()
        await self.storage.mark_sync_succeeded(
            account.id, synced_at,
            calendar_sync_tokens=fetched.next_sync_tokens,
            account_sync_token=account_sync_token
        )

        return SyncOutcome(
            account_id=account.id,
            status=AccountSyncStatus.IDLE,
            events_upserted=result.upserted,
            events_deleted=result.deleted,
            synced_at=synced_at
        )

    async def _resolve_credentials(self, account: CalendarAccount, provider: CalendarProvider):
        """プロバイダー種別に応じた認証情報の準備"""
        if account.provider.uses_oauth:
            if not isinstance(provider, OAuthProvider):
                raise ConfigurationError(f"Provider {account.provider.value} does not support OAuth")
            access_token = await self.token_manager.get_valid_access_token(account, provider)
            return OAuthCredentials(access_token=access_token)

        if not account.caldav_password_encrypted:
            raise CredentialError(f"Account {account.id} has no stored CalDAV password")

        return CalDAVCredentials(
            username=account.email,
            password=self.codec.decrypt(account.caldav_password_encrypted),
            server_url=account.caldav_url or self.config.providers.icloud_caldav_url
        )

    async def _diff_deleted_ids(self, calendars: List[Calendar], fetched: FetchResult,
                                window: SyncWindow) -> Set[str]:
        """削除を報告しないプロバイダー向け: ウィンドウ内のローカルイベントのうち取得されなかったもの"""
        deleted: Set[str] = set()

        for calendar in calendars:
            fetched_ids = {event.external_id for event in fetched.events if event.calendar_id == calendar.id}
            local_ids = await self.storage.list_external_ids_in_window(calendar.id, window)
            deleted |= local_ids - fetched_ids

        return deleted

    async def _handle_failure(self, account_id: str, operation: dict,
                              error: Exception) -> SyncOutcome:
        error_type = self.error_handler.record(error)
        strategy = self.error_handler.strategy_for(error_type)
        message = ErrorHandler.describe(error)

        try:
            await self.storage.mark_sync_failed(account_id, message, self.clock())
        except Exception as store_error:
            self.logger.critical(
                "Failed to record account sync error",
                account_id=account_id, error_message=str(store_error), operation="account_sync"
            )

        self.logger.log_operation_end(
            operation, success=False,
            error_type=error_type.value,
            error_message=message,
            transient=strategy.transient,
            requires_reconnect=strategy.requires_reconnect
        )

        outcome = SyncOutcome(
            account_id=account_id,
            status=AccountSyncStatus.ERROR,
            error_message=message,
            synced_at=self.clock()
        )
        await self.storage.log_sync(outcome)
        return outcome
