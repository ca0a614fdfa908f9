"""
同期層
ローカルミラーの保存、リコンシリエーション、アカウント同期とスケジューリング
"""

from .account_sync_worker import AccountSyncWorker
from .event_storage import EventStorage, SyncLog
from .reconciler import ReconciliationEngine, ReconciliationResult
from .sync_scheduler import (
    CHECK_JOB_NAME, SYNC_ACCOUNT_JOB_NAME, SyncScheduler, register_calendar_sync_jobs
)

__all__ = [
    'EventStorage', 'SyncLog', 'ReconciliationEngine', 'ReconciliationResult',
    'AccountSyncWorker', 'SyncScheduler', 'register_calendar_sync_jobs',
    'CHECK_JOB_NAME', 'SYNC_ACCOUNT_JOB_NAME',
]
