"""
通知層
同期完了通知の送信
"""

from .sync_notifier import (
    SYNC_COMPLETED_EVENT, LogNotifier, MemoryNotifier, NullNotifier, SyncNotifier, WebhookNotifier,
    create_notifier
)

__all__ = [
    'SYNC_COMPLETED_EVENT', 'SyncNotifier', 'LogNotifier', 'MemoryNotifier', 'NullNotifier',
    'WebhookNotifier', 'create_notifier',
]
