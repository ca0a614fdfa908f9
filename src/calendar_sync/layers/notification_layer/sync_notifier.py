"""
同期完了通知
publish(user_id, event_name, payload) は投げっぱなし（失敗しても同期は失敗させない）
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import aiohttp

if TYPE_CHECKING:
    from ...config.sync_config import NotificationConfig

logger = logging.getLogger(__name__)

SYNC_COMPLETED_EVENT = "calendar:synced"


class SyncNotifier(ABC):
    """通知シンク基底クラス"""

    def __init__(self, name: str):
        self.name = name
        self.published_count = 0
        self.failed_count = 0

    async def publish(self, user_id: str, event_name: str, payload: Dict[str, Any]) -> bool:
        """通知送信（例外は記録のみで呼び出し元へ伝播させない）"""
        try:
            await self._deliver(user_id, event_name, payload)
            self.published_count += 1
            return True

        except Exception as e:
            self.failed_count += 1
            logger.warning(f"Notification '{event_name}' via {self.name} failed for user {user_id}: {e}")
            return False

    @abstractmethod
    async def _deliver(self, user_id: str, event_name: str, payload: Dict[str, Any]):
        """実際の送信処理"""


class LogNotifier(SyncNotifier):
    """ログ出力のみ（Webhook未設定時の既定）"""

    def __init__(self):
        super().__init__("log")

    async def _deliver(self, user_id: str, event_name: str, payload: Dict[str, Any]):
        logger.info(f"[{event_name}] user={user_id} payload={payload}")


@dataclass
class PublishedMessage:
    user_id: str
    event_name: str
    payload: Dict[str, Any]
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MemoryNotifier(SyncNotifier):
    """送信内容をメモリに保持（CLIの手動同期・テスト用）"""

    def __init__(self):
        super().__init__("memory")
        self.messages: List[PublishedMessage] = []

    async def _deliver(self, user_id: str, event_name: str, payload: Dict[str, Any]):
        self.messages.append(PublishedMessage(user_id, event_name, dict(payload)))


class WebhookNotifier(SyncNotifier):
    """Webhook（JSON POST）通知"""

    def __init__(self, webhook_url: str, timeout_seconds: float = 10.0):
        super().__init__("webhook")
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds

    async def _deliver(self, user_id: str, event_name: str, payload: Dict[str, Any]):
        body = {
            "userId": user_id,
            "event": event_name,
            "payload": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.webhook_url, json=body) as response:
                if response.status >= 400:
                    response_text = await response.text()
                    raise RuntimeError(f"Webhook returned {response.status}: {response_text[:200]}")


class NullNotifier(SyncNotifier):
    """通知無効時"""

    def __init__(self):
        super().__init__("disabled")

    async def _deliver(self, user_id: str, event_name: str, payload: Dict[str, Any]):
        return None


def create_notifier(config: Optional["NotificationConfig"] = None) -> SyncNotifier:
    """設定から通知シンクを作成"""
    if config is None:
        return LogNotifier()
    if not config.enabled:
        return NullNotifier()
    if config.webhook_url:
        return WebhookNotifier(config.webhook_url, config.timeout_seconds)
    return LogNotifier()
