"""データモデル定義"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional


class ProviderKind(Enum):
    """外部カレンダープロバイダー種別"""
    GOOGLE = "google"
    OUTLOOK = "outlook"
    ICLOUD = "icloud"

    @property
    def uses_oauth(self) -> bool:
        return self is not ProviderKind.ICLOUD


class AccountSyncStatus(Enum):
    """アカウント同期ステータス（同期の排他制御にも使用）"""
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class EventStatus(Enum):
    """イベントステータス"""
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


@dataclass
class CalendarAccount:
    """外部カレンダーアカウント"""
    id: str
    user_id: str
    provider: ProviderKind
    email: str
    access_token_encrypted: Optional[str] = None
    refresh_token_encrypted: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    caldav_password_encrypted: Optional[str] = None
    caldav_url: Optional[str] = None
    sync_token: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    sync_status: Optional[AccountSyncStatus] = AccountSyncStatus.IDLE
    sync_error: Optional[str] = None
    consecutive_failures: int = 0
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Calendar:
    """アカウント配下のカレンダー"""
    id: str
    account_id: str
    user_id: str
    external_id: str
    name: str
    sync_token: Optional[str] = None


@dataclass
class CalendarInfo:
    """プロバイダー側で見つかったカレンダー（登録前）"""
    external_id: str
    name: str
    is_primary: bool = False


@dataclass
class SyncWindow:
    """同期対象期間"""
    time_min: datetime
    time_max: datetime

    @classmethod
    def around(cls, now: datetime, days_past: int = 7, days_future: int = 30) -> "SyncWindow":
        """nowを基準に日単位で丸めたウィンドウを作成"""
        start = (now - timedelta(days=days_past)).replace(hour=0, minute=0, second=0, microsecond=0)
        end = (now + timedelta(days=days_future)).replace(hour=23, minute=59, second=59, microsecond=999999)
        return cls(time_min=start, time_max=end)

    def contains(self, moment: datetime) -> bool:
        return self.time_min <= moment <= self.time_max


@dataclass
class ExternalEvent:
    """プロバイダーから取得したイベント"""
    calendar_id: str
    external_id: str
    title: str
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None
    timezone: Optional[str] = None
    recurrence_rule: Optional[str] = None
    recurring_event_id: Optional[str] = None
    status: EventStatus = EventStatus.CONFIRMED
    response_status: Optional[str] = None
    html_link: Optional[str] = None
    etag: Optional[str] = None

    def calculate_hash(self) -> str:
        """イベント内容のハッシュ計算"""
        content = "|".join(str(value) for value in (
            self.title, self.start_time.isoformat(), self.end_time.isoformat(),
            self.is_all_day, self.description, self.location, self.timezone,
            self.recurrence_rule, self.recurring_event_id, self.status.value,
            self.response_status, self.html_link, self.etag,
        ))
        return hashlib.md5(content.encode()).hexdigest()


@dataclass
class StoredEvent:
    """ローカルに保存されたイベント"""
    id: str
    calendar_id: str
    user_id: str
    external_id: str
    title: str
    start_time: datetime
    end_time: datetime
    is_all_day: bool
    description: Optional[str]
    location: Optional[str]
    timezone: Optional[str]
    recurrence_rule: Optional[str]
    recurring_event_id: Optional[str]
    status: EventStatus
    response_status: Optional[str]
    html_link: Optional[str]
    etag: Optional[str]
    content_hash: str
    created_at: datetime
    updated_at: datetime


@dataclass
class FetchResult:
    """プロバイダー取得結果"""
    events: List[ExternalEvent] = field(default_factory=list)
    deleted_external_ids: List[str] = field(default_factory=list)
    next_sync_tokens: Dict[str, Optional[str]] = field(default_factory=dict)

    def merge(self, other: "FetchResult"):
        self.events.extend(other.events)
        self.deleted_external_ids.extend(other.deleted_external_ids)
        self.next_sync_tokens.update(other.next_sync_tokens)


@dataclass
class OAuthTokens:
    """OAuthトークン"""
    access_token: str
    refresh_token: str
    expires_at: datetime


@dataclass
class SyncJobPayload:
    """アカウント同期ジョブのペイロード"""
    account_id: str
    user_id: str
    provider: str

    def to_dict(self) -> Dict[str, str]:
        return {'accountId': self.account_id, 'userId': self.user_id, 'provider': self.provider}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "SyncJobPayload":
        return cls(account_id=data['accountId'], user_id=data['userId'], provider=data['provider'])


@dataclass
class SyncOutcome:
    """アカウント同期の結果"""
    account_id: str
    status: AccountSyncStatus
    events_upserted: int = 0
    events_deleted: int = 0
    error_message: Optional[str] = None
    synced_at: Optional[datetime] = None

    def summary(self) -> str:
        return (f"Sync {self.status.value}: "
                f"{self.events_upserted} upserted, "
                f"{self.events_deleted} deleted")
