"""
プロバイダーアダプター共通部分
全プロバイダー共通の取得インターフェースとHTTP呼び出し
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

import aiohttp

from ...core.models import Calendar, CalendarInfo, FetchResult, OAuthTokens, ProviderKind, SyncWindow
from .error_handler import (
    ProviderError, ProviderTimeoutError, RateLimitError, SyncTokenInvalidError, TokenRefreshError
)

if TYPE_CHECKING:
    from ...config.sync_config import ProviderConfig

logger = logging.getLogger(__name__)


@dataclass
class OAuthCredentials:
    """OAuthプロバイダー用認証情報"""
    access_token: str


@dataclass
class CalDAVCredentials:
    """CalDAV用認証情報"""
    username: str
    password: str
    server_url: str


class CalendarProvider(ABC):
    """プロバイダーアダプター抽象基底クラス"""

    kind: ProviderKind
    # 削除を自ら報告しない（全期間スナップショットのみ返す）プロバイダーはFalse
    reports_deletions: bool = True

    def __init__(self, config: "ProviderConfig", timeout_seconds: float = 30.0):
        self.config = config
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    async def fetch_events(self, credentials: Any, calendars: List[Calendar],
                           window: SyncWindow) -> FetchResult:
        """ウィンドウ内のイベントと削除されたイベントIDを取得"""

    @abstractmethod
    async def list_calendars(self, credentials: Any) -> List[CalendarInfo]:
        """アカウントで参照できるカレンダー一覧（登録時の選択用）"""

    async def _request(self, method: str, url: str, *,
                       headers: Optional[Dict[str, str]] = None,
                       params: Optional[Dict[str, str]] = None,
                       data: Optional[Dict[str, str]] = None) -> Tuple[int, Any]:
        """HTTPリクエスト送信（レスポンスはJSONとして解釈を試みる）"""
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, headers=headers, params=params, data=data) as response:
                    text = await response.text()
                    try:
                        body = json.loads(text) if text else {}
                    except ValueError:
                        body = text
                    return response.status, body
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"{self.kind.value} request timed out after {self.timeout_seconds}s"
            ) from e
        except aiohttp.ClientError as e:
            raise ProviderError(f"{self.kind.value} request failed: {e}") from e


class OAuthProvider(CalendarProvider):
    """OAuthプロバイダー共通処理（トークン更新・同期トークンによる差分取得）"""

    token_url: str

    @abstractmethod
    def _client_credentials(self) -> Dict[str, str]:
        """トークンエンドポイントに渡すクライアントID/シークレット"""

    def _refresh_extra_params(self) -> Dict[str, str]:
        return {}

    @abstractmethod
    async def list_events(self, access_token: str, calendar: Calendar, window: SyncWindow,
                          sync_token: Optional[str] = None) -> FetchResult:
        """1カレンダー分のイベント取得"""

    async def refresh_tokens(self, refresh_token: str) -> OAuthTokens:
        """リフレッシュトークンで新しいアクセストークンを取得"""
        form = {
            **self._client_credentials(),
            'refresh_token': refresh_token,
            'grant_type': 'refresh_token',
            **self._refresh_extra_params(),
        }
        status, body = await self._request(
            'POST', self.token_url,
            headers={'Content-Type': 'application/x-www-form-urlencoded'},
            data=form,
        )

        if status != 200 or not isinstance(body, dict) or 'access_token' not in body:
            raise TokenRefreshError(f"Failed to refresh token: {body}", status=status)

        return OAuthTokens(
            access_token=body['access_token'],
            # ローテーションされなかった場合は既存のリフレッシュトークンを使い続ける
            refresh_token=body.get('refresh_token') or refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(body.get('expires_in', 3600))),
        )

    async def fetch_events(self, credentials: OAuthCredentials, calendars: List[Calendar],
                           window: SyncWindow) -> FetchResult:
        result = FetchResult()

        for calendar in calendars:
            try:
                calendar_result = await self.list_events(
                    credentials.access_token, calendar, window, sync_token=calendar.sync_token
                )
            except SyncTokenInvalidError:
                if not calendar.sync_token:
                    raise
                logger.info(f"Sync token invalid for calendar {calendar.id}, falling back to full window fetch")
                calendar_result = await self.list_events(credentials.access_token, calendar, window)
                # 新しいトークンが得られなくても失効したトークンは破棄する
                calendar_result.next_sync_tokens.setdefault(calendar.id, None)

            result.merge(calendar_result)

        return result

    def _raise_for_status(self, status: int, body: Any, action: str):
        """エラーレスポンスを例外に変換"""
        if status == 410:
            raise SyncTokenInvalidError("SYNC_TOKEN_INVALID", status=status)
        if status == 429:
            raise RateLimitError(f"Rate limited while trying to {action}", status=status)
        if status >= 400:
            raise ProviderError(f"Failed to {action}: {body}", status=status)


def utc(value: datetime) -> datetime:
    """タイムゾーン付きUTCに正規化（naiveはUTCとみなす）"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
