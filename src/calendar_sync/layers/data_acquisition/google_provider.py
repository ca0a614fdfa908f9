"""
Google Calendarアダプター
Calendar API v3 のイベント一覧（syncTokenによる差分取得対応）
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ...core.models import (
    Calendar, CalendarInfo, EventStatus, ExternalEvent, FetchResult, OAuthTokens, ProviderKind, SyncWindow
)
from .base_provider import OAuthCredentials, OAuthProvider, utc
from .error_handler import ProviderError, ProviderTimeoutError, TokenRefreshError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = 'https://oauth2.googleapis.com/token'
SCOPES = ['https://www.googleapis.com/auth/calendar.readonly']

RESPONSE_STATUSES = {'accepted', 'declined', 'tentative', 'needsAction'}


def map_event_status(status: Optional[str]) -> EventStatus:
    if status == 'tentative':
        return EventStatus.TENTATIVE
    if status == 'cancelled':
        return EventStatus.CANCELLED
    return EventStatus.CONFIRMED


def _parse_google_datetime(value: str) -> datetime:
    return utc(datetime.fromisoformat(value.replace('Z', '+00:00')))


def parse_google_event(item: Dict[str, Any], calendar_id: str) -> Optional[ExternalEvent]:
    """Google Calendar APIレスポンスをパース"""
    start_info = item.get('start')
    if not item.get('id') or not start_info:
        return None

    end_info = item.get('end') or {}
    is_all_day = 'dateTime' not in start_info

    if is_all_day:
        if not start_info.get('date'):
            return None
        start = datetime.fromisoformat(start_info['date']).replace(tzinfo=timezone.utc)
        end = (datetime.fromisoformat(end_info['date']).replace(tzinfo=timezone.utc)
               if end_info.get('date') else start + timedelta(days=1))
    else:
        start = _parse_google_datetime(start_info['dateTime'])
        end = (_parse_google_datetime(end_info['dateTime'])
               if end_info.get('dateTime') else start + timedelta(hours=1))

    # 参加者のうち自分自身の回答状況
    response_status = None
    for attendee in item.get('attendees') or []:
        if attendee.get('self'):
            candidate = attendee.get('responseStatus')
            response_status = candidate if candidate in RESPONSE_STATUSES else None
            break

    recurrence_rule = None
    for rule in item.get('recurrence') or []:
        if rule.startswith('RRULE:'):
            recurrence_rule = rule[len('RRULE:'):]
            break

    return ExternalEvent(
        calendar_id=calendar_id,
        external_id=item['id'],
        title=item.get('summary') or '(No title)',
        description=item.get('description'),
        location=item.get('location'),
        start_time=start,
        end_time=end,
        is_all_day=is_all_day,
        timezone=start_info.get('timeZone'),
        recurrence_rule=recurrence_rule,
        recurring_event_id=item.get('recurringEventId'),
        status=map_event_status(item.get('status')),
        response_status=response_status,
        html_link=item.get('htmlLink'),
        etag=item.get('etag'),
    )


class GoogleCalendarProvider(OAuthProvider):
    """Google Calendarアダプター（google-api-python-client）"""

    kind = ProviderKind.GOOGLE
    token_url = GOOGLE_TOKEN_URL
    page_size = 250

    def _client_credentials(self) -> Dict[str, str]:
        return {
            'client_id': self.config.require('google_client_id'),
            'client_secret': self.config.require('google_client_secret'),
        }

    def _build_service(self, access_token: str):
        """Calendar APIサービスの作成"""
        return build('calendar', 'v3', credentials=Credentials(token=access_token), cache_discovery=False)

    async def _call(self, func, action: str):
        """同期APIをスレッドで実行しタイムアウトとエラーを変換"""
        try:
            return await asyncio.wait_for(asyncio.to_thread(func), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"google request timed out after {self.timeout_seconds}s"
            ) from e
        except HttpError as e:
            self._raise_for_status(e.resp.status, e.reason, action)
            raise ProviderError(f"Failed to {action}: {e}", status=e.resp.status) from e
        except TransportError as e:
            raise ProviderError(f"google request failed: {e}") from e

    async def refresh_tokens(self, refresh_token: str) -> OAuthTokens:
        """google-authのCredentialsでアクセストークンを更新"""
        client = self._client_credentials()
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.token_url,
            client_id=client['client_id'],
            client_secret=client['client_secret'],
            scopes=SCOPES,
        )

        try:
            await self._call(lambda: credentials.refresh(Request()), 'refresh token')
        except RefreshError as e:
            raise TokenRefreshError(f"Failed to refresh token: {e}") from e

        expires_at = (utc(credentials.expiry) if credentials.expiry
                      else datetime.now(timezone.utc) + timedelta(hours=1))
        return OAuthTokens(
            access_token=credentials.token,
            # ローテーションされなかった場合は既存のリフレッシュトークンを使い続ける
            refresh_token=credentials.refresh_token or refresh_token,
            expires_at=expires_at,
        )

    async def list_events(self, access_token: str, calendar: Calendar, window: SyncWindow,
                          sync_token: Optional[str] = None) -> FetchResult:
        result = FetchResult()
        events_api = self._build_service(access_token).events()
        page_token: Optional[str] = None
        next_sync_token: Optional[str] = None

        while True:
            params: Dict[str, Any] = {
                'calendarId': calendar.external_id,
                'maxResults': self.page_size,
                'singleEvents': True,
                'showDeleted': True,
            }
            if sync_token:
                params['syncToken'] = sync_token
            else:
                # syncTokenとtimeMin/timeMaxは併用できない
                params['timeMin'] = window.time_min.isoformat()
                params['timeMax'] = window.time_max.isoformat()
            if page_token:
                params['pageToken'] = page_token

            body = await self._call(events_api.list(**params).execute, 'list events')

            for item in body.get('items') or []:
                if item.get('status') == 'cancelled':
                    result.deleted_external_ids.append(item['id'])
                    continue
                event = parse_google_event(item, calendar.id)
                if event:
                    result.events.append(event)
                else:
                    logger.warning(f"Skipping unparseable Google event in calendar {calendar.id}")

            next_sync_token = body.get('nextSyncToken') or next_sync_token
            page_token = body.get('nextPageToken')
            if not page_token:
                break

        if next_sync_token:
            result.next_sync_tokens[calendar.id] = next_sync_token

        logger.debug(f"Fetched {len(result.events)} Google events, "
                     f"{len(result.deleted_external_ids)} deleted for calendar {calendar.id}")
        return result

    async def list_calendars(self, credentials: OAuthCredentials) -> List[CalendarInfo]:
        calendar_list_api = self._build_service(credentials.access_token).calendarList()
        calendars: List[CalendarInfo] = []
        page_token: Optional[str] = None

        while True:
            params: Dict[str, Any] = {'maxResults': self.page_size}
            if page_token:
                params['pageToken'] = page_token

            body = await self._call(calendar_list_api.list(**params).execute, 'list calendars')
            for item in body.get('items') or []:
                calendars.append(CalendarInfo(
                    external_id=item['id'],
                    name=item.get('summaryOverride') or item.get('summary') or item['id'],
                    is_primary=bool(item.get('primary')),
                ))

            page_token = body.get('nextPageToken')
            if not page_token:
                return calendars
