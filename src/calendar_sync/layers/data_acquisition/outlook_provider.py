"""
Outlook (Microsoft Graph) アダプター
calendarView/delta による期間取得、deltaLinkを同期トークンとして保存
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from bs4 import BeautifulSoup

from ...core.models import (
    Calendar, CalendarInfo, EventStatus, ExternalEvent, FetchResult, ProviderKind, SyncWindow
)
from .base_provider import OAuthCredentials, OAuthProvider, utc
from .error_handler import SyncTokenInvalidError

logger = logging.getLogger(__name__)

MICROSOFT_TOKEN_URL = 'https://login.microsoftonline.com/common/oauth2/v2.0/token'
GRAPH_API = 'https://graph.microsoft.com/v1.0'
SCOPES = 'Calendars.Read Calendars.ReadWrite offline_access'

_FRACTION_PATTERN = re.compile(r'\.(\d{6})\d+')

FREQUENCIES = {
    'daily': 'DAILY',
    'weekly': 'WEEKLY',
    'absoluteMonthly': 'MONTHLY',
    'relativeMonthly': 'MONTHLY',
    'absoluteYearly': 'YEARLY',
    'relativeYearly': 'YEARLY',
}

RESPONSE_STATUSES = {
    'accepted': 'accepted',
    'declined': 'declined',
    'tentativelyAccepted': 'tentative',
    'notResponded': 'needsAction',
    'none': 'needsAction',
}


def _parse_graph_datetime(value: str) -> datetime:
    """Graphの日時（小数秒7桁、タイムゾーン無し=UTC）をパース"""
    value = _FRACTION_PATTERN.sub(r'.\1', value.replace('Z', '+00:00'))
    return utc(datetime.fromisoformat(value))


def map_show_as(show_as: Optional[str]) -> EventStatus:
    if show_as in ('tentative', 'free'):
        return EventStatus.TENTATIVE
    return EventStatus.CONFIRMED


def build_rrule(recurrence: Optional[Dict[str, Any]]) -> Optional[str]:
    """Graphの繰り返しパターンをRRULE文字列に変換"""
    pattern = (recurrence or {}).get('pattern')
    if not pattern or pattern.get('type') not in FREQUENCIES:
        return None

    parts: List[str] = [f"FREQ={FREQUENCIES[pattern['type']]}"]

    if (pattern.get('interval') or 1) > 1:
        parts.append(f"INTERVAL={pattern['interval']}")
    if pattern.get('daysOfWeek'):
        parts.append("BYDAY=" + ",".join(day[:2].upper() for day in pattern['daysOfWeek']))
    if pattern.get('dayOfMonth'):
        parts.append(f"BYMONTHDAY={pattern['dayOfMonth']}")
    if pattern.get('month'):
        parts.append(f"BYMONTH={pattern['month']}")

    range_info = recurrence.get('range') or {}
    if range_info.get('type') == 'endDate' and range_info.get('endDate'):
        parts.append(f"UNTIL={range_info['endDate'].replace('-', '')}T235959Z")
    elif range_info.get('type') == 'numbered' and range_info.get('numberOfOccurrences'):
        parts.append(f"COUNT={range_info['numberOfOccurrences']}")

    return ";".join(parts)


def parse_outlook_event(item: Dict[str, Any], calendar_id: str) -> Optional[ExternalEvent]:
    """Graphイベントをパース"""
    start_info = item.get('start') or {}
    if not item.get('id') or not start_info.get('dateTime'):
        return None

    end_info = item.get('end') or {}
    is_all_day = bool(item.get('isAllDay'))
    start = _parse_graph_datetime(start_info['dateTime'])
    if end_info.get('dateTime'):
        end = _parse_graph_datetime(end_info['dateTime'])
    else:
        end = start + (timedelta(days=1) if is_all_day else timedelta(hours=1))

    description = None
    body = item.get('body') or {}
    if body.get('content'):
        if body.get('contentType') == 'text':
            description = body['content']
        else:
            description = BeautifulSoup(body['content'], 'html.parser').get_text().strip() or None

    return ExternalEvent(
        calendar_id=calendar_id,
        external_id=item['id'],
        title=item.get('subject') or '(No title)',
        description=description,
        location=(item.get('location') or {}).get('displayName') or None,
        start_time=start,
        end_time=end,
        is_all_day=is_all_day,
        timezone=start_info.get('timeZone'),
        recurrence_rule=build_rrule(item.get('recurrence')),
        recurring_event_id=item.get('seriesMasterId'),
        status=map_show_as(item.get('showAs')),
        response_status=RESPONSE_STATUSES.get((item.get('responseStatus') or {}).get('response')),
        html_link=item.get('webLink'),
        etag=item.get('changeKey'),
    )


class OutlookCalendarProvider(OAuthProvider):
    """Outlookアダプター"""

    kind = ProviderKind.OUTLOOK
    token_url = MICROSOFT_TOKEN_URL

    def _client_credentials(self) -> Dict[str, str]:
        return {
            'client_id': self.config.require('microsoft_client_id'),
            'client_secret': self.config.require('microsoft_client_secret'),
        }

    def _refresh_extra_params(self) -> Dict[str, str]:
        return {'scope': SCOPES}

    async def list_events(self, access_token: str, calendar: Calendar, window: SyncWindow,
                          sync_token: Optional[str] = None) -> FetchResult:
        result = FetchResult()
        headers = {
            'Authorization': f'Bearer {access_token}',
            'Prefer': 'odata.maxpagesize=250, outlook.timezone="UTC"',
        }

        params: Optional[Dict[str, str]]
        if sync_token:
            # 同期トークンは前回のdeltaLink（クエリ込みのURL）
            url = sync_token
            params = None
        else:
            url = f"{GRAPH_API}/me/calendars/{quote(calendar.external_id, safe='')}/calendarView/delta"
            params = {
                'startDateTime': window.time_min.isoformat(),
                'endDateTime': window.time_max.isoformat(),
            }

        delta_link: Optional[str] = None
        while True:
            status, body = await self._request('GET', url, headers=headers, params=params)
            if sync_token and status == 400:
                raise SyncTokenInvalidError("SYNC_TOKEN_INVALID", status=status)
            self._raise_for_status(status, body, 'list events')

            for item in body.get('value') or []:
                if '@removed' in item:
                    result.deleted_external_ids.append(item['id'])
                    continue
                event = parse_outlook_event(item, calendar.id)
                if event:
                    result.events.append(event)
                else:
                    logger.warning(f"Skipping unparseable Outlook event in calendar {calendar.id}")

            delta_link = body.get('@odata.deltaLink') or delta_link
            next_link = body.get('@odata.nextLink')
            if not next_link:
                break
            url, params = next_link, None

        if delta_link:
            result.next_sync_tokens[calendar.id] = delta_link

        logger.debug(f"Fetched {len(result.events)} Outlook events, "
                     f"{len(result.deleted_external_ids)} deleted for calendar {calendar.id}")
        return result

    async def list_calendars(self, credentials: OAuthCredentials) -> List[CalendarInfo]:
        headers = {'Authorization': f'Bearer {credentials.access_token}'}
        url = f"{GRAPH_API}/me/calendars"
        params: Optional[Dict[str, str]] = {'$select': 'id,name,isDefaultCalendar'}
        calendars: List[CalendarInfo] = []

        while True:
            status, body = await self._request('GET', url, headers=headers, params=params)
            self._raise_for_status(status, body, 'list calendars')

            for item in body.get('value') or []:
                calendars.append(CalendarInfo(
                    external_id=item['id'],
                    name=item.get('name') or item['id'],
                    is_primary=bool(item.get('isDefaultCalendar')),
                ))

            next_link = body.get('@odata.nextLink')
            if not next_link:
                return calendars
            url, params = next_link, None
