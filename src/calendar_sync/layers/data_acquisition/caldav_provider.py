"""
iCloud (CalDAV) アダプター
同期トークンは使用せず、常にウィンドウ全体を取得する
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple

import caldav
from caldav.lib import error as caldav_error
from icalendar import Calendar as ICalendar

from ...core.models import (
    Calendar, CalendarInfo, EventStatus, ExternalEvent, FetchResult, ProviderKind, SyncWindow
)
from .base_provider import CalDAVCredentials, CalendarProvider, utc
from .error_handler import CredentialError, ProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)

ICLOUD_CALDAV_URL = 'https://caldav.icloud.com'


def _to_utc_datetime(value) -> datetime:
    """icalendarの日付/日時をUTCのdatetimeに変換（dateは0時、naiveはUTC扱い）"""
    if isinstance(value, datetime):
        return utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    raise ValueError(f"Unsupported datetime value: {type(value)}")


def map_caldav_status(status: Optional[str]) -> EventStatus:
    status = (status or '').upper()
    if status == 'TENTATIVE':
        return EventStatus.TENTATIVE
    if status == 'CANCELLED':
        return EventStatus.CANCELLED
    return EventStatus.CONFIRMED


def parse_caldav_event(ical_data: str, calendar_id: str, etag: Optional[str] = None) -> Optional[ExternalEvent]:
    """iCalendarデータから最初のVEVENTをパース"""
    try:
        vcalendar = ICalendar.from_ical(ical_data)
    except ValueError as e:
        logger.warning(f"Failed to parse iCalendar data: {e}")
        return None

    for component in vcalendar.walk('VEVENT'):
        uid = component.get('UID')
        if not uid or component.get('DTSTART') is None:
            return None

        dtstart = component.decoded('DTSTART')
        is_all_day = not isinstance(dtstart, datetime)
        start = _to_utc_datetime(dtstart)

        if component.get('DTEND') is not None:
            end = _to_utc_datetime(component.decoded('DTEND'))
        elif component.get('DURATION') is not None:
            end = start + component.decoded('DURATION')
        else:
            end = start + (timedelta(days=1) if is_all_day else timedelta(hours=1))

        rrule = component.get('RRULE')
        description = component.get('DESCRIPTION')
        location = component.get('LOCATION')

        return ExternalEvent(
            calendar_id=calendar_id,
            external_id=str(uid),
            title=str(component.get('SUMMARY') or '') or '(No title)',
            description=str(description) if description is not None else None,
            location=str(location) if location is not None else None,
            start_time=start,
            end_time=end,
            is_all_day=is_all_day,
            timezone=component.get('DTSTART').params.get('TZID'),
            recurrence_rule=rrule.to_ical().decode() if rrule is not None else None,
            status=map_caldav_status(component.get('STATUS')),
            etag=etag,
        )

    return None


class CalDAVCalendarProvider(CalendarProvider):
    """iCloud CalDAVアダプター"""

    kind = ProviderKind.ICLOUD
    reports_deletions = False

    async def fetch_events(self, credentials: CalDAVCredentials, calendars: List[Calendar],
                           window: SyncWindow) -> FetchResult:
        result = FetchResult()

        for calendar in calendars:
            objects = await self._run(self._search_calendar, credentials, calendar.external_id, window)

            for ical_data, etag in objects:
                event = parse_caldav_event(ical_data, calendar.id, etag)
                if event:
                    result.events.append(event)

            logger.debug(f"Fetched {len(objects)} CalDAV objects for calendar {calendar.id}")

        return result

    async def list_calendars(self, credentials: CalDAVCredentials) -> List[CalendarInfo]:
        return await self._run(self._principal_calendars, credentials)

    async def validate_credentials(self, credentials: CalDAVCredentials) -> bool:
        """接続テスト（アプリ用パスワードの誤りはFalse）"""
        try:
            await self._run(self._connect_principal, credentials)
        except CredentialError as e:
            logger.info(f"CalDAV credential check failed for {credentials.username}: {e}")
            return False
        return True

    async def _run(self, func, *args):
        """ブロッキングなcaldav呼び出しをスレッドで実行し例外を変換"""
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"CalDAV request timed out after {self.timeout_seconds}s"
            ) from e
        except caldav_error.AuthorizationError as e:
            raise CredentialError(
                "Invalid CalDAV credentials. Make sure you are using an app-specific password."
            ) from e
        except caldav_error.DAVError as e:
            raise ProviderError(f"CalDAV request failed: {e}") from e

    def _client(self, credentials: CalDAVCredentials) -> caldav.DAVClient:
        return caldav.DAVClient(
            url=credentials.server_url or ICLOUD_CALDAV_URL,
            username=credentials.username,
            password=credentials.password,
            timeout=self.timeout_seconds,
        )

    def _search_calendar(self, credentials: CalDAVCredentials, calendar_url: str,
                         window: SyncWindow) -> List[Tuple[str, Optional[str]]]:
        """CalDAVの期間検索"""
        with self._client(credentials) as client:
            calendar = client.calendar(url=calendar_url)
            objects = calendar.search(start=window.time_min, end=window.time_max, event=True, expand=False)
            return [(obj.data, (getattr(obj, 'props', None) or {}).get('{DAV:}getetag')) for obj in objects]

    def _principal_calendars(self, credentials: CalDAVCredentials) -> List[CalendarInfo]:
        with self._client(credentials) as client:
            calendars = []
            for calendar in client.principal().calendars():
                url = str(calendar.url)
                calendars.append(CalendarInfo(external_id=url, name=calendar.get_display_name() or url))
            return calendars

    def _connect_principal(self, credentials: CalDAVCredentials):
        with self._client(credentials) as client:
            client.principal()
