"""
CalDAVアダプターのテスト
"""

import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from caldav.lib import error as caldav_error

from calendar_sync.config.sync_config import ProviderConfig
from calendar_sync.core.models import Calendar, EventStatus, SyncWindow
from calendar_sync.layers.data_acquisition.base_provider import CalDAVCredentials
from calendar_sync.layers.data_acquisition.caldav_provider import CalDAVCalendarProvider, parse_caldav_event
from calendar_sync.layers.data_acquisition.error_handler import (
    CredentialError, ProviderError, ProviderTimeoutError
)

WINDOW = SyncWindow.around(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))
CREDENTIALS = CalDAVCredentials("taro@icloud.com", "app-password", "https://caldav.icloud.com")

TIMED_EVENT = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Apple Inc.//iCloud//EN
BEGIN:VEVENT
UID:icloud-1
SUMMARY:歯医者
LOCATION:駅前クリニック
DTSTART;TZID=Asia/Tokyo:20260311T100000
DTEND;TZID=Asia/Tokyo:20260311T110000
RRULE:FREQ=MONTHLY;COUNT=3
STATUS:TENTATIVE
END:VEVENT
END:VCALENDAR
"""

ALL_DAY_EVENT = """BEGIN:VCALENDAR
VERSION:2.0
BEGIN:VEVENT
UID:icloud-2
DTSTART;VALUE=DATE:20260312
DURATION:P2D
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def calendar():
    return Calendar(id="cal-1", account_id="acc-1", user_id="user-1",
                    external_id="https://caldav.icloud.com/123/calendars/home/", name="ホーム")


class TestParseCalDAVEvent:
    """iCalendarのパース"""

    def test_timed_event(self):
        event = parse_caldav_event(TIMED_EVENT, "cal-1", etag='"e1"')

        assert event.external_id == 'icloud-1'
        assert event.title == '歯医者'
        assert event.location == '駅前クリニック'
        assert event.start_time == datetime(2026, 3, 11, 1, 0, tzinfo=timezone.utc)
        assert event.timezone == 'Asia/Tokyo'
        assert event.recurrence_rule == 'FREQ=MONTHLY;COUNT=3'
        assert event.status == EventStatus.TENTATIVE
        assert event.etag == '"e1"'

    def test_all_day_event_with_duration(self):
        event = parse_caldav_event(ALL_DAY_EVENT, "cal-1")

        assert event.is_all_day is True
        assert event.title == '(No title)'
        assert event.end_time - event.start_time == timedelta(days=2)

    def test_invalid_data(self):
        assert parse_caldav_event("not a calendar", "cal-1") is None


class TestFetchEvents:
    """CalDAV検索"""

    @pytest.mark.asyncio
    async def test_fetch_parses_search_results(self, calendar):
        provider = CalDAVCalendarProvider(ProviderConfig())
        client = MagicMock()
        client.__enter__.return_value = client
        found = MagicMock(data=TIMED_EVENT, props={'{DAV:}getetag': '"e1"'})
        client.calendar.return_value.search.return_value = [found]

        with patch('calendar_sync.layers.data_acquisition.caldav_provider.caldav.DAVClient',
                   return_value=client) as dav_client:
            result = await provider.fetch_events(CREDENTIALS, [calendar], WINDOW)

        assert [e.external_id for e in result.events] == ['icloud-1']
        assert result.deleted_external_ids == []
        assert result.next_sync_tokens == {}
        assert dav_client.call_args.kwargs['username'] == 'taro@icloud.com'
        client.calendar.assert_called_once_with(url=calendar.external_id)
        search_kwargs = client.calendar.return_value.search.call_args.kwargs
        assert search_kwargs['start'] == WINDOW.time_min
        assert search_kwargs['event'] is True

    @pytest.mark.asyncio
    async def test_authorization_error_is_credential_error(self, calendar):
        provider = CalDAVCalendarProvider(ProviderConfig())

        with patch('calendar_sync.layers.data_acquisition.caldav_provider.caldav.DAVClient',
                   side_effect=caldav_error.AuthorizationError("401 Unauthorized")):
            with pytest.raises(CredentialError):
                await provider.fetch_events(CREDENTIALS, [calendar], WINDOW)

    @pytest.mark.asyncio
    async def test_hung_server_times_out(self, calendar):
        provider = CalDAVCalendarProvider(ProviderConfig(), timeout_seconds=0.05)

        def slow_search(*args, **kwargs):
            time.sleep(0.5)
            return []

        with patch.object(provider, '_search_calendar', side_effect=slow_search):
            with pytest.raises(ProviderTimeoutError):
                await provider.fetch_events(CREDENTIALS, [calendar], WINDOW)


def mock_client():
    client = MagicMock()
    client.__enter__.return_value = client
    return client


class TestCalendarDiscovery:
    """プリンシパル配下のカレンダー一覧と接続テスト"""

    @pytest.mark.asyncio
    async def test_list_calendars(self):
        provider = CalDAVCalendarProvider(ProviderConfig())
        client = mock_client()
        home = MagicMock(url="https://caldav.icloud.com/123/calendars/home/")
        home.get_display_name.return_value = "ホーム"
        unnamed = MagicMock(url="https://caldav.icloud.com/123/calendars/work/")
        unnamed.get_display_name.return_value = None
        client.principal.return_value.calendars.return_value = [home, unnamed]

        with patch('calendar_sync.layers.data_acquisition.caldav_provider.caldav.DAVClient',
                   return_value=client):
            calendars = await provider.list_calendars(CREDENTIALS)

        assert [(c.external_id, c.name) for c in calendars] == [
            ("https://caldav.icloud.com/123/calendars/home/", "ホーム"),
            ("https://caldav.icloud.com/123/calendars/work/", "https://caldav.icloud.com/123/calendars/work/"),
        ]

    @pytest.mark.asyncio
    async def test_validate_credentials(self):
        provider = CalDAVCalendarProvider(ProviderConfig())
        client = mock_client()

        with patch('calendar_sync.layers.data_acquisition.caldav_provider.caldav.DAVClient',
                   return_value=client):
            assert await provider.validate_credentials(CREDENTIALS) is True
        client.principal.assert_called_once_with()

        client.principal.side_effect = caldav_error.AuthorizationError("401 Unauthorized")
        with patch('calendar_sync.layers.data_acquisition.caldav_provider.caldav.DAVClient',
                   return_value=client):
            assert await provider.validate_credentials(CREDENTIALS) is False

    @pytest.mark.asyncio
    async def test_server_error_is_not_treated_as_bad_password(self):
        provider = CalDAVCalendarProvider(ProviderConfig())
        client = mock_client()
        client.principal.side_effect = caldav_error.DAVError("500 Internal Server Error")

        with patch('calendar_sync.layers.data_acquisition.caldav_provider.caldav.DAVClient',
                   return_value=client):
            with pytest.raises(ProviderError):
                await provider.validate_credentials(CREDENTIALS)
