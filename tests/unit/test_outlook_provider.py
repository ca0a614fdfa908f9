"""
Outlookアダプターのテスト
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from calendar_sync.config.sync_config import ProviderConfig
from calendar_sync.core.models import Calendar, EventStatus, SyncWindow
from calendar_sync.layers.data_acquisition.base_provider import OAuthCredentials
from calendar_sync.layers.data_acquisition.error_handler import ProviderError, SyncTokenInvalidError
from calendar_sync.layers.data_acquisition.outlook_provider import (
    OutlookCalendarProvider, build_rrule, parse_outlook_event
)

WINDOW = SyncWindow.around(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def calendar():
    return Calendar(id="cal-1", account_id="acc-1", user_id="user-1", external_id="AAMkAD==", name="予定表")


@pytest.fixture
def provider():
    return OutlookCalendarProvider(ProviderConfig(microsoft_client_id="id", microsoft_client_secret="secret"))


class TestParseOutlookEvent:
    """Graphイベントのパース"""

    def test_event_fields(self):
        event = parse_outlook_event({
            'id': 'outlook-1',
            'subject': '週次レビュー',
            'body': {'contentType': 'html', 'content': '<p>議題<b>あり</b></p>'},
            'start': {'dateTime': '2026-03-11T09:00:00.0000000', 'timeZone': 'UTC'},
            'end': {'dateTime': '2026-03-11T10:00:00.0000000', 'timeZone': 'UTC'},
            'location': {'displayName': '会議室A'},
            'showAs': 'tentative',
            'responseStatus': {'response': 'tentativelyAccepted'},
            'seriesMasterId': 'series-1',
            'changeKey': 'ck-1',
        }, "cal-1")

        assert event.start_time == datetime(2026, 3, 11, 9, 0, tzinfo=timezone.utc)
        assert event.description == '議題あり'
        assert event.location == '会議室A'
        assert event.status == EventStatus.TENTATIVE
        assert event.response_status == 'tentative'
        assert event.recurring_event_id == 'series-1'
        assert event.etag == 'ck-1'

    def test_build_rrule(self):
        rule = build_rrule({
            'pattern': {'type': 'weekly', 'interval': 2, 'daysOfWeek': ['monday', 'thursday']},
            'range': {'type': 'endDate', 'endDate': '2026-06-30'},
        })
        assert rule == 'FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,TH;UNTIL=20260630T235959Z'

        assert build_rrule({
            'pattern': {'type': 'absoluteMonthly', 'interval': 1, 'dayOfMonth': 15},
            'range': {'type': 'numbered', 'numberOfOccurrences': 6},
        }) == 'FREQ=MONTHLY;BYMONTHDAY=15;COUNT=6'

        assert build_rrule(None) is None


class TestDeltaQuery:
    """calendarView/delta による取得"""

    @pytest.mark.asyncio
    async def test_follows_next_link_and_stores_delta_link(self, provider, calendar):
        provider._request = AsyncMock(side_effect=[
            (200, {
                'value': [{'id': 'o-1', 'subject': 'A', 'start': {'dateTime': '2026-03-11T09:00:00'}}],
                '@odata.nextLink': 'https://graph.microsoft.com/v1.0/next-page',
            }),
            (200, {
                'value': [{'id': 'o-2', '@removed': {'reason': 'deleted'}}],
                '@odata.deltaLink': 'https://graph.microsoft.com/v1.0/delta?token=abc',
            }),
        ])

        result = await provider.list_events("token", calendar, WINDOW)

        assert [e.external_id for e in result.events] == ['o-1']
        assert result.deleted_external_ids == ['o-2']
        assert result.next_sync_tokens == {'cal-1': 'https://graph.microsoft.com/v1.0/delta?token=abc'}

        first_call = provider._request.await_args_list[0]
        assert first_call.args[1].endswith('/me/calendars/AAMkAD%3D%3D/calendarView/delta')
        assert first_call.kwargs['params']['startDateTime'] == WINDOW.time_min.isoformat()
        second_call = provider._request.await_args_list[1]
        assert second_call.args[1] == 'https://graph.microsoft.com/v1.0/next-page'
        assert second_call.kwargs['params'] is None

    @pytest.mark.asyncio
    async def test_bad_request_with_token_falls_back(self, provider, calendar):
        """deltaLinkが400を返した場合は全期間で取り直す"""
        calendar.sync_token = 'https://graph.microsoft.com/v1.0/delta?token=old'
        provider._request = AsyncMock(side_effect=[
            (400, {'error': {'code': 'SyncStateNotFound'}}),
            (200, {'value': [], '@odata.deltaLink': 'https://graph.microsoft.com/v1.0/delta?token=new'}),
        ])

        result = await provider.fetch_events(OAuthCredentials("token"), [calendar], WINDOW)

        assert result.next_sync_tokens == {'cal-1': 'https://graph.microsoft.com/v1.0/delta?token=new'}
        assert provider._request.await_args_list[0].args[1] == calendar.sync_token

    @pytest.mark.asyncio
    async def test_bad_request_without_token_is_provider_error(self, provider, calendar):
        provider._request = AsyncMock(return_value=(400, {}))

        with pytest.raises(Exception) as exc_info:
            await provider.list_events("token", calendar, WINDOW)
        assert not isinstance(exc_info.value, SyncTokenInvalidError)


class TestListCalendars:
    """/me/calendars による一覧取得"""

    @pytest.mark.asyncio
    async def test_lists_calendars_across_pages(self, provider):
        provider._request = AsyncMock(side_effect=[
            (200, {
                'value': [{'id': 'AAMkAD==', 'name': '予定表', 'isDefaultCalendar': True}],
                '@odata.nextLink': 'https://graph.microsoft.com/v1.0/me/calendars?$skip=1',
            }),
            (200, {'value': [{'id': 'AAMkAE==', 'name': '祝日', 'isDefaultCalendar': False}]}),
        ])

        calendars = await provider.list_calendars(OAuthCredentials("token"))

        assert [(c.external_id, c.name, c.is_primary) for c in calendars] == [
            ('AAMkAD==', '予定表', True),
            ('AAMkAE==', '祝日', False),
        ]
        first_call = provider._request.await_args_list[0]
        assert first_call.args == ('GET', 'https://graph.microsoft.com/v1.0/me/calendars')
        assert first_call.kwargs['headers']['Authorization'] == 'Bearer token'
        assert provider._request.await_args_list[1].kwargs['params'] is None

    @pytest.mark.asyncio
    async def test_error_status_raises(self, provider):
        provider._request = AsyncMock(return_value=(401, {'error': {'code': 'InvalidAuthenticationToken'}}))

        with pytest.raises(ProviderError) as exc_info:
            await provider.list_calendars(OAuthCredentials("token"))
        assert exc_info.value.status == 401
