"""
データモデルのテスト
"""

from datetime import datetime, timezone

from calendar_sync.core.models import ExternalEvent, FetchResult, ProviderKind, SyncJobPayload, SyncWindow


class TestSyncWindow:
    """同期ウィンドウ"""

    def test_whole_day_boundaries(self):
        window = SyncWindow.around(datetime(2026, 3, 10, 15, 42, tzinfo=timezone.utc))

        assert window.time_min == datetime(2026, 3, 3, 0, 0, tzinfo=timezone.utc)
        assert window.time_max == datetime(2026, 4, 9, 23, 59, 59, 999999, tzinfo=timezone.utc)
        assert window.contains(datetime(2026, 4, 9, 23, 0, tzinfo=timezone.utc))
        assert not window.contains(datetime(2026, 4, 10, 0, 0, tzinfo=timezone.utc))


class TestExternalEvent:

    def test_hash_changes_with_title(self):
        start = datetime(2026, 3, 11, 9, tzinfo=timezone.utc)
        end = datetime(2026, 3, 11, 10, tzinfo=timezone.utc)
        original = ExternalEvent("cal-1", "ext-1", "旧", start, end)
        same = ExternalEvent("cal-1", "ext-1", "旧", start, end)
        renamed = ExternalEvent("cal-1", "ext-1", "新", start, end)

        assert original.calculate_hash() == same.calculate_hash()
        assert original.calculate_hash() != renamed.calculate_hash()


class TestPayloads:

    def test_job_payload_keys(self):
        payload = SyncJobPayload("acc-1", "user-1", "outlook")

        assert payload.to_dict() == {'accountId': 'acc-1', 'userId': 'user-1', 'provider': 'outlook'}
        assert SyncJobPayload.from_dict(payload.to_dict()) == payload

    def test_fetch_result_merge(self):
        merged = FetchResult(deleted_external_ids=["a"], next_sync_tokens={"cal-1": "t1"})
        merged.merge(FetchResult(deleted_external_ids=["b"], next_sync_tokens={"cal-2": None}))

        assert merged.deleted_external_ids == ["a", "b"]
        assert merged.next_sync_tokens == {"cal-1": "t1", "cal-2": None}

    def test_provider_kind(self):
        assert ProviderKind.GOOGLE.uses_oauth
        assert ProviderKind.OUTLOOK.uses_oauth
        assert not ProviderKind.ICLOUD.uses_oauth
