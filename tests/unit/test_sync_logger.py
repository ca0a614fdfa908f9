"""
ログ・メトリクスのテスト
"""

import io
import json
import logging
import sys

from calendar_sync.utils.sync_logger import LogLevel, SyncLogger


class TestSyncLogger:
    """構造化ログの出力先"""

    def test_closed_stream_does_not_raise(self, monkeypatch):
        """作成時のstderrが閉じられた後もログ呼び出しは例外を送出しない"""
        stream = io.StringIO()
        monkeypatch.setattr(sys, 'stderr', stream)
        sync_logger = SyncLogger("calendar_sync.test_closed", LogLevel.DEBUG)
        stream.close()
        monkeypatch.setattr(logging, 'raiseExceptions', False)

        sync_logger.error("Failed to queue sync job", error=RuntimeError("queue unavailable"),
                          account_id="acc-1", operation="sync_check")
        sync_logger.debug("Account already claimed, skipping", account_id="acc-2")

        assert sync_logger.metrics.counters['sync_check_error_RuntimeError'] == 1

    def test_structured_output_is_json(self, monkeypatch):
        stream = io.StringIO()
        monkeypatch.setattr(sys, 'stderr', stream)
        sync_logger = SyncLogger("calendar_sync.test_json", LogLevel.INFO, metrics_enabled=False)

        sync_logger.info("Account claimed", account_id="acc-1")
        sync_logger.debug("filtered out")

        records = [json.loads(line) for line in stream.getvalue().splitlines() if line.startswith('{')]
        assert len(records) == 1
        assert records[0]['event'] == "Account claimed"
        assert records[0]['account_id'] == "acc-1"
        assert records[0]['level'] == "info"
        assert records[0]['logger'] == "calendar_sync.test_json"


class TestMetrics:

    def test_health_status_from_success_rate(self):
        sync_logger = SyncLogger("calendar_sync.test_metrics", LogLevel.CRITICAL)
        for _ in range(9):
            sync_logger.metrics.record_success("account_sync", 0.5)
        sync_logger.metrics.record_error("account_sync", "ProviderError")

        status = sync_logger.get_health_status()

        assert status['overall_status'] == "warning"
        assert status['total_operations'] == 10
        assert status['avg_durations'] == {'account_sync_duration': 0.5}
