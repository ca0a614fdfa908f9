"""
エラーハンドリングのテスト
"""

import asyncio

import pytest

from calendar_sync.layers.data_acquisition.error_handler import (
    ConfigurationError, CredentialError, ErrorHandler, ErrorType, ProviderError, ProviderTimeoutError,
    RateLimitError, SyncTokenInvalidError, TokenRefreshError
)


@pytest.fixture
def error_handler():
    return ErrorHandler()


class TestErrorClassification:
    """エラー分類"""

    @pytest.mark.parametrize("error, expected", [
        (SyncTokenInvalidError("SYNC_TOKEN_INVALID", status=410), ErrorType.SYNC_TOKEN_INVALID),
        (RateLimitError("slow down", status=429), ErrorType.RATE_LIMIT_ERROR),
        (ProviderTimeoutError("timed out"), ErrorType.NETWORK_ERROR),
        (asyncio.TimeoutError(), ErrorType.NETWORK_ERROR),
        (TokenRefreshError("invalid_grant", status=400), ErrorType.AUTHENTICATION_ERROR),
        (CredentialError("cannot decrypt"), ErrorType.AUTHENTICATION_ERROR),
        (ProviderError("forbidden", status=403), ErrorType.AUTHENTICATION_ERROR),
        (ProviderError("server error", status=502), ErrorType.PROVIDER_ERROR),
        (ConfigurationError("GOOGLE_CLIENT_ID missing"), ErrorType.CONFIGURATION_ERROR),
        (KeyError("dateTime"), ErrorType.DATA_PARSING_ERROR),
        (RuntimeError("Connection reset by peer"), ErrorType.NETWORK_ERROR),
        (RuntimeError("something odd"), ErrorType.UNKNOWN_ERROR),
    ])
    def test_classify(self, error_handler, error, expected):
        assert error_handler.classify_error(error) == expected

    def test_record_counts(self, error_handler):
        error_handler.record(RateLimitError("429"))
        error_handler.record(RateLimitError("429"))

        assert error_handler.error_counts[ErrorType.RATE_LIMIT_ERROR] == 2

    def test_strategy(self, error_handler):
        assert error_handler.strategy_for(ErrorType.RATE_LIMIT_ERROR).transient is True
        assert error_handler.strategy_for(ErrorType.AUTHENTICATION_ERROR).requires_reconnect is True

    def test_describe(self):
        assert ErrorHandler.describe(RuntimeError()) == "RuntimeError"
        assert len(ErrorHandler.describe(RuntimeError("x" * 5000))) == 1000
