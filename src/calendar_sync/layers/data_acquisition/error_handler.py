"""
エラーハンドリング
同期処理で発生するエラーの分類と、アカウント状態へ記録するメッセージの生成
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)


class CalendarSyncError(Exception):
    """同期エンジンの基底例外"""


class ConfigurationError(CalendarSyncError):
    """設定不備（クライアントID未設定、未知のプロバイダー等）"""


class CredentialError(CalendarSyncError):
    """認証情報の問題（復号失敗、リフレッシュトークン無し等）"""


class TokenRefreshError(CredentialError):
    """トークンエンドポイントがリフレッシュを拒否した"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ProviderError(CalendarSyncError):
    """プロバイダーAPIのエラー"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RateLimitError(ProviderError):
    """レート制限（429）"""


class ProviderTimeoutError(ProviderError):
    """プロバイダー呼び出しのタイムアウト"""


class SyncTokenInvalidError(ProviderError):
    """同期トークンが失効している（全期間の再取得が必要）"""


class ErrorType(Enum):
    """エラータイプ分類"""
    NETWORK_ERROR = "network_error"
    AUTHENTICATION_ERROR = "authentication_error"
    RATE_LIMIT_ERROR = "rate_limit_error"
    DATA_PARSING_ERROR = "data_parsing_error"
    SYNC_TOKEN_INVALID = "sync_token_invalid"
    PROVIDER_ERROR = "provider_error"
    CONFIGURATION_ERROR = "configuration_error"
    UNKNOWN_ERROR = "unknown_error"


@dataclass
class ErrorStrategy:
    """エラータイプ別の扱い"""
    # 次回のスケジューラ実行で自然に回復が見込めるか
    transient: bool
    # ユーザーによる再接続が必要か
    requires_reconnect: bool = False


class ErrorHandler:
    """エラー分類器"""

    STRATEGIES: Dict[ErrorType, ErrorStrategy] = {
        ErrorType.NETWORK_ERROR: ErrorStrategy(transient=True),
        ErrorType.AUTHENTICATION_ERROR: ErrorStrategy(transient=False, requires_reconnect=True),
        ErrorType.RATE_LIMIT_ERROR: ErrorStrategy(transient=True),
        ErrorType.DATA_PARSING_ERROR: ErrorStrategy(transient=False),
        ErrorType.SYNC_TOKEN_INVALID: ErrorStrategy(transient=True),
        ErrorType.PROVIDER_ERROR: ErrorStrategy(transient=True),
        ErrorType.CONFIGURATION_ERROR: ErrorStrategy(transient=False),
        ErrorType.UNKNOWN_ERROR: ErrorStrategy(transient=False),
    }

    def __init__(self):
        self.error_counts: Dict[ErrorType, int] = {}

    def classify_error(self, error: BaseException) -> ErrorType:
        """エラーを分類してタイプを返す"""
        if isinstance(error, SyncTokenInvalidError):
            return ErrorType.SYNC_TOKEN_INVALID
        if isinstance(error, RateLimitError):
            return ErrorType.RATE_LIMIT_ERROR
        if isinstance(error, (ProviderTimeoutError, asyncio.TimeoutError, aiohttp.ClientConnectionError,
                              ConnectionError)):
            return ErrorType.NETWORK_ERROR
        if isinstance(error, CredentialError):
            return ErrorType.AUTHENTICATION_ERROR
        if isinstance(error, ConfigurationError):
            return ErrorType.CONFIGURATION_ERROR
        if isinstance(error, ProviderError):
            if error.status in (401, 403):
                return ErrorType.AUTHENTICATION_ERROR
            return ErrorType.PROVIDER_ERROR
        if isinstance(error, (ValueError, KeyError)):
            return ErrorType.DATA_PARSING_ERROR

        # 型で判断できない場合はメッセージから推定
        error_message = str(error).lower()
        if any(keyword in error_message for keyword in ['connection', 'timeout', 'network']):
            return ErrorType.NETWORK_ERROR
        if any(keyword in error_message for keyword in ['unauthorized', '401', 'invalid_grant']):
            return ErrorType.AUTHENTICATION_ERROR
        if any(keyword in error_message for keyword in ['rate limit', '429', 'too many requests']):
            return ErrorType.RATE_LIMIT_ERROR

        return ErrorType.UNKNOWN_ERROR

    def record(self, error: BaseException) -> ErrorType:
        """エラーを分類してカウント"""
        error_type = self.classify_error(error)
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1
        logger.debug(f"Error classified as {error_type.value}: {error}")
        return error_type

    def strategy_for(self, error_type: ErrorType) -> ErrorStrategy:
        return self.STRATEGIES.get(error_type, self.STRATEGIES[ErrorType.UNKNOWN_ERROR])

    @staticmethod
    def describe(error: BaseException) -> str:
        """アカウントに記録するエラーメッセージ"""
        message = str(error)
        if not message:
            message = error.__class__.__name__
        return message[:1000]
