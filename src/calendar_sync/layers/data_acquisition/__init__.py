"""
データ取得層
外部カレンダープロバイダーからのイベント取得とトークン管理
"""

from .base_provider import CalDAVCredentials, CalendarProvider, OAuthCredentials, OAuthProvider
from .caldav_provider import CalDAVCalendarProvider
from .error_handler import (
    CalendarSyncError, ConfigurationError, CredentialError, ErrorHandler, ErrorType,
    ProviderError, ProviderTimeoutError, RateLimitError, SyncTokenInvalidError, TokenRefreshError
)
from .google_provider import GoogleCalendarProvider
from .outlook_provider import OutlookCalendarProvider
from .provider_registry import PROVIDERS, create_provider, resolve_kind
from .token_manager import TokenRefreshManager

__all__ = [
    'CalendarProvider', 'OAuthProvider', 'OAuthCredentials', 'CalDAVCredentials',
    'GoogleCalendarProvider', 'OutlookCalendarProvider', 'CalDAVCalendarProvider',
    'PROVIDERS', 'create_provider', 'resolve_kind', 'TokenRefreshManager',
    'ErrorHandler', 'ErrorType', 'CalendarSyncError', 'ConfigurationError', 'CredentialError',
    'TokenRefreshError', 'ProviderError', 'RateLimitError', 'ProviderTimeoutError',
    'SyncTokenInvalidError',
]
