"""プロバイダー種別とアダプタークラスの対応表"""

from typing import Dict, Type, TYPE_CHECKING

from ...core.models import ProviderKind
from .base_provider import CalendarProvider
from .caldav_provider import CalDAVCalendarProvider
from .error_handler import ConfigurationError
from .google_provider import GoogleCalendarProvider
from .outlook_provider import OutlookCalendarProvider

if TYPE_CHECKING:
    from ...config.sync_config import ProviderConfig

PROVIDERS: Dict[ProviderKind, Type[CalendarProvider]] = {
    ProviderKind.GOOGLE: GoogleCalendarProvider,
    ProviderKind.OUTLOOK: OutlookCalendarProvider,
    ProviderKind.ICLOUD: CalDAVCalendarProvider,
}


def resolve_kind(value) -> ProviderKind:
    """文字列/列挙値からプロバイダー種別を解決"""
    if isinstance(value, ProviderKind):
        return value
    try:
        return ProviderKind(value)
    except ValueError:
        raise ConfigurationError(f"Unknown provider: {value}")


def create_provider(kind, config: "ProviderConfig", timeout_seconds: float = 30.0) -> CalendarProvider:
    provider_class = PROVIDERS[resolve_kind(kind)]
    return provider_class(config, timeout_seconds=timeout_seconds)
