"""
トークン更新管理
期限切れ間近のアクセストークンを更新し、暗号化して保存する
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, TYPE_CHECKING

from ...core.models import CalendarAccount
from .base_provider import OAuthProvider, utc
from .error_handler import CredentialError

if TYPE_CHECKING:
    from ...config.sync_config import SecretsCodec
    from ..sync_layer.event_storage import EventStorage

logger = logging.getLogger(__name__)


class TokenRefreshManager:
    """有効なアクセストークンを返す（必要なら更新して永続化）"""

    def __init__(self, storage: "EventStorage", codec: "SecretsCodec",
                 margin_seconds: int = 60,
                 clock: Optional[Callable[[], datetime]] = None):
        self.storage = storage
        self.codec = codec
        self.margin = timedelta(seconds=margin_seconds)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def needs_refresh(self, account: CalendarAccount) -> bool:
        """有効期限がマージン以内ならTrue（期限不明の場合は更新しない）"""
        if account.token_expires_at is None:
            return False
        return utc(account.token_expires_at) <= self.clock() + self.margin

    async def get_valid_access_token(self, account: CalendarAccount, provider: OAuthProvider) -> str:
        if not account.access_token_encrypted:
            raise CredentialError(f"Account {account.id} has no stored access token")

        if not self.needs_refresh(account):
            return self.codec.decrypt(account.access_token_encrypted)

        if not account.refresh_token_encrypted:
            raise CredentialError(f"Access token expired and no refresh token for account {account.id}")

        logger.info(f"Refreshing access token for account {account.id} ({account.provider.value})")
        refresh_token = self.codec.decrypt(account.refresh_token_encrypted)
        tokens = await provider.refresh_tokens(refresh_token)

        # 新しいトークンを使う前に保存する
        access_encrypted = self.codec.encrypt(tokens.access_token)
        refresh_encrypted = self.codec.encrypt(tokens.refresh_token)
        await self.storage.update_account_tokens(account.id, access_encrypted, refresh_encrypted, tokens.expires_at)

        account.access_token_encrypted = access_encrypted
        account.refresh_token_encrypted = refresh_encrypted
        account.token_expires_at = tokens.expires_at

        return tokens.access_token
