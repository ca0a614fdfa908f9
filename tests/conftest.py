"""
テスト共通フィクスチャ
"""

import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography.fernet import Fernet

from calendar_sync.config.sync_config import SecretsCodec, SyncConfig
from calendar_sync.core.models import Calendar, CalendarAccount, ExternalEvent, ProviderKind
from calendar_sync.layers.sync_layer.event_storage import EventStorage


@pytest.fixture
async def temp_storage():
    """テンポラリストレージ"""
    with tempfile.TemporaryDirectory() as temp_dir:
        storage = EventStorage(Path(temp_dir) / "test.db")
        await storage.initialize()
        yield storage


@pytest.fixture
def codec():
    return SecretsCodec(Fernet.generate_key().decode())


@pytest.fixture
def sync_config():
    return SyncConfig()


@pytest.fixture
def make_event():
    """ExternalEvent作成ヘルパー"""
    base_start = (datetime.now(timezone.utc) + timedelta(days=1)).replace(minute=0, second=0, microsecond=0)

    def _make(calendar_id: str, external_id: str, title: str = "定例会議", start: datetime = None, **kwargs):
        start = start or base_start
        return ExternalEvent(
            calendar_id=calendar_id,
            external_id=external_id,
            title=title,
            start_time=start,
            end_time=kwargs.pop('end', start + timedelta(hours=1)),
            **kwargs
        )

    return _make


@pytest.fixture
def account_factory(temp_storage, codec):
    """アカウントとカレンダーを登録するヘルパー"""

    async def _create(provider: ProviderKind = ProviderKind.GOOGLE,
                      calendars=("primary",),
                      expires_in: int = 3600,
                      user_id: str = "user-1",
                      **overrides):
        now = datetime.now(timezone.utc)
        values = dict(
            id=str(uuid.uuid4()),
            user_id=user_id,
            provider=provider,
            email="taro@example.com",
        )
        if provider.uses_oauth:
            values.update(
                access_token_encrypted=codec.encrypt("access-token"),
                refresh_token_encrypted=codec.encrypt("refresh-token"),
                token_expires_at=now + timedelta(seconds=expires_in),
            )
        else:
            values.update(
                caldav_password_encrypted=codec.encrypt("app-password"),
                caldav_url="https://caldav.example.com",
            )
        values.update(overrides)

        account = await temp_storage.create_account(CalendarAccount(**values))

        created = []
        for external_id in calendars:
            created.append(await temp_storage.add_calendar(Calendar(
                id=str(uuid.uuid4()),
                account_id=account.id,
                user_id=account.user_id,
                external_id=external_id,
                name=f"カレンダー {external_id}"
            )))

        return account, created

    return _create
