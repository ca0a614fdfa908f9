"""
設定管理のテスト
"""

import pytest
import yaml
from cryptography.fernet import Fernet

from calendar_sync.config.sync_config import ConfigManager, ProviderConfig, SecretsCodec, SyncConfig
from calendar_sync.layers.data_acquisition.error_handler import ConfigurationError, CredentialError


class TestConfigManager:
    """YAML設定と環境変数"""

    def test_defaults_without_files(self, tmp_path):
        config = ConfigManager(tmp_path).load_config()

        assert config.scheduler.check_cron == "*/5 * * * *"
        assert config.scheduler.dedupe_key == "calendar-sync-check-schedule"
        assert config.scheduler.sync_interval_minutes == 15
        assert config.worker.concurrency == 5
        assert (config.worker.days_past, config.worker.days_future) == (7, 30)
        assert config.worker.token_refresh_margin_seconds == 60
        assert config.providers.icloud_caldav_url == "https://caldav.icloud.com"
        assert config.enabled is True

    def test_section_file_overrides_main(self, tmp_path):
        (tmp_path / "main.yaml").write_text(yaml.safe_dump({
            'environment': 'production',
            'worker': {'concurrency': 2, 'days_past': 3},
        }), encoding='utf-8')
        (tmp_path / "worker.yaml").write_text(yaml.safe_dump({'concurrency': 8}), encoding='utf-8')

        config = ConfigManager(tmp_path).load_config()

        assert config.environment == 'production'
        assert config.worker.concurrency == 8
        assert config.worker.days_past == 3

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv('CALENDAR_SYNC_ENABLED', 'false')
        monkeypatch.setenv('CALSYNC_SYNC_INTERVAL_MINUTES', '30')
        monkeypatch.setenv('GOOGLE_CLIENT_ID', 'google-id')
        monkeypatch.setenv('CALSYNC_SYNCING_LEASE_MINUTES', '45')

        config = ConfigManager(tmp_path).load_config()

        assert config.enabled is False
        assert config.scheduler.sync_interval_minutes == 30
        assert config.providers.google_client_id == 'google-id'
        assert config.scheduler.syncing_lease_minutes == 45

    def test_unknown_keys_ignored(self, tmp_path):
        (tmp_path / "main.yaml").write_text(yaml.safe_dump({
            'legacy': True,
            'scheduler': {'sync_interval_minutes': 20, 'obsolete': 1},
        }), encoding='utf-8')

        config = ConfigManager(tmp_path).load_config()

        assert config.scheduler.sync_interval_minutes == 20

    def test_broken_yaml_falls_back_to_defaults(self, tmp_path):
        (tmp_path / "main.yaml").write_text("scheduler: [unclosed", encoding='utf-8')

        config = ConfigManager(tmp_path).load_config()

        assert config == SyncConfig()

    def test_template_round_trip(self, tmp_path):
        manager = ConfigManager(tmp_path)
        manager.save_config_template()

        data = yaml.safe_load((tmp_path / "main.yaml").read_text(encoding='utf-8'))
        assert 'security' not in data
        assert 'google_client_secret' not in data['providers']
        assert manager.load_config(reload=True).worker.concurrency == 5


class TestSecrets:
    """秘密情報"""

    def test_encrypt_decrypt(self):
        codec = SecretsCodec(Fernet.generate_key().decode())

        ciphertext = codec.encrypt("ya29.token")

        assert ciphertext != "ya29.token"
        assert codec.decrypt(ciphertext) == "ya29.token"

    def test_decrypt_with_other_key_fails(self):
        ciphertext = SecretsCodec(Fernet.generate_key().decode()).encrypt("secret")

        with pytest.raises(CredentialError):
            SecretsCodec(Fernet.generate_key().decode()).decrypt(ciphertext)

    def test_provider_secret_required(self):
        with pytest.raises(ConfigurationError):
            ProviderConfig().require('microsoft_client_secret')

    def test_missing_key_is_rejected(self, monkeypatch):
        monkeypatch.delenv('CALSYNC_ENCRYPTION_KEY', raising=False)

        with pytest.raises(ConfigurationError):
            SecretsCodec()

    def test_invalid_key_is_rejected(self):
        with pytest.raises(ConfigurationError):
            SecretsCodec("not-a-fernet-key")


class TestEncryptionKeyFile:
    """暗号化キーの保存"""

    def test_generated_key_is_reused_across_runs(self, tmp_path, monkeypatch):
        monkeypatch.delenv('CALSYNC_ENCRYPTION_KEY', raising=False)
        first = ConfigManager(tmp_path)
        first_config = first.load_config()
        key = first.ensure_encryption_key(first_config)
        ciphertext = SecretsCodec(first_config.security.encryption_key).encrypt("app-password")

        key_file = tmp_path / "secrets" / "encryption.key"
        assert key_file.read_text(encoding='utf-8') == key
        assert key_file.stat().st_mode & 0o777 == 0o600

        second = ConfigManager(tmp_path)
        second_config = second.load_config()
        assert second.ensure_encryption_key(second_config) == key
        assert SecretsCodec(second_config.security.encryption_key).decrypt(ciphertext) == "app-password"

    def test_configured_key_takes_precedence(self, tmp_path, monkeypatch):
        configured = Fernet.generate_key().decode()
        monkeypatch.setenv('CALSYNC_ENCRYPTION_KEY', configured)
        manager = ConfigManager(tmp_path)

        assert manager.ensure_encryption_key(manager.load_config()) == configured
        assert not (tmp_path / "secrets").exists()
