"""
同期エンジン設定管理
階層化YAML設定・環境変数オーバーライド・秘密情報の暗号化
"""

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from cryptography.fernet import Fernet, InvalidToken

from ..layers.data_acquisition.error_handler import ConfigurationError, CredentialError
from ..utils.sync_logger import get_logger

logger = get_logger(__name__)


@dataclass
class SchedulerConfig:
    """スケジューラ設定"""
    check_cron: str = "*/5 * * * *"
    timezone: str = "UTC"
    dedupe_key: str = "calendar-sync-check-schedule"
    sync_interval_minutes: int = 15
    # 0 = 連続失敗しても再選択を止めない
    max_consecutive_failures: int = 0
    # syncingのまま更新が無い行をこの分数で再取得可能とする（0 = 無効）
    syncing_lease_minutes: int = 30


@dataclass
class WorkerConfig:
    """同期ワーカー設定"""
    concurrency: int = 5
    days_past: int = 7
    days_future: int = 30
    token_refresh_margin_seconds: int = 60
    provider_timeout_seconds: float = 30.0
    retry_limit: int = 3


@dataclass
class ProviderConfig:
    """プロバイダー設定"""
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    microsoft_client_id: Optional[str] = None
    microsoft_client_secret: Optional[str] = None
    icloud_caldav_url: str = "https://caldav.icloud.com"

    def require(self, name: str) -> str:
        """必須の秘密情報を取得（未設定なら設定エラー）"""
        value = getattr(self, name)
        if not value:
            raise ConfigurationError(f"{name.upper()} environment variable is required")
        return value


@dataclass
class StorageConfig:
    """ストレージ設定"""
    database_path: str = "data/calendar_sync.db"
    retention_days: int = 30


@dataclass
class NotificationConfig:
    """通知設定"""
    enabled: bool = True
    webhook_url: Optional[str] = None
    timeout_seconds: float = 10.0


@dataclass
class LoggingConfig:
    """ログ設定"""
    level: str = "INFO"
    file_path: Optional[str] = None
    metrics_enabled: bool = True


@dataclass
class SecurityConfig:
    """セキュリティ設定"""
    encryption_key: Optional[str] = None


@dataclass
class SyncConfig:
    """設定メインクラス"""
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)

    enabled: bool = True
    environment: str = "development"


class SecretsCodec:
    """トークン・パスワードの暗号化/復号化"""

    def __init__(self, encryption_key: Optional[str] = None):
        self.encryption_key = encryption_key or os.getenv('CALSYNC_ENCRYPTION_KEY')
        if not self.encryption_key:
            # 毎回生成すると保存済みの暗号文が復号できなくなる
            raise ConfigurationError(
                "Encryption key is not configured (set CALSYNC_ENCRYPTION_KEY or use ConfigManager.ensure_encryption_key)"
            )
        try:
            self.cipher = Fernet(self.encryption_key.encode())
        except ValueError as e:
            raise ConfigurationError(f"Invalid encryption key: {e}") from e

    def encrypt(self, plaintext: str) -> str:
        return self.cipher.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """復号化（失敗時はCredentialError）"""
        try:
            return self.cipher.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            raise CredentialError("Failed to decrypt stored credential") from e


class ConfigManager:
    """設定管理メインクラス"""

    SECTION_FILES = ['scheduler', 'worker', 'providers', 'storage', 'notifications', 'logging']

    ENV_OVERRIDES = {
        'CALENDAR_SYNC_ENABLED': ('enabled', lambda x: x.lower() not in ['false', '0', 'no']),
        'CALSYNC_ENVIRONMENT': ('environment', str),
        'CALSYNC_DATABASE_PATH': ('storage.database_path', str),
        'CALSYNC_LOG_LEVEL': ('logging.level', str),
        'CALSYNC_LOG_FILE': ('logging.file_path', str),
        'CALSYNC_SYNC_INTERVAL_MINUTES': ('scheduler.sync_interval_minutes', int),
        'CALSYNC_CHECK_CRON': ('scheduler.check_cron', str),
        'CALSYNC_MAX_CONSECUTIVE_FAILURES': ('scheduler.max_consecutive_failures', int),
        'CALSYNC_SYNCING_LEASE_MINUTES': ('scheduler.syncing_lease_minutes', int),
        'CALSYNC_WORKER_CONCURRENCY': ('worker.concurrency', int),
        'CALSYNC_PROVIDER_TIMEOUT': ('worker.provider_timeout_seconds', float),
        'CALSYNC_WEBHOOK_URL': ('notifications.webhook_url', str),
        'CALSYNC_ENCRYPTION_KEY': ('security.encryption_key', str),
        'GOOGLE_CLIENT_ID': ('providers.google_client_id', str),
        'GOOGLE_CLIENT_SECRET': ('providers.google_client_secret', str),
        'MICROSOFT_CLIENT_ID': ('providers.microsoft_client_id', str),
        'MICROSOFT_CLIENT_SECRET': ('providers.microsoft_client_secret', str),
        'ICLOUD_CALDAV_URL': ('providers.icloud_caldav_url', str),
    }

    def __init__(self, config_dir: Union[str, Path] = "config"):
        self.config_dir = Path(config_dir)
        self._config_cache: Optional[SyncConfig] = None

    def load_config(self, reload: bool = False) -> SyncConfig:
        """設定の読み込み"""
        if self._config_cache and not reload:
            return self._config_cache

        try:
            main_config = self._load_yaml_file(self.config_dir / "main.yaml")

            section_configs = {
                name: self._load_yaml_file(self.config_dir / f"{name}.yaml")
                for name in self.SECTION_FILES
            }

            merged_config = self._merge_configs(main_config, section_configs)
            merged_config = self._apply_env_overrides(merged_config)
            self._config_cache = self._create_config_object(merged_config)

            logger.info(
                "Configuration loaded successfully",
                config_dir=str(self.config_dir),
                environment=self._config_cache.environment,
                operation="config_load"
            )

        except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
            logger.error("Failed to load configuration, using defaults", error=e, operation="config_load")
            self._config_cache = SyncConfig()

        return self._config_cache

    def _load_yaml_file(self, file_path: Path) -> Dict[str, Any]:
        """YAMLファイルの読み込み"""
        if not file_path.exists():
            logger.debug(f"Config file not found: {file_path}")
            return {}

        with open(file_path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}

    def _merge_configs(self, main_config: Dict, section_configs: Dict) -> Dict:
        """設定の統合（セクション別ファイルがmain.yamlより優先）"""
        merged = dict(main_config)

        for section_name, section_config in section_configs.items():
            if section_config:
                base = dict(merged.get(section_name) or {})
                base.update(section_config)
                merged[section_name] = base

        return merged

    def _apply_env_overrides(self, config: Dict) -> Dict:
        """環境変数によるオーバーライド"""
        for env_key, (config_path, converter) in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_key)
            if env_value:
                try:
                    self._set_nested_value(config, config_path, converter(env_value))
                except ValueError as e:
                    logger.warning(f"Failed to apply env override {env_key}", error_message=str(e))

        return config

    def _set_nested_value(self, config: Dict, path: str, value: Any):
        keys = path.split('.')
        current = config

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _create_config_object(self, config_dict: Dict) -> SyncConfig:
        """設定辞書から設定オブジェクトを作成"""
        defaults = SyncConfig()
        values = {}

        for config_field in dataclasses.fields(SyncConfig):
            raw = config_dict.get(config_field.name)
            if raw is None:
                continue
            default_value = getattr(defaults, config_field.name)
            if dataclasses.is_dataclass(default_value):
                values[config_field.name] = self._build_section(type(default_value), raw, config_field.name)
            else:
                values[config_field.name] = raw

        unknown = set(config_dict) - {f.name for f in dataclasses.fields(SyncConfig)}
        if unknown:
            logger.warning("Unknown configuration keys ignored", keys=sorted(unknown))

        return SyncConfig(**values)

    def _build_section(self, section_type: type, raw: Dict[str, Any], section_name: str):
        known = {f.name for f in dataclasses.fields(section_type)}
        unknown = set(raw) - known
        if unknown:
            logger.warning("Unknown configuration keys ignored", section=section_name, keys=sorted(unknown))
        return section_type(**{key: value for key, value in raw.items() if key in known})

    def ensure_encryption_key(self, config: SyncConfig) -> str:
        """
        暗号化キーの確定

        設定・環境変数で指定が無い場合は config_dir/secrets/encryption.key を使い、
        ファイルも無ければ生成して保存する（所有者のみ読み書き可）。
        """
        if config.security.encryption_key:
            return config.security.encryption_key

        key_path = self.config_dir / "secrets" / "encryption.key"
        if key_path.exists():
            key = key_path.read_text(encoding='utf-8').strip()
        else:
            key = Fernet.generate_key().decode()
            key_path.parent.mkdir(parents=True, exist_ok=True)
            key_path.write_text(key, encoding='utf-8')
            key_path.chmod(0o600)
            logger.warning(
                "New encryption key generated. Back it up to keep stored credentials readable",
                key_file=str(key_path),
                key_preview=key[:8] + "...",
                operation="key_generation"
            )

        config.security.encryption_key = key
        return key

    def save_config_template(self):
        """設定ファイルテンプレートの作成"""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        template = dataclasses.asdict(SyncConfig())
        # 秘密情報は環境変数から与える
        template.pop('security')
        for secret in ('google_client_id', 'google_client_secret',
                       'microsoft_client_id', 'microsoft_client_secret'):
            template['providers'].pop(secret)

        file_path = self.config_dir / "main.yaml"
        if not file_path.exists():
            with open(file_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(template, f, default_flow_style=False, allow_unicode=True)
            logger.info(f"Created config template: {file_path}")


# グローバルインスタンス
_global_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_dir: Union[str, Path] = "config") -> ConfigManager:
    """グローバル設定マネージャーの取得"""
    global _global_config_manager

    if _global_config_manager is None:
        _global_config_manager = ConfigManager(config_dir)

    return _global_config_manager


def get_config(reload: bool = False) -> SyncConfig:
    return get_config_manager().load_config(reload)
