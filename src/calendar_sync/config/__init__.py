"""
設定管理 - YAML設定・環境変数・秘密情報の暗号化
"""

from .sync_config import ConfigManager, SecretsCodec, SyncConfig, get_config, get_config_manager

__all__ = ['ConfigManager', 'SecretsCodec', 'SyncConfig', 'get_config', 'get_config_manager']
