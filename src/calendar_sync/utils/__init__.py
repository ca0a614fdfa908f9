"""
ユーティリティ - 構造化ログとメトリクス
"""

from .sync_logger import SyncLogger, get_logger, setup_logging

__all__ = ['SyncLogger', 'get_logger', 'setup_logging']
