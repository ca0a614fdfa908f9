"""
カレンダー同期エンジン - 外部カレンダー（Google / Outlook / iCloud）とローカルミラーの同期
"""

__version__ = "1.0.0"
