"""
イベントストレージシステム
SQLiteによるアカウント・カレンダー・イベントのミラーと同期ログの管理
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

import aiosqlite

from ...core.models import (
    AccountSyncStatus, Calendar, CalendarAccount, EventStatus, ExternalEvent, ProviderKind,
    StoredEvent, SyncOutcome, SyncWindow
)

logger = logging.getLogger(__name__)

# IN句に渡すパラメータ数の上限
DELETE_CHUNK_SIZE = 500
BUSY_TIMEOUT_SECONDS = 30.0


def _ts(value: Optional[datetime]) -> Optional[str]:
    """UTCのISO文字列に変換（文字列比較で大小が一致する形式）"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class SyncLog:
    """同期ログ"""
    id: Optional[int]
    account_id: str
    status: str
    events_upserted: int
    events_deleted: int
    error_message: Optional[str]
    timestamp: datetime


class EventStorage:
    """イベントストレージ管理システム"""

    def __init__(self, database_path: Union[str, Path] = "data/calendar_sync.db"):
        self.database_path = Path(database_path)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self):
        return aiosqlite.connect(self.database_path, timeout=BUSY_TIMEOUT_SECONDS)

    async def _prepare(self, db: aiosqlite.Connection):
        db.row_factory = aiosqlite.Row
        # カスケード削除のため接続ごとに有効化
        await db.execute("PRAGMA foreign_keys = ON")

    async def _begin_write(self, db: aiosqlite.Connection):
        # 書き込みロックを先に取得する（読み取りロックからの昇格はビジー待ちされない）
        await db.execute("BEGIN IMMEDIATE")

    async def initialize(self) -> bool:
        """データベース初期化"""
        try:
            await self._create_tables()
            await self._create_indexes()

            logger.info(f"Event storage initialized: {self.database_path}")
            return True

        except aiosqlite.Error as e:
            logger.error(f"Failed to initialize event storage: {e}")
            return False

    async def _create_tables(self):
        """テーブル作成"""

        accounts_table_sql = """
        CREATE TABLE IF NOT EXISTS calendar_accounts (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            provider TEXT NOT NULL,
            email TEXT NOT NULL,
            access_token_encrypted TEXT,
            refresh_token_encrypted TEXT,
            token_expires_at TEXT,
            caldav_password_encrypted TEXT,
            caldav_url TEXT,
            sync_token TEXT,
            last_synced_at TEXT,
            sync_status TEXT DEFAULT 'idle',
            sync_error TEXT,
            consecutive_failures INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """

        calendars_table_sql = """
        CREATE TABLE IF NOT EXISTS calendars (
            id TEXT PRIMARY KEY,
            account_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            external_id TEXT NOT NULL,
            name TEXT NOT NULL,
            sync_token TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (account_id, external_id),
            FOREIGN KEY (account_id) REFERENCES calendar_accounts(id) ON DELETE CASCADE
        )
        """

        events_table_sql = """
        CREATE TABLE IF NOT EXISTS calendar_events (
            id TEXT PRIMARY KEY,
            calendar_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            external_id TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            location TEXT,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            is_all_day INTEGER NOT NULL DEFAULT 0,
            timezone TEXT,
            recurrence_rule TEXT,
            recurring_event_id TEXT,
            status TEXT NOT NULL DEFAULT 'confirmed',
            response_status TEXT,
            html_link TEXT,
            etag TEXT,
            content_hash TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (calendar_id, external_id),
            FOREIGN KEY (calendar_id) REFERENCES calendars(id) ON DELETE CASCADE
        )
        """

        sync_logs_table_sql = """
        CREATE TABLE IF NOT EXISTS sync_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            account_id TEXT NOT NULL,
            status TEXT NOT NULL,
            events_upserted INTEGER NOT NULL DEFAULT 0,
            events_deleted INTEGER NOT NULL DEFAULT 0,
            error_message TEXT,
            timestamp TEXT NOT NULL
        )
        """

        async with self._connect() as db:
            await db.execute(accounts_table_sql)
            await db.execute(calendars_table_sql)
            await db.execute(events_table_sql)
            await db.execute(sync_logs_table_sql)
            await db.commit()

    async def _create_indexes(self):
        """インデックス作成"""
        indexes_sql = [
            "CREATE INDEX IF NOT EXISTS idx_accounts_sync_status ON calendar_accounts(sync_status, last_synced_at)",
            "CREATE INDEX IF NOT EXISTS idx_calendars_account_id ON calendars(account_id)",
            "CREATE INDEX IF NOT EXISTS idx_events_user_external ON calendar_events(user_id, external_id)",
            "CREATE INDEX IF NOT EXISTS idx_events_start_time ON calendar_events(calendar_id, start_time)",
            "CREATE INDEX IF NOT EXISTS idx_sync_logs_timestamp ON sync_logs(timestamp)",
        ]

        async with self._connect() as db:
            for index_sql in indexes_sql:
                await db.execute(index_sql)
            await db.commit()

    # ---- アカウント ----

    async def create_account(self, account: CalendarAccount) -> CalendarAccount:
        """アカウント登録"""
        now = datetime.now(timezone.utc)
        account.created_at = account.created_at or now
        account.updated_at = now

        sql = """
        INSERT INTO calendar_accounts (
            id, user_id, provider, email, access_token_encrypted, refresh_token_encrypted,
            token_expires_at, caldav_password_encrypted, caldav_url, sync_token, last_synced_at,
            sync_status, sync_error, consecutive_failures, is_active, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """

        async with self._connect() as db:
            await self._prepare(db)
            await db.execute(sql, (
                account.id, account.user_id, account.provider.value, account.email,
                account.access_token_encrypted, account.refresh_token_encrypted,
                _ts(account.token_expires_at), account.caldav_password_encrypted,
                account.caldav_url, account.sync_token, _ts(account.last_synced_at),
                account.sync_status.value if account.sync_status else None,
                account.sync_error, account.consecutive_failures, int(account.is_active),
                _ts(account.created_at), _ts(account.updated_at)
            ))
            await db.commit()

        logger.debug(f"Account created: {account.id} ({account.provider.value})")
        return account

    async def get_account(self, account_id: str) -> Optional[CalendarAccount]:
        async with self._connect() as db:
            await self._prepare(db)
            cursor = await db.execute("SELECT * FROM calendar_accounts WHERE id = ?", (account_id,))
            row = await cursor.fetchone()

        return self._row_to_account(row) if row else None

    async def update_account_tokens(self, account_id: str, access_token_encrypted: str,
                                    refresh_token_encrypted: Optional[str], expires_at: datetime):
        """更新されたOAuthトークンの保存"""
        sql = """
        UPDATE calendar_accounts SET
            access_token_encrypted = ?,
            refresh_token_encrypted = COALESCE(?, refresh_token_encrypted),
            token_expires_at = ?,
            updated_at = ?
        WHERE id = ?
        """

        async with self._connect() as db:
            await self._begin_write(db)
            await db.execute(sql, (
                access_token_encrypted, refresh_token_encrypted, _ts(expires_at),
                _ts(datetime.now(timezone.utc)), account_id
            ))
            await db.commit()

    async def deactivate_account(self, account_id: str) -> bool:
        """切断（論理削除）"""
        async with self._connect() as db:
            await self._begin_write(db)
            cursor = await db.execute(
                "UPDATE calendar_accounts SET is_active = 0, updated_at = ? WHERE id = ?",
                (_ts(datetime.now(timezone.utc)), account_id)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def reset_account(self, account_id: str) -> bool:
        """再接続後のリセット（エラー状態と連続失敗回数をクリア）"""
        sql = """
        UPDATE calendar_accounts SET
            is_active = 1, sync_status = 'idle', sync_error = NULL,
            consecutive_failures = 0, updated_at = ?
        WHERE id = ?
        """
        async with self._connect() as db:
            await self._begin_write(db)
            cursor = await db.execute(sql, (_ts(datetime.now(timezone.utc)), account_id))
            await db.commit()
            return cursor.rowcount > 0

    async def delete_account(self, account_id: str) -> bool:
        """物理削除（カレンダー・イベントもカスケード削除）"""
        async with self._connect() as db:
            await self._prepare(db)
            cursor = await db.execute("DELETE FROM calendar_accounts WHERE id = ?", (account_id,))
            await db.commit()
            return cursor.rowcount > 0

    def _row_to_account(self, row: aiosqlite.Row) -> CalendarAccount:
        """データベース行をCalendarAccountに変換"""
        return CalendarAccount(
            id=row['id'],
            user_id=row['user_id'],
            provider=ProviderKind(row['provider']),
            email=row['email'],
            access_token_encrypted=row['access_token_encrypted'],
            refresh_token_encrypted=row['refresh_token_encrypted'],
            token_expires_at=_parse_ts(row['token_expires_at']),
            caldav_password_encrypted=row['caldav_password_encrypted'],
            caldav_url=row['caldav_url'],
            sync_token=row['sync_token'],
            last_synced_at=_parse_ts(row['last_synced_at']),
            sync_status=AccountSyncStatus(row['sync_status']) if row['sync_status'] else None,
            sync_error=row['sync_error'],
            consecutive_failures=row['consecutive_failures'],
            is_active=bool(row['is_active']),
            created_at=_parse_ts(row['created_at']),
            updated_at=_parse_ts(row['updated_at'])
        )

    # ---- 同期ステータス（排他制御） ----

    def _due_conditions(self, now: datetime, interval_minutes: int, max_failures: int,
                        lease_minutes: int) -> Tuple[str, List[Any]]:
        """同期対象となる条件（選択と確保の両方で同じ条件を使う）"""
        status_clause = "sync_status IS NULL OR sync_status IN ('idle', 'error')"
        params: List[Any] = []
        if lease_minutes > 0:
            # 停止・再起動で取り残されたsyncingはリース切れで再取得できる
            status_clause += " OR (sync_status = 'syncing' AND updated_at < ?)"
            params.append(_ts(now - timedelta(minutes=lease_minutes)))

        conditions = [
            "is_active = 1",
            f"({status_clause})",
            "(last_synced_at IS NULL OR last_synced_at < ?)",
        ]
        params.append(_ts(now - timedelta(minutes=interval_minutes)))

        if max_failures > 0:
            conditions.append("consecutive_failures < ?")
            params.append(max_failures)

        return " AND ".join(conditions), params

    async def find_accounts_due(self, now: datetime, interval_minutes: int = 15, max_failures: int = 0,
                                lease_minutes: int = 30) -> List[CalendarAccount]:
        """
        同期期限を過ぎたアカウントの取得

        errorのアカウントも対象に含め、一時的な失敗は次回の確認で再試行される。
        max_failuresが0より大きい場合は連続失敗回数がその値に達したものを除外する。
        lease_minutesより長くsyncingのままの行は、停止した処理の取り残しとして再び対象になる。
        """
        where_clause, params = self._due_conditions(now, interval_minutes, max_failures, lease_minutes)
        sql = f"SELECT * FROM calendar_accounts WHERE {where_clause} ORDER BY last_synced_at ASC"

        async with self._connect() as db:
            await self._prepare(db)
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()

        return [self._row_to_account(row) for row in rows]

    async def claim_account_for_sync(self, account_id: str, now: datetime, interval_minutes: int = 15,
                                     max_failures: int = 0, lease_minutes: int = 30) -> bool:
        """条件付きUPDATEでsyncingへ遷移（他で確保済みならFalse）"""
        where_clause, params = self._due_conditions(now, interval_minutes, max_failures, lease_minutes)
        sql = f"UPDATE calendar_accounts SET sync_status = 'syncing', updated_at = ? WHERE id = ? AND {where_clause}"

        async with self._connect() as db:
            await self._begin_write(db)
            cursor = await db.execute(sql, [_ts(now), account_id, *params])
            await db.commit()
            return cursor.rowcount == 1

    async def mark_sync_idle(self, account_id: str, now: datetime):
        """同期対象無し（非アクティブ・カレンダー無し）としてidleへ戻す"""
        sql = """
        UPDATE calendar_accounts SET
            sync_status = 'idle', sync_error = NULL, last_synced_at = ?, updated_at = ?
        WHERE id = ?
        """
        async with self._connect() as db:
            await self._begin_write(db)
            await db.execute(sql, (_ts(now), _ts(now), account_id))
            await db.commit()

    async def mark_sync_succeeded(self, account_id: str, now: datetime,
                                  calendar_sync_tokens: Optional[Dict[str, Optional[str]]] = None,
                                  account_sync_token: Optional[str] = None):
        """同期トークンの保存とidleへの遷移を1トランザクションで行う"""
        account_sql = """
        UPDATE calendar_accounts SET
            sync_status = 'idle', sync_error = NULL, consecutive_failures = 0,
            sync_token = COALESCE(?, sync_token), last_synced_at = ?, updated_at = ?
        WHERE id = ?
        """

        async with self._connect() as db:
            await self._begin_write(db)
            for calendar_id, token in (calendar_sync_tokens or {}).items():
                await db.execute(
                    "UPDATE calendars SET sync_token = ?, updated_at = ? WHERE id = ? AND account_id = ?",
                    (token, _ts(now), calendar_id, account_id)
                )
            await db.execute(account_sql, (account_sync_token, _ts(now), _ts(now), account_id))
            await db.commit()

    async def mark_sync_failed(self, account_id: str, error_message: str, now: Optional[datetime] = None):
        """エラー状態へ遷移（メッセージと連続失敗回数を記録）"""
        now = now or datetime.now(timezone.utc)
        sql = """
        UPDATE calendar_accounts SET
            sync_status = 'error', sync_error = ?,
            consecutive_failures = consecutive_failures + 1, updated_at = ?
        WHERE id = ?
        """
        async with self._connect() as db:
            await self._begin_write(db)
            await db.execute(sql, (error_message, _ts(now), account_id))
            await db.commit()

    # ---- カレンダー ----

    async def add_calendar(self, calendar: Calendar) -> Calendar:
        now = _ts(datetime.now(timezone.utc))
        sql = """
        INSERT INTO calendars (id, account_id, user_id, external_id, name, sync_token, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """

        async with self._connect() as db:
            await self._prepare(db)
            await db.execute(sql, (
                calendar.id, calendar.account_id, calendar.user_id, calendar.external_id,
                calendar.name, calendar.sync_token, now, now
            ))
            await db.commit()

        return calendar

    async def list_calendars(self, account_id: str) -> List[Calendar]:
        """アカウント配下のカレンダー一覧"""
        async with self._connect() as db:
            await self._prepare(db)
            cursor = await db.execute(
                "SELECT * FROM calendars WHERE account_id = ? ORDER BY created_at ASC", (account_id,)
            )
            rows = await cursor.fetchall()

        return [
            Calendar(
                id=row['id'],
                account_id=row['account_id'],
                user_id=row['user_id'],
                external_id=row['external_id'],
                name=row['name'],
                sync_token=row['sync_token']
            )
            for row in rows
        ]

    # ---- イベント ----

    async def apply_reconciliation(self, user_id: str, events: List[ExternalEvent],
                                   deleted_external_ids: Iterable[str],
                                   now: Optional[datetime] = None) -> Tuple[int, int]:
        """削除と登録/更新をまとめて適用（戻り値: 書き込み件数, 削除件数）"""
        now_ts = _ts(now or datetime.now(timezone.utc))
        deleted_ids = list(dict.fromkeys(deleted_external_ids))
        deleted_count = 0

        upsert_sql = """
        INSERT INTO calendar_events (
            id, calendar_id, user_id, external_id, title, description, location,
            start_time, end_time, is_all_day, timezone, recurrence_rule, recurring_event_id,
            status, response_status, html_link, etag, content_hash, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (calendar_id, external_id) DO UPDATE SET
            title = excluded.title,
            description = excluded.description,
            location = excluded.location,
            start_time = excluded.start_time,
            end_time = excluded.end_time,
            is_all_day = excluded.is_all_day,
            timezone = excluded.timezone,
            recurrence_rule = excluded.recurrence_rule,
            recurring_event_id = excluded.recurring_event_id,
            status = excluded.status,
            response_status = excluded.response_status,
            html_link = excluded.html_link,
            etag = excluded.etag,
            content_hash = excluded.content_hash,
            updated_at = excluded.updated_at
        WHERE calendar_events.content_hash != excluded.content_hash
        """

        rows = [
            (
                str(uuid.uuid4()), event.calendar_id, user_id, event.external_id, event.title,
                event.description, event.location, _ts(event.start_time), _ts(event.end_time),
                int(event.is_all_day), event.timezone, event.recurrence_rule, event.recurring_event_id,
                event.status.value, event.response_status, event.html_link, event.etag,
                event.calculate_hash(), now_ts, now_ts
            )
            for event in events
        ]

        async with self._connect() as db:
            await self._prepare(db)
            await self._begin_write(db)

            # 削除はユーザー単位に限定する
            for start in range(0, len(deleted_ids), DELETE_CHUNK_SIZE):
                chunk = deleted_ids[start:start + DELETE_CHUNK_SIZE]
                placeholders = ", ".join("?" for _ in chunk)
                cursor = await db.execute(
                    f"DELETE FROM calendar_events WHERE user_id = ? AND external_id IN ({placeholders})",
                    (user_id, *chunk)
                )
                deleted_count += cursor.rowcount

            if rows:
                await db.executemany(upsert_sql, rows)

            await db.commit()

        logger.debug(f"Reconciliation applied for user {user_id}: {len(rows)} upserted, {deleted_count} deleted")
        return len(rows), deleted_count

    async def get_events(self, calendar_id: Optional[str] = None) -> List[StoredEvent]:
        """イベント取得（開始日時順）"""
        if calendar_id:
            sql = "SELECT * FROM calendar_events WHERE calendar_id = ? ORDER BY start_time ASC"
            params: Tuple = (calendar_id,)
        else:
            sql = "SELECT * FROM calendar_events ORDER BY start_time ASC"
            params = ()

        async with self._connect() as db:
            await self._prepare(db)
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()

        return [self._row_to_stored_event(row) for row in rows]

    async def list_external_ids_in_window(self, calendar_id: str, window: SyncWindow) -> Set[str]:
        """ウィンドウ内に開始するローカルイベントの外部ID"""
        sql = """
        SELECT external_id FROM calendar_events
        WHERE calendar_id = ? AND start_time >= ? AND start_time <= ?
        """

        async with self._connect() as db:
            cursor = await db.execute(sql, (calendar_id, _ts(window.time_min), _ts(window.time_max)))
            rows = await cursor.fetchall()

        return {row[0] for row in rows}

    def _row_to_stored_event(self, row: aiosqlite.Row) -> StoredEvent:
        """データベース行をStoredEventに変換"""
        return StoredEvent(
            id=row['id'],
            calendar_id=row['calendar_id'],
            user_id=row['user_id'],
            external_id=row['external_id'],
            title=row['title'],
            description=row['description'],
            location=row['location'],
            start_time=datetime.fromisoformat(row['start_time']),
            end_time=datetime.fromisoformat(row['end_time']),
            is_all_day=bool(row['is_all_day']),
            timezone=row['timezone'],
            recurrence_rule=row['recurrence_rule'],
            recurring_event_id=row['recurring_event_id'],
            status=EventStatus(row['status']),
            response_status=row['response_status'],
            html_link=row['html_link'],
            etag=row['etag'],
            content_hash=row['content_hash'],
            created_at=datetime.fromisoformat(row['created_at']),
            updated_at=datetime.fromisoformat(row['updated_at'])
        )

    # ---- 同期ログ ----

    async def log_sync(self, outcome: SyncOutcome):
        """同期結果の記録"""
        sql = """
        INSERT INTO sync_logs (account_id, status, events_upserted, events_deleted, error_message, timestamp)
        VALUES (?, ?, ?, ?, ?, ?)
        """
        timestamp = outcome.synced_at or datetime.now(timezone.utc)

        try:
            async with self._connect() as db:
                await self._begin_write(db)
                await db.execute(sql, (
                    outcome.account_id, outcome.status.value, outcome.events_upserted,
                    outcome.events_deleted, outcome.error_message, _ts(timestamp)
                ))
                await db.commit()

        except aiosqlite.Error as e:
            logger.error(f"Failed to record sync log for {outcome.account_id}: {e}")

    async def get_sync_logs(self, account_id: Optional[str] = None, limit: int = 100) -> List[SyncLog]:
        """同期ログ取得"""
        try:
            if account_id:
                sql = "SELECT * FROM sync_logs WHERE account_id = ? ORDER BY id DESC LIMIT ?"
                params: Tuple = (account_id, limit)
            else:
                sql = "SELECT * FROM sync_logs ORDER BY id DESC LIMIT ?"
                params = (limit,)

            async with self._connect() as db:
                await self._prepare(db)
                cursor = await db.execute(sql, params)
                rows = await cursor.fetchall()

            return [
                SyncLog(
                    id=row['id'],
                    account_id=row['account_id'],
                    status=row['status'],
                    events_upserted=row['events_upserted'],
                    events_deleted=row['events_deleted'],
                    error_message=row['error_message'],
                    timestamp=datetime.fromisoformat(row['timestamp'])
                )
                for row in rows
            ]

        except aiosqlite.Error as e:
            logger.error(f"Failed to get sync logs: {e}")
            return []

    async def cleanup_old_data(self, retention_days: int = 30) -> int:
        """古い同期ログのクリーンアップ"""
        cutoff_date = datetime.now(timezone.utc) - timedelta(days=retention_days)

        try:
            async with self._connect() as db:
                await self._begin_write(db)
                cursor = await db.execute("DELETE FROM sync_logs WHERE timestamp < ?", (_ts(cutoff_date),))
                removed = cursor.rowcount
                await db.commit()

            logger.info(f"Cleaned up {removed} sync logs older than {retention_days} days")
            return removed

        except aiosqlite.Error as e:
            logger.error(f"Failed to cleanup old data: {e}")
            return 0

    async def get_storage_statistics(self) -> Dict[str, Any]:
        """ストレージ統計情報"""
        counts_sql = """
        SELECT
            (SELECT COUNT(*) FROM calendar_accounts) AS total_accounts,
            (SELECT COUNT(*) FROM calendar_accounts WHERE is_active = 1) AS active_accounts,
            (SELECT COUNT(*) FROM calendars) AS total_calendars,
            (SELECT COUNT(*) FROM calendar_events) AS total_events,
            (SELECT COUNT(*) FROM sync_logs) AS total_sync_logs
        """
        try:
            async with self._connect() as db:
                await self._prepare(db)
                cursor = await db.execute(counts_sql)
                stats: Dict[str, Any] = dict(await cursor.fetchone())

                # ステータス別
                cursor = await db.execute(
                    "SELECT COALESCE(sync_status, 'unset'), COUNT(*) FROM calendar_accounts GROUP BY 1"
                )
                stats['accounts_by_status'] = {row[0]: row[1] for row in await cursor.fetchall()}

            stats['database_size_bytes'] = self.database_path.stat().st_size if self.database_path.exists() else 0
            return stats

        except aiosqlite.Error as e:
            logger.error(f"Failed to get storage statistics: {e}")
            return {}
