"""calendar-sync コマンド"""

import argparse
import asyncio
import json
import sys
import uuid
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from .config.sync_config import ConfigManager, SecretsCodec, SyncConfig
from .core.models import Calendar, CalendarAccount, CalendarInfo, ProviderKind
from .engine import CalendarSyncEngine
from .layers.data_acquisition.base_provider import CalDAVCredentials, OAuthCredentials
from .layers.data_acquisition.error_handler import CalendarSyncError
from .utils.sync_logger import setup_logging


def _parse_calendar_spec(value: str) -> List[str]:
    """EXTERNAL_ID[=NAME] 形式"""
    external_id, _, name = value.partition('=')
    if not external_id:
        raise argparse.ArgumentTypeError("カレンダーIDが空です")
    return [external_id, name or external_id]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="calendar-sync", description="Calendar synchronization engine")
    parser.add_argument("--config-dir", default="config", help="設定ディレクトリ (default: config)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="データベースを初期化し設定テンプレートを作成")
    subparsers.add_parser("run", help="スケジューラとワーカーを起動")
    subparsers.add_parser("check-now", help="同期チェックを1回実行して完了を待つ")

    sync_now = subparsers.add_parser("sync-now", help="指定アカウントを即時同期")
    sync_now.add_argument("account_id")

    reset = subparsers.add_parser("reset", help="アカウントのエラー状態をリセット")
    reset.add_argument("account_id")

    encrypt = subparsers.add_parser("encrypt", help="秘密情報を暗号化して表示")
    encrypt.add_argument("secret", nargs="?", help="未指定時は標準入力から読み込み")

    status = subparsers.add_parser("status", help="ストレージ統計と最近の同期ログを表示")
    status.add_argument("--limit", type=int, default=10)

    add_account = subparsers.add_parser("add-account", help="アカウントとカレンダーを登録")
    add_account.add_argument("--provider", required=True, choices=[kind.value for kind in ProviderKind])
    add_account.add_argument("--user-id", required=True)
    add_account.add_argument("--email", required=True)
    add_account.add_argument("--access-token", help="OAuthアクセストークン")
    add_account.add_argument("--refresh-token", help="OAuthリフレッシュトークン")
    add_account.add_argument("--expires-in", type=int, default=0, help="アクセストークンの残り秒数")
    add_account.add_argument("--password", help="CalDAVアプリ用パスワード")
    add_account.add_argument("--caldav-url", help="CalDAVサーバーURL")
    add_account.add_argument("--calendar", action="append", type=_parse_calendar_spec, default=[],
                             metavar="EXTERNAL_ID[=NAME]", help="同期するカレンダー（複数指定可）")
    add_account.add_argument("--discover", action="store_true",
                             help="プロバイダーからカレンダー一覧を取得してすべて登録")

    return parser


async def _discover_calendars(engine: CalendarSyncEngine, kind: ProviderKind,
                              args: argparse.Namespace) -> List[CalendarInfo]:
    """プロバイダーに登録済みのカレンダー一覧を取得"""
    provider = engine.worker.get_provider(kind)
    if kind.uses_oauth:
        credentials = OAuthCredentials(access_token=args.access_token)
    else:
        credentials = _caldav_credentials(engine, args)
    try:
        return await provider.list_calendars(credentials)
    except CalendarSyncError as e:
        raise SystemExit(f"カレンダー一覧を取得できませんでした: {e}")


def _caldav_credentials(engine: CalendarSyncEngine, args: argparse.Namespace) -> CalDAVCredentials:
    return CalDAVCredentials(
        username=args.email,
        password=args.password,
        server_url=args.caldav_url or engine.config.providers.icloud_caldav_url,
    )


async def _add_account(engine: CalendarSyncEngine, args: argparse.Namespace) -> int:
    codec = engine.codec
    kind = ProviderKind(args.provider)

    if kind.uses_oauth and not args.access_token:
        raise SystemExit("OAuthプロバイダーには --access-token が必要です")
    if not kind.uses_oauth and not args.password:
        raise SystemExit("CalDAVプロバイダーには --password が必要です")

    if not kind.uses_oauth:
        # 誤ったアプリ用パスワードのまま登録しない
        provider = engine.worker.get_provider(kind)
        try:
            valid = await provider.validate_credentials(_caldav_credentials(engine, args))
        except CalendarSyncError as e:
            raise SystemExit(f"CalDAVサーバーに接続できませんでした: {e}")
        if not valid:
            raise SystemExit("CalDAVの認証に失敗しました。アプリ用パスワードを確認してください")

    selected = {external_id: name for external_id, name in args.calendar}
    if args.discover:
        for info in await _discover_calendars(engine, kind, args):
            selected.setdefault(info.external_id, info.name)

    account = CalendarAccount(
        id=str(uuid.uuid4()),
        user_id=args.user_id,
        provider=kind,
        email=args.email,
        access_token_encrypted=codec.encrypt(args.access_token) if args.access_token else None,
        refresh_token_encrypted=codec.encrypt(args.refresh_token) if args.refresh_token else None,
        token_expires_at=(datetime.now(timezone.utc) + timedelta(seconds=args.expires_in)
                          if args.expires_in else None),
        caldav_password_encrypted=codec.encrypt(args.password) if args.password else None,
        caldav_url=args.caldav_url,
    )

    await engine.initialize()
    await engine.storage.create_account(account)
    for external_id, name in selected.items():
        await engine.storage.add_calendar(Calendar(
            id=str(uuid.uuid4()), account_id=account.id, user_id=account.user_id,
            external_id=external_id, name=name
        ))

    print(account.id)
    return 0


async def _status(engine: CalendarSyncEngine, limit: int) -> int:
    await engine.initialize()
    stats = await engine.storage.get_storage_statistics()
    logs = await engine.storage.get_sync_logs(limit=limit)

    print(json.dumps({
        'statistics': stats,
        'recent_syncs': [asdict(log) for log in logs],
    }, ensure_ascii=False, indent=2, default=str))
    return 0


async def _run_command(args: argparse.Namespace, config: SyncConfig) -> int:
    engine = CalendarSyncEngine(config)

    if args.command == "init-db":
        ConfigManager(args.config_dir).save_config_template()
        return 0 if await engine.initialize() else 1

    if args.command == "run":
        await engine.run_forever()
        return 0

    if args.command == "check-now":
        queued = await engine.check_now()
        print(f"{queued} sync job(s) processed")
        return 0

    if args.command == "sync-now":
        outcome = await engine.sync_now(args.account_id)
        if outcome is None:
            print(f"Account {args.account_id} was not synced", file=sys.stderr)
            return 1
        print(outcome.summary())
        if outcome.error_message:
            print(outcome.error_message, file=sys.stderr)
            return 1
        return 0

    if args.command == "reset":
        await engine.initialize()
        return 0 if await engine.storage.reset_account(args.account_id) else 1

    if args.command == "status":
        return await _status(engine, args.limit)

    if args.command == "add-account":
        return await _add_account(engine, args)

    raise SystemExit(f"Unknown command: {args.command}")


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    manager = ConfigManager(args.config_dir)
    config = manager.load_config()
    setup_logging(asdict(config.logging))
    # 起動ごとに同じキーで暗号化・復号化する
    manager.ensure_encryption_key(config)

    if args.command == "encrypt":
        secret = args.secret if args.secret is not None else sys.stdin.read().strip()
        if not secret:
            raise SystemExit("暗号化する値が空です")
        print(SecretsCodec(config.security.encryption_key).encrypt(secret))
        return 0

    return asyncio.run(_run_command(args, config))


if __name__ == "__main__":
    sys.exit(main())
