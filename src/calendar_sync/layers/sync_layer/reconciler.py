"""
リコンシリエーションエンジン
取得したイベントと削除IDをローカルのミラーへ一括反映する
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ...core.models import ExternalEvent
from .event_storage import EventStorage

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """反映結果"""
    upserted: int = 0
    deleted: int = 0
    skipped: int = 0


class ReconciliationEngine:
    """(calendar_id, external_id) をキーとした登録/更新と、ユーザー単位の削除"""

    def __init__(self, storage: EventStorage):
        self.storage = storage

    def prepare_events(self, events: Iterable[ExternalEvent],
                       known_calendar_ids: Optional[Iterable[str]] = None) -> Tuple[List[ExternalEvent], int]:
        """同一キーの重複は後勝ちで1件にまとめ、未知のカレンダーのイベントは除外"""
        known = set(known_calendar_ids) if known_calendar_ids is not None else None
        unique: Dict[Tuple[str, str], ExternalEvent] = {}
        skipped = 0

        for event in events:
            if known is not None and event.calendar_id not in known:
                skipped += 1
                continue
            unique[(event.calendar_id, event.external_id)] = event

        if skipped:
            logger.warning(f"Skipped {skipped} events bound to unknown calendars")

        return list(unique.values()), skipped

    async def reconcile(self, user_id: str, events: Iterable[ExternalEvent],
                        deleted_external_ids: Iterable[str],
                        known_calendar_ids: Optional[Iterable[str]] = None,
                        now: Optional[datetime] = None) -> ReconciliationResult:
        prepared, skipped = self.prepare_events(events, known_calendar_ids)
        deleted_ids = [external_id for external_id in deleted_external_ids if external_id]

        if not prepared and not deleted_ids:
            return ReconciliationResult(skipped=skipped)

        upserted, deleted = await self.storage.apply_reconciliation(user_id, prepared, deleted_ids, now)
        return ReconciliationResult(upserted=upserted, deleted=deleted, skipped=skipped)
