"""
Monthly archive engine.

Completed month items are copied into one archive document per user and civil
month (fixed zone) before they leave the active queue. Archiving is set-like
by `item_key`, so repeating it never grows a month.
"""

from collections import OrderedDict
from datetime import datetime, tzinfo
from typing import Dict, Iterable, List, Optional

from revision_scheduler.managers.logging_manager import get_logger
from revision_scheduler.models.revision_models import ArchivedItem, MonthlyArchive, RevisionItem
from revision_scheduler.services.revision_store import (
    ItemFilter,
    MonthlyArchiveStore,
    RevisionItemStore,
    normalize_difficulty,
    normalize_ref,
    normalize_source,
    question_key,
)
from revision_scheduler.services.time_boundaries import month_key, start_of_month

logger = get_logger(prefix="[ArchiveService]")


def to_archived_item(item: RevisionItem) -> Optional[ArchivedItem]:
    """Snapshot of a month-completed item, or `None` if it was never month-completed."""
    if item.month_completed_at is None:
        return None
    ref = normalize_ref(item.ref)
    return ArchivedItem(
        item_key=question_key(item.source, ref),
        source=normalize_source(item.source),
        ref=ref,
        title=item.title or ref,
        difficulty=normalize_difficulty(item.difficulty),
        link=item.link or "",
        completed_at=item.month_completed_at,
    )


class ArchiveService:
    def __init__(
        self, store: RevisionItemStore, archive_store: MonthlyArchiveStore, zone: Optional[tzinfo] = None
    ):
        self.store = store
        self.archive_store = archive_store
        self.zone = zone

    async def archive(self, user_id: str, items: Iterable[RevisionItem], now: datetime) -> Dict[str, List[str]]:
        """
        Archive month-completed items, grouped by the month of their completion.

        Items without `month_completed_at` are skipped.

        Returns:
            Month key -> item keys newly added by this call.
        """
        by_month: "OrderedDict[str, List[ArchivedItem]]" = OrderedDict()
        for item in items:
            archived = to_archived_item(item)
            if archived is None:
                continue
            by_month.setdefault(month_key(archived.completed_at, self.zone), []).append(archived)

        added: Dict[str, List[str]] = {}
        for key, group in by_month.items():
            added[key] = await self.archive_store.add_items(user_id, key, group, now)
            logger.info(
                "Archived %d/%d items into %s for user %s", len(added[key]), len(group), key, user_id
            )
        return added

    async def unarchive(self, user_id: str, added: Dict[str, List[str]]) -> None:
        """Undo entries returned by `archive()`."""
        for key, item_keys in added.items():
            for item_key in item_keys:
                await self.archive_store.remove_item(user_id, key, item_key)
                logger.warning("Removed archived %s from %s for user %s", item_key, key, user_id)

    async def cleanup_previous_months(self, user_id: str, now: datetime) -> int:
        """
        Archive and delete month items completed before the current civil month.

        Returns:
            Number of live records removed.
        """
        month_start = start_of_month(now, self.zone)
        stale = await self.store.find(
            ItemFilter(user_id=user_id, bucket="month", month_completed_before=month_start)
        )
        if not stale:
            return 0

        await self.archive(user_id, stale, now)
        deleted = await self.store.delete_many(
            ItemFilter(
                user_id=user_id,
                bucket="month",
                month_completed_before=month_start,
                ids=[item.id for item in stale],
            )
        )
        logger.info("Cleaned up %d month items completed before %s for user %s", deleted, month_start, user_id)
        return deleted

    async def archived_for_month(self, user_id: str, key: str) -> List[ArchivedItem]:
        archive = await self.archive_store.find_month(user_id, key)
        return archive.items if archive else []

    async def history(self, user_id: str) -> List[MonthlyArchive]:
        return await self.archive_store.list_months(user_id)
