"""
# Completion & Promotion Engine

Explicit "mark complete" per bucket:

| Bucket | Outcome |
| --- | --- |
| `today` | moves to `week` (or folds into the existing `week` record) |
| `week`, one-shot source | deleted |
| `week`, Medium/Hard | moves to `month` (or folds into the existing `month` record) |
| `week`, Easy/unknown | moves to `month` if asked, otherwise stays in `week` with a fresh due date |
| `month` | archived, then deleted |

The month transition archives first and deletes second; if the delete fails the
archive entries added by this call are removed again, so the caller sees either
the whole transition or none of it.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from revision_scheduler.config import settings
from revision_scheduler.exceptions import (
    ConflictDegradation,
    PersistenceError,
    RevisionNotFoundError,
    RevisionValidationError,
)
from revision_scheduler.managers.logging_manager import get_logger
from revision_scheduler.models.revision_models import CompletionResult, RevisionItem
from revision_scheduler.services.archive_service import ArchiveService
from revision_scheduler.services.revision_store import (
    RevisionItemStore,
    normalize_difficulty,
    normalize_source,
    parse_bucket,
)
from revision_scheduler.services.time_boundaries import month_due_at, weekly_due_at_after_completion
from revision_scheduler.utils.logging_utils import log_error_with_context

logger = get_logger(prefix="[CompletionService]")

MONTHLY_DIFFICULTIES = ("Medium", "Hard")


class CompletionService:
    def __init__(
        self,
        store: RevisionItemStore,
        archive_service: ArchiveService,
        one_shot_sources: Optional[Iterable[str]] = None,
    ):
        self.store = store
        self.archive_service = archive_service
        sources = settings.one_shot_sources if one_shot_sources is None else one_shot_sources
        self.one_shot_sources = {normalize_source(s) for s in sources}

    async def complete(
        self, user_id: str, item_id: str, scope: Any, promote_easy_to_month: bool, now: datetime
    ) -> CompletionResult:
        """
        Complete one item.

        Raises:
            RevisionValidationError: `scope` is not a bucket or differs from the item's bucket.
            RevisionNotFoundError: The user has no such item.
            PersistenceError: The store failed; the item is left as it was.
        """
        scope = parse_bucket(scope)
        item = await self.store.find_by_id(user_id, item_id)
        if item is None:
            raise RevisionNotFoundError("Revision item not found")
        if item.bucket != scope:
            raise RevisionValidationError(f"Item is in the {item.bucket} bucket, not {scope}")

        if scope == "today":
            result = await self._complete_today(item, now)
        elif scope == "week":
            result = await self._complete_week(item, promote_easy_to_month, now)
        else:
            result = await self._complete_month(item, now)

        logger.info(
            "Completed %s item %s for user %s (deleted=%s, moved_to_month=%s, merged_into=%s)",
            scope,
            item.question_key,
            user_id,
            result.deleted,
            result.moved_to_month,
            result.merged_into,
        )
        return result

    async def _move_or_fold(
        self, item: RevisionItem, bucket: str, fields: Dict[str, Any], now: datetime
    ) -> CompletionResult:
        """Apply `fields` (which move the item into `bucket`) unless `bucket` already holds the question."""
        completed_at = fields.get("last_completed_at")
        merged = await self.store.fold_into(item, bucket, now, completed_at=completed_at)
        if merged is None:
            try:
                updated = await self.store.update_fields(item.user_id, item.id, fields, now)
            except ConflictDegradation:
                merged = await self.store.fold_into(item, bucket, now, completed_at=completed_at)
                if merged is None:
                    raise PersistenceError(f"Could not move {item.question_key} into {bucket}")
            else:
                if updated is None:
                    raise RevisionNotFoundError("Revision item not found")
                return CompletionResult(item=updated, moved_to_month=bucket == "month")
        return CompletionResult(item=merged, deleted=True, moved_to_month=bucket == "month", merged_into=merged.id)

    async def _complete_today(self, item: RevisionItem, now: datetime) -> CompletionResult:
        return await self._move_or_fold(
            item,
            "week",
            {
                "bucket": "week",
                "bucket_due_at": weekly_due_at_after_completion(now),
                "last_completed_at": now,
                "week_completed_at": None,
                "month_completed_at": None,
            },
            now,
        )

    async def _complete_week(self, item: RevisionItem, promote_easy_to_month: bool, now: datetime) -> CompletionResult:
        if normalize_source(item.source) in self.one_shot_sources:
            await self.store.delete_and_return(item.user_id, item.id)
            return CompletionResult(deleted=True)

        fields: Dict[str, Any] = {"last_completed_at": now, "week_completed_at": now}
        if normalize_difficulty(item.difficulty) in MONTHLY_DIFFICULTIES or promote_easy_to_month:
            fields.update({"bucket": "month", "bucket_due_at": month_due_at(now), "month_completed_at": None})
            return await self._move_or_fold(item, "month", fields, now)

        fields["bucket_due_at"] = weekly_due_at_after_completion(now)
        updated = await self.store.update_fields(item.user_id, item.id, fields, now)
        if updated is None:
            raise RevisionNotFoundError("Revision item not found")
        return CompletionResult(item=updated)

    async def _complete_month(self, item: RevisionItem, now: datetime) -> CompletionResult:
        completed = item.model_copy(update={"month_completed_at": now, "last_completed_at": now})
        added = await self.archive_service.archive(item.user_id, [completed], now)

        try:
            await self.store.delete_and_return(item.user_id, item.id)
        except PersistenceError as e:
            log_error_with_context(e, {"operation": "complete_month", "item_id": item.id, "user_id": item.user_id})
            await self.archive_service.unarchive(item.user_id, added)
            raise

        return CompletionResult(item=completed, deleted=True, archived=True)
