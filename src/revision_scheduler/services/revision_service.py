"""Command surface for adding, starring and moving revision items."""

from datetime import datetime
from typing import Any, Iterable, Optional, Tuple

from revision_scheduler.config import settings
from revision_scheduler.exceptions import (
    ConflictDegradation,
    PersistenceError,
    RevisionNotFoundError,
    RevisionValidationError,
)
from revision_scheduler.managers.logging_manager import get_logger
from revision_scheduler.models.revision_models import RevisionItem, StarResult
from revision_scheduler.services.revision_store import (
    RevisionItemStore,
    build_revision_item,
    normalize_difficulty,
    parse_bucket,
)
from revision_scheduler.services.submission_feed import LeetCodeClient, normalize_leetcode_slug
from revision_scheduler.services.time_boundaries import due_at_for_bucket

logger = get_logger(prefix="[RevisionService]")

LEETCODE_SOURCE = "leetcode"
STAR_WEEK_SOURCE = "leetcode_star_week"
STAR_MONTH_SOURCE = "leetcode_star_month"


def default_bucket_for_difficulty(difficulty: Any) -> str:
    """Medium and Hard problems start in `week`, everything else in `today`."""
    return "week" if normalize_difficulty(difficulty) in ("Medium", "Hard") else "today"


class RevisionService:
    def __init__(self, store: RevisionItemStore, feed: LeetCodeClient):
        self.store = store
        self.feed = feed

    async def add_item(
        self,
        user_id: str,
        source: str,
        ref: str,
        title: str,
        bucket: Any,
        now: datetime,
        difficulty: Any = None,
        link: str = "",
        topic: str = "",
        tags: Optional[Iterable[str]] = None,
    ) -> Tuple[RevisionItem, bool]:
        """
        Add a question to a bucket.

        Returns:
            The stored item and `True` when it already existed in that bucket.
        """
        item = build_revision_item(
            user_id=user_id,
            source=source,
            ref=ref,
            title=title,
            bucket=bucket,
            now=now,
            difficulty=difficulty,
            link=link,
            topic=topic,
            tags=tags,
        )
        stored, created = await self.store.upsert_if_absent(item)
        if not created:
            logger.info("Duplicate add of %s to %s for user %s", item.question_key, item.bucket, user_id)
        return stored, not created

    async def _lookup(self, slug: Any) -> Tuple[str, dict]:
        slug = normalize_leetcode_slug(slug)
        if not slug:
            raise RevisionValidationError("slug is required (e.g. two-sum or a full LeetCode URL)")
        details = await self.feed.fetch_question_details(slug)
        if details is None:
            raise RevisionNotFoundError("Question not found on LeetCode")
        return slug, details

    async def add_from_leetcode(
        self, user_id: str, slug: Any, now: datetime, bucket: Any = None
    ) -> Tuple[RevisionItem, bool]:
        """
        Add a LeetCode problem by slug or URL, using the feed for title and difficulty.

        Raises:
            RevisionValidationError: Blank slug or unknown bucket.
            RevisionNotFoundError: The problem does not exist.
            ExternalFeedUnavailable: The lookup failed.
        """
        slug, details = await self._lookup(slug)
        difficulty = normalize_difficulty(details.get("difficulty"))
        target = parse_bucket(bucket) if bucket else default_bucket_for_difficulty(difficulty)
        return await self.add_item(
            user_id,
            LEETCODE_SOURCE,
            slug,
            details.get("title") or slug,
            target,
            now,
            difficulty=difficulty,
            link=settings.LEETCODE_PROBLEM_URL_TEMPLATE.format(slug=slug),
            tags=details.get("tags"),
        )

    async def star_from_leetcode(self, user_id: str, slug: Any, now: datetime) -> StarResult:
        """Create one-shot reminders for a problem in both `week` and `month`."""
        slug, details = await self._lookup(slug)
        common = {
            "user_id": user_id,
            "ref": slug,
            "title": details.get("title") or slug,
            "now": now,
            "difficulty": details.get("difficulty"),
            "link": settings.LEETCODE_PROBLEM_URL_TEMPLATE.format(slug=slug),
        }
        week_item, week_created = await self.store.upsert_if_absent(
            build_revision_item(source=STAR_WEEK_SOURCE, bucket="week", **common)
        )
        month_item, month_created = await self.store.upsert_if_absent(
            build_revision_item(source=STAR_MONTH_SOURCE, bucket="month", **common)
        )
        logger.info("Starred %s for user %s (week=%s, month=%s)", slug, user_id, week_created, month_created)
        return StarResult(
            created_week=week_created,
            created_month=month_created,
            duplicate_week=not week_created,
            duplicate_month=not month_created,
            items={"week": week_item, "month": month_item},
        )

    async def move_item(self, user_id: str, item_id: str, bucket: Any, now: datetime) -> RevisionItem:
        """
        Move an item to `bucket` with that bucket's default due date.

        Entering a different bucket clears that bucket's completion marker. If the
        target bucket already holds the question, the item is folded into it and
        the existing record is returned.
        """
        target = parse_bucket(bucket)
        item = await self.store.find_by_id(user_id, item_id)
        if item is None:
            raise RevisionNotFoundError("Revision item not found")

        fields = {"bucket": target, "bucket_due_at": due_at_for_bucket(target, now)}
        if item.bucket != target:
            merged = await self.store.fold_into(item, target, now)
            if merged is not None:
                return merged
            if target == "week":
                fields["week_completed_at"] = None
            elif target == "month":
                fields["month_completed_at"] = None

        try:
            updated = await self.store.update_fields(user_id, item_id, fields, now)
        except ConflictDegradation as e:
            merged = await self.store.fold_into(item, target, now)
            if merged is None:
                raise PersistenceError(f"Could not move {item.question_key} into {target}") from e
            return merged
        if updated is None:
            raise RevisionNotFoundError("Revision item not found")
        return updated
