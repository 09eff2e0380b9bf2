"""Shared fixtures: in-memory stores, a scripted submission feed and a pinned clock."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytest

from revision_scheduler.exceptions import ConflictDegradation, ExternalFeedUnavailable, PersistenceError
from revision_scheduler.models.revision_models import ArchivedItem, MonthlyArchive, RevisionItem
from revision_scheduler.services.revision_store import (
    ItemFilter,
    MonthlyArchiveStore,
    RevisionItemStore,
    difficulty_rank,
    normalize_difficulty,
    normalize_item_for_write,
    parse_bucket,
)
from revision_scheduler.services.scheduler import RevisionScheduler
from revision_scheduler.services.time_boundaries import FixedClock, to_utc

USER_ID = "user-123"
OTHER_USER_ID = "user-456"
USERNAME = "alice_codes"

# Wednesday 2024-01-10 12:00 UTC
WEDNESDAY = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _matches(item: RevisionItem, item_filter: ItemFilter) -> bool:
    if item.user_id != item_filter.user_id:
        return False
    if item_filter.bucket is not None and item.bucket != item_filter.bucket:
        return False
    if item_filter.source is not None and item.source != item_filter.source:
        return False
    if item_filter.due_before is not None:
        if item.bucket_due_at is not None and not item.bucket_due_at < item_filter.due_before:
            return False
    if item_filter.open_month_only:
        if item.month_completed_at is not None:
            return False
    elif item_filter.month_completed_before is not None:
        if item.month_completed_at is None or not item.month_completed_at < item_filter.month_completed_before:
            return False
    if item_filter.not_completed_since is not None:
        if item.last_completed_at is not None and item.last_completed_at >= item_filter.not_completed_since:
            return False
    if item_filter.exclude_question_keys and item.question_key in item_filter.exclude_question_keys:
        return False
    if item_filter.ids is not None and item.id not in item_filter.ids:
        return False
    return True


class InMemoryRevisionItemStore(RevisionItemStore):
    """Dict-backed store enforcing the `(user_id, question_key, bucket)` uniqueness."""

    def __init__(self):
        super().__init__()
        self.items: Dict[str, RevisionItem] = {}
        self.failing_operations = set()

    def _check(self, operation: str) -> None:
        if operation in self.failing_operations:
            raise PersistenceError(f"{operation} failed")

    def _key_holder(self, user_id: str, key: str, bucket: str) -> Optional[RevisionItem]:
        for item in self.items.values():
            if item.user_id == user_id and item.question_key == key and item.bucket == bucket:
                return item
        return None

    def add(self, item: RevisionItem) -> RevisionItem:
        """Seed an item directly, bypassing the upsert path."""
        item = normalize_item_for_write(item)
        assert self._key_holder(item.user_id, item.question_key, item.bucket) is None
        self.items[item.id] = item
        return item.model_copy(deep=True)

    def all(self, user_id: str = USER_ID) -> List[RevisionItem]:
        return [item.model_copy(deep=True) for item in self.items.values() if item.user_id == user_id]

    async def upsert_if_absent(self, item: RevisionItem) -> Tuple[RevisionItem, bool]:
        self._check("upsert_if_absent")
        item = normalize_item_for_write(item)
        existing = self._key_holder(item.user_id, item.question_key, item.bucket)
        if existing is not None:
            return existing.model_copy(deep=True), False
        self.items[item.id] = item
        return item.model_copy(deep=True), True

    async def find_by_id(self, user_id: str, item_id: str) -> Optional[RevisionItem]:
        self._check("find_by_id")
        item = self.items.get(item_id)
        if item is None or item.user_id != user_id:
            return None
        return item.model_copy(deep=True)

    async def find_by_key(self, user_id: str, key: str, bucket: str) -> Optional[RevisionItem]:
        self._check("find_by_key")
        item = self._key_holder(user_id, key, bucket)
        return item.model_copy(deep=True) if item else None

    async def find_by_question_keys(self, user_id: str, keys: Iterable[str]) -> List[RevisionItem]:
        self._check("find_by_question_keys")
        keys = set(keys)
        return [i.model_copy(deep=True) for i in self.items.values() if i.user_id == user_id and i.question_key in keys]

    async def find(self, item_filter: ItemFilter) -> List[RevisionItem]:
        self._check("find")
        return [i.model_copy(deep=True) for i in self.items.values() if _matches(i, item_filter)]

    async def bulk_advance(self, item_filter: ItemFilter, new_bucket: str, new_due_at: datetime, now: datetime) -> int:
        self._check("bulk_advance")
        new_bucket = parse_bucket(new_bucket)
        advanced = 0
        for item in await self.find(item_filter):
            holder = self._key_holder(item.user_id, item.question_key, new_bucket)
            if holder is not None and holder.id != item.id:
                await self.fold_into(item, new_bucket, now)
            else:
                self.items[item.id] = self.items[item.id].model_copy(
                    update={"bucket": new_bucket, "bucket_due_at": new_due_at, "updated_at": now}
                )
            advanced += 1
        return advanced

    async def update_fields(
        self, user_id: str, item_id: str, fields: Dict[str, Any], now: datetime
    ) -> Optional[RevisionItem]:
        self._check("update_fields")
        item = self.items.get(item_id)
        if item is None or item.user_id != user_id:
            return None
        fields = dict(fields)
        if "bucket" in fields:
            fields["bucket"] = parse_bucket(fields["bucket"])
            holder = self._key_holder(user_id, item.question_key, fields["bucket"])
            if holder is not None and holder.id != item.id:
                raise ConflictDegradation("duplicate", question_key=item.question_key, bucket=fields["bucket"])
        if "difficulty" in fields:
            fields["difficulty"] = normalize_difficulty(fields["difficulty"])
            fields["difficulty_rank"] = difficulty_rank(fields["difficulty"])
        fields["updated_at"] = now
        self.items[item_id] = item.model_copy(update=fields)
        return self.items[item_id].model_copy(deep=True)

    async def delete_and_return(self, user_id: str, item_id: str) -> Optional[RevisionItem]:
        self._check("delete_and_return")
        item = self.items.get(item_id)
        if item is None or item.user_id != user_id:
            return None
        return self.items.pop(item_id)

    async def delete_many(self, item_filter: ItemFilter) -> int:
        self._check("delete_many")
        doomed = [item_id for item_id, item in self.items.items() if _matches(item, item_filter)]
        for item_id in doomed:
            del self.items[item_id]
        return len(doomed)


class InMemoryMonthlyArchiveStore(MonthlyArchiveStore):
    def __init__(self):
        super().__init__()
        self.archives: Dict[Tuple[str, str], MonthlyArchive] = {}

    async def add_items(self, user_id: str, month_key: str, items: List[ArchivedItem], now: datetime) -> List[str]:
        archive = self.archives.setdefault(
            (user_id, month_key),
            MonthlyArchive(id=f"{user_id}-{month_key}", user_id=user_id, month_key=month_key, created_at=now),
        )
        present = {entry.item_key for entry in archive.items}
        added = []
        for archived in items:
            if archived.item_key in present:
                continue
            archive.items.append(archived)
            present.add(archived.item_key)
            added.append(archived.item_key)
        archive.updated_at = now
        return added

    async def remove_item(self, user_id: str, month_key: str, item_key: str) -> bool:
        archive = self.archives.get((user_id, month_key))
        if archive is None:
            return False
        before = len(archive.items)
        archive.items = [entry for entry in archive.items if entry.item_key != item_key]
        return len(archive.items) != before

    async def find_month(self, user_id: str, month_key: str) -> Optional[MonthlyArchive]:
        archive = self.archives.get((user_id, month_key))
        return archive.model_copy(deep=True) if archive else None

    async def list_months(self, user_id: str) -> List[MonthlyArchive]:
        months = [a for (owner, _), a in self.archives.items() if owner == user_id]
        return [a.model_copy(deep=True) for a in sorted(months, key=lambda a: a.month_key, reverse=True)]

    async def find_archived_completions(self, user_id: str, item_keys: Iterable[str]) -> Dict[str, datetime]:
        keys = set(item_keys)
        latest: Dict[str, datetime] = {}
        for (owner, _), archive in self.archives.items():
            if owner != user_id:
                continue
            for entry in archive.items:
                if entry.item_key in keys:
                    completed_at = to_utc(entry.completed_at)
                    latest[entry.item_key] = max(latest.get(entry.item_key, completed_at), completed_at)
        return latest


class FakeSubmissionFeed:
    """Scripted stand-in for the LeetCode client."""

    def __init__(self):
        self.submissions: List[Dict[str, Any]] = []
        self.details: Dict[str, Dict[str, Any]] = {}
        self.error: Optional[Exception] = None
        self.calls: List[Tuple[str, int]] = []

    def accept(self, slug: str, accepted_at: datetime, title: str = "") -> None:
        self.submissions.append(
            {"problem_ref": slug, "accepted_at_epoch_seconds": accepted_at.timestamp(), "title": title or slug}
        )

    async def fetch_recent_accepted(self, username: str, limit: int):
        self.calls.append((username, limit))
        if self.error is not None:
            raise self.error
        return list(self.submissions)

    async def fetch_question_details(self, slug: str):
        if self.error is not None:
            raise self.error
        return self.details.get(slug)


@pytest.fixture
def store():
    return InMemoryRevisionItemStore()


@pytest.fixture
def archive_store():
    return InMemoryMonthlyArchiveStore()


@pytest.fixture
def feed():
    feed = FakeSubmissionFeed()
    feed.details = {
        "two-sum": {"title": "Two Sum", "title_slug": "two-sum", "difficulty": "Easy", "tags": ["array", "hash-table"]},
        "merge-k-sorted-lists": {
            "title": "Merge k Sorted Lists",
            "title_slug": "merge-k-sorted-lists",
            "difficulty": "Hard",
            "tags": ["linked-list", "heap-priority-queue"],
        },
    }
    return feed


@pytest.fixture
def clock():
    return FixedClock(WEDNESDAY)


@pytest.fixture
def scheduler(store, archive_store, feed, clock):
    return RevisionScheduler(store=store, archive_store=archive_store, feed=feed, clock=clock)


@pytest.fixture
def unavailable_feed(feed):
    feed.error = ExternalFeedUnavailable("LeetCode GraphQL HTTP 429")
    return feed
