"""
# Revision Store Adapter

Persistence for revision items and monthly archives over Motor collections.

Every write goes through an explicit normalization step (`build_revision_item`,
`normalize_item_for_write`) that derives `question_key` and `difficulty_rank`;
there are no implicit save hooks.

## Error Translation

| Driver error | Raised as |
| --- | --- |
| `DuplicateKeyError` on insert | resolved here: the existing record is returned |
| `DuplicateKeyError` on update | `ConflictDegradation` (engines fold into the existing record) |
| any other `PyMongoError` | `PersistenceError` |
"""

import functools
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from revision_scheduler.database import db_manager
from revision_scheduler.database.manager import MONTHLY_ARCHIVES_COLLECTION, REVISION_ITEMS_COLLECTION
from revision_scheduler.exceptions import ConflictDegradation, PersistenceError, RevisionValidationError
from revision_scheduler.managers.logging_manager import get_logger
from revision_scheduler.models.revision_models import ArchivedItem, Bucket, MonthlyArchive, RevisionItem
from revision_scheduler.services.time_boundaries import due_at_for_bucket, to_utc

logger = get_logger(prefix="[RevisionStore]")

VALID_BUCKETS = tuple(b.value for b in Bucket)
DIFFICULTY_RANKS = {"Hard": 3, "Medium": 2, "Easy": 1}


# --- Normalization ---
def parse_bucket(value: Any) -> str:
    bucket = str(value.value if isinstance(value, Bucket) else value or "").strip().lower()
    if bucket not in VALID_BUCKETS:
        raise RevisionValidationError("bucket must be one of: today, week, month")
    return bucket


def normalize_source(source: Any) -> str:
    return str(source or "").strip().lower()


def normalize_ref(ref: Any) -> str:
    return str(ref or "").strip()


def question_key(source: Any, ref: Any) -> str:
    return f"{normalize_source(source)}:{normalize_ref(ref).lower()}"


def normalize_difficulty(value: Any) -> Optional[str]:
    """Map any casing of easy/medium/hard to its canonical form; everything else is unknown."""
    if value is None:
        return None
    v = str(getattr(value, "value", value)).strip().lower()
    return {"easy": "Easy", "medium": "Medium", "hard": "Hard"}.get(v)


def difficulty_rank(difficulty: Any) -> int:
    return DIFFICULTY_RANKS.get(normalize_difficulty(difficulty), 0)


def build_revision_item(
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
    bucket_due_at: Optional[datetime] = None,
) -> RevisionItem:
    """
    Construct a fully normalized item.

    `bucket_due_at` defaults to the boundary rule for `bucket` at `now`.

    Raises:
        RevisionValidationError: Unknown bucket or blank source/ref/title.
    """
    bucket = parse_bucket(bucket)
    source = normalize_source(source)
    ref = normalize_ref(ref)
    title = str(title or "").strip()
    if not user_id or not source or not ref or not title:
        raise RevisionValidationError("user_id, source, ref and title are required")

    now = to_utc(now)
    difficulty = normalize_difficulty(difficulty)
    return RevisionItem(
        user_id=user_id,
        question_key=question_key(source, ref),
        source=source,
        ref=ref,
        title=title,
        difficulty=difficulty,
        difficulty_rank=difficulty_rank(difficulty),
        link=link or "",
        topic=topic or "",
        tags=[str(t).strip() for t in (tags or []) if str(t).strip()],
        bucket=bucket,
        bucket_due_at=bucket_due_at if bucket_due_at is not None else due_at_for_bucket(bucket, now),
        created_at=now,
        updated_at=now,
    )


def normalize_item_for_write(item: RevisionItem) -> RevisionItem:
    """Recompute derived fields before a write."""
    source = normalize_source(item.source)
    ref = normalize_ref(item.ref)
    difficulty = normalize_difficulty(item.difficulty)
    return item.model_copy(
        update={
            "bucket": parse_bucket(item.bucket),
            "source": source,
            "ref": ref,
            "question_key": question_key(source, ref),
            "difficulty": difficulty,
            "difficulty_rank": difficulty_rank(difficulty),
        }
    )


# --- Filters ---
@dataclass
class ItemFilter:
    """
    Selection over one user's items.

    `due_before` matches items due strictly before the instant, or with no due
    date at all. `month_completed_before` matches only items that have a month
    completion strictly before the instant. `not_completed_since` drops items
    last completed at or after the instant.
    """

    user_id: str
    bucket: Optional[str] = None
    source: Optional[str] = None
    due_before: Optional[datetime] = None
    open_month_only: bool = False
    month_completed_before: Optional[datetime] = None
    not_completed_since: Optional[datetime] = None
    exclude_question_keys: Optional[List[str]] = None
    ids: Optional[List[str]] = None

    def to_query(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {"user_id": self.user_id}
        if self.bucket is not None:
            query["bucket"] = self.bucket
        if self.source is not None:
            query["source"] = self.source
        if self.due_before is not None:
            query["$or"] = [{"bucket_due_at": {"$lt": self.due_before}}, {"bucket_due_at": None}]
        if self.open_month_only:
            query["month_completed_at"] = None
        elif self.month_completed_before is not None:
            query["month_completed_at"] = {"$ne": None, "$lt": self.month_completed_before}
        if self.not_completed_since is not None:
            query["last_completed_at"] = {"$not": {"$gte": self.not_completed_since}}
        if self.exclude_question_keys:
            query["question_key"] = {"$nin": list(self.exclude_question_keys)}
        if self.ids is not None:
            query["_id"] = {"$in": list(self.ids)}
        return query


def _persistence_guard(operation: str):
    """Translate driver failures into `PersistenceError`."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except (PyMongoError, ConnectionError) as e:
                logger.error("%s failed: %s", operation, e)
                raise PersistenceError(f"{operation} failed") from e

        return wrapper

    return decorator


def _later(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


class RevisionItemStore:
    """CRUD and upsert operations over the `revision_items` collection."""

    def __init__(self, collection_name: str = REVISION_ITEMS_COLLECTION):
        self.items_collection = collection_name

    def _collection(self):
        return db_manager.get_collection(self.items_collection)

    @_persistence_guard("upsert_if_absent")
    async def upsert_if_absent(self, item: RevisionItem) -> Tuple[RevisionItem, bool]:
        """
        Insert `item` unless its `(user_id, question_key, bucket)` already exists.

        Returns:
            Tuple of the stored record and whether it was created by this call.
        """
        item = normalize_item_for_write(item)
        collection = self._collection()
        key = {"user_id": item.user_id, "question_key": item.question_key, "bucket": item.bucket}

        try:
            result = await collection.update_one(key, {"$setOnInsert": item.to_document()}, upsert=True)
            if result.upserted_id is not None:
                logger.info("Created %s item %s for user %s", item.bucket, item.question_key, item.user_id)
                return item, True
        except DuplicateKeyError:
            logger.debug("Concurrent insert for %s/%s, returning existing", item.question_key, item.bucket)

        existing = await self.find_by_key(item.user_id, item.question_key, item.bucket)
        if existing is None:
            raise PersistenceError(f"Item {item.question_key}/{item.bucket} vanished during upsert")
        return existing, False

    @_persistence_guard("find_by_id")
    async def find_by_id(self, user_id: str, item_id: str) -> Optional[RevisionItem]:
        doc = await self._collection().find_one({"_id": item_id, "user_id": user_id})
        return RevisionItem.model_validate(doc) if doc else None

    @_persistence_guard("find_by_key")
    async def find_by_key(self, user_id: str, key: str, bucket: str) -> Optional[RevisionItem]:
        doc = await self._collection().find_one({"user_id": user_id, "question_key": key, "bucket": bucket})
        return RevisionItem.model_validate(doc) if doc else None

    @_persistence_guard("find_by_question_keys")
    async def find_by_question_keys(self, user_id: str, keys: Iterable[str]) -> List[RevisionItem]:
        """Items in any bucket whose question key is in `keys`."""
        cursor = self._collection().find({"user_id": user_id, "question_key": {"$in": list(keys)}})
        return [RevisionItem.model_validate(doc) for doc in await cursor.to_list(length=None)]

    async def find_bucket(self, user_id: str, bucket: str, source: Optional[str] = None) -> List[RevisionItem]:
        return await self.find(ItemFilter(user_id=user_id, bucket=bucket, source=source))

    async def find_due_bucket(self, user_id: str, bucket: str, as_of: datetime) -> List[RevisionItem]:
        """Items of `bucket` due strictly before `as_of`."""
        return await self.find(ItemFilter(user_id=user_id, bucket=bucket, due_before=as_of))

    @_persistence_guard("find")
    async def find(self, item_filter: ItemFilter) -> List[RevisionItem]:
        cursor = self._collection().find(item_filter.to_query())
        return [RevisionItem.model_validate(doc) for doc in await cursor.to_list(length=None)]

    async def find_all(self, user_id: str) -> List[RevisionItem]:
        return await self.find(ItemFilter(user_id=user_id))

    @_persistence_guard("bulk_advance")
    async def bulk_advance(
        self, item_filter: ItemFilter, new_bucket: str, new_due_at: datetime, now: datetime
    ) -> int:
        """
        Move every matching item to `new_bucket` with `new_due_at`.

        When an item would collide with an existing record of the same question in
        `new_bucket`, it is folded into that record and deleted.

        Returns:
            Number of items actually advanced or folded by this call.
        """
        new_bucket = parse_bucket(new_bucket)
        update = {"$set": {"bucket": new_bucket, "bucket_due_at": new_due_at, "updated_at": now}}
        collection = self._collection()
        try:
            result = await collection.update_many(item_filter.to_query(), update)
            return result.modified_count
        except DuplicateKeyError:
            logger.warning("Bulk advance to %s hit a duplicate, retrying per item", new_bucket)

        advanced = 0
        for item in await self.find(item_filter):
            item_query = {**item_filter.to_query(), "_id": item.id}
            try:
                result = await collection.update_one(item_query, update)
            except DuplicateKeyError:
                if await self.fold_into(item, new_bucket, now) is not None:
                    advanced += 1
                    continue
                # the colliding record disappeared in between
                result = await collection.update_one(item_query, update)
            if result.modified_count:
                advanced += 1
        return advanced

    async def fold_into(
        self, item: RevisionItem, bucket: str, now: datetime, completed_at: Optional[datetime] = None
    ) -> Optional[RevisionItem]:
        """
        Merge `item` into the record of the same question in `bucket`, then delete `item`.

        The surviving record keeps the latest `last_completed_at` of both (and of
        `completed_at` when given).

        Returns:
            The merged record, or `None` when `bucket` holds no such question (nothing is changed).
        """
        target = await self.find_by_key(item.user_id, item.question_key, bucket)
        if target is None:
            return None
        last = _later(_later(target.last_completed_at, item.last_completed_at), completed_at)
        merged = await self.update_fields(target.user_id, target.id, {"last_completed_at": last}, now)
        await self.delete_and_return(item.user_id, item.id)
        logger.info("Folded %s item %s into existing %s record", item.bucket, item.question_key, bucket)
        return merged or target

    @_persistence_guard("update_fields")
    async def update_fields(
        self, user_id: str, item_id: str, fields: Dict[str, Any], now: datetime
    ) -> Optional[RevisionItem]:
        """
        Set `fields` on one item and return the updated record (`None` if missing).

        Raises:
            ConflictDegradation: The change would duplicate a record in the target bucket.
        """
        fields = dict(fields)
        if "bucket" in fields:
            fields["bucket"] = parse_bucket(fields["bucket"])
        if "difficulty" in fields:
            fields["difficulty"] = normalize_difficulty(fields["difficulty"])
            fields["difficulty_rank"] = difficulty_rank(fields["difficulty"])
        fields["updated_at"] = now

        try:
            doc = await self._collection().find_one_and_update(
                {"_id": item_id, "user_id": user_id},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as e:
            raise ConflictDegradation(
                f"Item {item_id} collides in bucket {fields.get('bucket')}", bucket=fields.get("bucket", "")
            ) from e
        return RevisionItem.model_validate(doc) if doc else None

    @_persistence_guard("delete_and_return")
    async def delete_and_return(self, user_id: str, item_id: str) -> Optional[RevisionItem]:
        doc = await self._collection().find_one_and_delete({"_id": item_id, "user_id": user_id})
        return RevisionItem.model_validate(doc) if doc else None

    @_persistence_guard("delete_many")
    async def delete_many(self, item_filter: ItemFilter) -> int:
        result = await self._collection().delete_many(item_filter.to_query())
        return result.deleted_count


class MonthlyArchiveStore:
    """Append-only storage of month completions, one document per user and month."""

    def __init__(self, collection_name: str = MONTHLY_ARCHIVES_COLLECTION):
        self.archives_collection = collection_name

    def _collection(self):
        return db_manager.get_collection(self.archives_collection)

    @_persistence_guard("archive_add_items")
    async def add_items(
        self, user_id: str, month_key: str, items: List[ArchivedItem], now: datetime
    ) -> List[str]:
        """
        Add each item unless its `item_key` is already present in the month.

        Returns:
            The item keys actually added by this call.
        """
        collection = self._collection()
        doc_filter = {"user_id": user_id, "month_key": month_key}
        try:
            await collection.update_one(
                doc_filter,
                {
                    "$setOnInsert": {
                        "_id": str(uuid4()),
                        "user_id": user_id,
                        "month_key": month_key,
                        "items": [],
                        "created_at": now,
                        "updated_at": now,
                    }
                },
                upsert=True,
            )
        except DuplicateKeyError:
            logger.debug("Archive %s for user %s created concurrently", month_key, user_id)

        added: List[str] = []
        for archived in items:
            result = await collection.update_one(
                {**doc_filter, "items.item_key": {"$ne": archived.item_key}},
                {"$push": {"items": archived.model_dump()}, "$set": {"updated_at": now}},
            )
            if result.modified_count:
                added.append(archived.item_key)
        return added

    @_persistence_guard("archive_remove_item")
    async def remove_item(self, user_id: str, month_key: str, item_key: str) -> bool:
        result = await self._collection().update_one(
            {"user_id": user_id, "month_key": month_key}, {"$pull": {"items": {"item_key": item_key}}}
        )
        return bool(result.modified_count)

    @_persistence_guard("archive_find_month")
    async def find_month(self, user_id: str, month_key: str) -> Optional[MonthlyArchive]:
        doc = await self._collection().find_one({"user_id": user_id, "month_key": month_key})
        return MonthlyArchive.model_validate(doc) if doc else None

    @_persistence_guard("archive_list_months")
    async def list_months(self, user_id: str) -> List[MonthlyArchive]:
        cursor = self._collection().find({"user_id": user_id}).sort(
            [("month_key", DESCENDING), ("updated_at", DESCENDING)]
        )
        return [MonthlyArchive.model_validate(doc) for doc in await cursor.to_list(length=None)]

    @_persistence_guard("archive_find_completions")
    async def find_archived_completions(self, user_id: str, item_keys: Iterable[str]) -> Dict[str, datetime]:
        """Latest archived completion instant per requested item key."""
        keys = set(item_keys)
        if not keys:
            return {}
        cursor = self._collection().find({"user_id": user_id, "items.item_key": {"$in": list(keys)}}).sort(
            "month_key", ASCENDING
        )
        latest: Dict[str, datetime] = {}
        for doc in await cursor.to_list(length=None):
            for entry in doc.get("items", []):
                key = entry.get("item_key")
                completed_at = entry.get("completed_at")
                if key in keys and completed_at is not None:
                    latest[key] = _later(latest.get(key), to_utc(completed_at))
        return latest
