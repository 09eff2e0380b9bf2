"""
# Revision Models

Data structures for the **Revision Bucket Scheduler**: practice questions tracked
across three recurring review tiers and the permanent monthly archive of
month-tier completions.

## Domain Model Overview

1.  **RevisionItem**: one tracked question inside one bucket (`today`, `week` or `month`).
    Identity is `(user_id, question_key, bucket)`; the same question may live in
    `week` and `month` at once but never twice in one bucket.
2.  **MonthlyArchive**: one document per `(user_id, month_key)` holding a set of
    **ArchivedItem** entries, unique by `item_key`.

## Derived Fields

`question_key` and `difficulty_rank` are never set by callers. The store adapter
recomputes them through `build_revision_item()` / `normalize_item_for_write()`
before every write.

## Usage Examples

```python
item = RevisionItem(
    user_id="user_123",
    question_key="leetcode:two-sum",
    source="leetcode",
    ref="two-sum",
    title="Two Sum",
    difficulty=Difficulty.EASY,
    bucket=Bucket.WEEK,
    bucket_due_at=week_due_at(now),
)
```
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Enums
class Bucket(str, Enum):
    """Enumeration of review tiers.

    Attributes:
        TODAY: Urgent daily task, due at the end of the current UTC day.
        WEEK: Weekly review, due just before the Sunday boundary.
        MONTH: Monthly review, due at the end of the civil month.
    """

    TODAY = "today"
    WEEK = "week"
    MONTH = "month"


class Difficulty(str, Enum):
    """Enumeration of question difficulties. Unknown difficulty is `None`."""

    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class RevisionItem(BaseModel):
    """
    Model representing one tracked question within one bucket.

    **Fields:**
    *   **question_key**: `lower(source):lower(ref)`, the cross-bucket identity.
    *   **bucket_due_at**: Consistent with `bucket` per the boundary calculator.
    *   **last_completed_at / week_completed_at / month_completed_at**: Completion markers.
    *   **leetcode_last_accepted_at**: Read-only annotation attached by the summary; never persisted.
    """

    id: str = Field(default_factory=lambda: str(uuid4()), alias="_id", description="Unique identifier")
    user_id: str = Field(..., description="Owning user")
    question_key: str = Field(..., description="Normalized source:ref identity")
    source: str = Field(..., min_length=1, description="Origin system name")
    ref: str = Field(..., min_length=1, description="Origin-specific identifier")
    title: str = Field(..., min_length=1, description="Question title")
    difficulty: Optional[Difficulty] = Field(None, description="Difficulty, None when unknown")
    difficulty_rank: int = Field(0, description="Hard 3, Medium 2, Easy 1, unknown 0")
    link: str = Field("", description="Question URL")
    topic: str = Field("", description="Free-form topic")
    tags: List[str] = Field(default_factory=list, description="Topic tags")
    bucket: Bucket = Field(..., description="Current review tier")
    bucket_due_at: datetime = Field(..., description="When the item is due in its bucket")
    last_completed_at: Optional[datetime] = None
    week_completed_at: Optional[datetime] = None
    month_completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    leetcode_last_accepted_at: Optional[datetime] = Field(None, description="Latest accepted feed submission")

    class Config:
        populate_by_name = True
        use_enum_values = True

    def to_document(self) -> Dict:
        """Return the Mongo document for this item (annotations stripped)."""
        return self.model_dump(by_alias=True, exclude={"leetcode_last_accepted_at"})


class ArchivedItem(BaseModel):
    """A month-bucket completion preserved in the monthly archive."""

    item_key: str = Field(..., description="source:ref, unique within one archive document")
    source: str
    ref: str
    title: str
    difficulty: Optional[Difficulty] = None
    link: str = ""
    completed_at: datetime

    class Config:
        use_enum_values = True


class MonthlyArchive(BaseModel):
    """
    One archive document per user and civil month (`YYYY-MM` in the fixed zone).

    Created lazily on first archival; only ever grows.
    """

    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    month_key: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    items: List[ArchivedItem] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, v):
        return str(v) if v is not None else None


# Request Models
class AddRevisionItemRequest(BaseModel):
    """
    Request model for manually adding a question to a bucket.

    **Validation:**
    *   **source / ref / title**: Required and non-blank.
    *   **difficulty**: Case-insensitive; anything unrecognised is stored as unknown.
    """

    source: str = Field(..., min_length=1, max_length=100)
    ref: str = Field(..., min_length=1, max_length=300)
    title: str = Field(..., min_length=1, max_length=300)
    bucket: Bucket
    difficulty: Optional[str] = None
    link: str = Field("", max_length=2000)
    topic: str = Field("", max_length=200)
    tags: List[str] = Field(default_factory=list)

    @field_validator("source", "ref", "title")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class AddFromLeetCodeRequest(BaseModel):
    """Add a LeetCode problem by slug or URL; `bucket` defaults by difficulty."""

    slug: str = Field(..., min_length=1, max_length=500)
    bucket: Optional[Bucket] = None


class StarFromLeetCodeRequest(BaseModel):
    slug: str = Field(..., min_length=1, max_length=500)


class MoveRevisionItemRequest(BaseModel):
    bucket: Bucket


class CompleteRevisionItemRequest(BaseModel):
    """
    Explicit completion of an item.

    `scope` must equal the item's current bucket. `promote_easy_to_month` only
    matters for Easy/unknown week items.
    """

    scope: Bucket
    promote_easy_to_month: bool = False


# Response Models
class AddRevisionItemResponse(BaseModel):
    item: RevisionItem
    duplicate: bool = False


class StarResult(BaseModel):
    created_week: bool
    created_month: bool
    duplicate_week: bool
    duplicate_month: bool
    items: Dict[str, RevisionItem]


class CompletionResult(BaseModel):
    """
    Outcome of a completion.

    `item` is the surviving record (the fold target when `merged_into` is set),
    or `None` when the record was deleted.
    """

    item: Optional[RevisionItem] = None
    deleted: bool = False
    moved_to_month: bool = False
    merged_into: Optional[str] = None
    archived: bool = False


class RevisionSummary(BaseModel):
    today: List[RevisionItem] = Field(default_factory=list)
    week: List[RevisionItem] = Field(default_factory=list)
    month: List[RevisionItem] = Field(default_factory=list)
    archived_this_month: List[ArchivedItem] = Field(default_factory=list)
    month_key: str
    count: int = 0


class ArchiveHistoryResponse(BaseModel):
    months: List[MonthlyArchive] = Field(default_factory=list)
