"""
# Submission Reconciliation Engine

Matches accepted submissions from the external feed against the user's items.

## Steps

1. **Fetch** recent accepted submissions (bounded by a timeout) and reduce them to
   the latest accepted instant per problem. Malformed entries are dropped.
2. **Auto-complete** `today` items solved during the current task day: each is
   promoted in place to `week`, or folded into an existing `week` record of the
   same question.
3. **Auto-enroll** problems solved within the lookback window that the user does
   not track in any bucket as new `week` items (insert-if-absent).

The feed is optional. Any failure to fetch yields an empty map and the later
steps simply do nothing.
"""

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from revision_scheduler.config import settings
from revision_scheduler.exceptions import ConflictDegradation, ExternalFeedUnavailable, InvalidTime
from revision_scheduler.managers.logging_manager import get_logger
from revision_scheduler.services.revision_store import (
    MonthlyArchiveStore,
    RevisionItemStore,
    build_revision_item,
    question_key,
)
from revision_scheduler.services.submission_feed import LeetCodeClient
from revision_scheduler.services.time_boundaries import (
    end_of_task_day,
    start_of_task_day,
    to_utc,
    week_due_at,
    weekly_due_at_after_completion,
)

logger = get_logger(prefix="[ReconciliationService]")


@dataclass
class AcceptedSolve:
    ref: str
    accepted_at: datetime
    title: str = ""


def latest_accepted_by_ref(submissions: Iterable[Any]) -> Dict[str, AcceptedSolve]:
    """
    Reduce raw feed entries to the latest accepted solve per problem.

    Keys are lower-cased problem refs. Entries without a ref or with a
    non-finite timestamp are ignored.
    """
    latest: Dict[str, AcceptedSolve] = {}
    for entry in submissions or []:
        if not isinstance(entry, dict):
            continue
        ref = str(entry.get("problem_ref") or "").strip()
        if not ref:
            continue
        try:
            seconds = float(entry.get("accepted_at_epoch_seconds"))
        except (TypeError, ValueError):
            continue
        if not math.isfinite(seconds):
            continue
        try:
            accepted_at = to_utc(seconds)
        except InvalidTime:
            continue

        key = ref.lower()
        previous = latest.get(key)
        if previous is None or accepted_at > previous.accepted_at:
            latest[key] = AcceptedSolve(ref=ref, accepted_at=accepted_at, title=str(entry.get("title") or ""))
    return latest


class ReconciliationService:
    def __init__(
        self,
        store: RevisionItemStore,
        archive_store: MonthlyArchiveStore,
        feed: LeetCodeClient,
        feed_source: Optional[str] = None,
        timeout: Optional[float] = None,
        lookback_days: Optional[int] = None,
        fetch_limit: Optional[int] = None,
    ):
        self.store = store
        self.archive_store = archive_store
        self.feed = feed
        self.feed_source = (feed_source or settings.REVISION_FEED_SOURCE).lower()
        self.timeout = timeout if timeout is not None else settings.LEETCODE_TIMEOUT_SECONDS
        self.lookback = timedelta(days=lookback_days or settings.REVISION_AUTO_ENROLL_LOOKBACK_DAYS)
        self.fetch_limit = fetch_limit or settings.LEETCODE_RECENT_SUBMISSIONS_LIMIT

    async def fetch_latest_accepted(self, username: Optional[str]) -> Dict[str, AcceptedSolve]:
        """Latest accepted solve per problem, or `{}` when the feed is unavailable."""
        if not username:
            return {}
        try:
            submissions = await asyncio.wait_for(
                self.feed.fetch_recent_accepted(username, self.fetch_limit), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Submission feed timed out after %.1fs for %s", self.timeout, username)
            return {}
        except ExternalFeedUnavailable as e:
            logger.warning("Submission feed unavailable for %s: %s", username, e)
            return {}

        if not isinstance(submissions, list):
            logger.warning("Submission feed returned %s instead of a list", type(submissions).__name__)
            return {}
        latest = latest_accepted_by_ref(submissions)
        logger.debug("Reduced %d submissions to %d problems", len(submissions), len(latest))
        return latest

    def solved_during_task_day(self, latest: Dict[str, AcceptedSolve], now: datetime) -> List[str]:
        """Question keys of feed problems accepted during the current task day."""
        day_start, day_end = start_of_task_day(now), end_of_task_day(now)
        return [
            question_key(self.feed_source, solve.ref)
            for solve in latest.values()
            if day_start <= solve.accepted_at <= day_end
        ]

    async def auto_complete_today(self, user_id: str, latest: Dict[str, AcceptedSolve], now: datetime) -> int:
        """
        Promote `today` feed items solved during the current task day.

        Returns:
            Number of items promoted or folded.
        """
        if not latest:
            return 0
        day_start, day_end = start_of_task_day(now), end_of_task_day(now)

        completed = 0
        for item in await self.store.find_bucket(user_id, "today", source=self.feed_source):
            solve = latest.get(item.ref.lower())
            if solve is None or not (day_start <= solve.accepted_at <= day_end):
                continue
            if item.last_completed_at is not None and solve.accepted_at <= to_utc(item.last_completed_at):
                continue

            merged = await self.store.fold_into(item, "week", now, completed_at=solve.accepted_at)
            if merged is None:
                try:
                    await self.store.update_fields(
                        user_id,
                        item.id,
                        {
                            "bucket": "week",
                            "bucket_due_at": weekly_due_at_after_completion(solve.accepted_at),
                            "last_completed_at": solve.accepted_at,
                            "week_completed_at": None,
                            "month_completed_at": None,
                        },
                        now,
                    )
                except ConflictDegradation:
                    await self.store.fold_into(item, "week", now, completed_at=solve.accepted_at)
            completed += 1

        if completed:
            logger.info("Auto-completed %d today items from the feed for user %s", completed, user_id)
        return completed

    async def auto_enroll(self, user_id: str, latest: Dict[str, AcceptedSolve], now: datetime) -> int:
        """
        Track recent solves the user has no item for as new `week` items.

        Solves the archive already records at or after their accepted time are
        skipped, so a question archived this month is not re-enrolled.

        Returns:
            Number of items created.
        """
        window_start = now - self.lookback
        candidates = {
            question_key(self.feed_source, solve.ref): solve
            for solve in latest.values()
            if window_start <= solve.accepted_at <= now
        }
        if not candidates:
            return 0

        tracked = {item.question_key for item in await self.store.find_by_question_keys(user_id, candidates)}
        untracked = {key: solve for key, solve in candidates.items() if key not in tracked}
        if not untracked:
            return 0

        archived = await self.archive_store.find_archived_completions(user_id, untracked)
        created = 0
        for key, solve in untracked.items():
            archived_at = archived.get(key)
            if archived_at is not None and archived_at >= solve.accepted_at:
                continue
            item = build_revision_item(
                user_id=user_id,
                source=self.feed_source,
                ref=solve.ref,
                title=solve.title or solve.ref,
                bucket="week",
                now=now,
                link=settings.LEETCODE_PROBLEM_URL_TEMPLATE.format(slug=solve.ref),
                bucket_due_at=week_due_at(solve.accepted_at),
            )
            _, was_created = await self.store.upsert_if_absent(item)
            created += int(was_created)

        if created:
            logger.info("Auto-enrolled %d new solves into week for user %s", created, user_id)
        return created
