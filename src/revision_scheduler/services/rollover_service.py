"""
Bucket rollover engine.

Carries overdue items forward to their next boundary. The summary orchestrator
runs the steps in this order, each seeing the previous step's writes:

1. today rollover: unfinished daily tasks slide to the current task day
2. Sunday promotion: week items due by tonight become today's tasks (UTC Sunday only)
3. week rollover: week items overdue before today move to the next weekly boundary
4. month rollover: open month items from a past month move to this month's end

Every step is a filtered bulk update, so re-running it on migrated state changes nothing.
"""

from datetime import datetime
from typing import Iterable

from revision_scheduler.managers.logging_manager import get_logger
from revision_scheduler.services.revision_store import ItemFilter, RevisionItemStore
from revision_scheduler.services.time_boundaries import (
    ONE_DAY,
    SUNDAY,
    month_due_at,
    start_of_month,
    start_of_task_day,
    today_due_at,
    week_due_at,
)

logger = get_logger(prefix="[RolloverService]")


class RolloverService:
    def __init__(self, store: RevisionItemStore):
        self.store = store

    async def rollover_today(self, user_id: str, now: datetime) -> int:
        item_filter = ItemFilter(user_id=user_id, bucket="today", due_before=start_of_task_day(now))
        moved = await self.store.bulk_advance(item_filter, "today", today_due_at(now), now)
        if moved:
            logger.info("Carried %d today items forward for user %s", moved, user_id)
        return moved

    async def promote_sunday(self, user_id: str, now: datetime, solved_today: Iterable[str] = ()) -> int:
        """
        On a UTC Sunday, move week items due by the end of today into today.

        Items already completed during the task day, or whose question key is in
        `solved_today`, stay in week.
        """
        if now.weekday() != SUNDAY:
            return 0
        day_start = start_of_task_day(now)
        item_filter = ItemFilter(
            user_id=user_id,
            bucket="week",
            due_before=day_start + ONE_DAY,
            not_completed_since=day_start,
            exclude_question_keys=sorted(solved_today),
        )
        moved = await self.store.bulk_advance(item_filter, "today", today_due_at(now), now)
        if moved:
            logger.info("Promoted %d week items to today for user %s", moved, user_id)
        return moved

    async def rollover_week(self, user_id: str, now: datetime) -> int:
        item_filter = ItemFilter(user_id=user_id, bucket="week", due_before=start_of_task_day(now))
        moved = await self.store.bulk_advance(item_filter, "week", week_due_at(now), now)
        if moved:
            logger.info("Rolled %d week items to the next boundary for user %s", moved, user_id)
        return moved

    async def rollover_month(self, user_id: str, now: datetime) -> int:
        item_filter = ItemFilter(
            user_id=user_id, bucket="month", due_before=start_of_month(now), open_month_only=True
        )
        moved = await self.store.bulk_advance(item_filter, "month", month_due_at(now), now)
        if moved:
            logger.info("Extended %d open month items to this month for user %s", moved, user_id)
        return moved
