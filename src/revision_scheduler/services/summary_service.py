"""
# Summary Orchestrator

Single entry point per summary request. Time passes lazily: every maintenance
step runs here, in a fixed order, before the user's items are read.

## Pipeline

| # | Step | Failure policy |
| --- | --- | --- |
| 1 | `cleanup_previous_month_completions` | best effort |
| 2 | `fetch_submissions` | best effort |
| 3 | `auto_complete_today` | best effort |
| 4 | `auto_enroll_new_solves` | best effort |
| 5 | `today_rollover` | best effort |
| 6 | `sunday_promotion` | best effort |
| 7 | `week_rollover` | best effort |
| 8 | `month_rollover` | best effort |
| 9 | `read_items` | required |
| 10 | `read_month_archive` | required |

Best-effort failures are logged and skipped; a failure reading the items fails
the request with `PersistenceError`.

Every step is idempotent, so two back-to-back summaries with no user action and
no new submissions return the same partition.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from revision_scheduler.config import settings
from revision_scheduler.managers.logging_manager import get_logger
from revision_scheduler.models.revision_models import ArchivedItem, RevisionItem, RevisionSummary
from revision_scheduler.services.archive_service import ArchiveService
from revision_scheduler.services.reconciliation_service import AcceptedSolve, ReconciliationService
from revision_scheduler.services.revision_store import RevisionItemStore
from revision_scheduler.services.rollover_service import RolloverService
from revision_scheduler.services.time_boundaries import Clock, month_key
from revision_scheduler.utils.logging_utils import log_error_with_context, log_performance

logger = get_logger(prefix="[SummaryService]")

BUCKET_ORDER = {"today": 0, "week": 1, "month": 2}
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class SummaryContext:
    user_id: str
    username: Optional[str]
    now: datetime
    latest_accepted: Dict[str, AcceptedSolve] = field(default_factory=dict)
    items: List[RevisionItem] = field(default_factory=list)
    archived: List[ArchivedItem] = field(default_factory=list)
    results: Dict[str, Any] = field(default_factory=dict)
    failed_steps: List[str] = field(default_factory=list)


@dataclass
class SummaryStep:
    name: str
    run: Callable[[SummaryContext], Awaitable[Any]]
    best_effort: bool = True


def display_order_key(item: RevisionItem):
    """Open month items first, then unfinished week items, harder first, soonest due, newest update."""

    def _ts(value: Optional[datetime]) -> float:
        return (value or _EPOCH).timestamp()

    return (
        BUCKET_ORDER.get(item.bucket, len(BUCKET_ORDER)),
        item.month_completed_at is not None,
        _ts(item.month_completed_at),
        item.week_completed_at is not None,
        _ts(item.week_completed_at),
        -item.difficulty_rank,
        _ts(item.bucket_due_at),
        -_ts(item.updated_at),
    )


class SummaryService:
    def __init__(
        self,
        store: RevisionItemStore,
        rollover: RolloverService,
        reconciliation: ReconciliationService,
        archive_service: ArchiveService,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.rollover = rollover
        self.reconciliation = reconciliation
        self.archive_service = archive_service
        self.clock = clock or Clock()
        self.steps: List[SummaryStep] = [
            SummaryStep("cleanup_previous_month_completions", self._cleanup_previous_months),
            SummaryStep("fetch_submissions", self._fetch_submissions),
            SummaryStep("auto_complete_today", self._auto_complete_today),
            SummaryStep("auto_enroll_new_solves", self._auto_enroll),
            SummaryStep("today_rollover", lambda ctx: self.rollover.rollover_today(ctx.user_id, ctx.now)),
            SummaryStep("sunday_promotion", self._promote_sunday),
            SummaryStep("week_rollover", lambda ctx: self.rollover.rollover_week(ctx.user_id, ctx.now)),
            SummaryStep("month_rollover", lambda ctx: self.rollover.rollover_month(ctx.user_id, ctx.now)),
            SummaryStep("read_items", self._read_items, best_effort=False),
            SummaryStep("read_month_archive", self._read_month_archive, best_effort=False),
        ]

    async def _cleanup_previous_months(self, ctx: SummaryContext) -> int:
        return await self.archive_service.cleanup_previous_months(ctx.user_id, ctx.now)

    async def _fetch_submissions(self, ctx: SummaryContext) -> int:
        ctx.latest_accepted = await self.reconciliation.fetch_latest_accepted(ctx.username)
        return len(ctx.latest_accepted)

    async def _auto_complete_today(self, ctx: SummaryContext) -> int:
        return await self.reconciliation.auto_complete_today(ctx.user_id, ctx.latest_accepted, ctx.now)

    async def _auto_enroll(self, ctx: SummaryContext) -> int:
        return await self.reconciliation.auto_enroll(ctx.user_id, ctx.latest_accepted, ctx.now)

    async def _promote_sunday(self, ctx: SummaryContext) -> int:
        solved_today = self.reconciliation.solved_during_task_day(ctx.latest_accepted, ctx.now)
        return await self.rollover.promote_sunday(ctx.user_id, ctx.now, solved_today)

    async def _read_items(self, ctx: SummaryContext) -> int:
        ctx.items = sorted(await self.store.find_all(ctx.user_id), key=display_order_key)
        return len(ctx.items)

    async def _read_month_archive(self, ctx: SummaryContext) -> int:
        ctx.archived = await self.archive_service.archived_for_month(ctx.user_id, month_key(ctx.now))
        return len(ctx.archived)

    async def _run_step(self, step: SummaryStep, ctx: SummaryContext) -> None:
        try:
            ctx.results[step.name] = await step.run(ctx)
        except Exception as e:
            if not step.best_effort:
                raise
            ctx.failed_steps.append(step.name)
            log_error_with_context(e, {"step": step.name, "user_id": ctx.user_id})
            logger.warning("Best-effort step '%s' failed for user %s, continuing", step.name, ctx.user_id)

    def _annotate(self, items: List[RevisionItem], latest: Dict[str, AcceptedSolve]) -> None:
        if not latest:
            return
        feed_source = settings.REVISION_FEED_SOURCE.lower()
        for item in items:
            if item.source != feed_source:
                continue
            solve = latest.get(item.ref.lower())
            if solve is not None:
                item.leetcode_last_accepted_at = solve.accepted_at

    @log_performance("build_summary")
    async def build_summary(self, user_id: str, username: Optional[str] = None) -> RevisionSummary:
        ctx = SummaryContext(user_id=user_id, username=username, now=self.clock.now())
        for step in self.steps:
            await self._run_step(step, ctx)

        self._annotate(ctx.items, ctx.latest_accepted)
        summary = RevisionSummary(
            month_key=month_key(ctx.now), archived_this_month=ctx.archived, count=len(ctx.items)
        )
        for item in ctx.items:
            getattr(summary, item.bucket).append(item)

        logger.info(
            "Summary for user %s: today=%d week=%d month=%d archived=%d failed_steps=%s",
            user_id,
            len(summary.today),
            len(summary.week),
            len(summary.month),
            len(ctx.archived),
            ctx.failed_steps,
        )
        return summary
