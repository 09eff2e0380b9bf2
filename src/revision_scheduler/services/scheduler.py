"""Wires the stores, feed client and engines into one object per process."""

from typing import Optional

from revision_scheduler.services.archive_service import ArchiveService
from revision_scheduler.services.completion_service import CompletionService
from revision_scheduler.services.reconciliation_service import ReconciliationService
from revision_scheduler.services.revision_service import RevisionService
from revision_scheduler.services.revision_store import MonthlyArchiveStore, RevisionItemStore
from revision_scheduler.services.rollover_service import RolloverService
from revision_scheduler.services.submission_feed import LeetCodeClient
from revision_scheduler.services.summary_service import SummaryService
from revision_scheduler.services.time_boundaries import Clock


class RevisionScheduler:
    """
    Container for the scheduler's engines.

    Defaults to the Motor-backed stores and the live LeetCode client; tests pass
    their own stores, feed and clock.
    """

    def __init__(
        self,
        store: Optional[RevisionItemStore] = None,
        archive_store: Optional[MonthlyArchiveStore] = None,
        feed: Optional[LeetCodeClient] = None,
        clock: Optional[Clock] = None,
    ):
        self.clock = clock or Clock()
        self.store = store or RevisionItemStore()
        self.archive_store = archive_store or MonthlyArchiveStore()
        self.feed = feed or LeetCodeClient()

        self.archive = ArchiveService(self.store, self.archive_store)
        self.rollover = RolloverService(self.store)
        self.reconciliation = ReconciliationService(self.store, self.archive_store, self.feed)
        self.completion = CompletionService(self.store, self.archive)
        self.revisions = RevisionService(self.store, self.feed)
        self.summary = SummaryService(self.store, self.rollover, self.reconciliation, self.archive, self.clock)

    def now(self):
        return self.clock.now()


_scheduler: Optional[RevisionScheduler] = None


def get_scheduler() -> RevisionScheduler:
    """FastAPI dependency returning the process-wide scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = RevisionScheduler()
    return _scheduler
