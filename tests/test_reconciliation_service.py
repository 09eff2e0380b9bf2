import asyncio

import pytest

from conftest import USER_ID, USERNAME, utc
from revision_scheduler.models.revision_models import ArchivedItem
from revision_scheduler.services.reconciliation_service import (
    AcceptedSolve,
    ReconciliationService,
    latest_accepted_by_ref,
)
from revision_scheduler.services.revision_store import build_revision_item

NOW = utc(2024, 1, 10, 12)


@pytest.fixture
def reconciliation(store, archive_store, feed):
    return ReconciliationService(store, archive_store, feed, feed_source="leetcode", timeout=1, lookback_days=7)


def _seed(store, ref, bucket, created=utc(2024, 1, 10, 1), source="leetcode", **kwargs):
    return store.add(
        build_revision_item(user_id=USER_ID, source=source, ref=ref, title=ref, bucket=bucket, now=created, **kwargs)
    )


def _latest(*solves):
    return {solve.ref.lower(): solve for solve in solves}


def _archived(ref, completed_at):
    return ArchivedItem(item_key=f"leetcode:{ref}", source="leetcode", ref=ref, title=ref, completed_at=completed_at)


def test_latest_accepted_keeps_newest_and_drops_malformed():
    latest = latest_accepted_by_ref(
        [
            {"problem_ref": "Two-Sum", "accepted_at_epoch_seconds": 1704844800, "title": "Two Sum"},
            {"problem_ref": "two-sum", "accepted_at_epoch_seconds": "1704852000"},
            {"problem_ref": "", "accepted_at_epoch_seconds": 1704852000},
            {"problem_ref": "lru-cache", "accepted_at_epoch_seconds": float("nan")},
            {"problem_ref": "word-break", "accepted_at_epoch_seconds": None},
            "garbage",
        ]
    )

    assert list(latest) == ["two-sum"]
    assert latest["two-sum"].accepted_at == utc(2024, 1, 10, 2)


@pytest.mark.asyncio
async def test_fetch_without_username_skips_the_feed(reconciliation, feed):
    assert await reconciliation.fetch_latest_accepted(None) == {}
    assert feed.calls == []


@pytest.mark.asyncio
async def test_fetch_passes_the_configured_limit(store, archive_store, feed):
    service = ReconciliationService(store, archive_store, feed, fetch_limit=20)
    feed.accept("two-sum", utc(2024, 1, 10, 2))

    latest = await service.fetch_latest_accepted(USERNAME)

    assert feed.calls == [(USERNAME, 20)]
    assert latest["two-sum"].accepted_at == utc(2024, 1, 10, 2)


@pytest.mark.asyncio
async def test_fetch_degrades_when_feed_is_unavailable(reconciliation, unavailable_feed):
    assert await reconciliation.fetch_latest_accepted(USERNAME) == {}


@pytest.mark.asyncio
async def test_fetch_degrades_on_timeout(store, archive_store):
    class SlowFeed:
        async def fetch_recent_accepted(self, username, limit):
            await asyncio.sleep(5)
            return []

    service = ReconciliationService(store, archive_store, SlowFeed(), timeout=0.01)

    assert await service.fetch_latest_accepted(USERNAME) == {}


@pytest.mark.asyncio
async def test_fetch_degrades_on_non_list_payload(store, archive_store):
    class BrokenFeed:
        async def fetch_recent_accepted(self, username, limit):
            return {"unexpected": True}

    service = ReconciliationService(store, archive_store, BrokenFeed())

    assert await service.fetch_latest_accepted(USERNAME) == {}


@pytest.mark.asyncio
async def test_solve_two_hours_into_task_day_promotes_today_item(reconciliation, store):
    item = _seed(store, "two-sum", "today")
    accepted = utc(2024, 1, 10, 2)

    completed = await reconciliation.auto_complete_today(USER_ID, _latest(AcceptedSolve("two-sum", accepted)), NOW)

    assert completed == 1
    promoted = store.items[item.id]
    assert promoted.bucket == "week"
    assert promoted.bucket_due_at == utc(2024, 1, 14, 23, 59, 59, 999000)
    assert promoted.last_completed_at == accepted
    assert promoted.week_completed_at is None
    assert promoted.month_completed_at is None


@pytest.mark.asyncio
async def test_solve_folds_today_item_into_existing_week_record(reconciliation, store):
    week_item = _seed(store, "two-sum", "week", created=utc(2024, 1, 8))
    today_item = _seed(store, "two-sum", "today")
    accepted = utc(2024, 1, 10, 2)

    completed = await reconciliation.auto_complete_today(USER_ID, _latest(AcceptedSolve("two-sum", accepted)), NOW)

    assert completed == 1
    assert today_item.id not in store.items
    assert store.items[week_item.id].last_completed_at == accepted
    assert [i.bucket for i in store.all()] == ["week"]


@pytest.mark.asyncio
async def test_solves_outside_the_task_day_are_ignored(reconciliation, store):
    item = _seed(store, "two-sum", "today")

    completed = await reconciliation.auto_complete_today(
        USER_ID, _latest(AcceptedSolve("two-sum", utc(2024, 1, 9, 23, 59))), NOW
    )

    assert completed == 0
    assert store.items[item.id].bucket == "today"


@pytest.mark.asyncio
async def test_solve_not_newer_than_last_completion_is_ignored(reconciliation, store):
    item = _seed(store, "two-sum", "today")
    store.items[item.id] = store.items[item.id].model_copy(update={"last_completed_at": utc(2024, 1, 10, 3)})

    completed = await reconciliation.auto_complete_today(
        USER_ID, _latest(AcceptedSolve("two-sum", utc(2024, 1, 10, 2))), NOW
    )

    assert completed == 0
    assert store.items[item.id].bucket == "today"


@pytest.mark.asyncio
async def test_only_feed_sourced_items_auto_complete(reconciliation, store):
    item = _seed(store, "two-sum", "today", source="neetcode")

    completed = await reconciliation.auto_complete_today(
        USER_ID, _latest(AcceptedSolve("two-sum", utc(2024, 1, 10, 2))), NOW
    )

    assert completed == 0
    assert store.items[item.id].bucket == "today"


@pytest.mark.asyncio
async def test_auto_enroll_creates_week_items_for_untracked_solves(reconciliation, store):
    accepted = utc(2024, 1, 8, 15)

    created = await reconciliation.auto_enroll(
        USER_ID, _latest(AcceptedSolve("lru-cache", accepted, title="LRU Cache")), NOW
    )

    assert created == 1
    (item,) = store.all()
    assert item.bucket == "week"
    assert item.question_key == "leetcode:lru-cache"
    assert item.title == "LRU Cache"
    assert item.link == "https://leetcode.com/problems/lru-cache/"
    assert item.bucket_due_at == utc(2024, 1, 14, 23, 59, 59, 999000)


@pytest.mark.asyncio
async def test_auto_enroll_skips_tracked_old_and_archived_solves(reconciliation, store, archive_store):
    _seed(store, "word-break", "month")
    await archive_store.add_items(
        USER_ID,
        "2024-01",
        [_archived("edit-distance", utc(2024, 1, 9))],
        NOW,
    )
    latest = _latest(
        AcceptedSolve("word-break", utc(2024, 1, 9)),
        AcceptedSolve("edit-distance", utc(2024, 1, 8)),
        AcceptedSolve("old-problem", utc(2024, 1, 1)),
    )

    created = await reconciliation.auto_enroll(USER_ID, latest, NOW)

    assert created == 0
    assert [i.question_key for i in store.all()] == ["leetcode:word-break"]


@pytest.mark.asyncio
async def test_auto_enroll_reenrolls_solves_newer_than_the_archive(reconciliation, store, archive_store):
    await archive_store.add_items(USER_ID, "2024-01", [_archived("edit-distance", utc(2024, 1, 5))], NOW)

    created = await reconciliation.auto_enroll(
        USER_ID, _latest(AcceptedSolve("edit-distance", utc(2024, 1, 9))), NOW
    )

    assert created == 1


@pytest.mark.asyncio
async def test_auto_enroll_is_idempotent(reconciliation, store):
    latest = _latest(AcceptedSolve("lru-cache", utc(2024, 1, 8, 15)))

    assert await reconciliation.auto_enroll(USER_ID, latest, NOW) == 1
    assert await reconciliation.auto_enroll(USER_ID, latest, NOW) == 0
    assert len(store.all()) == 1
