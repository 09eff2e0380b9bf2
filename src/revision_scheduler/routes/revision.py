"""
# Revision Routes

HTTP command surface of the revision bucket scheduler. Every endpoint is scoped
to the authenticated caller.

## API Endpoints

### Items
- `POST /revision/items` - Add a question to a bucket (`duplicate=true` if already there)
- `POST /revision/from-leetcode` - Add a LeetCode problem by slug or URL
- `POST /revision/star-from-leetcode` - One-shot week + month reminders for a problem
- `PATCH /revision/items/{item_id}/move` - Move an item to another bucket
- `POST /revision/items/{item_id}/complete` - Complete an item in its current bucket

### Views
- `GET /revision/summary` - Run maintenance, then return today/week/month and this month's archive
- `GET /revision/monthly-archive` - All archived months, newest first

## Error Mapping

| Error | Status |
| --- | --- |
| `RevisionValidationError`, `InvalidTime` | 400 |
| `RevisionNotFoundError` | 404 |
| `ExternalFeedUnavailable` | 502 |
| `PersistenceError` | 503 |

Attributes:
    router (APIRouter): FastAPI router with `/revision` prefix
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status

from revision_scheduler.exceptions import (
    ExternalFeedUnavailable,
    InvalidTime,
    PersistenceError,
    RevisionNotFoundError,
    RevisionSchedulerError,
    RevisionValidationError,
)
from revision_scheduler.managers.logging_manager import get_logger
from revision_scheduler.models.revision_models import (
    AddFromLeetCodeRequest,
    AddRevisionItemRequest,
    AddRevisionItemResponse,
    ArchiveHistoryResponse,
    CompleteRevisionItemRequest,
    CompletionResult,
    MoveRevisionItemRequest,
    RevisionItem,
    RevisionSummary,
    StarFromLeetCodeRequest,
    StarResult,
)
from revision_scheduler.routes.auth.dependencies import CurrentUser, get_current_user_dep
from revision_scheduler.services.scheduler import RevisionScheduler, get_scheduler

logger = get_logger(prefix="[RevisionRoutes]")

router = APIRouter(prefix="/revision", tags=["Revision"])

_STATUS_BY_ERROR = (
    (RevisionValidationError, status.HTTP_400_BAD_REQUEST),
    (InvalidTime, status.HTTP_400_BAD_REQUEST),
    (RevisionNotFoundError, status.HTTP_404_NOT_FOUND),
    (ExternalFeedUnavailable, status.HTTP_502_BAD_GATEWAY),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _to_http(error: RevisionSchedulerError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    logger.error("Unmapped scheduler error: %s", error)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")


@router.post("/items", response_model=AddRevisionItemResponse, status_code=status.HTTP_201_CREATED)
async def add_item(
    request: AddRevisionItemRequest,
    response: Response,
    current_user: CurrentUser = Depends(get_current_user_dep),
    scheduler: RevisionScheduler = Depends(get_scheduler),
):
    """Add a question to a bucket. Returns 200 with `duplicate=true` if it is already there."""
    try:
        item, duplicate = await scheduler.revisions.add_item(
            current_user.user_id,
            request.source,
            request.ref,
            request.title,
            request.bucket,
            scheduler.now(),
            difficulty=request.difficulty,
            link=request.link,
            topic=request.topic,
            tags=request.tags,
        )
    except RevisionSchedulerError as e:
        raise _to_http(e) from e
    if duplicate:
        response.status_code = status.HTTP_200_OK
    return AddRevisionItemResponse(item=item, duplicate=duplicate)


@router.post("/from-leetcode", response_model=AddRevisionItemResponse, status_code=status.HTTP_201_CREATED)
async def add_from_leetcode(
    request: AddFromLeetCodeRequest,
    response: Response,
    current_user: CurrentUser = Depends(get_current_user_dep),
    scheduler: RevisionScheduler = Depends(get_scheduler),
):
    """Add a LeetCode problem; the bucket defaults to week for Medium/Hard, today otherwise."""
    try:
        item, duplicate = await scheduler.revisions.add_from_leetcode(
            current_user.user_id, request.slug, scheduler.now(), bucket=request.bucket
        )
    except RevisionSchedulerError as e:
        raise _to_http(e) from e
    if duplicate:
        response.status_code = status.HTTP_200_OK
    return AddRevisionItemResponse(item=item, duplicate=duplicate)


@router.post("/star-from-leetcode", response_model=StarResult, status_code=status.HTTP_201_CREATED)
async def star_from_leetcode(
    request: StarFromLeetCodeRequest,
    current_user: CurrentUser = Depends(get_current_user_dep),
    scheduler: RevisionScheduler = Depends(get_scheduler),
):
    try:
        return await scheduler.revisions.star_from_leetcode(current_user.user_id, request.slug, scheduler.now())
    except RevisionSchedulerError as e:
        raise _to_http(e) from e


@router.patch("/items/{item_id}/move", response_model=RevisionItem)
async def move_item(
    item_id: str,
    request: MoveRevisionItemRequest,
    current_user: CurrentUser = Depends(get_current_user_dep),
    scheduler: RevisionScheduler = Depends(get_scheduler),
):
    try:
        return await scheduler.revisions.move_item(current_user.user_id, item_id, request.bucket, scheduler.now())
    except RevisionSchedulerError as e:
        raise _to_http(e) from e


@router.post("/items/{item_id}/complete", response_model=CompletionResult)
async def complete_item(
    item_id: str,
    request: CompleteRevisionItemRequest,
    current_user: CurrentUser = Depends(get_current_user_dep),
    scheduler: RevisionScheduler = Depends(get_scheduler),
):
    """Complete an item; `scope` must be the bucket the item is currently in."""
    try:
        return await scheduler.completion.complete(
            current_user.user_id, item_id, request.scope, request.promote_easy_to_month, scheduler.now()
        )
    except RevisionSchedulerError as e:
        raise _to_http(e) from e


@router.get("/summary", response_model=RevisionSummary)
async def get_summary(
    current_user: CurrentUser = Depends(get_current_user_dep),
    scheduler: RevisionScheduler = Depends(get_scheduler),
):
    try:
        return await scheduler.summary.build_summary(current_user.user_id, current_user.username)
    except RevisionSchedulerError as e:
        raise _to_http(e) from e


@router.get("/monthly-archive", response_model=ArchiveHistoryResponse)
async def get_monthly_archive(
    current_user: CurrentUser = Depends(get_current_user_dep),
    scheduler: RevisionScheduler = Depends(get_scheduler),
):
    try:
        return ArchiveHistoryResponse(months=await scheduler.archive.history(current_user.user_id))
    except RevisionSchedulerError as e:
        raise _to_http(e) from e
