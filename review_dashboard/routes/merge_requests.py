"""
Merge Request Routes

Listing, detail, statistics, and the manual review trigger.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from review_dashboard.database import RecordStore
from review_dashboard.errors import NotFoundError
from review_dashboard.logging_config import get_logger
from review_dashboard.models import MergeRequestState, ReviewStatus, TriggerReviewRequest
from review_dashboard.routes.dependencies import get_orchestrator, get_record_store
from review_dashboard.services.orchestrator import ReviewOrchestrator

logger = get_logger(__name__)

router = APIRouter(prefix="/api/merge-requests", tags=["merge-requests"])

TRIGGER_MESSAGES = {
    ReviewStatus.COMPLETED.value: "AI review completed successfully",
    ReviewStatus.FAILED.value: "AI review failed",
}


@router.get("")
async def list_merge_requests(
    project_id: Optional[int] = None,
    state: Optional[MergeRequestState] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    records: RecordStore = Depends(get_record_store),
) -> Dict[str, Any]:
    merge_requests = await records.list_merge_requests(
        project_id=project_id,
        state=state.value if state else None,
        page=page,
        per_page=per_page,
    )
    return {
        "merge_requests": merge_requests,
        "pagination": {"page": page, "per_page": per_page},
    }


# Registered before /{mr_id} so "stats" is not parsed as an id
@router.get("/stats/summary")
async def get_stats(
    records: RecordStore = Depends(get_record_store)
) -> Dict[str, Any]:
    return await records.get_stats()


@router.get("/{mr_id}")
async def get_merge_request(
    mr_id: int,
    records: RecordStore = Depends(get_record_store)
) -> Dict[str, Any]:
    """Merge request with its reviews (newest first) and their comments."""
    merge_request = await records.get_merge_request(mr_id)
    if merge_request is None:
        raise NotFoundError("Merge request not found")

    reviews = await records.list_reviews_with_comments(mr_id)
    return {"merge_request": merge_request, "reviews": reviews}


@router.post("/{mr_id}/review")
async def trigger_review(
    mr_id: int,
    body: Optional[TriggerReviewRequest] = None,
    orchestrator: ReviewOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Run an AI review of the merge request.

    Responds 200 with the terminal status once the review was recorded,
    including when it failed; 404 and 409 come from the orchestrator.
    """
    body = body or TriggerReviewRequest()
    result = await orchestrator.trigger_review(mr_id, body.review_type, force=body.force)

    return {
        "message": TRIGGER_MESSAGES.get(result.status, "AI review finished"),
        "review_id": result.review_id,
        "status": result.status,
    }


@router.delete("/{mr_id}/review/{review_id}")
async def delete_review(
    mr_id: int,
    review_id: int,
    records: RecordStore = Depends(get_record_store)
) -> Dict[str, Any]:
    if not await records.delete_review(review_id, mr_id):
        raise NotFoundError("Review not found")
    return {"message": "Review deleted successfully"}
