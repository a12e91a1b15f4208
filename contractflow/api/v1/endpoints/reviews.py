from typing import Annotated

from fastapi import APIRouter, Depends, Request

from contractflow.api.dependencies import get_review_manager
from contractflow.schemas.common import ApiResponse
from contractflow.schemas.workflows import ReviewTaskResponse, TimeoutSweepResponse
from contractflow.services.review.review_task_manager import ReviewTaskManager
from contractflow.utils.responses import create_api_response

router = APIRouter()


@router.get(
    "/pending",
    response_model=ApiResponse,
    summary="List pending review tasks",
    operation_id="list_pending_reviews",
)
async def list_pending_reviews(
    request: Request,
    review_manager: Annotated[ReviewTaskManager, Depends(get_review_manager)],
) -> ApiResponse:
    tasks = await review_manager.get_pending_reviews()
    items = [ReviewTaskResponse.model_validate(task) for task in tasks]
    return create_api_response(data=items, message=f"{len(items)} pending reviews", request=request)


@router.post(
    "/timeouts",
    response_model=ApiResponse,
    summary="Time out every review task past its deadline",
    operation_id="sweep_review_timeouts",
)
async def sweep_review_timeouts(
    request: Request,
    review_manager: Annotated[ReviewTaskManager, Depends(get_review_manager)],
) -> ApiResponse:
    """Entry point for an external scheduler."""
    result = await review_manager.timeout_expired_reviews()
    data = TimeoutSweepResponse(timed_out=result.timed_out, failed=result.failed)
    return create_api_response(data=data, message="Review timeout sweep complete", request=request)
