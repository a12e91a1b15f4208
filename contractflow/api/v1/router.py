from fastapi import APIRouter

from contractflow.api.v1.endpoints import reviews, workflows

api_router = APIRouter()

api_router.include_router(workflows.router, prefix="/workflows", tags=["Workflows"])
api_router.include_router(reviews.router, prefix="/reviews", tags=["Reviews"])

__all__ = ["api_router"]
