"""Feed post API endpoints."""

from typing import Any

from fastapi import APIRouter, status
from loguru import logger

from tilapios.api.deps import ReconcilerDep, UserDep
from tilapios.schemas.errors import ErrorResponse
from tilapios.schemas.schemas import CommentCreate, MutationResponse, PostCreate
from tilapios.services import post_service
from tilapios.services.sync_service import MutationOutcome, SyncReconciler

router = APIRouter()


def _post_response(
    reconciler: SyncReconciler, post_id: str, outcome: MutationOutcome
) -> MutationResponse:
    """The post as the feed shows it after the update."""
    post = reconciler.find_post(post_id) or {}
    return MutationResponse(pending=outcome.pending, data=post)


@router.get("/", response_model=list[dict[str, Any]])
def read_posts(reconciler: ReconcilerDep) -> list[dict[str, Any]]:
    logger.info("Fetching feed")
    return post_service.feed(reconciler)


@router.post(
    "/",
    response_model=MutationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_post(
    data: PostCreate, reconciler: ReconcilerDep, user: UserDep
) -> MutationResponse:
    outcome = await post_service.create_post(reconciler, user, data)
    return MutationResponse(pending=outcome.pending, data=outcome.entity)


@router.post(
    "/{post_id}/like",
    response_model=MutationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def like_post(post_id: str, reconciler: ReconcilerDep, user: UserDep) -> MutationResponse:
    """Like the post, or remove the like when the user already liked it."""
    outcome = await post_service.like_post(reconciler, user, post_id)
    return _post_response(reconciler, post_id, outcome)


@router.post(
    "/{post_id}/comments",
    response_model=MutationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def add_comment(
    post_id: str, data: CommentCreate, reconciler: ReconcilerDep, user: UserDep
) -> MutationResponse:
    outcome = await post_service.add_comment(reconciler, user, post_id, data)
    return _post_response(reconciler, post_id, outcome)


@router.post(
    "/{post_id}/share",
    response_model=MutationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def share_post(post_id: str, reconciler: ReconcilerDep, user: UserDep) -> MutationResponse:
    outcome = await post_service.share_post(reconciler, user, post_id)
    return _post_response(reconciler, post_id, outcome)
