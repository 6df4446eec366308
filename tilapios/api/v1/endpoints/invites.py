from typing import Any

from fastapi import APIRouter
from loguru import logger

from tilapios.api.deps import ReconcilerDep, UserDep
from tilapios.schemas.errors import ErrorResponse
from tilapios.schemas.schemas import MutationResponse
from tilapios.services import invite_service

router = APIRouter()


@router.get("/", response_model=list[dict[str, Any]])
async def read_invites(reconciler: ReconcilerDep, user: UserDep) -> list[dict[str, Any]]:
    """Pending, unexpired invites addressed to the current user."""
    logger.info(f"Fetching invites for {user.uid}")
    return await invite_service.active_invites(reconciler, user)


@router.post(
    "/{invite_id}/accept",
    response_model=MutationResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def accept_invite(
    invite_id: str, reconciler: ReconcilerDep, user: UserDep
) -> MutationResponse:
    outcome = await invite_service.accept_invite(reconciler, user, invite_id)
    return MutationResponse(pending=outcome.pending, data=outcome.entity)


@router.post(
    "/{invite_id}/decline",
    response_model=MutationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def decline_invite(
    invite_id: str, reconciler: ReconcilerDep, user: UserDep
) -> MutationResponse:
    outcome = await invite_service.decline_invite(reconciler, user, invite_id)
    return MutationResponse(pending=outcome.pending, data=outcome.entity)
