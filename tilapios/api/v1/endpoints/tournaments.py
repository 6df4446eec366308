"""
Tournament API endpoints.

Creation and joining survive connectivity loss (the response flags the write
as pending); leaving, cancelling, finishing and inviting need a connection.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Query, status
from loguru import logger

from tilapios.api.deps import ReconcilerDep, UserDep
from tilapios.schemas.errors import ErrorResponse
from tilapios.schemas.schemas import (
    InviteCreate,
    MutationResponse,
    RankedParticipant,
    RankingPolicy,
    TournamentCreate,
    TournamentStatus,
)
from tilapios.services import invite_service, tournament_service

router = APIRouter()

_ERRORS: dict[int | str, dict[str, Any]] = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.get("/", response_model=list[dict[str, Any]])
def read_tournaments(
    reconciler: ReconcilerDep,
    status_filter: Annotated[TournamentStatus | None, Query(alias="status")] = None,
) -> list[dict[str, Any]]:
    """List known tournaments, including ones still waiting to sync."""
    logger.info(f"Fetching tournaments (status={status_filter})")
    return tournament_service.list_tournaments(reconciler, status_filter)


@router.get("/mine", response_model=list[dict[str, Any]])
def read_my_tournaments(reconciler: ReconcilerDep, user: UserDep) -> list[dict[str, Any]]:
    return tournament_service.user_tournaments(reconciler, user)


@router.get("/{tournament_id}", response_model=dict[str, Any], responses=_ERRORS)
def read_tournament(tournament_id: str, reconciler: ReconcilerDep) -> dict[str, Any]:
    logger.info(f"Fetching tournament {tournament_id}")
    return tournament_service.get_tournament(reconciler, tournament_id)


@router.post(
    "/",
    response_model=MutationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_tournament(
    data: TournamentCreate, reconciler: ReconcilerDep, user: UserDep
) -> MutationResponse:
    outcome = await tournament_service.create_tournament(reconciler, user, data)
    return MutationResponse(pending=outcome.pending, data=outcome.entity)


@router.post("/{tournament_id}/join", response_model=MutationResponse, responses=_ERRORS)
async def join_tournament(
    tournament_id: str, reconciler: ReconcilerDep, user: UserDep
) -> MutationResponse:
    outcome = await tournament_service.join_tournament(reconciler, user, tournament_id)
    return MutationResponse(pending=outcome.pending, data=outcome.entity)


@router.post("/{tournament_id}/leave", response_model=dict[str, Any], responses=_ERRORS)
async def leave_tournament(
    tournament_id: str, reconciler: ReconcilerDep, user: UserDep
) -> dict[str, Any]:
    return await tournament_service.leave_tournament(reconciler, user, tournament_id)


@router.post("/{tournament_id}/cancel", response_model=dict[str, Any], responses=_ERRORS)
async def cancel_tournament(
    tournament_id: str, reconciler: ReconcilerDep, user: UserDep
) -> dict[str, Any]:
    return await tournament_service.cancel_tournament(reconciler, user, tournament_id)


@router.post("/{tournament_id}/finish", response_model=dict[str, Any], responses=_ERRORS)
async def finish_tournament(
    tournament_id: str, reconciler: ReconcilerDep, user: UserDep
) -> dict[str, Any]:
    return await tournament_service.finish_tournament(reconciler, user, tournament_id)


@router.get(
    "/{tournament_id}/ranking",
    response_model=list[RankedParticipant],
    responses={404: {"model": ErrorResponse}},
)
def read_tournament_ranking(
    tournament_id: str,
    reconciler: ReconcilerDep,
    policy: RankingPolicy = RankingPolicy.SCORE,
) -> list[RankedParticipant]:
    """Leaderboard of one tournament under the chosen ranking policy."""
    logger.info(f"Computing {policy} ranking for tournament {tournament_id}")
    return tournament_service.tournament_ranking(reconciler, tournament_id, policy)


@router.post(
    "/{tournament_id}/invites",
    response_model=dict[str, Any],
    status_code=status.HTTP_201_CREATED,
    responses=_ERRORS,
)
async def send_invite(
    tournament_id: str, data: InviteCreate, reconciler: ReconcilerDep, user: UserDep
) -> dict[str, Any]:
    return await invite_service.send_invite(reconciler, user, tournament_id, data)
