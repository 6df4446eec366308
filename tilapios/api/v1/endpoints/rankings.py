from fastapi import APIRouter
from loguru import logger

from tilapios.api.deps import ReconcilerDep
from tilapios.schemas.schemas import RankedParticipant, RankingPolicy
from tilapios.services import tournament_service

router = APIRouter()


@router.get("/general", response_model=list[RankedParticipant])
def read_general_ranking(
    reconciler: ReconcilerDep, policy: RankingPolicy = RankingPolicy.SCORE
) -> list[RankedParticipant]:
    """Leaderboard over every known catch."""
    logger.info(f"Computing general {policy} ranking")
    ranking = tournament_service.general_ranking(reconciler, policy)
    logger.debug(f"Ranked {len(ranking)} anglers")
    return ranking
