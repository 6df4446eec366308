"""Tournament business rules: creation, membership, closure and rankings."""

from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from tilapios.core.exceptions import (
    ConflictError,
    DomainRuleError,
    ForbiddenError,
    NotFoundError,
    OfflineError,
    RemoteErrorKind,
    RemoteStoreError,
    ValidationError,
)
from tilapios.core.time_utils import parse_timestamp, utcnow
from tilapios.dao.local_store import PENDING_PARTICIPATIONS, PENDING_TOURNAMENTS
from tilapios.dao.remote_store import CATCHES, TOURNAMENTS, Document, Filter, RemoteStore
from tilapios.schemas.schemas import (
    CLOSED_STATUSES,
    Participant,
    PendingParticipation,
    RankedParticipant,
    RankingPolicy,
    Tournament,
    TournamentCreate,
    TournamentStatus,
    UserContext,
)
from tilapios.services.ranking_service import (
    compute_ranking,
    resolve_policy,
    tournament_catches,
    winner_snapshot,
)
from tilapios.services.sync_service import (
    DurableMutation,
    MutationOutcome,
    SyncReconciler,
    add_participant,
    is_temp_id,
    temp_id,
    unique_participant_count,
)

# Creation limits
MIN_NAME_LENGTH = 3
MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 1000
MAX_RULES_LENGTH = 2000
MIN_LEAD_TIME = timedelta(hours=1)
MIN_DURATION = timedelta(hours=1)
MAX_DURATION = timedelta(hours=720)
MIN_PARTICIPANTS = 2
MAX_PARTICIPANTS = 1000
DEFAULT_MAX_PARTICIPANTS = 100
MAX_ENTRY_FEE = 10_000
MAX_PRIZE_POOL = 100_000

# Closure rules
CANCEL_GRACE_PERIOD = timedelta(hours=1)
EARLY_FINISH_RATIO = 0.5


def validate_tournament(data: TournamentCreate, now: datetime) -> tuple[datetime, datetime]:
    """Check creation input and return the parsed (start, end) dates.

    Raises:
        ValidationError: listing every violated rule in ``details``.
    """
    errors: list[str] = []

    name = data.name.strip()
    if not MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH:
        errors.append(
            f"Name must have between {MIN_NAME_LENGTH} and {MAX_NAME_LENGTH} characters"
        )
    if len(data.description) > MAX_DESCRIPTION_LENGTH:
        errors.append(f"Description must have at most {MAX_DESCRIPTION_LENGTH} characters")
    if len(data.rules) > MAX_RULES_LENGTH:
        errors.append(f"Rules must have at most {MAX_RULES_LENGTH} characters")

    start = parse_timestamp(data.start_date) if data.start_date else None
    end = parse_timestamp(data.end_date) if data.end_date else None
    if start is None or end is None:
        errors.append("Start and end dates are required and must be valid")
    else:
        if start >= end:
            errors.append("Start date must be before end date")
        if end < now + MIN_LEAD_TIME:
            errors.append("End date must be at least 1 hour in the future")
        duration = end - start
        if start < end and not MIN_DURATION <= duration <= MAX_DURATION:
            errors.append("Duration must be between 1 hour and 30 days")

    if data.max_participants is not None and not (
        MIN_PARTICIPANTS <= data.max_participants <= MAX_PARTICIPANTS
    ):
        errors.append(
            f"Max participants must be between {MIN_PARTICIPANTS} and {MAX_PARTICIPANTS}"
        )
    if data.entry_fee is not None and not 0 <= data.entry_fee <= MAX_ENTRY_FEE:
        errors.append(f"Entry fee must be between 0 and {MAX_ENTRY_FEE}")
    if data.prize_pool is not None and not 0 <= data.prize_pool <= MAX_PRIZE_POOL:
        errors.append(f"Prize pool must be between 0 and {MAX_PRIZE_POOL}")

    if errors or start is None or end is None:
        raise ValidationError(message=errors[0], details={"errors": errors})
    return start, end


def _require_online(reconciler: SyncReconciler, action: str) -> None:
    if not reconciler.online:
        raise OfflineError(message=f"{action} requires a connection")


async def _fetch_tournament(reconciler: SyncReconciler, tournament_id: str) -> Document:
    """Read the authoritative tournament document from the remote store."""
    if is_temp_id(tournament_id):
        raise DomainRuleError(
            message="Tournament is still waiting to sync",
            details={"tournament_id": tournament_id},
        )
    document = await reconciler.remote.get_document(TOURNAMENTS, tournament_id)
    if document is None:
        raise NotFoundError(
            message=f"Tournament {tournament_id} not found",
            details={"tournament_id": tournament_id},
        )
    return document


def _require_owner(document: Document, user: UserContext, action: str) -> None:
    if document.get("created_by") != user.uid:
        raise ForbiddenError(
            message=f"Only the organizer can {action} this tournament",
            details={"tournament_id": document.get("id")},
        )


def _require_not_closed(document: Document) -> None:
    status = document.get("status")
    if status == TournamentStatus.CANCELLED:
        raise DomainRuleError(
            message="Tournament was cancelled", details={"tournament_id": document.get("id")}
        )
    if status == TournamentStatus.FINISHED:
        raise DomainRuleError(
            message="Tournament already finished", details={"tournament_id": document.get("id")}
        )


def _is_participant(document: Document, user_id: str) -> bool:
    return any(
        isinstance(p, dict) and p.get("user_id") == user_id
        for p in document.get("participants") or []
    )


async def create_tournament(
    reconciler: SyncReconciler,
    user: UserContext,
    data: TournamentCreate,
    now: datetime | None = None,
) -> MutationOutcome:
    """Create a tournament with the creator as first participant."""
    now = now or utcnow()
    start, end = validate_tournament(data, now)

    local_id = temp_id("tournament", user.uid)
    created_at = now.isoformat()
    tournament = Tournament(
        id=local_id,
        client_id=local_id,
        name=data.name.strip(),
        description=data.description,
        created_by=user.uid,
        creator_name=user.name,
        created_at=created_at,
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        status=TournamentStatus.OPEN,
        max_participants=data.max_participants or DEFAULT_MAX_PARTICIPANTS,
        participants=[Participant(user_id=user.uid, user_name=user.name, joined_at=created_at)],
        participant_count=1,
        entry_fee=data.entry_fee or 0.0,
        prize_pool=data.prize_pool or 0.0,
        rules=data.rules,
        location=data.location,
    )
    entity = tournament.model_dump(mode="json")

    async def write() -> str:
        new_id = await reconciler.remote.add_document(TOURNAMENTS, entity)
        entity["id"] = new_id
        return new_id

    logger.info(f"Creating tournament '{tournament.name}' for {user.uid}")
    return await reconciler.apply_durable_mutation(
        DurableMutation(
            entity=entity,
            remote_write=write,
            queue_key=PENDING_TOURNAMENTS,
            merge=reconciler.merge_tournament,
            label=f"Tournament '{tournament.name}'",
        )
    )


def _ensure_joinable(document: Document, user_id: str, now: datetime) -> None:
    _require_not_closed(document)
    end = parse_timestamp(document.get("end_date"))
    if end is not None and end <= now:
        raise DomainRuleError(
            message="Tournament has ended", details={"tournament_id": document.get("id")}
        )
    if _is_participant(document, user_id):
        raise ConflictError(
            message="Already participating in this tournament",
            details={"tournament_id": document.get("id")},
        )
    max_participants = document.get("max_participants") or 0
    participants = document.get("participants") or []
    if max_participants and unique_participant_count(participants) >= max_participants:
        raise DomainRuleError(
            message="Tournament is full", details={"tournament_id": document.get("id")}
        )


async def write_participation(remote: RemoteStore, envelope: dict[str, Any]) -> str:
    """Add a participant, re-reading the current list so a retried join is a no-op."""
    tournament_id = str(envelope["tournament_id"])
    if is_temp_id(tournament_id):
        raise RemoteStoreError(
            message="Tournament has not been synced yet",
            kind=RemoteErrorKind.FAILED_PRECONDITION,
            details={"tournament_id": tournament_id},
        )

    document = await remote.get_document(TOURNAMENTS, tournament_id)
    if document is None:
        raise NotFoundError(
            message=f"Tournament {tournament_id} not found",
            details={"tournament_id": tournament_id},
        )

    participants, added = add_participant(
        document.get("participants") or [],
        str(envelope["user_id"]),
        str(envelope.get("user_name", "")),
        str(envelope["timestamp"]),
    )
    if not added:
        logger.info(f"User {envelope['user_id']} already in tournament {tournament_id}")
        return tournament_id

    max_participants = document.get("max_participants") or 0
    if max_participants and unique_participant_count(participants) > max_participants:
        raise DomainRuleError(
            message="Tournament is full", details={"tournament_id": tournament_id}
        )

    await remote.update_document(
        TOURNAMENTS,
        tournament_id,
        {
            "participants": participants,
            "participant_count": unique_participant_count(participants),
        },
    )
    return tournament_id


async def join_tournament(
    reconciler: SyncReconciler,
    user: UserContext,
    tournament_id: str,
    now: datetime | None = None,
) -> MutationOutcome:
    """Add the user to a tournament, queueing the write when offline."""
    now = now or utcnow()
    document = reconciler.find_tournament(tournament_id)
    if document is None:
        raise NotFoundError(
            message=f"Tournament {tournament_id} not found",
            details={"tournament_id": tournament_id},
        )
    _ensure_joinable(document, user.uid, now)

    envelope = PendingParticipation(
        tournament_id=str(document["id"]),
        user_id=user.uid,
        user_name=user.name,
        timestamp=now.isoformat(),
    ).model_dump(mode="json")

    async def write() -> str:
        return await write_participation(reconciler.remote, envelope)

    return await reconciler.apply_durable_mutation(
        DurableMutation(
            entity=envelope,
            remote_write=write,
            queue_key=PENDING_PARTICIPATIONS,
            merge=reconciler.merge_participation,
            label=f"Join of tournament {document['id']}",
        )
    )


async def leave_tournament(
    reconciler: SyncReconciler, user: UserContext, tournament_id: str
) -> Document:
    """Remove the user from a tournament. The organizer cannot leave."""
    _require_online(reconciler, "Leaving a tournament")
    document = await _fetch_tournament(reconciler, tournament_id)

    if document.get("created_by") == user.uid:
        raise DomainRuleError(
            message="The organizer cannot leave the tournament",
            details={"tournament_id": tournament_id},
        )
    if document.get("status") == TournamentStatus.FINISHED:
        raise DomainRuleError(
            message="Cannot leave a finished tournament",
            details={"tournament_id": tournament_id},
        )
    if not _is_participant(document, user.uid):
        raise ConflictError(
            message="Not participating in this tournament",
            details={"tournament_id": tournament_id},
        )

    remaining = [
        p
        for p in document.get("participants") or []
        if isinstance(p, dict) and p.get("user_id") != user.uid
    ]
    patch = {"participants": remaining, "participant_count": unique_participant_count(remaining)}
    await reconciler.remote.update_document(TOURNAMENTS, tournament_id, patch)
    updated = {**document, **patch}
    reconciler.upsert_tournament(updated)
    logger.info(f"User {user.uid} left tournament {tournament_id}")
    return updated


async def _tournament_catches_remote(reconciler: SyncReconciler, tournament_id: str) -> list[Document]:
    return await reconciler.remote.query_documents(
        CATCHES, [Filter("tournament_id", "==", tournament_id)]
    )


async def cancel_tournament(
    reconciler: SyncReconciler,
    user: UserContext,
    tournament_id: str,
    now: datetime | None = None,
) -> Document:
    """Cancel a tournament before it gets going.

    Only the organizer can cancel, and only while there are no catches,
    no other participant has joined a started tournament and it started
    less than an hour ago.
    """
    now = now or utcnow()
    _require_online(reconciler, "Cancelling a tournament")
    document = await _fetch_tournament(reconciler, tournament_id)
    _require_owner(document, user, "cancel")
    _require_not_closed(document)

    if await _tournament_catches_remote(reconciler, tournament_id):
        raise DomainRuleError(
            message="Cannot cancel a tournament that already has catches",
            details={"tournament_id": tournament_id},
        )

    start = parse_timestamp(document.get("start_date"))
    if start is not None and start <= now:
        if unique_participant_count(document.get("participants") or []) > 1:
            raise DomainRuleError(
                message="Cannot cancel a started tournament with other participants",
                details={"tournament_id": tournament_id},
            )
        if now - start > CANCEL_GRACE_PERIOD:
            raise DomainRuleError(
                message="Cancellation window closed one hour after the start",
                details={"tournament_id": tournament_id},
            )

    patch = {
        "status": TournamentStatus.CANCELLED.value,
        "cancelled_at": now.isoformat(),
        "cancelled_by": user.uid,
    }
    await reconciler.remote.update_document(TOURNAMENTS, tournament_id, patch)
    updated = {**document, **patch}
    reconciler.upsert_tournament(updated)
    logger.info(f"Tournament {tournament_id} cancelled by {user.uid}")
    return updated


async def finish_tournament(
    reconciler: SyncReconciler,
    user: UserContext,
    tournament_id: str,
    now: datetime | None = None,
) -> Document:
    """Close a tournament and freeze its weight ranking and winner."""
    now = now or utcnow()
    _require_online(reconciler, "Finishing a tournament")
    document = await _fetch_tournament(reconciler, tournament_id)
    _require_owner(document, user, "finish")
    _require_not_closed(document)

    start = parse_timestamp(document.get("start_date"))
    end = parse_timestamp(document.get("end_date"))
    if start is not None and now < start:
        raise DomainRuleError(
            message="Tournament has not started yet", details={"tournament_id": tournament_id}
        )
    if start is not None and end is not None and now < end:
        elapsed = now - start
        if elapsed < (end - start) * EARLY_FINISH_RATIO:
            raise DomainRuleError(
                message="A tournament can only finish early after half of its duration",
                details={"tournament_id": tournament_id},
            )
    if unique_participant_count(document.get("participants") or []) == 0:
        raise DomainRuleError(
            message="Tournament has no participants", details={"tournament_id": tournament_id}
        )

    catches = await _tournament_catches_remote(reconciler, tournament_id)
    ranking = compute_ranking(catches, RankingPolicy.WEIGHT)
    winner = winner_snapshot(ranking)
    patch: dict[str, Any] = {
        "status": TournamentStatus.FINISHED.value,
        "finished_at": now.isoformat(),
        "finished_by": user.uid,
        "final_ranking": [p.model_dump(mode="json") for p in ranking],
        "winner": winner.model_dump(mode="json") if winner else None,
    }
    await reconciler.remote.update_document(TOURNAMENTS, tournament_id, patch)
    updated = {**document, **patch}
    reconciler.upsert_tournament(updated)
    logger.success(
        f"Tournament {tournament_id} finished, winner: {winner.user_name if winner else 'none'}"
    )
    return updated


def list_tournaments(
    reconciler: SyncReconciler, status: TournamentStatus | None = None
) -> list[Document]:
    tournaments = reconciler.tournaments
    if status is not None:
        tournaments = [t for t in tournaments if t.get("status") == status]
    return sorted(tournaments, key=lambda t: str(t.get("created_at") or ""), reverse=True)


def user_tournaments(reconciler: SyncReconciler, user: UserContext) -> list[Document]:
    return [t for t in list_tournaments(reconciler) if _is_participant(t, user.uid)]


def get_tournament(reconciler: SyncReconciler, tournament_id: str) -> Document:
    document = reconciler.find_tournament(tournament_id)
    if document is None:
        raise NotFoundError(
            message=f"Tournament {tournament_id} not found",
            details={"tournament_id": tournament_id},
        )
    return document


def tournament_ranking(
    reconciler: SyncReconciler,
    tournament_id: str,
    policy: str | RankingPolicy = RankingPolicy.SCORE,
) -> list[RankedParticipant]:
    """Leaderboard of one tournament.

    A finished tournament asked for its weight ranking returns the frozen
    snapshot. Otherwise the ranking is computed from the catches registered
    before the tournament closed.
    """
    document = get_tournament(reconciler, tournament_id)
    resolved = resolve_policy(policy)

    frozen = document.get("final_ranking")
    if (
        document.get("status") == TournamentStatus.FINISHED
        and resolved is RankingPolicy.WEIGHT
        and isinstance(frozen, list)
    ):
        return [RankedParticipant.model_validate(entry) for entry in frozen]

    until = None
    if document.get("status") in CLOSED_STATUSES:
        until = document.get("finished_at") or document.get("cancelled_at")
    catches = tournament_catches(reconciler.catches, str(document["id"]), until)
    return compute_ranking(catches, resolved)


def general_ranking(
    reconciler: SyncReconciler, policy: str | RankingPolicy = RankingPolicy.SCORE
) -> list[RankedParticipant]:
    """Leaderboard over every known catch."""
    return compute_ranking(reconciler.catches, policy)
