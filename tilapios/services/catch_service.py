"""Catch registration and per-user catch listings."""

from datetime import datetime
from pathlib import PurePosixPath

from loguru import logger

from tilapios.core.exceptions import (
    DomainRuleError,
    NotFoundError,
    RemoteErrorKind,
    RemoteStoreError,
    StorageError,
    ValidationError,
)
from tilapios.core.time_utils import parse_timestamp, utcnow
from tilapios.dao.local_store import PENDING_CATCHES
from tilapios.dao.object_storage import ObjectStorage
from tilapios.dao.remote_store import CATCHES, Document
from tilapios.schemas.schemas import (
    CLOSED_STATUSES,
    CatchCreate,
    CatchRecord,
    UserContext,
)
from tilapios.services.sync_service import (
    DurableMutation,
    MutationOutcome,
    SyncReconciler,
    is_temp_id,
    temp_id,
)

MAX_SPECIES_LENGTH = 100


def validate_catch(data: CatchCreate) -> None:
    errors: list[str] = []
    species = data.species.strip()
    if not species:
        errors.append("Species is required")
    elif len(species) > MAX_SPECIES_LENGTH:
        errors.append(f"Species must have at most {MAX_SPECIES_LENGTH} characters")
    if data.weight < 0:
        errors.append("Weight cannot be negative")
    if data.length is not None and data.length < 0:
        errors.append("Length cannot be negative")
    if errors:
        raise ValidationError(message=errors[0], details={"errors": errors})


async def upload_photo(
    storage: ObjectStorage | None,
    user: UserContext,
    catch_id: str,
    photo: bytes | None,
    filename: str | None = None,
) -> str | None:
    """Store the photo and return its URL, or None when there is none or it fails.

    A failed upload never blocks the catch itself.
    """
    if storage is None or not photo:
        return None
    suffix = PurePosixPath(filename).suffix.lower() if filename else ""
    path = f"catches/{user.uid}/{catch_id}{suffix or '.jpg'}"
    try:
        return await storage.upload_file(path, photo)
    except StorageError as e:
        logger.warning(f"Photo upload failed, saving catch without photo: {e.message}")
        return None


async def register_catch(
    reconciler: SyncReconciler,
    user: UserContext,
    data: CatchCreate,
    photo: bytes | None = None,
    photo_filename: str | None = None,
    now: datetime | None = None,
) -> MutationOutcome:
    """Log a catch, optionally inside a tournament."""
    validate_catch(data)
    now = now or utcnow()

    tournament_id = data.tournament_id or None
    if tournament_id is not None:
        tournament = reconciler.find_tournament(tournament_id)
        if tournament is None:
            raise NotFoundError(
                message=f"Tournament {tournament_id} not found",
                details={"tournament_id": tournament_id},
            )
        if tournament.get("status") in CLOSED_STATUSES:
            raise DomainRuleError(
                message="Tournament is closed for new catches",
                details={"tournament_id": tournament_id},
            )
        end_date = parse_timestamp(tournament.get("end_date"))
        if end_date is not None and end_date <= now:
            raise DomainRuleError(
                message="Tournament has already ended",
                details={"tournament_id": tournament_id, "end_date": end_date.isoformat()},
            )
        tournament_id = str(tournament["id"])

    local_id = temp_id("catch", user.uid)
    photo_url = await upload_photo(reconciler.storage, user, local_id, photo, photo_filename)
    record = CatchRecord(
        id=local_id,
        client_id=local_id,
        user_id=user.uid,
        user_name=user.name,
        species=data.species.strip(),
        weight=data.weight,
        length=data.length,
        location=data.location,
        tournament_id=tournament_id,
        photo=photo_url,
        registered_at=now.isoformat(),
    )
    entity = record.model_dump(mode="json")

    async def write() -> str:
        if is_temp_id(entity.get("tournament_id")):
            raise RemoteStoreError(
                message="Tournament has not been synced yet",
                kind=RemoteErrorKind.FAILED_PRECONDITION,
                details={"tournament_id": entity.get("tournament_id")},
            )
        new_id = await reconciler.remote.add_document(CATCHES, entity)
        entity["id"] = new_id
        return new_id

    logger.info(f"Registering {record.species} ({record.weight} kg) for {user.uid}")
    return await reconciler.apply_durable_mutation(
        DurableMutation(
            entity=entity,
            remote_write=write,
            queue_key=PENDING_CATCHES,
            merge=reconciler.merge_catch,
            label=f"Catch {record.species}",
        )
    )


def user_catches(reconciler: SyncReconciler, user: UserContext) -> list[Document]:
    """The user's catches, most recent first, including queued ones."""
    catches = [c for c in reconciler.catches if c.get("user_id") == user.uid]
    return sorted(catches, key=lambda c: str(c.get("registered_at") or ""), reverse=True)
