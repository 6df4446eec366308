"""
Catch API endpoints.

Catches are registered as multipart forms so a photo can travel with them.
"""

from typing import Annotated, Any

from fastapi import APIRouter, File, Form, UploadFile, status
from loguru import logger

from tilapios.api.deps import ReconcilerDep, UserDep
from tilapios.schemas.errors import ErrorResponse
from tilapios.schemas.schemas import CatchCreate, MutationResponse
from tilapios.services import catch_service

router = APIRouter()


@router.get("/", response_model=list[dict[str, Any]])
def read_catches(reconciler: ReconcilerDep) -> list[dict[str, Any]]:
    """All known catches, including ones still waiting to sync."""
    logger.info("Fetching catches")
    return reconciler.catches


@router.get("/mine", response_model=list[dict[str, Any]])
def read_my_catches(reconciler: ReconcilerDep, user: UserDep) -> list[dict[str, Any]]:
    return catch_service.user_catches(reconciler, user)


@router.post(
    "/",
    response_model=MutationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def register_catch(  # noqa: PLR0913
    reconciler: ReconcilerDep,
    user: UserDep,
    species: Annotated[str, Form()],
    weight: Annotated[float, Form()],
    length: Annotated[float | None, Form()] = None,
    location: Annotated[str | None, Form()] = None,
    tournament_id: Annotated[str | None, Form()] = None,
    photo: Annotated[UploadFile | None, File(description="Optional catch photo")] = None,
) -> MutationResponse:
    """Register a catch; the photo is optional and never blocks the catch."""
    data = CatchCreate(
        species=species,
        weight=weight,
        length=length,
        location=location,
        tournament_id=tournament_id,
    )
    photo_bytes = await photo.read() if photo is not None else None
    outcome = await catch_service.register_catch(
        reconciler,
        user,
        data,
        photo=photo_bytes,
        photo_filename=photo.filename if photo is not None else None,
    )
    return MutationResponse(pending=outcome.pending, data=outcome.entity)
