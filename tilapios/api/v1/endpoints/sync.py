"""
Sync API endpoints.

Exposes the reconciler status, lets the client report connectivity changes
and trigger a drain or an expiry sweep by hand.
"""

from fastapi import APIRouter
from loguru import logger

from tilapios.api.deps import ReconcilerDep
from tilapios.schemas.schemas import (
    ConnectivityUpdate,
    DrainReport,
    SweepResponse,
    SyncStatusResponse,
)

router = APIRouter()


@router.get("/status", response_model=SyncStatusResponse)
def read_sync_status(reconciler: ReconcilerDep) -> SyncStatusResponse:
    return reconciler.status_summary()


@router.put("/connectivity", response_model=SyncStatusResponse)
async def update_connectivity(
    update: ConnectivityUpdate, reconciler: ReconcilerDep
) -> SyncStatusResponse:
    """Report that the device went online or offline."""
    logger.info(f"Connectivity update: online={update.online}")
    await reconciler.set_online(update.online)
    return reconciler.status_summary()


@router.post("/drain", response_model=DrainReport)
async def drain_queue(reconciler: ReconcilerDep) -> DrainReport:
    """Replay queued writes now. An empty report means nothing was attempted."""
    report = await reconciler.drain()
    return report or DrainReport()


@router.post("/sweep", response_model=SweepResponse)
async def sweep_expired(reconciler: ReconcilerDep) -> SweepResponse:
    finished = await reconciler.sweep_expired()
    return SweepResponse(finished=finished)
