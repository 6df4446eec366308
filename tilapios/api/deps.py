from typing import Annotated

from fastapi import Depends, Header, Request
from loguru import logger

from tilapios.core.exceptions import ForbiddenError
from tilapios.schemas.schemas import UserContext
from tilapios.services.sync_service import SyncReconciler


def get_reconciler(request: Request) -> SyncReconciler:
    """Provide the process-wide sync reconciler built at startup."""
    return request.app.state.reconciler


ReconcilerDep = Annotated[SyncReconciler, Depends(get_reconciler)]


async def get_current_user(
    reconciler: ReconcilerDep,
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_name: Annotated[str | None, Header()] = None,
    x_user_email: Annotated[str | None, Header()] = None,
) -> UserContext:
    """Resolve the acting user from the identity headers."""
    if not x_user_id:
        logger.debug("Request without X-User-Id header")
        raise ForbiddenError(message="Authentication required")
    user = UserContext(uid=x_user_id, display_name=x_user_name, email=x_user_email)
    await reconciler.set_user(user)
    return user


UserDep = Annotated[UserContext, Depends(get_current_user)]
