from fastapi import APIRouter
from loguru import logger

from tilapios.api.v1.endpoints import catches, invites, posts, rankings, sync, tournaments

logger.info("Initializing API v1 router")
api_router = APIRouter(prefix="/api/v1")

logger.debug("Registering tournaments endpoint")
api_router.include_router(tournaments.router, prefix="/tournaments", tags=["tournaments"])
logger.debug("Registering catches endpoint")
api_router.include_router(catches.router, prefix="/catches", tags=["catches"])
logger.debug("Registering invites endpoint")
api_router.include_router(invites.router, prefix="/invites", tags=["invites"])
logger.debug("Registering posts endpoint")
api_router.include_router(posts.router, prefix="/posts", tags=["posts"])
logger.debug("Registering rankings endpoint")
api_router.include_router(rankings.router, prefix="/rankings", tags=["rankings"])
logger.debug("Registering sync endpoint")
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
logger.success("API v1 router initialized successfully")
