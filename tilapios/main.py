"""FastAPI application for the Tilapios offline-first fishing backend."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from loguru import logger
import uvicorn

from tilapios.api.v1.router import api_router
from tilapios.core.config import Settings, get_settings
from tilapios.core.db import create_local_engine, create_remote_engine
from tilapios.core.error_handlers import register_exception_handlers
from tilapios.core.logging_config import configure_logging
from tilapios.dao.local_store import LocalStore
from tilapios.dao.object_storage import LocalObjectStorage
from tilapios.dao.remote_store import SqlRemoteStore
from tilapios.services.sync_service import SyncReconciler


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application; settings default to the environment."""
    resolved = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Handle application startup and shutdown events."""
        configure_logging(resolved.log_dir, resolved.log_level)
        logger.info("Starting Tilapios application...")

        remote_engine = create_remote_engine(resolved.remote_database_url)
        local_engine = create_local_engine(resolved.local_database_url)
        reconciler = SyncReconciler(
            SqlRemoteStore(remote_engine),
            LocalStore(local_engine),
            resolved,
            LocalObjectStorage(resolved.uploads_dir, resolved.uploads_base_url),
        )
        await reconciler.init()
        app.state.reconciler = reconciler
        logger.success("Application startup complete")
        yield
        logger.info("Shutting down Tilapios application...")
        await reconciler.dispose()
        remote_engine.dispose()
        local_engine.dispose()

    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router)

    Path(resolved.uploads_dir).mkdir(parents=True, exist_ok=True)
    app.mount(
        resolved.uploads_base_url, StaticFiles(directory=resolved.uploads_dir), name="uploads"
    )

    @app.get("/")
    def read_root() -> dict[str, str]:  # pyright: ignore[reportUnusedFunction]
        """Return welcome message for the root endpoint."""
        logger.debug("Root endpoint accessed")
        return {"message": "Welcome to the Tilapios API"}

    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "tilapios.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
    )


if __name__ == "__main__":
    run()
