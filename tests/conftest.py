"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncGenerator, Generator, Sequence
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine

from tilapios.core.config import Settings
from tilapios.core.db import create_local_engine, create_remote_engine
from tilapios.core.exceptions import RemoteErrorKind, RemoteStoreError
from tilapios.core.time_utils import utcnow
from tilapios.dao.local_store import LocalStore
from tilapios.dao.object_storage import LocalObjectStorage
from tilapios.dao.remote_store import (
    BatchOperation,
    DataCallback,
    Document,
    ErrorCallback,
    Filter,
    OrderBy,
    SqlRemoteStore,
    Unsubscribe,
)
from tilapios.schemas.schemas import TournamentCreate, UserContext
from tilapios.services.sync_service import SyncReconciler


class FlakyRemoteStore:
    """Delegates to a real remote store, failing chosen methods on demand."""

    def __init__(self, inner: SqlRemoteStore) -> None:
        self.inner = inner
        self.failures: dict[str, RemoteErrorKind] = {}
        self.calls: list[str] = []
        self.batch_sizes: list[int] = []

    def fail(self, method: str, kind: RemoteErrorKind = RemoteErrorKind.NETWORK_UNAVAILABLE) -> None:
        self.failures[method] = kind

    def heal(self) -> None:
        self.failures.clear()

    def _check(self, method: str) -> None:
        self.calls.append(method)
        kind = self.failures.get(method) or self.failures.get("*")
        if kind is not None:
            raise RemoteStoreError(message=f"{method} failed", kind=kind)

    async def add_document(
        self, collection: str, data: Document, document_id: str | None = None
    ) -> str:
        self._check("add_document")
        return await self.inner.add_document(collection, data, document_id)

    async def update_document(self, collection: str, document_id: str, data: Document) -> None:
        self._check("update_document")
        await self.inner.update_document(collection, document_id, data)

    async def get_document(self, collection: str, document_id: str) -> Document | None:
        self._check("get_document")
        return await self.inner.get_document(collection, document_id)

    async def query_documents(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = None,
    ) -> list[Document]:
        self._check("query_documents")
        return await self.inner.query_documents(collection, filters, order_by)

    def subscribe_to_collection(
        self,
        collection: str,
        filters: Sequence[Filter],
        on_data: DataCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        self._check("subscribe_to_collection")
        return self.inner.subscribe_to_collection(collection, filters, on_data, on_error)

    async def batch_write(self, operations: Sequence[BatchOperation]) -> list[str]:
        self._check("batch_write")
        self.batch_sizes.append(len(operations))
        return await self.inner.batch_write(operations)


@pytest.fixture
def remote_engine() -> Generator[Engine, None, None]:
    """In-memory SQLite database standing in for the remote document store."""
    engine = create_remote_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def local_engine() -> Generator[Engine, None, None]:
    """In-memory SQLite database standing in for on-device storage."""
    engine = create_local_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def remote_store(remote_engine) -> SqlRemoteStore:
    return SqlRemoteStore(remote_engine)


@pytest.fixture
def flaky_remote(remote_store) -> FlakyRemoteStore:
    return FlakyRemoteStore(remote_store)


@pytest.fixture
def local_store(local_engine) -> LocalStore:
    return LocalStore(local_engine)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        remote_database_url="sqlite:///:memory:",
        local_database_url="sqlite:///:memory:",
        uploads_dir=str(tmp_path / "uploads"),
        uploads_base_url="/uploads",
        invites_poll_interval=0.01,
        expiry_sweep_interval=3600.0,
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture
def object_storage(settings) -> LocalObjectStorage:
    return LocalObjectStorage(settings.uploads_dir, settings.uploads_base_url)


@pytest.fixture
def alice() -> UserContext:
    return UserContext(uid="alice-uid-0001", display_name="Alice", email="alice@example.com")


@pytest.fixture
def bob() -> UserContext:
    return UserContext(uid="bob-uid-0002", display_name="Bob", email="bob@example.com")


@pytest.fixture
def reconciler(flaky_remote, local_store, settings, object_storage) -> SyncReconciler:
    """Reconciler that has not been initialized (no mirrors, no sweep)."""
    return SyncReconciler(flaky_remote, local_store, settings, object_storage)


@pytest.fixture
async def live_reconciler(reconciler, alice) -> AsyncGenerator[SyncReconciler, None]:
    """Reconciler signed in as alice with live mirrors."""
    await reconciler.init(alice, run_sweeper=False)
    yield reconciler
    await reconciler.dispose()


@pytest.fixture
def tournament_data() -> TournamentCreate:
    """A valid tournament that started a minute ago and runs for two hours."""
    now = utcnow()
    return TournamentCreate(
        name="Copa Tilápia",
        description="Torneio de fim de semana",
        start_date=(now - timedelta(minutes=1)).isoformat(),
        end_date=(now + timedelta(hours=2)).isoformat(),
        max_participants=10,
        location="Represa",
    )
