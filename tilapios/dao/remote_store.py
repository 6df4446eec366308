"""Remote document store adapter.

The sync layer only talks to the remote side through the ``RemoteStore``
protocol. ``SqlRemoteStore`` implements it on top of a single SQLModel table
holding schemaless JSON documents grouped by collection name.
"""

import asyncio
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Literal, Protocol
import uuid

from loguru import logger
from sqlalchemy.engine import Engine
from sqlalchemy.exc import (
    DataError,
    DisconnectionError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlmodel import Session, select

from tilapios.core.exceptions import RemoteErrorKind, RemoteStoreError
from tilapios.core.time_utils import utcnow_iso
from tilapios.models import RemoteDocument

# Collections used by the application
TOURNAMENTS = "tournaments"
CATCHES = "catches"
POSTS = "posts"
TOURNAMENT_INVITES = "tournament_invites"
NOTIFICATIONS = "notifications"

MAX_BATCH_SIZE = 500

type Document = dict[str, Any]
type DataCallback = Callable[[list[Document]], None]
type ErrorCallback = Callable[[RemoteStoreError], None]
type Unsubscribe = Callable[[], None]

FilterOp = Literal["==", "!=", "<", "<=", ">", ">=", "in", "array-contains"]


@dataclass(frozen=True)
class Filter:
    """A single field predicate applied to documents."""

    field: str
    op: FilterOp
    value: Any

    def matches(self, document: Document) -> bool:  # noqa: PLR0911
        actual = document.get(self.field)
        try:
            match self.op:
                case "==":
                    return actual == self.value
                case "!=":
                    return actual != self.value
                case "in":
                    return actual in self.value
                case "array-contains":
                    return isinstance(actual, list) and self.value in actual
                case "<":
                    return actual is not None and actual < self.value
                case "<=":
                    return actual is not None and actual <= self.value
                case ">":
                    return actual is not None and actual > self.value
                case ">=":
                    return actual is not None and actual >= self.value
        except TypeError:
            return False
        return False


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass
class BatchOperation:
    """One mutation inside a batched write."""

    kind: Literal["add", "update"]
    collection: str
    data: Document = field(default_factory=dict)
    document_id: str | None = None


class RemoteStore(Protocol):
    """Document-collection interface consumed by the sync layer."""

    async def add_document(
        self, collection: str, data: Document, document_id: str | None = None
    ) -> str: ...

    async def update_document(
        self, collection: str, document_id: str, data: Document
    ) -> None: ...

    async def get_document(self, collection: str, document_id: str) -> Document | None: ...

    async def query_documents(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = None,
    ) -> list[Document]: ...

    def subscribe_to_collection(
        self,
        collection: str,
        filters: Sequence[Filter],
        on_data: DataCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe: ...

    async def batch_write(self, operations: Sequence[BatchOperation]) -> list[str]: ...


def classify_sql_error(exc: SQLAlchemyError) -> RemoteStoreError:
    """Map a driver error onto the closed remote error taxonomy."""
    if isinstance(exc, (OperationalError, DisconnectionError, PoolTimeoutError)):
        kind = RemoteErrorKind.NETWORK_UNAVAILABLE
    elif isinstance(exc, (IntegrityError, DataError)):
        kind = RemoteErrorKind.VALIDATION
    else:
        kind = RemoteErrorKind.UNKNOWN
    return RemoteStoreError(message=f"Remote store error: {exc}", kind=kind)


def _to_document(row: RemoteDocument) -> Document:
    return {**row.data, "id": row.id}


def _strip_id(data: Document) -> Document:
    return {key: value for key, value in data.items() if key != "id"}


def apply_query(
    documents: Iterable[Document],
    filters: Sequence[Filter] = (),
    order_by: OrderBy | None = None,
) -> list[Document]:
    """Filter and order documents in memory."""
    selected = [doc for doc in documents if all(f.matches(doc) for f in filters)]
    if order_by is not None:

        def sort_key(doc: Document) -> tuple[bool, Any]:
            value = doc.get(order_by.field)
            return (value is None, value if value is not None else "")

        selected.sort(key=sort_key, reverse=order_by.descending)
    return selected


@dataclass
class _Listener:
    collection: str
    filters: tuple[Filter, ...]
    on_data: DataCallback
    on_error: ErrorCallback


class SqlRemoteStore:
    """Remote store backed by a SQL database holding JSON documents.

    Session work of the async methods runs in a worker thread so the event
    loop is not blocked by the driver. Listeners are always notified from the
    calling coroutine, on the loop.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._listeners: dict[int, _Listener] = {}
        self._listener_ids = count(1)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as e:
            raise classify_sql_error(e) from e

    def _load_collection(self, collection: str) -> list[Document]:
        with self._session() as session:
            rows = session.exec(
                select(RemoteDocument).where(RemoteDocument.collection == collection)
            ).all()
            return [_to_document(row) for row in rows]

    async def add_document(
        self, collection: str, data: Document, document_id: str | None = None
    ) -> str:
        """Insert a document and return its id (generated when not given)."""
        new_id = document_id or uuid.uuid4().hex

        def insert() -> None:
            with self._session() as session:
                session.add(RemoteDocument(id=new_id, collection=collection, data=_strip_id(data)))
                session.commit()

        await asyncio.to_thread(insert)
        logger.debug(f"Added document {collection}/{new_id}")
        self._notify({collection})
        return new_id

    async def update_document(
        self, collection: str, document_id: str, data: Document
    ) -> None:
        """Merge data into an existing document."""

        def merge() -> None:
            with self._session() as session:
                row = session.get(RemoteDocument, document_id)
                if row is None or row.collection != collection:
                    raise RemoteStoreError(
                        message=f"Document {collection}/{document_id} not found",
                        kind=RemoteErrorKind.NOT_FOUND,
                        details={"collection": collection, "document_id": document_id},
                    )
                row.data = {**row.data, **_strip_id(data)}
                row.updated_at = utcnow_iso()
                session.add(row)
                session.commit()

        await asyncio.to_thread(merge)
        logger.debug(f"Updated document {collection}/{document_id}")
        self._notify({collection})

    async def get_document(self, collection: str, document_id: str) -> Document | None:
        def fetch() -> Document | None:
            with self._session() as session:
                row = session.get(RemoteDocument, document_id)
                if row is None or row.collection != collection:
                    return None
                return _to_document(row)

        return await asyncio.to_thread(fetch)

    async def query_documents(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = None,
    ) -> list[Document]:
        documents = await asyncio.to_thread(self._load_collection, collection)
        return apply_query(documents, filters, order_by)

    def subscribe_to_collection(
        self,
        collection: str,
        filters: Sequence[Filter],
        on_data: DataCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        """Register a listener and immediately deliver the current snapshot."""
        listener = _Listener(collection, tuple(filters), on_data, on_error)
        snapshot = apply_query(self._load_collection(collection), listener.filters)

        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = listener
        logger.debug(f"Listener {listener_id} subscribed to '{collection}'")
        on_data(snapshot)

        def unsubscribe() -> None:
            if self._listeners.pop(listener_id, None) is not None:
                logger.debug(f"Listener {listener_id} unsubscribed from '{collection}'")

        return unsubscribe

    async def batch_write(self, operations: Sequence[BatchOperation]) -> list[str]:
        """Apply all operations atomically; returns the id of each operation."""
        if len(operations) > MAX_BATCH_SIZE:
            raise RemoteStoreError(
                message=f"Batch of {len(operations)} exceeds {MAX_BATCH_SIZE} operations",
                kind=RemoteErrorKind.VALIDATION,
                details={"size": len(operations)},
            )
        if not operations:
            return []

        def commit() -> tuple[list[str], set[str]]:
            ids: list[str] = []
            touched: set[str] = set()
            with self._session() as session:
                for op in operations:
                    if op.kind == "add":
                        new_id = op.document_id or uuid.uuid4().hex
                        session.add(
                            RemoteDocument(
                                id=new_id, collection=op.collection, data=_strip_id(op.data)
                            )
                        )
                        ids.append(new_id)
                    else:
                        row = (
                            session.get(RemoteDocument, op.document_id)
                            if op.document_id
                            else None
                        )
                        if row is None or row.collection != op.collection:
                            session.rollback()
                            raise RemoteStoreError(
                                message=f"Document {op.collection}/{op.document_id} not found",
                                kind=RemoteErrorKind.NOT_FOUND,
                                details={
                                    "collection": op.collection,
                                    "document_id": op.document_id,
                                },
                            )
                        row.data = {**row.data, **_strip_id(op.data)}
                        row.updated_at = utcnow_iso()
                        session.add(row)
                        ids.append(row.id)
                    touched.add(op.collection)
                session.commit()
            return ids, touched

        ids, touched = await asyncio.to_thread(commit)

        logger.debug(f"Committed batch of {len(operations)} operations")
        self._notify(touched)
        return ids

    def _notify(self, collections: set[str]) -> None:
        """Push a fresh snapshot to every listener of the touched collections."""
        listeners = [
            listener
            for listener in list(self._listeners.values())
            if listener.collection in collections
        ]
        if not listeners:
            return

        snapshots: dict[str, list[Document]] = {}
        for listener in listeners:
            try:
                if listener.collection not in snapshots:
                    snapshots[listener.collection] = self._load_collection(listener.collection)
            except RemoteStoreError as e:
                listener.on_error(e)
                continue
            listener.on_data(apply_query(snapshots[listener.collection], listener.filters))
