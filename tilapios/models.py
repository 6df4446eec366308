"""SQLModel tables backing the remote document store and the local durable queue."""

from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel  # type: ignore

from tilapios.core.time_utils import utcnow_iso


class RemoteDocument(SQLModel, table=True):
    """A schemaless document inside a named remote collection."""

    id: str = Field(primary_key=True)
    collection: str = Field(index=True)

    # Always reassigned as a whole; in-place mutation is not tracked
    data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    created_at: str = Field(default_factory=utcnow_iso)
    updated_at: str = Field(default_factory=utcnow_iso)


class LocalEntry(SQLModel, table=True):
    """One key of the on-device key-value store.

    The value is kept as raw JSON text so a corrupt entry can be detected
    on read instead of failing at the driver level.
    """

    key: str = Field(primary_key=True)
    value: str = Field(default="null")
    updated_at: str = Field(default_factory=utcnow_iso)
