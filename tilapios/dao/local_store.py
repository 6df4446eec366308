"""Data Access Object for the on-device key-value store.

Holds both the cache of last-known-good remote collections and the queues of
mutations that have not reached the remote store yet. Values are plain JSON.
"""

import copy
import json
from typing import Any

from loguru import logger
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from tilapios.core.time_utils import utcnow_iso
from tilapios.models import LocalEntry

type JSONValue = Any

# Pending-operation queues, drained in this order
PENDING_TOURNAMENTS = "pending_tournaments"
PENDING_CATCHES = "pending_catches"
PENDING_PARTICIPATIONS = "pending_participations"
PENDING_INVITE_STATUS_UPDATES = "pending_invite_status_updates"
PENDING_POSTS = "local_posts"
PENDING_POST_UPDATES = "pending_post_updates"

QUEUE_KEYS = (
    PENDING_TOURNAMENTS,
    PENDING_CATCHES,
    PENDING_PARTICIPATIONS,
    PENDING_INVITE_STATUS_UPDATES,
    PENDING_POSTS,
    PENDING_POST_UPDATES,
)

# Collection mirrors
ALL_CATCHES = "all_catches"
ALL_TOURNAMENTS = "all_tournaments"
ALL_POSTS = "all_posts"


def user_catches_key(uid: str) -> str:
    return f"user_catches_{uid}"


def user_tournaments_key(uid: str) -> str:
    return f"user_tournaments_{uid}"


def user_invites_key(uid: str) -> str:
    return f"user_invites_{uid}"


class LocalStore:
    """Synchronous get/set access to the local durable store."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def save(self, key: str, value: JSONValue) -> None:
        """Serialize and store a value under key, replacing any previous one."""
        payload = json.dumps(value)
        with Session(self.engine) as session:
            entry = session.get(LocalEntry, key)
            if entry is None:
                entry = LocalEntry(key=key, value=payload)
            else:
                entry.value = payload
                entry.updated_at = utcnow_iso()
            session.add(entry)
            session.commit()

    def load(self, key: str, default: JSONValue = None) -> JSONValue:
        """Return the stored value, or default when missing or unreadable."""
        with Session(self.engine) as session:
            entry = session.get(LocalEntry, key)
            if entry is None:
                return copy.deepcopy(default)
            raw = entry.value

        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Corrupt local entry '{key}', falling back to default")
            return copy.deepcopy(default)

    def append(self, key: str, item: JSONValue) -> list[JSONValue]:
        """Append an item to the list stored under key and return the new list."""
        items = self.load(key, [])
        if not isinstance(items, list):
            logger.warning(f"Local entry '{key}' is not a list, resetting it")
            items = []
        items.append(item)
        self.save(key, items)
        return items

    def remove(self, key: str) -> None:
        with Session(self.engine) as session:
            entry = session.get(LocalEntry, key)
            if entry is not None:
                session.delete(entry)
                session.commit()

    def keys(self, prefix: str = "") -> list[str]:
        with Session(self.engine) as session:
            statement = select(LocalEntry.key)
            if prefix:
                statement = statement.where(LocalEntry.key.startswith(prefix))  # type: ignore[attr-defined]
            return sorted(session.exec(statement).all())

    def count(self, key: str) -> int:
        """Length of the list stored under key (0 when missing)."""
        items = self.load(key, [])
        return len(items) if isinstance(items, list) else 0
