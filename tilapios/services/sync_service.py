"""Bridge between optimistic local mutations and the remote document store.

Writes go straight to the remote store while online. When offline, or when the
remote store answers with a connectivity/permission class error, the write is
appended to a queue in the local store and reflected immediately in the
in-memory views, flagged as pending. ``SyncReconciler.drain`` replays the
queues once the connection is back.
"""

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
import json
import secrets
import time
from typing import Any

from loguru import logger

from tilapios.core.config import Settings
from tilapios.core.exceptions import RemoteStoreError
from tilapios.core.time_utils import parse_timestamp, utcnow, utcnow_iso
from tilapios.dao.local_store import (
    ALL_CATCHES,
    ALL_POSTS,
    ALL_TOURNAMENTS,
    PENDING_CATCHES,
    PENDING_INVITE_STATUS_UPDATES,
    PENDING_PARTICIPATIONS,
    PENDING_POST_UPDATES,
    PENDING_POSTS,
    PENDING_TOURNAMENTS,
    QUEUE_KEYS,
    LocalStore,
    user_catches_key,
    user_invites_key,
    user_tournaments_key,
)
from tilapios.dao.object_storage import ObjectStorage
from tilapios.dao.remote_store import (
    CATCHES,
    POSTS,
    TOURNAMENT_INVITES,
    TOURNAMENTS,
    BatchOperation,
    Document,
    Filter,
    RemoteStore,
)
from tilapios.schemas.schemas import (
    CLOSED_STATUSES,
    CategoryReport,
    DrainReport,
    InviteStatus,
    Participant,
    PostUpdateKind,
    RankingPolicy,
    SyncStatusResponse,
    TournamentStatus,
    UserContext,
)
from tilapios.services.ranking_service import (
    compute_ranking,
    tournament_catches,
    winner_snapshot,
)
from tilapios.services.subscriptions import MirrorState, MirrorSubscription

TEMP_PREFIX = "temp_"


class SyncStatus(StrEnum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


def temp_id(kind: str, user_id: str) -> str:
    """Locally generated id used until the remote store assigns one."""
    millis = int(time.time() * 1000)
    return f"{TEMP_PREFIX}{kind}_{millis}_{user_id[:8]}_{secrets.token_hex(6)}"


def is_temp_id(value: object) -> bool:
    return isinstance(value, str) and value.startswith(TEMP_PREFIX)


def envelope_key(item: dict[str, Any]) -> str:
    """Content identity of a queued envelope."""
    return json.dumps(item, sort_keys=True, default=str)


def chunked[T](items: Sequence[T], size: int) -> Iterator[list[T]]:
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def unique_participant_count(participants: Sequence[Any]) -> int:
    """Number of distinct user ids; duplicates from retried joins count once."""
    return len(
        {
            p.get("user_id")
            for p in participants
            if isinstance(p, dict) and p.get("user_id")
        }
    )


def add_participant(
    participants: Sequence[Any], user_id: str, user_name: str, joined_at: str
) -> tuple[list[Any], bool]:
    """Return participants with user_id added, and whether it was added."""
    result = [p for p in participants if isinstance(p, dict)]
    if any(p.get("user_id") == user_id for p in result):
        return result, False
    result.append(
        Participant(user_id=user_id, user_name=user_name, joined_at=joined_at).model_dump()
    )
    return result, True


def apply_post_update(post: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of post with a queued like, unlike, comment or share applied.

    Applying the same update twice has no further effect; shares are counted
    once per update id, kept in ``share_ids``.
    """
    result = dict(post)
    kind = update.get("kind")
    user_id = update.get("user_id")
    likes = [uid for uid in result.get("likes") or [] if isinstance(uid, str)]
    if kind == PostUpdateKind.LIKE:
        result["likes"] = likes if user_id in likes else [*likes, user_id]
    elif kind == PostUpdateKind.UNLIKE:
        result["likes"] = [uid for uid in likes if uid != user_id]
    elif kind == PostUpdateKind.COMMENT:
        comments = [c for c in result.get("comments") or [] if isinstance(c, dict)]
        comment = update.get("comment") or {}
        if comment and all(c.get("id") != comment.get("id") for c in comments):
            comments.append(comment)
        result["comments"] = comments
    elif kind == PostUpdateKind.SHARE:
        share_ids = [s for s in result.get("share_ids") or [] if isinstance(s, str)]
        if update.get("id") not in share_ids:
            result["share_ids"] = [*share_ids, update.get("id")]
            result["shares"] = int(result.get("shares") or 0) + 1
    return result


@dataclass
class DurableMutation:
    """A write that must not be lost when the remote store is unreachable.

    ``remote_write`` performs the online write and returns the remote id.
    ``merge`` applies the optimistic state update; it receives the entity
    and whether it is only queued locally.
    """

    entity: dict[str, Any]
    remote_write: Callable[[], Awaitable[str | None]]
    queue_key: str
    merge: Callable[[dict[str, Any], bool], None]
    label: str = "mutation"


@dataclass
class MutationOutcome:
    entity: dict[str, Any]
    pending: bool
    remote_id: str | None = None


type _Entry = tuple[tuple[int, ...], BatchOperation]


class SyncReconciler:
    """Keeps local views, the durable queue and the remote store in step."""

    def __init__(
        self,
        remote: RemoteStore,
        local: LocalStore,
        settings: Settings | None = None,
        storage: ObjectStorage | None = None,
    ) -> None:
        self.remote = remote
        self.local = local
        self.settings = settings or Settings()
        self.storage = storage

        self.online = self.settings.start_online
        self.status = SyncStatus.IDLE
        self.user: UserContext | None = None

        # Views consumed by the services: remote snapshot + pending overlay
        self.tournaments: list[Document] = []
        self.catches: list[Document] = []
        self.posts: list[Document] = []
        self.invites: list[Document] = []

        self._remote_tournaments: list[Document] = []
        self._remote_catches: list[Document] = []
        self._remote_invites: list[Document] = []
        self._remote_posts: list[Document] = []

        self._mirrors: dict[str, MirrorSubscription] = {}
        self._sweep_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self, user: UserContext | None = None, *, run_sweeper: bool = True) -> None:
        """Load cached mirrors, start live mirrors and the expiry sweep."""
        logger.info(f"Initializing sync reconciler (online={self.online})")
        self.user = user
        self._load_cached_mirrors()
        self._build_mirrors()

        if self.online:
            await self._start_mirrors()
            await self.drain()

        if run_sweeper and self._sweep_task is None:
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.success("Sync reconciler ready")

    async def dispose(self) -> None:
        """Stop the sweep and release every subscription."""
        task, self._sweep_task = self._sweep_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._stop_mirrors()
        logger.info("Sync reconciler disposed")

    async def set_user(self, user: UserContext | None) -> None:
        """Switch the signed-in user, rebuilding the per-user mirrors."""
        if (self.user.uid if self.user else None) == (user.uid if user else None):
            return
        logger.info(f"Switching sync user to {user.uid if user else 'anonymous'}")
        await self._stop_mirrors()
        self.user = user
        self._load_cached_mirrors()
        self._build_mirrors()
        if self.online:
            await self._start_mirrors()

    async def set_online(self, online: bool) -> None:
        """React to a network status change."""
        if online == self.online:
            return
        self.online = online
        if online:
            logger.info("Connection restored, resuming live mirrors")
            await self._start_mirrors()
            await self.drain()
        else:
            logger.warning("Connection lost, writes will be queued locally")
            await self._stop_mirrors()

    # ------------------------------------------------------------------
    # Durable mutations
    # ------------------------------------------------------------------

    async def apply_durable_mutation(self, mutation: DurableMutation) -> MutationOutcome:
        """Write remotely when possible, otherwise queue and apply optimistically.

        Connectivity and permission failures are absorbed into the queue;
        any other remote failure propagates to the caller.
        """
        if self.online:
            try:
                remote_id = await mutation.remote_write()
            except RemoteStoreError as e:
                if not e.recoverable:
                    logger.error(f"{mutation.label} failed: {e.message}")
                    raise
                logger.warning(f"{mutation.label} deferred ({e.kind.value}), queued locally")
            else:
                mutation.merge(mutation.entity, False)
                logger.success(f"{mutation.label} written remotely")
                if self.pending_total():
                    await self.drain()
                return MutationOutcome(entity=mutation.entity, pending=False, remote_id=remote_id)

        if "pending" in mutation.entity:
            mutation.entity["pending"] = True
        self.local.append(mutation.queue_key, mutation.entity)
        mutation.merge(mutation.entity, True)
        logger.info(f"{mutation.label} queued in '{mutation.queue_key}'")
        return MutationOutcome(entity=mutation.entity, pending=True)

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    def pending_counts(self) -> dict[str, int]:
        return {key: self.local.count(key) for key in QUEUE_KEYS}

    def pending_total(self) -> int:
        return sum(self.pending_counts().values())

    def _load_queue(self, key: str) -> list[dict[str, Any]]:
        items = self.local.load(key, [])
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]

    def _settle_queue(
        self,
        key: str,
        snapshot_keys: list[str],
        done: set[int],
        updated: dict[int, dict[str, Any]] | None = None,
    ) -> int:
        """Remove settled envelopes from the queue as it is now.

        The queue is re-read because envelopes may have been appended while the
        drain was waiting on the remote store. Envelopes are matched on their
        content as loaded at the start of the drain; ``updated`` holds rewritten
        versions (remapped tournament ids) of envelopes that stay queued.
        Returns the number of envelopes left.
        """
        settled = Counter(snapshot_keys[index] for index in done)
        rewrites = {snapshot_keys[index]: item for index, item in (updated or {}).items()}
        remaining: list[dict[str, Any]] = []
        for item in self._load_queue(key):
            item_key = envelope_key(item)
            if settled[item_key] > 0:
                settled[item_key] -= 1
                continue
            remaining.append(rewrites.get(item_key, item))
        self.local.save(key, remaining)
        return len(remaining)

    async def drain(self) -> DrainReport | None:
        """Replay every queued mutation against the remote store.

        Categories are processed in a fixed order: tournaments, catches,
        participations, invite status updates, posts, post updates. Returns
        None when a drain is already running or the device is offline.
        """
        if self.status is SyncStatus.SYNCING:
            logger.debug("Drain already in progress, skipping")
            return None
        if not self.online:
            logger.debug("Offline, drain postponed")
            return None
        if self.pending_total() == 0:
            self.status = SyncStatus.IDLE
            return DrainReport()

        self.status = SyncStatus.SYNCING
        logger.info(f"Draining pending queue: {self.pending_counts()}")
        report = DrainReport()
        try:
            id_map, report.tournaments, tournaments_failed = await self._drain_creations(
                PENDING_TOURNAMENTS, TOURNAMENTS, "tournaments"
            )
            id_map = {**self._confirmed_temp_ids(self._remote_tournaments), **id_map}
            report.catches, catches_failed = await self._drain_catches(id_map)
            report.participations, participations_failed = await self._drain_participations(
                id_map
            )
            report.invite_updates, invites_failed = await self._drain_invite_updates()
            post_ids, report.posts, posts_failed = await self._drain_creations(
                PENDING_POSTS, POSTS, "posts"
            )
            post_ids = {**self._confirmed_temp_ids(self._remote_posts), **post_ids}
            report.post_updates, post_updates_failed = await self._drain_post_updates(post_ids)
        finally:
            if self.status is SyncStatus.SYNCING:
                self.status = SyncStatus.ERROR
            self._refresh_views()

        failed = (
            tournaments_failed
            or catches_failed
            or participations_failed
            or invites_failed
            or posts_failed
            or post_updates_failed
        )
        self.status = SyncStatus.ERROR if failed else SyncStatus.SUCCESS
        if failed:
            logger.warning(f"Drain finished with {report.remaining} item(s) left in queue")
        else:
            logger.success("Drain complete")
        return report

    async def _write_in_batches(
        self, label: str, entries: list[_Entry]
    ) -> tuple[dict[int, str], bool]:
        """Write operations in capped batches.

        Returns the confirmed queue indexes (mapped to the written document id)
        and whether any batch failed.
        """
        written: dict[int, str] = {}
        failed = False
        for batch in chunked(entries, self.settings.batch_limit):
            try:
                ids = await self.remote.batch_write([op for _, op in batch])
            except RemoteStoreError as e:
                failed = True
                if e.recoverable:
                    logger.warning(f"Drain of {label} interrupted ({e.kind.value})")
                    break
                logger.error(f"Batch of {len(batch)} {label} rejected: {e.message}")
                continue
            for (indexes, _), new_id in zip(batch, ids, strict=True):
                for index in indexes:
                    written[index] = new_id
            logger.debug(f"Flushed batch of {len(batch)} {label}")
        return written, failed

    async def _existing_ids(self, collection: str, ids: list[str]) -> dict[str, str]:
        """Map queued ids already present remotely (by id or client_id) to their remote id."""
        ids = [i for i in ids if i]
        if not ids:
            return {}
        found: dict[str, str] = {}
        for doc in await self.remote.query_documents(collection, [Filter("id", "in", ids)]):
            found[doc["id"]] = doc["id"]
        for doc in await self.remote.query_documents(collection, [Filter("client_id", "in", ids)]):
            found[doc["client_id"]] = doc["id"]
        return found

    @staticmethod
    def _confirmed_payload(item: dict[str, Any]) -> dict[str, Any]:
        payload = {key: value for key, value in item.items() if key != "id"}
        payload["client_id"] = item.get("client_id") or item.get("id")
        payload["pending"] = False
        payload["synced_at"] = utcnow_iso()
        if isinstance(payload.get("participants"), list):
            payload["participants"] = [
                {**p, "pending": False} for p in payload["participants"] if isinstance(p, dict)
            ]
        return payload

    @staticmethod
    def _confirmed_temp_ids(documents: list[Document]) -> dict[str, str]:
        """Temporary ids already confirmed by an earlier drain, mapped to the remote id."""
        return {
            str(doc["client_id"]): str(doc["id"])
            for doc in documents
            if is_temp_id(doc.get("client_id")) and doc.get("id")
        }

    async def _drain_creations(
        self, queue_key: str, collection: str, label: str
    ) -> tuple[dict[str, str], CategoryReport, bool]:
        """Add queued documents, returning the temporary id to remote id map."""
        queue = self._load_queue(queue_key)
        report = CategoryReport()
        snapshot_keys = [envelope_key(item) for item in queue]
        if not queue:
            return {}, report, False

        try:
            existing = await self._existing_ids(collection, [item.get("id", "") for item in queue])
        except RemoteStoreError as e:
            logger.warning(f"Could not check queued {label} ({e.kind.value})")
            report.remaining = len(queue)
            return {}, report, True

        id_map: dict[str, str] = {}
        done: set[int] = set()
        entries: list[_Entry] = []
        for index, item in enumerate(queue):
            local_id = item.get("id", "")
            if local_id in existing:
                id_map[local_id] = existing[local_id]
                done.add(index)
                report.duplicates += 1
                continue
            payload = self._confirmed_payload(item)
            entries.append(((index,), BatchOperation("add", collection, payload)))

        written, failed = await self._write_in_batches(label, entries)
        for index, new_id in written.items():
            id_map[queue[index].get("id", "")] = new_id
            done.add(index)
        report.confirmed = len(written)

        report.remaining = self._settle_queue(queue_key, snapshot_keys, done)
        return id_map, report, failed

    async def _drain_catches(self, id_map: dict[str, str]) -> tuple[CategoryReport, bool]:
        queue = self._load_queue(PENDING_CATCHES)
        report = CategoryReport()
        snapshot_keys = [envelope_key(item) for item in queue]
        if not queue:
            return report, False

        # Catches of confirmed tournaments point at the remote id now
        for item in queue:
            if item.get("tournament_id") in id_map:
                item["tournament_id"] = id_map[item["tournament_id"]]

        try:
            existing = await self._existing_ids(CATCHES, [item.get("id", "") for item in queue])
        except RemoteStoreError as e:
            logger.warning(f"Could not check queued catches ({e.kind.value})")
            report.remaining = self._settle_queue(
                PENDING_CATCHES, snapshot_keys, set(), dict(enumerate(queue))
            )
            return report, True

        done: set[int] = set()
        entries: list[_Entry] = []
        for index, item in enumerate(queue):
            if item.get("id", "") in existing:
                done.add(index)
                report.duplicates += 1
                continue
            if is_temp_id(item.get("tournament_id")):
                # Its tournament is still queued; retry on a later drain
                continue
            entries.append(((index,), BatchOperation("add", CATCHES, self._confirmed_payload(item))))

        written, failed = await self._write_in_batches("catches", entries)
        done.update(written)
        report.confirmed = len(written)

        report.remaining = self._settle_queue(
            PENDING_CATCHES, snapshot_keys, done, dict(enumerate(queue))
        )
        return report, failed

    async def _drain_participations(self, id_map: dict[str, str]) -> tuple[CategoryReport, bool]:
        queue = self._load_queue(PENDING_PARTICIPATIONS)
        report = CategoryReport()
        snapshot_keys = [envelope_key(item) for item in queue]
        if not queue:
            return report, False

        grouped: dict[str, list[int]] = {}
        for index, item in enumerate(queue):
            tournament_id = id_map.get(item.get("tournament_id", ""), item.get("tournament_id", ""))
            item["tournament_id"] = tournament_id
            if is_temp_id(tournament_id):
                continue
            grouped.setdefault(tournament_id, []).append(index)

        done: set[int] = set()
        entries: list[_Entry] = []
        failed = False
        for tournament_id, indexes in grouped.items():
            try:
                document = await self.remote.get_document(TOURNAMENTS, tournament_id)
            except RemoteStoreError as e:
                failed = True
                if e.recoverable:
                    logger.warning(f"Could not read tournament {tournament_id} ({e.kind.value})")
                    break
                logger.error(f"Could not read tournament {tournament_id}: {e.message}")
                continue

            if document is None or document.get("status") in CLOSED_STATUSES:
                logger.warning(
                    f"Dropping {len(indexes)} queued join(s): tournament {tournament_id} "
                    + "is missing or closed"
                )
                done.update(indexes)
                report.dropped += len(indexes)
                continue

            participants: list[Any] = list(document.get("participants") or [])
            max_participants = document.get("max_participants") or 0
            added: list[int] = []
            for index in indexes:
                item = queue[index]
                if max_participants and unique_participant_count(participants) >= max_participants:
                    if any(
                        isinstance(p, dict) and p.get("user_id") == item.get("user_id")
                        for p in participants
                    ):
                        done.add(index)
                        report.duplicates += 1
                        continue
                    logger.warning(f"Dropping queued join: tournament {tournament_id} is full")
                    done.add(index)
                    report.dropped += 1
                    continue
                participants, was_added = add_participant(
                    participants,
                    str(item.get("user_id", "")),
                    str(item.get("user_name", "")),
                    str(item.get("timestamp") or utcnow_iso()),
                )
                if was_added:
                    added.append(index)
                else:
                    # Already applied by an earlier attempt
                    done.add(index)
                    report.duplicates += 1

            if added:
                entries.append(
                    (
                        tuple(added),
                        BatchOperation(
                            "update",
                            TOURNAMENTS,
                            {
                                "participants": participants,
                                "participant_count": unique_participant_count(participants),
                            },
                            tournament_id,
                        ),
                    )
                )

        written, batch_failed = await self._write_in_batches("participations", entries)
        done.update(written)
        report.confirmed = len(written)

        report.remaining = self._settle_queue(
            PENDING_PARTICIPATIONS, snapshot_keys, done, dict(enumerate(queue))
        )
        return report, failed or batch_failed

    async def _drain_invite_updates(self) -> tuple[CategoryReport, bool]:
        queue = self._load_queue(PENDING_INVITE_STATUS_UPDATES)
        report = CategoryReport()
        snapshot_keys = [envelope_key(item) for item in queue]
        if not queue:
            return report, False

        invite_ids = [str(item.get("invite_id", "")) for item in queue]
        try:
            known = {
                doc["id"]
                for doc in await self.remote.query_documents(
                    TOURNAMENT_INVITES, [Filter("id", "in", invite_ids)]
                )
            }
        except RemoteStoreError as e:
            logger.warning(f"Could not check queued invite updates ({e.kind.value})")
            report.remaining = len(queue)
            return report, True

        done: set[int] = set()
        entries: list[_Entry] = []
        for index, item in enumerate(queue):
            invite_id = str(item.get("invite_id", ""))
            if invite_id not in known:
                logger.warning(f"Dropping status update for unknown invite {invite_id}")
                done.add(index)
                report.dropped += 1
                continue
            entries.append(
                (
                    (index,),
                    BatchOperation(
                        "update",
                        TOURNAMENT_INVITES,
                        {"status": item.get("status"), "responded_at": item.get("timestamp")},
                        invite_id,
                    ),
                )
            )

        written, failed = await self._write_in_batches("invite updates", entries)
        done.update(written)
        report.confirmed = len(written)

        report.remaining = self._settle_queue(PENDING_INVITE_STATUS_UPDATES, snapshot_keys, done)
        return report, failed

    async def _drain_post_updates(self, id_map: dict[str, str]) -> tuple[CategoryReport, bool]:
        queue = self._load_queue(PENDING_POST_UPDATES)
        report = CategoryReport()
        snapshot_keys = [envelope_key(item) for item in queue]
        if not queue:
            return report, False

        grouped: dict[str, list[int]] = {}
        for index, item in enumerate(queue):
            post_id = id_map.get(item.get("post_id", ""), item.get("post_id", ""))
            item["post_id"] = post_id
            if is_temp_id(post_id):
                continue
            grouped.setdefault(post_id, []).append(index)

        done: set[int] = set()
        entries: list[_Entry] = []
        failed = False
        for post_id, indexes in grouped.items():
            try:
                document = await self.remote.get_document(POSTS, post_id)
            except RemoteStoreError as e:
                failed = True
                if e.recoverable:
                    logger.warning(f"Could not read post {post_id} ({e.kind.value})")
                    break
                logger.error(f"Could not read post {post_id}: {e.message}")
                continue

            if document is None:
                logger.warning(
                    f"Dropping {len(indexes)} queued update(s) of missing post {post_id}"
                )
                done.update(indexes)
                report.dropped += len(indexes)
                continue

            for index in indexes:
                document = apply_post_update(document, queue[index])
            entries.append(
                (
                    tuple(indexes),
                    BatchOperation(
                        "update",
                        POSTS,
                        {
                            "likes": document.get("likes") or [],
                            "comments": document.get("comments") or [],
                            "shares": document.get("shares") or 0,
                            "share_ids": document.get("share_ids") or [],
                        },
                        post_id,
                    ),
                )
            )

        written, batch_failed = await self._write_in_batches("post updates", entries)
        done.update(written)
        report.confirmed = len(written)

        report.remaining = self._settle_queue(
            PENDING_POST_UPDATES, snapshot_keys, done, dict(enumerate(queue))
        )
        return report, failed or batch_failed

    # ------------------------------------------------------------------
    # Mirrors
    # ------------------------------------------------------------------

    def _load_cached_mirrors(self) -> None:
        self._remote_tournaments = self.local.load(ALL_TOURNAMENTS, [])
        self._remote_catches = self.local.load(ALL_CATCHES, [])
        self._remote_posts = self.local.load(ALL_POSTS, [])
        self._remote_invites = (
            self.local.load(user_invites_key(self.user.uid), []) if self.user else []
        )
        self._refresh_views()
        logger.debug(
            f"Loaded cache: {len(self._remote_tournaments)} tournaments, "
            + f"{len(self._remote_catches)} catches, {len(self._remote_posts)} posts"
        )

    def _build_mirrors(self) -> None:
        self._mirrors = {
            "tournaments": MirrorSubscription(
                self.remote, "tournaments", TOURNAMENTS, self._on_tournaments
            ),
            "catches": MirrorSubscription(self.remote, "catches", CATCHES, self._on_catches),
            "posts": MirrorSubscription(self.remote, "posts", POSTS, self._on_posts),
        }
        if self.user is not None and self.user.email:
            self._mirrors["invites"] = MirrorSubscription(
                self.remote,
                "invites",
                TOURNAMENT_INVITES,
                self._on_invites,
                filters=(
                    Filter("invitee_email", "==", self.user.email.lower()),
                    Filter("status", "==", InviteStatus.PENDING.value),
                ),
                polling_interval=self.settings.invites_poll_interval,
            )

    async def _start_mirrors(self) -> None:
        for mirror in self._mirrors.values():
            await mirror.start()

    async def _stop_mirrors(self) -> None:
        for mirror in self._mirrors.values():
            await mirror.stop()

    def mirror_states(self) -> dict[str, MirrorState]:
        return {name: mirror.state for name, mirror in self._mirrors.items()}

    def _on_tournaments(self, documents: list[Document]) -> None:
        self._remote_tournaments = documents
        self.local.save(ALL_TOURNAMENTS, documents)
        self._refresh_tournaments()

    def _on_catches(self, documents: list[Document]) -> None:
        self._remote_catches = documents
        self.local.save(ALL_CATCHES, documents)
        self._refresh_catches()

    def _on_posts(self, documents: list[Document]) -> None:
        self._remote_posts = documents
        self.local.save(ALL_POSTS, documents)
        self._refresh_posts()

    def _on_invites(self, documents: list[Document]) -> None:
        self._remote_invites = documents
        if self.user is not None:
            self.local.save(user_invites_key(self.user.uid), documents)
        self._refresh_invites()

    def _refresh_views(self) -> None:
        self._refresh_tournaments()
        self._refresh_catches()
        self._refresh_invites()
        self._refresh_posts()

    def _refresh_tournaments(self) -> None:
        view = [dict(doc) for doc in self._remote_tournaments]
        known = {doc.get("id") for doc in view} | {doc.get("client_id") for doc in view}
        for item in self._load_queue(PENDING_TOURNAMENTS):
            if item.get("id") not in known:
                view.append({**item, "pending": True})

        by_id = {doc.get("id"): doc for doc in view}
        for item in self._load_queue(PENDING_PARTICIPATIONS):
            doc = by_id.get(item.get("tournament_id"))
            if doc is None:
                continue
            participants, added = add_participant(
                doc.get("participants") or [],
                str(item.get("user_id", "")),
                str(item.get("user_name", "")),
                str(item.get("timestamp") or ""),
            )
            if added:
                participants[-1]["pending"] = True
            doc["participants"] = participants
            doc["participant_count"] = unique_participant_count(participants)

        self.tournaments = view
        if self.user is not None:
            uid = self.user.uid
            self.local.save(
                user_tournaments_key(uid),
                [
                    doc
                    for doc in view
                    if any(
                        isinstance(p, dict) and p.get("user_id") == uid
                        for p in doc.get("participants") or []
                    )
                ],
            )

    def _refresh_catches(self) -> None:
        view = [dict(doc) for doc in self._remote_catches]
        known = {doc.get("id") for doc in view} | {doc.get("client_id") for doc in view}
        for item in self._load_queue(PENDING_CATCHES):
            if item.get("id") not in known:
                view.append({**item, "pending": True})

        self.catches = view
        if self.user is not None:
            uid = self.user.uid
            self.local.save(
                user_catches_key(uid), [doc for doc in view if doc.get("user_id") == uid]
            )

    def _refresh_invites(self) -> None:
        answered = {
            item.get("invite_id") for item in self._load_queue(PENDING_INVITE_STATUS_UPDATES)
        }
        self.invites = [
            dict(doc)
            for doc in self._remote_invites
            if doc.get("id") not in answered
            and doc.get("status", InviteStatus.PENDING.value) == InviteStatus.PENDING.value
        ]

    def _refresh_posts(self) -> None:
        view = [dict(doc) for doc in self._remote_posts]
        known = {doc.get("id") for doc in view} | {doc.get("client_id") for doc in view}
        for item in self._load_queue(PENDING_POSTS):
            if item.get("id") not in known:
                view.append({**item, "pending": True})

        # Queued updates may still name a post by its temporary id
        by_id = {doc.get("client_id"): doc for doc in view if doc.get("client_id")}
        by_id.update({doc.get("id"): doc for doc in view})
        for update in self._load_queue(PENDING_POST_UPDATES):
            doc = by_id.get(update.get("post_id"))
            if doc is not None:
                doc.update(apply_post_update(doc, update))

        view.sort(key=lambda doc: str(doc.get("created_at") or ""), reverse=True)
        self.posts = view

    # Optimistic merges, called by the domain services

    def merge_tournament(self, entity: dict[str, Any], pending: bool) -> None:
        if not pending:
            self._upsert(self._remote_tournaments, entity)
        self._refresh_tournaments()

    def merge_catch(self, entity: dict[str, Any], pending: bool) -> None:
        if not pending:
            self._upsert(self._remote_catches, entity)
        self._refresh_catches()

    def merge_participation(self, entity: dict[str, Any], pending: bool) -> None:
        if not pending:
            for doc in self._remote_tournaments:
                if doc.get("id") == entity.get("tournament_id"):
                    participants, _ = add_participant(
                        doc.get("participants") or [],
                        str(entity.get("user_id", "")),
                        str(entity.get("user_name", "")),
                        str(entity.get("timestamp") or ""),
                    )
                    doc["participants"] = participants
                    doc["participant_count"] = unique_participant_count(participants)
        self._refresh_tournaments()

    def merge_invite_update(self, entity: dict[str, Any], pending: bool) -> None:
        if not pending:
            for doc in self._remote_invites:
                if doc.get("id") == entity.get("invite_id"):
                    doc["status"] = entity.get("status")
                    doc["responded_at"] = entity.get("timestamp")
        self._refresh_invites()

    def merge_post(self, entity: dict[str, Any], pending: bool) -> None:
        if not pending:
            self._upsert(self._remote_posts, entity)
        self._refresh_posts()

    def merge_post_update(self, entity: dict[str, Any], pending: bool) -> None:
        if not pending:
            for index, doc in enumerate(self._remote_posts):
                if doc.get("id") == entity.get("post_id"):
                    self._remote_posts[index] = apply_post_update(doc, entity)
        self._refresh_posts()

    def upsert_tournament(self, document: dict[str, Any]) -> None:
        """Replace a confirmed tournament in the local views."""
        self._upsert(self._remote_tournaments, document)
        self._refresh_tournaments()

    @staticmethod
    def _upsert(documents: list[Document], entity: dict[str, Any]) -> None:
        keys = {entity.get("id"), entity.get("client_id")} - {None}
        for index, doc in enumerate(documents):
            if doc.get("id") in keys or doc.get("client_id") in keys:
                documents[index] = {**doc, **entity}
                return
        documents.append(dict(entity))

    def find_tournament(self, tournament_id: str) -> Document | None:
        for doc in self.tournaments:
            if doc.get("id") == tournament_id or doc.get("client_id") == tournament_id:
                return doc
        return None

    def find_post(self, post_id: str) -> Document | None:
        for doc in self.posts:
            if doc.get("id") == post_id or doc.get("client_id") == post_id:
                return doc
        return None

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    def _patch_tournament(self, tournament_id: str, patch: dict[str, Any]) -> None:
        for doc in self._remote_tournaments:
            if doc.get("id") == tournament_id:
                doc.update(patch)
                break
        else:
            queue = self._load_queue(PENDING_TOURNAMENTS)
            for item in queue:
                if item.get("id") == tournament_id:
                    item.update(patch)
            self.local.save(PENDING_TOURNAMENTS, queue)
        self._refresh_tournaments()

    async def sweep_expired(self, now: datetime | None = None) -> list[str]:
        """Finish every open tournament whose end date has passed.

        The final ranking uses the weight policy. Catches registered after the
        end date do not count. Local views are updated even while offline;
        the remote document is updated when online.
        """
        now = now or utcnow()
        finished: list[str] = []
        for doc in list(self.tournaments):
            if doc.get("status") in CLOSED_STATUSES:
                continue
            end_date = parse_timestamp(doc.get("end_date"))
            if end_date is None or end_date > now:
                continue

            tournament_id = str(doc.get("id"))
            ranking = compute_ranking(
                tournament_catches(self.catches, tournament_id, until=end_date.isoformat()),
                RankingPolicy.WEIGHT,
            )
            winner = winner_snapshot(ranking)
            patch: dict[str, Any] = {
                "status": TournamentStatus.FINISHED.value,
                "finished_at": now.isoformat(),
                "final_ranking": [p.model_dump(mode="json") for p in ranking],
                "winner": winner.model_dump(mode="json") if winner else None,
            }
            self._patch_tournament(tournament_id, patch)
            finished.append(tournament_id)
            logger.info(
                f"Tournament {tournament_id} expired, winner: "
                + f"{winner.user_name if winner else 'none'}"
            )

            if self.online and not is_temp_id(tournament_id):
                try:
                    await self.remote.update_document(TOURNAMENTS, tournament_id, patch)
                except RemoteStoreError as e:
                    if e.recoverable:
                        logger.warning(
                            f"Finish of {tournament_id} not persisted ({e.kind.value})"
                        )
                    else:
                        logger.error(f"Finish of {tournament_id} rejected: {e.message}")
        return finished

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.expiry_sweep_interval)
            try:
                await self.sweep_expired()
            except Exception:
                logger.exception("Expiry sweep failed, retrying on the next cycle")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status_summary(self) -> SyncStatusResponse:
        pending = self.pending_counts()
        return SyncStatusResponse(
            online=self.online,
            status=self.status.value,
            pending=pending,
            pending_total=sum(pending.values()),
            mirrors={name: state.value for name, state in self.mirror_states().items()},
        )
