"""Feed posts: publishing, likes, comments and shares.

Every write goes through the durable mutation path, so a post or a reaction
made offline shows up in the feed at once and reaches the remote store on the
next drain.
"""

from datetime import datetime
import uuid

from loguru import logger

from tilapios.core.exceptions import (
    NotFoundError,
    RemoteErrorKind,
    RemoteStoreError,
    ValidationError,
)
from tilapios.core.time_utils import utcnow
from tilapios.dao.local_store import PENDING_POST_UPDATES, PENDING_POSTS
from tilapios.dao.remote_store import POSTS, Document
from tilapios.schemas.schemas import (
    Comment,
    CommentCreate,
    PendingPostUpdate,
    Post,
    PostCreate,
    PostUpdateKind,
    UserContext,
)
from tilapios.services.sync_service import (
    DurableMutation,
    MutationOutcome,
    SyncReconciler,
    apply_post_update,
    is_temp_id,
    temp_id,
)

MAX_CONTENT_LENGTH = 2000
MAX_COMMENT_LENGTH = 500

# Post fields touched by each kind of update
UPDATED_FIELDS: dict[PostUpdateKind, tuple[str, ...]] = {
    PostUpdateKind.LIKE: ("likes",),
    PostUpdateKind.UNLIKE: ("likes",),
    PostUpdateKind.COMMENT: ("comments",),
    PostUpdateKind.SHARE: ("shares", "share_ids"),
}


def validate_post(data: PostCreate) -> None:
    content = data.content.strip()
    if not content and not data.image:
        raise ValidationError(message="A post needs text or an image")
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(
            message=f"Post text must have at most {MAX_CONTENT_LENGTH} characters",
            details={"length": len(content)},
        )


def feed(reconciler: SyncReconciler) -> list[Document]:
    """All posts, newest first, including ones still waiting to sync."""
    return reconciler.posts


async def create_post(
    reconciler: SyncReconciler,
    user: UserContext,
    data: PostCreate,
    now: datetime | None = None,
) -> MutationOutcome:
    validate_post(data)
    now = now or utcnow()

    local_id = temp_id("post", user.uid)
    entity = Post(
        id=local_id,
        client_id=local_id,
        author_id=user.uid,
        author_name=user.name,
        content=data.content.strip(),
        image=data.image,
        catch_id=data.catch_id,
        tournament_id=data.tournament_id,
        created_at=now.isoformat(),
    ).model_dump(mode="json")

    async def write() -> str:
        new_id = await reconciler.remote.add_document(POSTS, entity)
        entity["id"] = new_id
        return new_id

    logger.info(f"Publishing post by {user.uid}")
    return await reconciler.apply_durable_mutation(
        DurableMutation(
            entity=entity,
            remote_write=write,
            queue_key=PENDING_POSTS,
            merge=reconciler.merge_post,
            label="Post",
        )
    )


def _require_post(reconciler: SyncReconciler, post_id: str) -> Document:
    post = reconciler.find_post(post_id)
    if post is None:
        raise NotFoundError(message=f"Post {post_id} not found", details={"post_id": post_id})
    return post


async def _update_post(reconciler: SyncReconciler, envelope: Document) -> MutationOutcome:
    post_id = envelope["post_id"]

    async def write() -> str:
        if is_temp_id(post_id):
            raise RemoteStoreError(
                message="Post has not been synced yet",
                kind=RemoteErrorKind.FAILED_PRECONDITION,
                details={"post_id": post_id},
            )
        document = await reconciler.remote.get_document(POSTS, post_id)
        if document is None:
            raise NotFoundError(message=f"Post {post_id} not found", details={"post_id": post_id})
        if envelope["kind"] in (PostUpdateKind.LIKE, PostUpdateKind.UNLIKE):
            # A like toggles against the stored post, not the local view
            liked = envelope["user_id"] in (document.get("likes") or [])
            envelope["kind"] = (PostUpdateKind.UNLIKE if liked else PostUpdateKind.LIKE).value
        updated = apply_post_update(document, envelope)
        fields = UPDATED_FIELDS[PostUpdateKind(envelope["kind"])]
        await reconciler.remote.update_document(
            POSTS, post_id, {name: updated.get(name) for name in fields}
        )
        return post_id

    return await reconciler.apply_durable_mutation(
        DurableMutation(
            entity=envelope,
            remote_write=write,
            queue_key=PENDING_POST_UPDATES,
            merge=reconciler.merge_post_update,
            label=f"Post {post_id} {envelope['kind']}",
        )
    )


def _envelope(
    post: Document,
    kind: PostUpdateKind,
    user: UserContext,
    now: datetime,
    comment: Comment | None = None,
) -> Document:
    return PendingPostUpdate(
        id=uuid.uuid4().hex,
        post_id=str(post["id"]),
        kind=kind,
        user_id=user.uid,
        comment=comment,
        timestamp=now.isoformat(),
    ).model_dump(mode="json")


async def like_post(
    reconciler: SyncReconciler,
    user: UserContext,
    post_id: str,
    now: datetime | None = None,
) -> MutationOutcome:
    """Toggle the user's like on a post."""
    post = _require_post(reconciler, post_id)
    liked = user.uid in (post.get("likes") or [])
    kind = PostUpdateKind.UNLIKE if liked else PostUpdateKind.LIKE
    return await _update_post(reconciler, _envelope(post, kind, user, now or utcnow()))


async def add_comment(
    reconciler: SyncReconciler,
    user: UserContext,
    post_id: str,
    data: CommentCreate,
    now: datetime | None = None,
) -> MutationOutcome:
    text = data.text.strip()
    if not text:
        raise ValidationError(message="Comment text is required")
    if len(text) > MAX_COMMENT_LENGTH:
        raise ValidationError(
            message=f"Comments must have at most {MAX_COMMENT_LENGTH} characters",
            details={"length": len(text)},
        )
    post = _require_post(reconciler, post_id)
    now = now or utcnow()
    comment = Comment(
        id=f"comment_{uuid.uuid4().hex[:12]}",
        author_id=user.uid,
        author_name=user.name,
        text=text,
        created_at=now.isoformat(),
    )
    envelope = _envelope(post, PostUpdateKind.COMMENT, user, now, comment)
    return await _update_post(reconciler, envelope)


async def share_post(
    reconciler: SyncReconciler,
    user: UserContext,
    post_id: str,
    now: datetime | None = None,
) -> MutationOutcome:
    post = _require_post(reconciler, post_id)
    return await _update_post(
        reconciler, _envelope(post, PostUpdateKind.SHARE, user, now or utcnow())
    )
