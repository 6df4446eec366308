"""Tournament invitations sent by organizers and answered by invitees."""

from datetime import datetime, timedelta

from loguru import logger

from tilapios.core.exceptions import (
    ConflictError,
    DomainRuleError,
    ForbiddenError,
    NotFoundError,
    OfflineError,
    RemoteStoreError,
    ValidationError,
)
from tilapios.core.time_utils import parse_timestamp, utcnow
from tilapios.dao.local_store import PENDING_INVITE_STATUS_UPDATES, user_invites_key
from tilapios.dao.remote_store import TOURNAMENT_INVITES, Document, Filter, OrderBy
from tilapios.schemas.schemas import (
    CLOSED_STATUSES,
    InviteCreate,
    InviteStatus,
    PendingInviteStatusUpdate,
    TournamentInvite,
    UserContext,
)
from tilapios.services.sync_service import (
    DurableMutation,
    MutationOutcome,
    SyncReconciler,
    is_temp_id,
)
from tilapios.services.tournament_service import join_tournament

INVITE_TTL = timedelta(days=7)


def _is_active(invite: Document, now: datetime) -> bool:
    if invite.get("status", InviteStatus.PENDING) != InviteStatus.PENDING:
        return False
    expires_at = parse_timestamp(invite.get("expires_at"))
    return expires_at is not None and expires_at > now


async def send_invite(
    reconciler: SyncReconciler,
    user: UserContext,
    tournament_id: str,
    data: InviteCreate,
    now: datetime | None = None,
) -> Document:
    """Invite someone by email to a tournament the user organizes."""
    now = now or utcnow()
    if not reconciler.online:
        raise OfflineError(message="Sending an invite requires a connection")

    email = data.invitee_email.strip().lower()
    if "@" not in email:
        raise ValidationError(
            message="A valid email address is required", details={"invitee_email": email}
        )

    tournament = reconciler.find_tournament(tournament_id)
    if tournament is None:
        raise NotFoundError(
            message=f"Tournament {tournament_id} not found",
            details={"tournament_id": tournament_id},
        )
    if tournament.get("created_by") != user.uid:
        raise ForbiddenError(
            message="Only the organizer can send invites",
            details={"tournament_id": tournament_id},
        )
    if tournament.get("status") in CLOSED_STATUSES or is_temp_id(tournament.get("id")):
        raise DomainRuleError(
            message="Invites can only be sent for open, synced tournaments",
            details={"tournament_id": tournament_id},
        )

    existing = await reconciler.remote.query_documents(
        TOURNAMENT_INVITES,
        [
            Filter("tournament_id", "==", tournament["id"]),
            Filter("invitee_email", "==", email),
        ],
    )
    if any(_is_active(invite, now) for invite in existing):
        raise ConflictError(
            message="There is already a pending invite for this email",
            details={"tournament_id": tournament_id, "invitee_email": email},
        )

    invite = TournamentInvite(
        id="",
        tournament_id=str(tournament["id"]),
        tournament_name=str(tournament.get("name", "")),
        inviter_id=user.uid,
        inviter_name=user.name,
        invitee_email=email,
        status=InviteStatus.PENDING,
        created_at=now.isoformat(),
        expires_at=(now + INVITE_TTL).isoformat(),
    ).model_dump(mode="json")
    invite["id"] = await reconciler.remote.add_document(TOURNAMENT_INVITES, invite)
    logger.info(f"Invite {invite['id']} sent to {email} for tournament {tournament_id}")
    return invite


async def active_invites(
    reconciler: SyncReconciler, user: UserContext, now: datetime | None = None
) -> list[Document]:
    """Pending, unexpired invites addressed to the user.

    Reads the remote store when online and refreshes the local cache; falls
    back to the cache when offline or when the read fails recoverably.
    """
    now = now or utcnow()
    if not user.email:
        return []

    answered = {
        item.get("invite_id")
        for item in reconciler.local.load(PENDING_INVITE_STATUS_UPDATES, [])
        if isinstance(item, dict)
    }

    invites: list[Document] | None = None
    if reconciler.online:
        try:
            invites = await reconciler.remote.query_documents(
                TOURNAMENT_INVITES,
                [
                    Filter("invitee_email", "==", user.email.lower()),
                    Filter("status", "==", InviteStatus.PENDING.value),
                ],
                OrderBy("created_at", descending=True),
            )
        except RemoteStoreError as e:
            if not e.recoverable:
                raise
            logger.warning(f"Could not load invites ({e.kind.value}), using cache")
        else:
            reconciler.local.save(user_invites_key(user.uid), invites)

    if invites is None:
        invites = reconciler.local.load(user_invites_key(user.uid), [])

    return [
        invite
        for invite in invites
        if isinstance(invite, dict) and invite.get("id") not in answered and _is_active(invite, now)
    ]


async def _find_invite(reconciler: SyncReconciler, user: UserContext, invite_id: str) -> Document:
    for invite in await active_invites(reconciler, user):
        if invite.get("id") == invite_id:
            return invite
    raise NotFoundError(
        message=f"Invite {invite_id} not found or no longer active",
        details={"invite_id": invite_id},
    )


async def _answer_invite(
    reconciler: SyncReconciler, invite_id: str, status: InviteStatus, now: datetime
) -> MutationOutcome:
    envelope = PendingInviteStatusUpdate(
        invite_id=invite_id, status=status, timestamp=now.isoformat()
    ).model_dump(mode="json")

    async def write() -> str:
        await reconciler.remote.update_document(
            TOURNAMENT_INVITES,
            invite_id,
            {"status": status.value, "responded_at": envelope["timestamp"]},
        )
        return invite_id

    return await reconciler.apply_durable_mutation(
        DurableMutation(
            entity=envelope,
            remote_write=write,
            queue_key=PENDING_INVITE_STATUS_UPDATES,
            merge=reconciler.merge_invite_update,
            label=f"Invite {invite_id} {status.value}",
        )
    )


async def accept_invite(
    reconciler: SyncReconciler,
    user: UserContext,
    invite_id: str,
    now: datetime | None = None,
) -> MutationOutcome:
    """Join the invite's tournament and mark the invite accepted."""
    now = now or utcnow()
    invite = await _find_invite(reconciler, user, invite_id)
    try:
        await join_tournament(reconciler, user, str(invite["tournament_id"]), now)
    except ConflictError:
        logger.info(f"User {user.uid} already in tournament {invite['tournament_id']}")
    return await _answer_invite(reconciler, invite_id, InviteStatus.ACCEPTED, now)


async def decline_invite(
    reconciler: SyncReconciler,
    user: UserContext,
    invite_id: str,
    now: datetime | None = None,
) -> MutationOutcome:
    now = now or utcnow()
    await _find_invite(reconciler, user, invite_id)
    return await _answer_invite(reconciler, invite_id, InviteStatus.DECLINED, now)
