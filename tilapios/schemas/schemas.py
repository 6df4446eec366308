"""Pydantic schemas for catches, tournaments, invites, posts, rankings and sync state."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TournamentStatus(StrEnum):
    """Lifecycle of a tournament. Only open -> finished/cancelled is used."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CANCELLED = "cancelled"
    FINISHED = "finished"


CLOSED_STATUSES = frozenset({TournamentStatus.CANCELLED, TournamentStatus.FINISHED})


class RankingPolicy(StrEnum):
    """Sort lens applied to catch records when building a leaderboard."""

    SCORE = "score"
    WEIGHT = "weight"
    QUANTITY = "quantity"
    BIGGEST = "biggest"
    SPECIES = "species"


class InviteStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class UserContext(BaseModel):
    """The authenticated user acting on the store."""

    uid: str
    display_name: str | None = None
    email: str | None = None

    @property
    def name(self) -> str:
        """Display name snapshot written into documents."""
        return self.display_name or self.email or self.uid


class CatchRecord(BaseModel):
    """A single logged fish capture."""

    model_config = ConfigDict(extra="allow")

    id: str
    user_id: str
    user_name: str = ""
    species: str
    weight: float = Field(ge=0)
    length: float | None = None
    location: str | None = None
    tournament_id: str | None = None
    photo: str | None = None
    registered_at: str
    synced_at: str | None = None
    pending: bool = False
    client_id: str | None = None


class CatchCreate(BaseModel):
    """Fields supplied by the user when registering a catch."""

    species: str
    weight: float
    length: float | None = None
    location: str | None = None
    tournament_id: str | None = None


class Participant(BaseModel):
    user_id: str
    user_name: str = ""
    joined_at: str | None = None
    pending: bool = False


class WinnerSnapshot(BaseModel):
    """Frozen summary of the top-ranked participant of a finished tournament."""

    user_id: str
    user_name: str = ""
    total_weight: float = 0.0
    total_catches: int = 0
    score: int = 0


class Tournament(BaseModel):
    """A time-boxed fishing competition."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    description: str = ""
    created_by: str
    creator_name: str = ""
    created_at: str
    start_date: str
    end_date: str
    status: TournamentStatus = TournamentStatus.OPEN
    max_participants: int = 100
    participants: list[Participant] = Field(default_factory=list)
    participant_count: int = 0
    entry_fee: float = 0.0
    prize_pool: float = 0.0
    rules: str = ""
    location: str = ""
    final_ranking: list[dict[str, Any]] | None = None
    winner: WinnerSnapshot | None = None
    finished_at: str | None = None
    finished_by: str | None = None
    cancelled_at: str | None = None
    cancelled_by: str | None = None
    pending: bool = False
    client_id: str | None = None

    def participant_ids(self) -> set[str]:
        return {p.user_id for p in self.participants}


class TournamentCreate(BaseModel):
    """Fields supplied by the user when creating a tournament."""

    name: str = ""
    description: str = ""
    start_date: str | None = None
    end_date: str | None = None
    max_participants: int | None = None
    entry_fee: float | None = None
    prize_pool: float | None = None
    rules: str = ""
    location: str = ""


class TournamentInvite(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    tournament_id: str
    tournament_name: str = ""
    inviter_id: str
    inviter_name: str = ""
    invitee_email: str
    status: InviteStatus = InviteStatus.PENDING
    created_at: str
    expires_at: str
    responded_at: str | None = None


class InviteCreate(BaseModel):
    invitee_email: str


class PendingParticipation(BaseModel):
    """Queued "join tournament" write."""

    tournament_id: str
    user_id: str
    user_name: str = ""
    timestamp: str


class PendingInviteStatusUpdate(BaseModel):
    """Queued invite accept/decline write."""

    invite_id: str
    status: InviteStatus
    timestamp: str


class PostUpdateKind(StrEnum):
    LIKE = "like"
    UNLIKE = "unlike"
    COMMENT = "comment"
    SHARE = "share"


class Comment(BaseModel):
    id: str
    author_id: str
    author_name: str = ""
    author_avatar: str = ""
    text: str
    created_at: str


class Post(BaseModel):
    """A feed post with its reactions."""

    model_config = ConfigDict(extra="allow")

    id: str
    author_id: str
    author_name: str = ""
    author_avatar: str = ""
    content: str = ""
    image: str | None = None
    catch_id: str | None = None
    tournament_id: str | None = None
    created_at: str
    likes: list[str] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)
    shares: int = 0
    share_ids: list[str] = Field(default_factory=list)
    synced_at: str | None = None
    pending: bool = False
    client_id: str | None = None


class PostCreate(BaseModel):
    """Fields supplied by the user when publishing a post."""

    content: str = ""
    image: str | None = None
    catch_id: str | None = None
    tournament_id: str | None = None


class CommentCreate(BaseModel):
    text: str


class PendingPostUpdate(BaseModel):
    """Queued like, unlike, comment or share of a post.

    ``id`` identifies the update itself so a replayed comment or share is
    applied once.
    """

    id: str
    post_id: str
    kind: PostUpdateKind
    user_id: str
    comment: Comment | None = None
    timestamp: str


class FishSummary(BaseModel):
    """Biggest or smallest fish of a participant."""

    weight: float = 0.0
    species: str = ""
    length: float = 0.0
    location: str | None = None
    date: str | None = None


class RankedParticipant(BaseModel):
    """Per-user statistics plus their leaderboard position."""

    user_id: str
    user_name: str = ""
    total_catches: int = 0
    total_weight: float = 0.0
    average_weight: float = 0.0
    biggest_fish: FishSummary = Field(default_factory=FishSummary)
    smallest_fish: FishSummary | None = None
    species_count: dict[str, int] = Field(default_factory=dict)
    unique_species: int = 0
    total_length: float = 0.0
    average_length: float = 0.0
    score: int = 0
    first_catch_date: str | None = None
    last_catch_date: str | None = None
    active_days: int = 0
    position: int = 0
    is_winner: bool = False
    is_podium: bool = False


class ConnectivityUpdate(BaseModel):
    online: bool


class SyncStatusResponse(BaseModel):
    """Snapshot of the reconciler state shown in the status indicator."""

    online: bool
    status: str
    pending: dict[str, int]
    pending_total: int
    mirrors: dict[str, str]


class CategoryReport(BaseModel):
    """Outcome of draining one queue category."""

    confirmed: int = 0
    duplicates: int = 0
    dropped: int = 0
    remaining: int = 0


class DrainReport(BaseModel):
    tournaments: CategoryReport = Field(default_factory=CategoryReport)
    catches: CategoryReport = Field(default_factory=CategoryReport)
    participations: CategoryReport = Field(default_factory=CategoryReport)
    invite_updates: CategoryReport = Field(default_factory=CategoryReport)
    posts: CategoryReport = Field(default_factory=CategoryReport)
    post_updates: CategoryReport = Field(default_factory=CategoryReport)

    @property
    def remaining(self) -> int:
        return (
            self.tournaments.remaining
            + self.catches.remaining
            + self.participations.remaining
            + self.invite_updates.remaining
            + self.posts.remaining
            + self.post_updates.remaining
        )


class MutationResponse(BaseModel):
    """Result of a write that may have been queued for later sync."""

    pending: bool
    data: dict[str, Any]


class SweepResponse(BaseModel):
    finished: list[str]
