"""Service for computing leaderboards from raw catch records."""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
import math
from typing import Any

from loguru import logger
from pydantic import BaseModel

from tilapios.core.time_utils import parse_timestamp
from tilapios.schemas.schemas import (
    FishSummary,
    RankedParticipant,
    RankingPolicy,
    WinnerSnapshot,
)

UNKNOWN_SPECIES = "Desconhecido"

# Score formula constants
POINTS_PER_KG = 1
POINTS_PER_CATCH = 5
POINTS_PER_SPECIES = 20
POINTS_PER_BIGGEST_KG = 10
POINTS_PER_ACTIVE_DAY = 15
HEAVY_AVERAGE_THRESHOLD_KG = 2
HEAVY_AVERAGE_BONUS = 50
VETERAN_CATCHES_THRESHOLD = 10
VETERAN_BONUS = 100
SPECIALIST_SPECIES_THRESHOLD = 5
SPECIALIST_BONUS = 200

PODIUM_SIZE = 3


def _to_number(value: Any) -> float:
    """Coerce a weight/length to a non-negative finite float, 0.0 otherwise."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def _as_mapping(record: Any) -> Mapping[str, Any] | None:
    if isinstance(record, BaseModel):
        return record.model_dump()
    if isinstance(record, Mapping):
        return record
    return None


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives, like JavaScript's Math.round."""
    return math.floor(value + 0.5)


def calculate_score(
    *,
    total_weight: float,
    total_catches: int,
    unique_species: int,
    biggest_weight: float,
    active_days: int,
    average_weight: float,
) -> int:
    """Composite score used by the ``score`` policy.

    Points per kg, per catch, per distinct species, per kg of the biggest
    fish and per active day, plus flat bonuses for a heavy average, for more
    than ten catches and for more than five species.
    """
    score = (
        total_weight * POINTS_PER_KG
        + total_catches * POINTS_PER_CATCH
        + unique_species * POINTS_PER_SPECIES
        + biggest_weight * POINTS_PER_BIGGEST_KG
        + active_days * POINTS_PER_ACTIVE_DAY
    )
    if average_weight > HEAVY_AVERAGE_THRESHOLD_KG:
        score += HEAVY_AVERAGE_BONUS
    if total_catches > VETERAN_CATCHES_THRESHOLD:
        score += VETERAN_BONUS
    if unique_species > SPECIALIST_SPECIES_THRESHOLD:
        score += SPECIALIST_BONUS
    return round_half_up(score)


@dataclass
class _Accumulator:
    user_id: str
    user_name: str
    total_catches: int = 0
    total_weight: float = 0.0
    total_length: float = 0.0
    biggest_fish: FishSummary = field(default_factory=FishSummary)
    smallest_fish: FishSummary | None = None
    species_count: dict[str, int] = field(default_factory=dict)
    days: set[str] = field(default_factory=set)
    first_catch: tuple[datetime, str] | None = None
    last_catch: tuple[datetime, str] | None = None

    def add(self, record: Mapping[str, Any]) -> None:
        weight = _to_number(record.get("weight"))
        length = _to_number(record.get("length"))
        species = str(record.get("species") or UNKNOWN_SPECIES)
        raw_date = record.get("date") or record.get("registered_at")
        location = record.get("location")

        self.total_catches += 1
        self.total_weight += weight
        self.total_length += length

        # Strictly greater: the first of equally heavy fish keeps the title
        if weight > self.biggest_fish.weight:
            self.biggest_fish = FishSummary(
                weight=weight,
                species=species,
                length=length,
                location=location if isinstance(location, str) else None,
                date=str(raw_date) if raw_date else None,
            )

        if weight > 0 and (self.smallest_fish is None or weight < self.smallest_fish.weight):
            self.smallest_fish = FishSummary(
                weight=weight,
                species=species,
                length=length,
                location=location if isinstance(location, str) else None,
                date=str(raw_date) if raw_date else None,
            )

        self.species_count[species] = self.species_count.get(species, 0) + 1

        parsed = parse_timestamp(raw_date)
        if parsed is not None:
            self.days.add(parsed.date().isoformat())
            if self.first_catch is None or parsed < self.first_catch[0]:
                self.first_catch = (parsed, str(raw_date))
            if self.last_catch is None or parsed > self.last_catch[0]:
                self.last_catch = (parsed, str(raw_date))

    def to_participant(self) -> RankedParticipant:
        average_weight = self.total_weight / self.total_catches if self.total_catches else 0.0
        average_length = self.total_length / self.total_catches if self.total_catches else 0.0
        unique_species = len(self.species_count)
        active_days = len(self.days)

        return RankedParticipant(
            user_id=self.user_id,
            user_name=self.user_name,
            total_catches=self.total_catches,
            total_weight=self.total_weight,
            average_weight=average_weight,
            biggest_fish=self.biggest_fish,
            smallest_fish=self.smallest_fish,
            species_count=dict(self.species_count),
            unique_species=unique_species,
            total_length=self.total_length,
            average_length=average_length,
            score=calculate_score(
                total_weight=self.total_weight,
                total_catches=self.total_catches,
                unique_species=unique_species,
                biggest_weight=self.biggest_fish.weight,
                active_days=active_days,
                average_weight=average_weight,
            ),
            first_catch_date=self.first_catch[1] if self.first_catch else None,
            last_catch_date=self.last_catch[1] if self.last_catch else None,
            active_days=active_days,
        )


type SortKey = Callable[[RankedParticipant], tuple[float, ...]]

SORT_KEYS: dict[RankingPolicy, SortKey] = {
    RankingPolicy.WEIGHT: lambda p: (p.total_weight, p.total_catches, p.biggest_fish.weight),
    RankingPolicy.QUANTITY: lambda p: (p.total_catches, p.total_weight, p.unique_species),
    RankingPolicy.BIGGEST: lambda p: (p.biggest_fish.weight, p.total_weight, p.total_catches),
    RankingPolicy.SPECIES: lambda p: (p.unique_species, p.total_catches, p.total_weight),
    RankingPolicy.SCORE: lambda p: (p.score, p.total_weight, p.total_catches),
}


def resolve_policy(policy: str | RankingPolicy | None) -> RankingPolicy:
    """Map a policy name onto RankingPolicy, defaulting to score."""
    try:
        return RankingPolicy(policy)
    except ValueError:
        logger.debug(f"Unknown ranking policy {policy!r}, using score")
        return RankingPolicy.SCORE


def aggregate_participants(catches: Iterable[Any]) -> list[RankedParticipant]:
    """Group catches by user and compute per-user statistics.

    Participants come back in first-seen order, without positions.
    """
    accumulators: dict[str, _Accumulator] = {}
    for record in catches:
        data = _as_mapping(record)
        if data is None:
            continue
        user_id = str(data.get("user_id") or "")
        accumulator = accumulators.get(user_id)
        if accumulator is None:
            accumulator = _Accumulator(user_id=user_id, user_name=str(data.get("user_name") or ""))
            accumulators[user_id] = accumulator
        accumulator.add(data)
    return [acc.to_participant() for acc in accumulators.values()]


def compute_ranking(
    catches: Iterable[Any] | None, policy: str | RankingPolicy = RankingPolicy.SCORE
) -> list[RankedParticipant]:
    """Build a fully ordered leaderboard from catch records.

    Args:
        catches: Catch records as mappings or CatchRecord models. Malformed
                 records are absorbed with zero/default values.
        policy: One of score, weight, quantity, biggest, species.

    Returns:
        Participants sorted descending by the policy's key chain, annotated
        with position, is_winner and is_podium. Empty for empty input.
    """
    if catches is None or isinstance(catches, (str, bytes, Mapping)):
        return []
    try:
        records = list(catches)
    except TypeError:
        return []
    if not records:
        return []

    resolved = resolve_policy(policy)
    # sorted() is stable, so full ties keep first-seen order
    ranking = sorted(aggregate_participants(records), key=SORT_KEYS[resolved], reverse=True)

    for index, participant in enumerate(ranking):
        participant.position = index + 1
        participant.is_winner = index == 0
        participant.is_podium = index < PODIUM_SIZE

    return ranking


def tournament_catches(
    catches: Iterable[Any], tournament_id: str, until: str | None = None
) -> list[Mapping[str, Any]]:
    """Catches registered for a tournament, optionally only up to a closing time."""
    cutoff = parse_timestamp(until) if until else None
    selected: list[Mapping[str, Any]] = []
    for record in catches:
        data = _as_mapping(record)
        if data is None or data.get("tournament_id") != tournament_id:
            continue
        if cutoff is not None:
            registered = parse_timestamp(data.get("registered_at"))
            if registered is not None and registered > cutoff:
                continue
        selected.append(data)
    return selected


def winner_snapshot(ranking: list[RankedParticipant]) -> WinnerSnapshot | None:
    if not ranking:
        return None
    top = ranking[0]
    return WinnerSnapshot(
        user_id=top.user_id,
        user_name=top.user_name,
        total_weight=top.total_weight,
        total_catches=top.total_catches,
        score=top.score,
    )


def user_summary(
    catches: Iterable[Any], user_id: str, tournament_id: str | None = None
) -> RankedParticipant:
    """Statistics for a single user, optionally restricted to one tournament."""
    selected = []
    for record in catches:
        data = _as_mapping(record)
        if data is None or data.get("user_id") != user_id:
            continue
        if tournament_id is not None and data.get("tournament_id") != tournament_id:
            continue
        selected.append(data)

    participants = aggregate_participants(selected)
    if not participants:
        return RankedParticipant(user_id=user_id)
    return participants[0]
