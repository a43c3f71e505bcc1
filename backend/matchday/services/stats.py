"""Season statistics ledger.

Every write path (incremental recording, MVP sweep, full recompute) derives
its numbers from :func:`match_deltas` and :func:`mvp_delta`, so recomputing
from scratch yields the same rows as replaying matches one by one.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, NamedTuple, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import dialect_insert
from ..models import SeasonStats

GOALKEEPER = "GK"
POSITIONS = ("GK", "DF", "MD", "FW")
LEGACY_POSITIONS = {"POR": "GK", "DEF": "DF", "MED": "MD", "DEL": "FW"}

FIELD_BLOCK = "field"
GOALKEEPER_BLOCK = "gk"

FIELD_STATS = ("matches", "goals", "assists", "own_goals", "won", "draw", "lost", "mvps")
GOALKEEPER_STATS = (
    "matches",
    "goals_conceded",
    "clean_sheets",
    "goals",
    "assists",
    "own_goals",
    "won",
    "draw",
    "lost",
    "mvps",
)
BLOCK_STATS = {FIELD_BLOCK: FIELD_STATS, GOALKEEPER_BLOCK: GOALKEEPER_STATS}


def normalize_position(raw: Any) -> str | None:
    """Map a submitted or legacy position code onto ``GK/DF/MD/FW``."""

    if not isinstance(raw, str):
        return None
    code = raw.strip().upper()
    if code in POSITIONS:
        return code
    return LEGACY_POSITIONS.get(code)


@dataclass(frozen=True)
class MatchEntry:
    """One player's line in a team sheet."""

    member_id: str
    position: str
    goals: int = 0
    assists: int = 0
    own_goals: int = 0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MatchEntry":
        return cls(
            member_id=str(payload.get("groupMemberId") or ""),
            position=normalize_position(payload.get("position")) or "DF",
            goals=int(payload.get("goals") or 0),
            assists=int(payload.get("assists") or 0),
            own_goals=int(payload.get("ownGoals") or 0),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "groupMemberId": self.member_id,
            "position": self.position,
            "goals": self.goals,
            "assists": self.assists,
            "ownGoals": self.own_goals,
        }

    @property
    def block(self) -> str:
        return GOALKEEPER_BLOCK if self.position == GOALKEEPER else FIELD_BLOCK


def entries_from_payload(raw: Any) -> list[MatchEntry]:
    if not isinstance(raw, list):
        return []
    return [MatchEntry.from_payload(item) for item in raw if isinstance(item, Mapping)]


def final_scores(
    team1: Sequence[MatchEntry], team2: Sequence[MatchEntry]
) -> tuple[int, int]:
    """Return ``(goals_team1, goals_team2)``.

    A team's score is its own players' goals plus the own goals committed by
    the opposing team.
    """

    goals1 = sum(e.goals for e in team1) + sum(e.own_goals for e in team2)
    goals2 = sum(e.goals for e in team2) + sum(e.own_goals for e in team1)
    return goals1, goals2


class TeamOutcome(NamedTuple):
    won: bool
    draw: bool
    lost: bool
    goals_against: int


def team_outcomes(goals_team1: int, goals_team2: int) -> tuple[TeamOutcome, TeamOutcome]:
    draw = goals_team1 == goals_team2
    team1 = TeamOutcome(goals_team1 > goals_team2, draw, goals_team1 < goals_team2, goals_team2)
    team2 = TeamOutcome(goals_team2 > goals_team1, draw, goals_team2 < goals_team1, goals_team1)
    return team1, team2


def stats_record_id(group_id: str, season: int, member_id: str) -> str:
    return f"{group_id}_{season}_{member_id}"


@dataclass
class StatDelta:
    member_id: str
    block: str
    values: dict[str, int] = field(default_factory=dict)

    def columns(self) -> dict[str, int]:
        return {f"{self.block}_{name}": value for name, value in self.values.items() if value}


def _entry_delta(entry: MatchEntry, outcome: TeamOutcome) -> StatDelta:
    values = {
        "matches": 1,
        "goals": entry.goals,
        "assists": entry.assists,
        "own_goals": entry.own_goals,
        "won": int(outcome.won),
        "draw": int(outcome.draw),
        "lost": int(outcome.lost),
    }
    if entry.block == GOALKEEPER_BLOCK:
        values["goals_conceded"] = outcome.goals_against
        values["clean_sheets"] = int(outcome.goals_against == 0)
    return StatDelta(entry.member_id, entry.block, values)


def match_deltas(
    team1: Sequence[MatchEntry],
    team2: Sequence[MatchEntry],
    goals_team1: int,
    goals_team2: int,
) -> list[StatDelta]:
    """Per-entry increments for a finished match, excluding the MVP award."""

    outcome1, outcome2 = team_outcomes(goals_team1, goals_team2)
    deltas = [_entry_delta(e, outcome1) for e in team1 if e.member_id]
    deltas.extend(_entry_delta(e, outcome2) for e in team2 if e.member_id)
    return deltas


def mvp_delta(
    member_id: str, team1: Sequence[MatchEntry], team2: Sequence[MatchEntry]
) -> StatDelta | None:
    """Increment for the MVP winner, in the block of the position they played."""

    for entry in (*team1, *team2):
        if entry.member_id == member_id:
            return StatDelta(member_id, entry.block, {"mvps": 1})
    return None


async def apply_deltas(
    session: AsyncSession,
    group_id: str,
    season: int,
    deltas: Iterable[StatDelta],
) -> None:
    """Stage increments against season stats rows without reading them.

    For every delta two statements are issued: an insert that creates the row
    with zeroed accumulators if it is missing (leaving an existing row
    untouched), then a relative ``UPDATE`` that treats NULL as zero. Nothing
    is committed here; the caller's transaction decides.
    """

    for delta in deltas:
        columns = delta.columns()
        if not columns:
            continue
        record_id = stats_record_id(group_id, season, delta.member_id)
        ensure = (
            dialect_insert(session, SeasonStats)
            .values(
                id=record_id,
                group_id=group_id,
                season=season,
                group_member_id=delta.member_id,
            )
            .on_conflict_do_nothing(index_elements=["id"])
        )
        await session.execute(ensure)

        increments: dict[Any, Any] = {
            getattr(SeasonStats, name): func.coalesce(getattr(SeasonStats, name), 0) + value
            for name, value in columns.items()
        }
        increments[SeasonStats.updated_at] = func.now()
        await session.execute(
            update(SeasonStats)
            .where(SeasonStats.id == record_id)
            .values(increments)
            .execution_options(synchronize_session=False)
        )


def empty_totals(group_id: str, season: int, member_id: str) -> dict[str, Any]:
    totals: dict[str, Any] = {
        "id": stats_record_id(group_id, season, member_id),
        "group_id": group_id,
        "season": season,
        "group_member_id": member_id,
    }
    for block, names in BLOCK_STATS.items():
        for name in names:
            totals[f"{block}_{name}"] = 0
    return totals


class SeasonStatsAccumulator:
    """In-memory counterpart of :func:`apply_deltas` used by the recompute path."""

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}

    def add(self, group_id: str, season: int, deltas: Iterable[StatDelta]) -> None:
        for delta in deltas:
            columns = delta.columns()
            if not columns:
                continue
            key = stats_record_id(group_id, season, delta.member_id)
            row = self._rows.get(key)
            if row is None:
                row = self._rows[key] = empty_totals(group_id, season, delta.member_id)
            for name, value in columns.items():
                row[name] += value

    def rows(self) -> list[dict[str, Any]]:
        return list(self._rows.values())

    def __len__(self) -> int:
        return len(self._rows)


async def replace_all(
    session: AsyncSession, rows: Sequence[dict[str, Any]], *, chunk_size: int
) -> int:
    """Swap every season stats row for ``rows`` in a single transaction.

    Inserts are flushed ``chunk_size`` rows at a time and committed once at the
    end, so a failing chunk leaves the previous rows in place after the
    caller's rollback.
    """

    await session.execute(delete(SeasonStats))
    for start in range(0, len(rows), chunk_size):
        session.add_all(SeasonStats(**row) for row in rows[start : start + chunk_size])
        await session.flush()
    await session.commit()
    return len(rows)


def block_totals(record: SeasonStats, block: str) -> dict[str, int]:
    """Read a block off a stats row; absent values count as zero."""

    return {
        name: int(getattr(record, f"{block}_{name}", None) or 0)
        for name in BLOCK_STATS[block]
    }


async def list_season_stats(
    session: AsyncSession, group_id: str, season: int | None = None
) -> list[SeasonStats]:
    stmt = select(SeasonStats).where(SeasonStats.group_id == group_id)
    if season is not None:
        stmt = stmt.where(SeasonStats.season == season)
    stmt = stmt.order_by(SeasonStats.season, SeasonStats.group_member_id)
    return list((await session.execute(stmt)).scalars().all())


def combine_seasons(records: Iterable[SeasonStats]) -> dict[str, dict[str, dict[str, int]]]:
    """Sum both blocks per member across seasons.

    Returns ``{member_id: {"field": {...}, "gk": {...}}}`` in first-seen order.
    """

    combined: dict[str, dict[str, dict[str, int]]] = {}
    for record in records:
        member = combined.setdefault(
            record.group_member_id,
            {block: defaultdict(int) for block in BLOCK_STATS},
        )
        for block in BLOCK_STATS:
            for name, value in block_totals(record, block).items():
                member[block][name] += value
    return {
        member_id: {block: dict(values) for block, values in blocks.items()}
        for member_id, blocks in combined.items()
    }
