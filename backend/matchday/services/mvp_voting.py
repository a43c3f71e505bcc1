"""MVP voting windows: ballots, tallying and the scheduled close."""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import season_stats_cache
from ..db import dialect_insert
from ..exceptions import MatchNotFound, NotEligible, StoreError, VotingClosed
from ..models import MVP_STATUS_CALCULATED, MVP_STATUS_OPEN, Match, MvpBallot
from ..time_utils import coerce_utc, utcnow
from .match_recorder import get_ballots
from .migration import ensure_no_migration
from .stats import apply_deltas, entries_from_payload, mvp_delta

LOGGER = logging.getLogger(__name__)


def tally_winner(ballots: Mapping[str, str]) -> str | None:
    """Pick the MVP from ``{voter: voted}``.

    The most voted member wins. Ties go to the lexicographically smallest
    member id. No ballots means no winner.
    """

    counts = Counter(voted for voted in ballots.values() if voted)
    if not counts:
        return None
    top = max(counts.values())
    return min(member_id for member_id, votes in counts.items() if votes == top)


def participants(match: Match) -> set[str]:
    entries = entries_from_payload(match.players1) + entries_from_payload(match.players2)
    return {e.member_id for e in entries if e.member_id}


@dataclass(frozen=True)
class CloseResult:
    match_id: str
    closed: bool
    winner_member_id: str | None = None


class MvpVotingStateMachine:
    """Moves a match's voting from ``open`` to ``calculated``.

    ``calculated`` is terminal. The transition is a guarded ``UPDATE`` so a
    match already closed by a concurrent sweep is left alone and its winner
    is never credited twice.
    """

    def __init__(
        self, session: AsyncSession, *, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self.session = session
        self.clock = clock

    async def cast_vote(
        self, match_id: str, voter_member_id: str, voted_member_id: str
    ) -> None:
        match = await self.session.get(Match, match_id)
        if match is None:
            raise MatchNotFound(match_id)

        now = self.clock()
        closes_at = coerce_utc(match.mvp_closes_at)
        if match.mvp_status != MVP_STATUS_OPEN or closes_at is None or now >= closes_at:
            raise VotingClosed(match_id)

        roster = participants(match)
        if voter_member_id not in roster:
            raise NotEligible("only players of this match can vote")
        if voted_member_id not in roster:
            raise NotEligible("the MVP must be a player of this match")

        stmt = dialect_insert(self.session, MvpBallot).values(
            id=uuid.uuid4().hex,
            match_id=match_id,
            voter_member_id=voter_member_id,
            voted_member_id=voted_member_id,
            cast_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["match_id", "voter_member_id"],
            set_={"voted_member_id": voted_member_id, "cast_at": now},
        )
        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StoreError("vote could not be saved") from exc
        LOGGER.debug("Ballot stored match=%s voter=%s", match_id, voter_member_id)

    async def close_voting(self, match_id: str) -> CloseResult:
        """Tally and close one match in a single transaction."""

        await ensure_no_migration(self.session)
        match = await self.session.get(Match, match_id)
        if match is None:
            raise MatchNotFound(match_id)
        if match.mvp_status != MVP_STATUS_OPEN:
            return CloseResult(match_id, closed=False)

        winner = tally_winner(await get_ballots(self.session, match_id))
        group_id, season = match.group_id, match.season
        team1 = entries_from_payload(match.players1)
        team2 = entries_from_payload(match.players2)

        try:
            result = await self.session.execute(
                update(Match)
                .where(Match.id == match_id, Match.mvp_status == MVP_STATUS_OPEN)
                .values(
                    mvp_status=MVP_STATUS_CALCULATED,
                    mvp_group_member_id=winner,
                    mvp_calculated_at=self.clock(),
                )
            )
            if result.rowcount == 0:
                await self.session.rollback()
                LOGGER.info("Match %s was already calculated; skipping", match_id)
                return CloseResult(match_id, closed=False)

            delta = mvp_delta(winner, team1, team2) if winner else None
            if delta is not None:
                await apply_deltas(self.session, group_id, season, [delta])
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StoreError(f"MVP result for match '{match_id}' could not be saved") from exc

        if winner:
            await season_stats_cache.invalidate_groups([group_id])
        return CloseResult(match_id, closed=True, winner_member_id=winner)

    async def due_match_ids(self) -> list[str]:
        rows = await self.session.execute(
            select(Match.id)
            .where(Match.mvp_status == MVP_STATUS_OPEN, Match.mvp_closes_at <= self.clock())
            .order_by(Match.mvp_closes_at, Match.id)
        )
        return list(rows.scalars().all())

    async def scheduled_sweep(self) -> dict[str, Any]:
        """Close every expired voting window.

        Each match is closed in its own transaction; a failure is logged and
        reported without stopping the remaining matches. Nothing is closed
        while a migration is running.
        """

        await ensure_no_migration(self.session)
        processed = 0
        winners = 0
        failures: list[dict[str, str]] = []
        for match_id in await self.due_match_ids():
            try:
                outcome = await self.close_voting(match_id)
            except Exception as exc:
                LOGGER.exception("MVP sweep failed for match %s", match_id)
                if self.session.in_transaction():
                    await self.session.rollback()
                failures.append({"matchId": match_id, "error": str(exc)})
                continue
            if outcome.closed:
                processed += 1
                if outcome.winner_member_id:
                    winners += 1

        LOGGER.info(
            "MVP sweep finished processed=%d winners=%d failures=%d",
            processed,
            winners,
            len(failures),
        )
        return {"processed": processed, "winners": winners, "failures": failures}
