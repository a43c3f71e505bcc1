"""Recording finished matches together with their statistical effect."""

from __future__ import annotations

import logging
import uuid
from datetime import date as date_type, datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import config
from ..cache import season_stats_cache
from ..exceptions import MatchNotFound, StoreError, ValidationError
from ..models import MVP_STATUS_OPEN, Match, MvpBallot
from ..time_utils import coerce_utc, season_for, utcnow
from .identity import GroupMemberRepository
from .migration import ensure_no_migration
from .notifications import MatchCreatedEvent, NotificationDispatcher, emit
from .stats import apply_deltas, final_scores, match_deltas
from .validation import validate_lineups, validate_team_entries

LOGGER = logging.getLogger(__name__)


def _as_match_datetime(value: datetime | date_type) -> datetime:
    if isinstance(value, datetime):
        return coerce_utc(value)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


class MatchRecorder:
    """Writes a match and its season-stat increments in one transaction.

    The season stats rows are never read: each affected row gets an
    insert-if-missing followed by relative increments, so concurrent
    recordings for the same member commute.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] = utcnow,
        voting_window: timedelta | None = None,
    ) -> None:
        self.session = session
        self.dispatcher = dispatcher
        self.clock = clock
        self.voting_window = voting_window or timedelta(hours=config.MVP_VOTING_WINDOW_HOURS)
        self.members = GroupMemberRepository(session)

    async def record_match(
        self,
        group_id: str,
        date: datetime | date_type,
        team1: Sequence[Mapping[str, Any]],
        team2: Sequence[Mapping[str, Any]],
    ) -> str:
        if not group_id or not str(group_id).strip():
            raise ValidationError("groupId is required.")
        await ensure_no_migration(self.session)

        entries1 = validate_team_entries(team1, team=1)
        entries2 = validate_team_entries(team2, team=2)
        members = await self.members.get_many(e.member_id for e in (*entries1, *entries2))
        validate_lineups(group_id, entries1, entries2, members)

        played_at = _as_match_datetime(date)
        season = season_for(played_at)
        goals1, goals2 = final_scores(entries1, entries2)
        now = self.clock()

        match_id = uuid.uuid4().hex
        match = Match(
            id=match_id,
            group_id=group_id,
            season=season,
            date=played_at,
            goals_team1=goals1,
            goals_team2=goals2,
            players1=[e.to_payload() for e in entries1],
            players2=[e.to_payload() for e in entries2],
            mvp_group_member_id=None,
            mvp_status=MVP_STATUS_OPEN,
            mvp_opens_at=now,
            mvp_closes_at=now + self.voting_window,
            mvp_calculated_at=None,
        )

        try:
            self.session.add(match)
            await self.session.flush()
            await apply_deltas(
                self.session,
                group_id,
                season,
                match_deltas(entries1, entries2, goals1, goals2),
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            LOGGER.exception("Failed to record match for group %s", group_id)
            raise StoreError("match could not be recorded; no changes were saved") from exc

        LOGGER.info(
            "Recorded match %s group=%s season=%s score=%d-%d",
            match_id,
            group_id,
            season,
            goals1,
            goals2,
        )
        await season_stats_cache.invalidate_groups([group_id])
        await emit(
            self.dispatcher,
            self.session,
            MatchCreatedEvent(match_id=match_id, group_id=group_id),
        )
        return match_id


async def get_match(session: AsyncSession, match_id: str) -> Match:
    match = await session.get(Match, match_id)
    if match is None:
        raise MatchNotFound(match_id)
    return match


async def list_matches(session: AsyncSession, group_id: str) -> list[Match]:
    rows = await session.execute(
        select(Match).where(Match.group_id == group_id).order_by(Match.date.desc())
    )
    return list(rows.scalars().all())


async def get_ballots(session: AsyncSession, match_id: str) -> dict[str, str]:
    rows = await session.execute(
        select(MvpBallot.voter_member_id, MvpBallot.voted_member_id)
        .where(MvpBallot.match_id == match_id)
        .order_by(MvpBallot.cast_at, MvpBallot.voter_member_id)
    )
    return {voter: voted for voter, voted in rows.all()}
