from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..exceptions import NotEligible
from ..models import Match
from ..schemas import (
    MatchCreate,
    MatchEntryOut,
    MatchIdOut,
    MatchOut,
    MvpVotingOut,
    VoteCreate,
    VoteOut,
)
from ..services.identity import GroupMemberRepository
from ..services.match_recorder import MatchRecorder, get_ballots, get_match
from ..services.mvp_voting import MvpVotingStateMachine
from ..services.notifications import NotificationDispatcher, get_dispatcher
from ..time_utils import coerce_utc
from .auth import AuthUser, get_current_user, limiter, vote_rate_limit, write_rate_limit

# Resource-only prefix; versioning is added in main.py
router = APIRouter(prefix="/matches", tags=["matches"])


def _entries_out(raw) -> list[MatchEntryOut]:
    return [MatchEntryOut(**entry) for entry in raw or []]


def match_out(match: Match, ballots: dict[str, str]) -> MatchOut:
    return MatchOut(
        id=match.id,
        groupId=match.group_id,
        season=match.season,
        date=coerce_utc(match.date),
        goalsTeam1=match.goals_team1,
        goalsTeam2=match.goals_team2,
        players1=_entries_out(match.players1),
        players2=_entries_out(match.players2),
        mvpGroupMemberId=match.mvp_group_member_id,
        mvpVoting=MvpVotingOut(
            status=match.mvp_status,
            opensAt=coerce_utc(match.mvp_opens_at),
            closesAt=coerce_utc(match.mvp_closes_at),
            calculatedAt=coerce_utc(match.mvp_calculated_at),
            votes=ballots,
        ),
        legacyMatchId=match.legacy_match_id,
    )


# POST /api/v0/matches
@router.post("", response_model=MatchIdOut, status_code=201)
@limiter.limit(write_rate_limit)
async def create_match(
    request: Request,
    body: MatchCreate,
    session: AsyncSession = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> MatchIdOut:
    recorder = MatchRecorder(session, dispatcher=dispatcher)
    mid = await recorder.record_match(
        body.groupId,
        body.date,
        [entry.model_dump() for entry in body.team1],
        [entry.model_dump() for entry in body.team2],
    )
    return MatchIdOut(id=mid)


@router.get("/{mid}", response_model=MatchOut)
async def read_match(mid: str, session: AsyncSession = Depends(get_session)):
    match = await get_match(session, mid)
    return match_out(match, await get_ballots(session, mid))


# POST /api/v0/matches/{mid}/mvp-votes
@router.post("/{mid}/mvp-votes", response_model=VoteOut)
@limiter.limit(vote_rate_limit)
async def cast_vote(
    request: Request,
    mid: str,
    body: VoteCreate,
    session: AsyncSession = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
) -> VoteOut:
    match = await get_match(session, mid)
    voter = await GroupMemberRepository(session).find_by_user_id(match.group_id, user.id)
    if voter is None:
        raise NotEligible("you are not a member of this match's group")

    await MvpVotingStateMachine(session).cast_vote(mid, voter.id, body.voted_member_id)
    return VoteOut(matchId=mid, voterMemberId=voter.id, votedMemberId=body.voted_member_id)
