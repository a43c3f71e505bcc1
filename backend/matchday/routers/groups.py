"""Group-scoped reads: matches, season stats and the member roster."""

from typing import Union

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import season_stats_cache
from ..db import get_session
from ..exceptions import http_problem
from ..models import GroupMember, SeasonStats
from ..schemas import (
    FieldStatsOut,
    GoalkeeperStatsOut,
    GroupMemberCreate,
    GroupMemberOut,
    MatchSummaryOut,
    SeasonStatsListOut,
    SeasonStatsOut,
    model_payload,
)
from ..services.identity import GroupMemberRepository
from ..services.match_recorder import list_matches
from ..services.stats import (
    FIELD_BLOCK,
    GOALKEEPER_BLOCK,
    block_totals,
    combine_seasons,
    list_season_stats,
)
from ..time_utils import coerce_utc
from .auth import AuthUser, get_current_user, limiter, write_rate_limit

router = APIRouter(prefix="/groups", tags=["groups"])


def member_out(member: GroupMember) -> GroupMemberOut:
    return GroupMemberOut(
        id=member.id,
        groupId=member.group_id,
        userId=member.user_id,
        displayName=member.display_name,
        photoUrl=member.photo_url,
        isGuest=bool(member.is_guest),
        role=member.role,
        legacyPlayerId=member.legacy_player_id,
        legacyPlayerIds=list(member.legacy_player_ids or []),
    )


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _blocks_out(field: dict[str, int], gk: dict[str, int]):
    return (
        FieldStatsOut(**{_camel(k): v for k, v in field.items()}),
        GoalkeeperStatsOut(**{_camel(k): v for k, v in gk.items()}),
    )


def _season_row_out(record: SeasonStats) -> SeasonStatsOut:
    field, gk = _blocks_out(
        block_totals(record, FIELD_BLOCK), block_totals(record, GOALKEEPER_BLOCK)
    )
    return SeasonStatsOut(
        id=record.id,
        groupId=record.group_id,
        season=record.season,
        groupMemberId=record.group_member_id,
        playerStats=field,
        goalkeeperStats=gk,
    )


def _parse_season(raw: str) -> Union[int, str]:
    value = raw.strip().lower()
    if value == "all":
        return "all"
    try:
        return int(value)
    except ValueError:
        raise http_problem(
            status_code=422,
            detail="season must be a year or 'all'",
            code="invalid_season",
        )


@router.get("/{gid}/matches", response_model=list[MatchSummaryOut])
async def group_matches(gid: str, session: AsyncSession = Depends(get_session)):
    return [
        MatchSummaryOut(
            id=m.id,
            date=coerce_utc(m.date),
            season=m.season,
            goalsTeam1=m.goals_team1,
            goalsTeam2=m.goals_team2,
            mvpGroupMemberId=m.mvp_group_member_id,
            mvpStatus=m.mvp_status,
        )
        for m in await list_matches(session, gid)
    ]


# GET /api/v0/groups/{gid}/season-stats?season=2024|all
@router.get("/{gid}/season-stats", response_model=SeasonStatsListOut)
async def group_season_stats(
    gid: str,
    season: str = Query(..., min_length=1),
    session: AsyncSession = Depends(get_session),
):
    parsed = _parse_season(season)
    cache_key = (gid, parsed)
    cached = await season_stats_cache.get(cache_key)
    if cached is not None:
        return cached

    if parsed == "all":
        records = await list_season_stats(session, gid)
        items = []
        for member_id, blocks in combine_seasons(records).items():
            field, gk = _blocks_out(blocks[FIELD_BLOCK], blocks[GOALKEEPER_BLOCK])
            items.append(
                SeasonStatsOut(
                    groupId=gid,
                    groupMemberId=member_id,
                    playerStats=field,
                    goalkeeperStats=gk,
                )
            )
    else:
        items = [_season_row_out(r) for r in await list_season_stats(session, gid, parsed)]

    payload = model_payload(SeasonStatsListOut(groupId=gid, season=parsed, items=items))
    await season_stats_cache.set(cache_key, payload)
    return payload


@router.get("/{gid}/members", response_model=list[GroupMemberOut])
async def list_members(gid: str, session: AsyncSession = Depends(get_session)):
    members = await GroupMemberRepository(session).list_by_group(gid)
    return [member_out(m) for m in members]


@router.get("/{gid}/members/search", response_model=list[GroupMemberOut])
async def search_members(
    gid: str,
    q: str = Query(default=""),
    session: AsyncSession = Depends(get_session),
):
    members = await GroupMemberRepository(session).search(gid, q)
    return [member_out(m) for m in members]


@router.post("/{gid}/members", response_model=GroupMemberOut, status_code=201)
@limiter.limit(write_rate_limit)
async def create_member(
    request: Request,
    gid: str,
    body: GroupMemberCreate,
    session: AsyncSession = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    member = await GroupMemberRepository(session).create_guest(gid, body.display_name)
    return member_out(member)
