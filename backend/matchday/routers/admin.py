"""Operator endpoints: legacy migration and MVP closing."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..exceptions import http_problem
from ..schemas import (
    CloseVotingOut,
    DeduplicationOut,
    MatchMigrationOut,
    MemberMigrationOut,
    SeasonStatsRecomputeOut,
    SweepOut,
)
from ..services.migration import IdentityDeduplicationEngine, migration_guard
from ..services.mvp_voting import MvpVotingStateMachine
from .auth import AuthUser, get_current_user


async def require_admin(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if not user.is_admin:
        raise http_problem(
            status_code=403,
            detail="forbidden",
            code="admin_forbidden",
        )
    return user


router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


@router.post("/migration/members", response_model=MemberMigrationOut)
async def migrate_members(session: AsyncSession = Depends(get_session)):
    async with migration_guard(session):
        return await IdentityDeduplicationEngine(session).migrate_group_members()


@router.post("/migration/matches", response_model=MatchMigrationOut)
async def migrate_matches(session: AsyncSession = Depends(get_session)):
    async with migration_guard(session):
        return await IdentityDeduplicationEngine(session).migrate_matches()


@router.post("/migration/season-stats", response_model=SeasonStatsRecomputeOut)
async def recompute_season_stats(session: AsyncSession = Depends(get_session)):
    async with migration_guard(session):
        return await IdentityDeduplicationEngine(session).recompute_season_stats()


@router.post("/migration/run", response_model=DeduplicationOut)
async def run_migration(session: AsyncSession = Depends(get_session)):
    async with migration_guard(session):
        return await IdentityDeduplicationEngine(session).run_deduplication()


@router.post("/mvp/sweep", response_model=SweepOut)
async def sweep_mvp(session: AsyncSession = Depends(get_session)):
    return await MvpVotingStateMachine(session).scheduled_sweep()


@router.post("/mvp/{match_id}/close", response_model=CloseVotingOut)
async def close_mvp(match_id: str, session: AsyncSession = Depends(get_session)):
    result = await MvpVotingStateMachine(session).close_voting(match_id)
    return CloseVotingOut(
        matchId=result.match_id,
        closed=result.closed,
        winnerMemberId=result.winner_member_id,
    )
