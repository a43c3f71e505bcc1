from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..exceptions import http_problem
from ..models import Invite
from ..schemas import InviteCreate, InviteOut
from ..services.invites import (
    accept_invite,
    create_invite,
    list_pending_invites,
    normalize_email,
    reject_invite,
)
from ..services.notifications import NotificationDispatcher, get_dispatcher
from ..time_utils import coerce_utc
from .auth import AuthUser, get_current_user, limiter, write_rate_limit

router = APIRouter(prefix="/invites", tags=["invites"])


def invite_out(invite: Invite) -> InviteOut:
    return InviteOut(
        id=invite.id,
        groupId=invite.group_id,
        groupMemberId=invite.group_member_id,
        email=invite.email,
        invitedById=invite.invited_by_id,
        invitedByName=invite.invited_by_name or "",
        status=invite.status,
        createdAt=coerce_utc(invite.created_at),
        updatedAt=coerce_utc(invite.updated_at),
    )


def _require_own_email(user: AuthUser, email: str) -> None:
    if user.is_admin:
        return
    if not user.email or user.email != normalize_email(email):
        raise http_problem(
            status_code=403,
            detail="invites can only be read by their recipient",
            code="invite_forbidden",
        )


@router.post("", response_model=InviteOut, status_code=201)
@limiter.limit(write_rate_limit)
async def send_invite(
    request: Request,
    body: InviteCreate,
    session: AsyncSession = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    invite = await create_invite(
        session,
        group_member_id=body.group_member_id,
        email=body.email,
        invited_by_id=user.id,
        invited_by_name=body.invited_by_name,
        dispatcher=dispatcher,
    )
    return invite_out(invite)


@router.get("", response_model=list[InviteOut])
async def pending_invites(
    email: str = Query(..., min_length=3),
    session: AsyncSession = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    _require_own_email(user, email)
    return [invite_out(i) for i in await list_pending_invites(session, email)]


@router.post("/{invite_id}/accept", response_model=InviteOut)
async def accept(
    invite_id: str,
    session: AsyncSession = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    invite = await session.get(Invite, invite_id)
    if invite is not None:
        _require_own_email(user, invite.email)
    return invite_out(await accept_invite(session, invite_id, user.id))


@router.post("/{invite_id}/reject", response_model=InviteOut)
async def reject(
    invite_id: str,
    session: AsyncSession = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    invite = await session.get(Invite, invite_id)
    if invite is not None:
        _require_own_email(user, invite.email)
    return invite_out(await reject_invite(session, invite_id))
