from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import InviteNotFound, ValidationError
from ..models import INVITE_ACCEPTED, INVITE_PENDING, INVITE_REJECTED, Invite
from .identity import GroupMemberRepository
from .notifications import InviteReceivedEvent, NotificationDispatcher, emit

LOGGER = logging.getLogger(__name__)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


async def create_invite(
    session: AsyncSession,
    *,
    group_member_id: str,
    email: str,
    invited_by_id: str,
    invited_by_name: str = "",
    dispatcher: NotificationDispatcher | None = None,
) -> Invite:
    """Invite ``email`` to claim a member; the invite targets the member's group."""

    address = normalize_email(email)
    if "@" not in address:
        raise ValidationError("a valid email address is required")
    member = await GroupMemberRepository(session).require(group_member_id)

    invite = Invite(
        id=uuid.uuid4().hex,
        group_id=member.group_id,
        group_member_id=member.id,
        email=address,
        invited_by_id=invited_by_id,
        invited_by_name=invited_by_name or "",
        status=INVITE_PENDING,
    )
    session.add(invite)
    await session.commit()
    await session.refresh(invite)
    LOGGER.info("Invite %s created for member %s", invite.id, member.id)

    await emit(dispatcher, session, InviteReceivedEvent(invite_id=invite.id))
    return invite


async def list_pending_invites(session: AsyncSession, email: str) -> list[Invite]:
    rows = await session.execute(
        select(Invite)
        .where(Invite.email == normalize_email(email), Invite.status == INVITE_PENDING)
        .order_by(Invite.created_at.desc())
    )
    return list(rows.scalars().all())


async def _pending(session: AsyncSession, invite_id: str) -> Invite:
    invite = await session.get(Invite, invite_id)
    if invite is None or invite.status != INVITE_PENDING:
        raise InviteNotFound(invite_id)
    return invite


async def accept_invite(session: AsyncSession, invite_id: str, user_id: str) -> Invite:
    """Bind ``user_id`` to the invited member and consume the invite in one commit."""

    invite = await _pending(session, invite_id)
    member = await GroupMemberRepository(session).require(invite.group_member_id)
    member.user_id = user_id
    member.is_guest = False
    member.updated_at = func.now()
    invite.status = INVITE_ACCEPTED
    invite.updated_at = func.now()
    await session.commit()
    await session.refresh(invite)
    LOGGER.info("Invite %s accepted; member %s linked", invite.id, member.id)
    return invite


async def reject_invite(session: AsyncSession, invite_id: str) -> Invite:
    invite = await _pending(session, invite_id)
    invite.status = INVITE_REJECTED
    invite.updated_at = func.now()
    await session.commit()
    await session.refresh(invite)
    return invite
