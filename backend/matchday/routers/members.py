from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..exceptions import http_problem
from ..schemas import GroupMemberOut, GroupMemberUpdate, MemberLinkRequest
from ..services.identity import GroupMemberRepository
from .admin import require_admin
from .auth import AuthUser, get_current_user
from .groups import member_out

router = APIRouter(prefix="/members", tags=["members"])


@router.get("/{member_id}", response_model=GroupMemberOut)
async def read_member(member_id: str, session: AsyncSession = Depends(get_session)):
    return member_out(await GroupMemberRepository(session).require(member_id))


@router.patch("/{member_id}", response_model=GroupMemberOut)
async def update_member(
    member_id: str,
    body: GroupMemberUpdate,
    session: AsyncSession = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    if not body.model_fields_set:
        raise http_problem(
            status_code=400,
            detail="no fields provided",
            code="member_update_empty",
        )
    repo = GroupMemberRepository(session)
    member = await repo.require(member_id)
    if body.role is not None:
        if not user.is_admin:
            raise http_problem(
                status_code=403,
                detail="only administrators can change roles",
                code="member_role_forbidden",
            )
        member = await repo.set_role(member_id, body.role)
    if body.display_name is not None:
        member = await repo.rename(member_id, body.display_name)
    return member_out(member)


@router.post("/{member_id}/link", response_model=GroupMemberOut)
async def link_member(
    member_id: str,
    body: MemberLinkRequest,
    session: AsyncSession = Depends(get_session),
    admin: AuthUser = Depends(require_admin),
):
    member = await GroupMemberRepository(session).link_user(member_id, body.user_id)
    return member_out(member)


@router.post("/{member_id}/unlink", response_model=GroupMemberOut)
async def unlink_member(
    member_id: str,
    session: AsyncSession = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    repo = GroupMemberRepository(session)
    member = await repo.require(member_id)
    if not user.is_admin and member.user_id != user.id:
        raise http_problem(
            status_code=403,
            detail="forbidden",
            code="member_unlink_forbidden",
        )
    return member_out(await repo.unlink_user(member_id))
