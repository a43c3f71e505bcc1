"""Canonical group-member store."""

from __future__ import annotations

import logging
import uuid
from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import MemberNotFound
from ..models import GroupMember

LOGGER = logging.getLogger(__name__)

MEMBER_ROLES = {"member", "admin", "owner"}
DEFAULT_DISPLAY_NAME = "Jugador"


def normalize_display_name(name: str | None) -> str:
    return (name or "").strip().lower()


def pid_key(group_id: str, legacy_player_id: str) -> str:
    return f"pid:{group_id}|{legacy_player_id}"


def uid_key(group_id: str, user_id: str) -> str:
    return f"uid:{group_id}|{user_id}"


def dname_key(group_id: str, normalized_name: str) -> str:
    return f"dname:{group_id}|{normalized_name}"


class MemberLookup:
    """Multi-key index over canonical members.

    Keys are namespaced by the kind of identifier they hold: ``pid`` for
    legacy player ids, ``uid`` for linked user ids and ``dname`` for the
    normalized display name. Resolution always tries them in that order.
    """

    def __init__(self) -> None:
        self._keys: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._keys)

    def register_member(self, member: GroupMember) -> None:
        group_id = member.group_id
        if member.legacy_player_id:
            self._keys[pid_key(group_id, member.legacy_player_id)] = member.id
        for legacy_id in member.legacy_player_ids or []:
            self._keys[pid_key(group_id, str(legacy_id))] = member.id
        if member.user_id and str(member.user_id).strip():
            self._keys[uid_key(group_id, member.user_id)] = member.id
        normalized = normalize_display_name(member.display_name)
        if normalized:
            self._keys[dname_key(group_id, normalized)] = member.id

    def register_legacy_id(self, group_id: str, legacy_player_id: str, member_id: str) -> None:
        self._keys[pid_key(group_id, legacy_player_id)] = member_id

    def register_name(self, group_id: str, display_name: str, member_id: str) -> None:
        normalized = normalize_display_name(display_name)
        if normalized:
            self._keys[dname_key(group_id, normalized)] = member_id

    def by_legacy_id(self, group_id: str, legacy_player_id: str) -> str | None:
        return self._keys.get(pid_key(group_id, legacy_player_id))

    def by_user_id(self, group_id: str, user_id: str | None) -> str | None:
        if not user_id:
            return None
        return self._keys.get(uid_key(group_id, user_id))

    def by_display_name(self, group_id: str, display_name: str | None) -> str | None:
        normalized = normalize_display_name(display_name)
        if not normalized:
            return None
        return self._keys.get(dname_key(group_id, normalized))


class GroupMemberRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, member_id: str) -> GroupMember | None:
        return await self.session.get(GroupMember, member_id)

    async def require(self, member_id: str) -> GroupMember:
        member = await self.get(member_id)
        if member is None:
            raise MemberNotFound(member_id)
        return member

    async def get_many(self, member_ids: Iterable[str]) -> dict[str, GroupMember]:
        ids = {mid for mid in member_ids if mid}
        if not ids:
            return {}
        rows = await self.session.execute(select(GroupMember).where(GroupMember.id.in_(ids)))
        return {m.id: m for m in rows.scalars().all()}

    async def list_by_group(self, group_id: str) -> list[GroupMember]:
        rows = await self.session.execute(
            select(GroupMember)
            .where(GroupMember.group_id == group_id)
            .order_by(GroupMember.display_name)
        )
        return list(rows.scalars().all())

    async def list_all(self) -> list[GroupMember]:
        rows = await self.session.execute(select(GroupMember).order_by(GroupMember.created_at))
        return list(rows.scalars().all())

    async def search(self, group_id: str, term: str) -> list[GroupMember]:
        """Case-insensitive substring search; terms shorter than 2 chars match nothing."""

        normalized = normalize_display_name(term)
        if len(normalized) < 2:
            return []
        rows = await self.session.execute(
            select(GroupMember)
            .where(
                GroupMember.group_id == group_id,
                func.lower(GroupMember.display_name).contains(normalized, autoescape=True),
            )
            .order_by(GroupMember.display_name)
        )
        return list(rows.scalars().all())

    async def find_by_legacy_id(self, group_id: str, legacy_player_id: str) -> GroupMember | None:
        members = await self.list_by_group(group_id)
        for member in members:
            if member.legacy_player_id == legacy_player_id:
                return member
            if legacy_player_id in (member.legacy_player_ids or []):
                return member
        return None

    async def find_by_user_id(self, group_id: str, user_id: str) -> GroupMember | None:
        rows = await self.session.execute(
            select(GroupMember)
            .where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
            .limit(1)
        )
        return rows.scalar_one_or_none()

    async def find_by_display_name(self, group_id: str, display_name: str) -> GroupMember | None:
        normalized = normalize_display_name(display_name)
        if not normalized:
            return None
        rows = await self.session.execute(
            select(GroupMember)
            .where(
                GroupMember.group_id == group_id,
                func.lower(func.trim(GroupMember.display_name)) == normalized,
            )
            .order_by(GroupMember.created_at)
            .limit(1)
        )
        return rows.scalar_one_or_none()

    async def build_lookup(self) -> MemberLookup:
        lookup = MemberLookup()
        for member in await self.list_all():
            lookup.register_member(member)
        return lookup

    def new_guest(
        self,
        group_id: str,
        display_name: str,
        *,
        photo_url: str | None = None,
        legacy_player_id: str | None = None,
    ) -> GroupMember:
        """Stage a guest member on the session without committing."""

        member = GroupMember(
            id=uuid.uuid4().hex,
            group_id=group_id,
            user_id=None,
            display_name=display_name.strip() or DEFAULT_DISPLAY_NAME,
            photo_url=photo_url,
            is_guest=True,
            role="member",
            legacy_player_id=legacy_player_id,
            legacy_player_ids=[],
        )
        self.session.add(member)
        return member

    async def create_guest(self, group_id: str, display_name: str) -> GroupMember:
        member = self.new_guest(group_id, display_name)
        await self.session.commit()
        await self.session.refresh(member)
        LOGGER.info("Created guest member %s in group %s", member.id, group_id)
        return member

    async def append_legacy_id(self, member_id: str, legacy_player_id: str) -> None:
        member = await self.require(member_id)
        current = list(member.legacy_player_ids or [])
        if legacy_player_id in current or legacy_player_id == member.legacy_player_id:
            return
        current.append(legacy_player_id)
        member.legacy_player_ids = current
        member.updated_at = func.now()

    async def link_user(self, member_id: str, user_id: str) -> GroupMember:
        member = await self.require(member_id)
        member.user_id = user_id
        member.is_guest = False
        member.updated_at = func.now()
        await self.session.commit()
        await self.session.refresh(member)
        return member

    async def unlink_user(self, member_id: str) -> GroupMember:
        """Detach the user account; matches and stats keep pointing at the member."""

        member = await self.require(member_id)
        if member.user_id:
            member.user_id = None
            member.is_guest = True
            member.updated_at = func.now()
            await self.session.commit()
            await self.session.refresh(member)
        return member

    async def unlink_all_for_user(self, user_id: str) -> int:
        result = await self.session.execute(
            update(GroupMember)
            .where(GroupMember.user_id == user_id)
            .values(user_id=None, is_guest=True, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount or 0

    async def rename(self, member_id: str, display_name: str) -> GroupMember:
        member = await self.require(member_id)
        member.display_name = display_name.strip()
        member.updated_at = func.now()
        await self.session.commit()
        await self.session.refresh(member)
        return member

    async def set_role(self, member_id: str, role: str) -> GroupMember:
        if role not in MEMBER_ROLES:
            raise ValueError(f"unknown role '{role}'")
        member = await self.require(member_id)
        member.role = role
        member.updated_at = func.now()
        await self.session.commit()
        await self.session.refresh(member)
        return member

    async def update_photo_for_user(self, user_id: str, photo_url: str | None) -> int:
        result = await self.session.execute(
            update(GroupMember)
            .where(GroupMember.user_id == user_id)
            .values(photo_url=photo_url, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount or 0

    async def user_ids_for_group(self, group_id: str) -> list[str]:
        rows = await self.session.execute(
            select(GroupMember.user_id).where(
                GroupMember.group_id == group_id, GroupMember.user_id.is_not(None)
            )
        )
        seen: dict[str, None] = {}
        for user_id in rows.scalars().all():
            if user_id and user_id.strip():
                seen.setdefault(user_id.strip(), None)
        return list(seen)

