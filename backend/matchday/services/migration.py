"""Re-runnable migration of legacy players and matches onto canonical members.

Three phases, each safe to repeat:

* ``migrate_group_members`` resolves every (group, legacy player) pair seen in
  legacy matches to a canonical member, creating guests for unknown pairs.
* ``migrate_matches`` rewrites legacy matches against canonical member ids.
  A match with an unresolved entry, or with two entries for one member, is
  skipped whole.
* ``recompute_season_stats`` rebuilds every season stats row from the
  canonical matches with the same deltas used by incremental recording.

Runs are wrapped in :func:`migration_guard`. While it is held, match
recording and MVP closes answer :class:`MigrationInProgress` instead of
writing increments the recompute would overwrite.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Mapping

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import config
from ..cache import season_stats_cache
from ..db import dialect_insert
from ..exceptions import MigrationInProgress, PartialMigrationError, StoreError
from ..models import (
    MVP_STATUS_CALCULATED,
    GroupMember,
    LegacyMatch,
    LegacyPlayer,
    MaintenanceFlag,
    Match,
)
from ..time_utils import parse_legacy_date, season_for, utcnow
from .identity import DEFAULT_DISPLAY_NAME, GroupMemberRepository, MemberLookup
from .stats import (
    GOALKEEPER,
    MatchEntry,
    SeasonStatsAccumulator,
    entries_from_payload,
    match_deltas,
    mvp_delta,
    normalize_position,
    replace_all,
)

LOGGER = logging.getLogger(__name__)

MIGRATION_LOCK = asyncio.Lock()
MIGRATION_FLAG = "legacy-migration"


async def migration_running(session: AsyncSession) -> bool:
    """True while this process holds the lock or any process holds the flag."""

    if MIGRATION_LOCK.locked():
        return True
    held = await session.scalar(
        select(MaintenanceFlag.name).where(MaintenanceFlag.name == MIGRATION_FLAG)
    )
    return held is not None


async def ensure_no_migration(session: AsyncSession) -> None:
    if await migration_running(session):
        raise MigrationInProgress()


async def acquire_migration_flag(session: AsyncSession) -> None:
    stmt = (
        dialect_insert(session, MaintenanceFlag)
        .values(name=MIGRATION_FLAG, acquired_at=utcnow())
        .on_conflict_do_nothing(index_elements=["name"])
    )
    try:
        result = await session.execute(stmt)
        acquired = result.rowcount != 0
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise StoreError("migration flag could not be set") from exc
    if not acquired:
        raise MigrationInProgress()


async def release_migration_flag(session: AsyncSession) -> None:
    await session.execute(
        delete(MaintenanceFlag).where(MaintenanceFlag.name == MIGRATION_FLAG)
    )
    await session.commit()


@asynccontextmanager
async def migration_guard(session: AsyncSession) -> AsyncIterator[None]:
    """Hold the process lock and the persisted flag for one migration run.

    Match recording and MVP closes refuse to write while either is held, in
    this process or any other sharing the database.
    """

    if MIGRATION_LOCK.locked():
        raise MigrationInProgress()
    async with MIGRATION_LOCK:
        await acquire_migration_flag(session)
        try:
            yield
        finally:
            if session.in_transaction():
                await session.rollback()
            await release_migration_flag(session)
            LOGGER.info("Migration flag released")


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def legacy_entry_id(raw: Mapping[str, Any]) -> str:
    return str(raw.get("id") or raw.get("playerId") or "")


def legacy_entries(raw: Any) -> list[Mapping[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, Mapping)]


def legacy_position(raw: Mapping[str, Any], index: int) -> str:
    """Position of a legacy entry; unset positions make the first entry the keeper."""

    value = raw.get("position")
    if isinstance(value, str) and value.strip():
        return normalize_position(value) or "DF"
    return GOALKEEPER if index == 0 else "DF"


class IdentityDeduplicationEngine:
    def __init__(self, session: AsyncSession, *, batch_size: int | None = None) -> None:
        self.session = session
        self.batch_size = batch_size or config.MIGRATION_BATCH_SIZE
        self.members = GroupMemberRepository(session)

    async def _legacy_matches(self) -> list[LegacyMatch]:
        rows = await self.session.execute(select(LegacyMatch).order_by(LegacyMatch.id))
        return list(rows.scalars().all())

    async def _legacy_players(self, player_ids: Iterable[str]) -> dict[str, LegacyPlayer]:
        ids = sorted({pid for pid in player_ids if pid})
        found: dict[str, LegacyPlayer] = {}
        for start in range(0, len(ids), self.batch_size):
            rows = await self.session.execute(
                select(LegacyPlayer).where(LegacyPlayer.id.in_(ids[start : start + self.batch_size]))
            )
            found.update({p.id: p for p in rows.scalars().all()})
        return found

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            LOGGER.exception("Migration batch commit failed")
            raise StoreError("migration batch could not be committed") from exc

    async def migrate_group_members(self) -> dict[str, int]:
        pairs: dict[tuple[str, str], None] = {}
        for legacy in await self._legacy_matches():
            if not legacy.group_id:
                continue
            for raw in legacy_entries(legacy.players1) + legacy_entries(legacy.players2):
                player_id = legacy_entry_id(raw)
                if player_id:
                    pairs.setdefault((legacy.group_id, player_id), None)

        players = await self._legacy_players(pid for _, pid in pairs)
        lookup = await self.members.build_lookup()
        staged: dict[str, GroupMember] = {}
        created = skipped = pending = 0

        for group_id, player_id in pairs:
            player = players.get(player_id)
            # Only a name read off a legacy record identifies a person; the
            # fallback name is shared by every unknown player.
            known_name = ((player.name or player.original_name) if player else None) or ""
            known_name = known_name.strip()
            user_id = player.user_id if player else None

            if lookup.by_legacy_id(group_id, player_id):
                skipped += 1
                continue

            matched = lookup.by_user_id(group_id, user_id)
            if not matched and known_name:
                matched = lookup.by_display_name(group_id, known_name)
            if matched:
                await self._append_legacy_id(staged, matched, player_id)
                lookup.register_legacy_id(group_id, player_id, matched)
                skipped += 1
            else:
                member = self.members.new_guest(
                    group_id,
                    known_name or DEFAULT_DISPLAY_NAME,
                    photo_url=player.photo_url if player else None,
                    legacy_player_id=player_id,
                )
                staged[member.id] = member
                lookup.register_legacy_id(group_id, player_id, member.id)
                if known_name:
                    lookup.register_name(group_id, known_name, member.id)
                created += 1

            pending += 1
            if pending >= self.batch_size:
                await self._commit()
                pending = 0

        await self._commit()
        LOGGER.info("Group member migration created=%d skipped=%d", created, skipped)
        return {"created": created, "skipped": skipped}

    async def _append_legacy_id(
        self, staged: dict[str, GroupMember], member_id: str, legacy_player_id: str
    ) -> None:
        member = staged.get(member_id)
        if member is None:
            await self.members.append_legacy_id(member_id, legacy_player_id)
            return
        known = list(member.legacy_player_ids or [])
        if legacy_player_id != member.legacy_player_id and legacy_player_id not in known:
            member.legacy_player_ids = known + [legacy_player_id]

    def _map_team(
        self, legacy: LegacyMatch, raw_entries: Any, lookup: MemberLookup
    ) -> list[MatchEntry]:
        group_id = legacy.group_id or ""
        mapped = []
        for index, raw in enumerate(legacy_entries(raw_entries)):
            player_id = legacy_entry_id(raw)
            member_id = lookup.by_legacy_id(group_id, player_id)
            if not member_id:
                raise PartialMigrationError(legacy.id, player_id, group_id)
            mapped.append(
                MatchEntry(
                    member_id=member_id,
                    position=legacy_position(raw, index),
                    goals=_as_int(raw.get("goals")),
                    assists=_as_int(raw.get("assists")),
                    own_goals=_as_int(raw.get("ownGoals")),
                )
            )
        return mapped

    def _check_distinct(
        self, legacy: LegacyMatch, team1: list[MatchEntry], team2: list[MatchEntry]
    ) -> None:
        seen: dict[str, str] = {}
        raw_entries = legacy_entries(legacy.players1) + legacy_entries(legacy.players2)
        for raw, entry in zip(raw_entries, (*team1, *team2)):
            player_id = legacy_entry_id(raw)
            other = seen.get(entry.member_id)
            if other is not None:
                if other == player_id:
                    reason = "is listed more than once"
                else:
                    reason = f"resolves to the same member as '{other}'"
                raise PartialMigrationError(
                    legacy.id, player_id, legacy.group_id or "", reason=reason
                )
            seen[entry.member_id] = player_id

    async def migrate_matches(self) -> dict[str, Any]:
        lookup = await self.members.build_lookup()
        rows = await self.session.execute(
            select(Match.legacy_match_id).where(Match.legacy_match_id.is_not(None))
        )
        migrated = set(rows.scalars().all())

        created = skipped = pending = 0
        errors: list[str] = []
        warnings: list[str] = []
        now = utcnow()

        for legacy in await self._legacy_matches():
            if legacy.id in migrated:
                skipped += 1
                continue

            try:
                team1 = self._map_team(legacy, legacy.players1, lookup)
                team2 = self._map_team(legacy, legacy.players2, lookup)
                self._check_distinct(legacy, team1, team2)
            except PartialMigrationError as exc:
                LOGGER.warning("%s", exc)
                errors.append(str(exc))
                continue

            group_id = legacy.group_id or ""
            mvp_member_id = None
            if legacy.mvp_player_id:
                mvp_member_id = lookup.by_legacy_id(group_id, legacy.mvp_player_id)
                if not mvp_member_id:
                    message = (
                        f"Match {legacy.id}: MVP legacy player '{legacy.mvp_player_id}' "
                        "has no group member; MVP cleared"
                    )
                    LOGGER.warning("%s", message)
                    warnings.append(message)

            played_at = parse_legacy_date(legacy.date)
            self.session.add(
                Match(
                    id=uuid.uuid4().hex,
                    group_id=group_id,
                    season=season_for(played_at),
                    date=played_at or now,
                    goals_team1=_as_int(legacy.goals_team1),
                    goals_team2=_as_int(legacy.goals_team2),
                    players1=[e.to_payload() for e in team1],
                    players2=[e.to_payload() for e in team2],
                    mvp_group_member_id=mvp_member_id,
                    mvp_status=MVP_STATUS_CALCULATED,
                    mvp_calculated_at=now,
                    legacy_match_id=legacy.id,
                )
            )
            migrated.add(legacy.id)
            created += 1
            pending += 1
            if pending >= self.batch_size:
                await self._commit()
                pending = 0

        await self._commit()
        LOGGER.info(
            "Match migration created=%d skipped=%d errors=%d warnings=%d",
            created,
            skipped,
            len(errors),
            len(warnings),
        )
        return {"created": created, "skipped": skipped, "errors": errors, "warnings": warnings}

    async def recompute_season_stats(self) -> dict[str, int]:
        rows = await self.session.execute(select(Match).order_by(Match.date, Match.id))
        accumulator = SeasonStatsAccumulator()
        groups: set[str] = set()
        for match in rows.scalars().all():
            team1 = entries_from_payload(match.players1)
            team2 = entries_from_payload(match.players2)
            deltas = match_deltas(team1, team2, match.goals_team1 or 0, match.goals_team2 or 0)
            if match.mvp_group_member_id:
                award = mvp_delta(match.mvp_group_member_id, team1, team2)
                if award is not None:
                    deltas.append(award)
            accumulator.add(match.group_id, match.season, deltas)
            groups.add(match.group_id)

        try:
            created = await replace_all(
                self.session, accumulator.rows(), chunk_size=self.batch_size
            )
        except SQLAlchemyError as exc:
            await self.session.rollback()
            LOGGER.exception("Season stats recompute failed")
            raise StoreError("season stats could not be rewritten") from exc

        await season_stats_cache.clear()
        LOGGER.info("Season stats recomputed rows=%d groups=%d", created, len(groups))
        return {"created": created}

    async def run_deduplication(self) -> dict[str, Any]:
        members = await self.migrate_group_members()
        matches = await self.migrate_matches()
        stats = await self.recompute_season_stats()
        return {"members": members, "matches": matches, "seasonStats": stats}
