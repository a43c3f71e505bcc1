from datetime import date, timedelta

import pytest
from sqlalchemy import select

from matchday.exceptions import MigrationInProgress
from matchday.models import (
    MVP_STATUS_CALCULATED,
    GroupMember,
    LegacyMatch,
    LegacyPlayer,
    Match,
    SeasonStats,
)
from matchday.services.match_recorder import MatchRecorder
from matchday.services.migration import (
    IdentityDeduplicationEngine,
    acquire_migration_flag,
    legacy_position,
    migration_guard,
    migration_running,
)
from matchday.services.mvp_voting import MvpVotingStateMachine

from helpers import GROUP, FixedClock, add_members, entry

pytestmark = pytest.mark.anyio


def legacy(player_id, position=None, goals=0, assists=0, own_goals=0):
    raw = {"id": player_id, "goals": goals, "assists": assists, "ownGoals": own_goals}
    if position is not None:
        raw["position"] = position
    return raw


async def _members(session, group_id=GROUP):
    rows = await session.execute(select(GroupMember).where(GroupMember.group_id == group_id))
    return list(rows.scalars().all())


async def _stats(session):
    stmt = select(SeasonStats).execution_options(populate_existing=True)
    rows = (await session.execute(stmt)).scalars().all()
    return {row.id: row for row in rows}


def _stat_values(rows):
    columns = [c.name for c in SeasonStats.__table__.columns if c.name not in {"created_at", "updated_at"}]
    return {key: tuple(getattr(row, c) for c in columns) for key, row in rows.items()}


async def _seed_legacy(session, players, matches):
    session.add_all(LegacyPlayer(**p) for p in players)
    session.add_all(LegacyMatch(**m) for m in matches)
    await session.commit()


def test_legacy_position_defaults():
    assert legacy_position({"position": "POR"}, 3) == "GK"
    assert legacy_position({"position": "delantero"}, 0) == "DF"
    assert legacy_position({}, 0) == "GK"
    assert legacy_position({"position": "  "}, 2) == "DF"


async def test_member_phase_resolves_by_priority(session):
    # Existing canonical members: one linked account, one already migrated.
    session.add_all(
        [
            GroupMember(
                id="linked", group_id=GROUP, user_id="u9", display_name="Luis",
                is_guest=False, legacy_player_ids=[],
            ),
            GroupMember(
                id="known", group_id=GROUP, display_name="Carla",
                legacy_player_id="p5", legacy_player_ids=[],
            ),
        ]
    )
    await _seed_legacy(
        session,
        players=[
            {"id": "p1", "group_id": GROUP, "name": "Ana"},
            {"id": "p3", "group_id": GROUP, "name": " ana "},
            {"id": "p4", "group_id": GROUP, "name": "Luisito", "user_id": "u9"},
            {"id": "p5", "group_id": GROUP, "name": "Carla"},
            {"id": "p6", "group_id": GROUP, "original_name": "Pepe"},
        ],
        matches=[
            {"id": "lm1", "group_id": GROUP, "players1": [legacy("p1"), legacy("p4")],
             "players2": [legacy("p3"), legacy("p5")]},
            {"id": "lm2", "group_id": GROUP, "players1": [legacy("p6")],
             "players2": [legacy("p7")]},
        ],
    )

    report = await IdentityDeduplicationEngine(session).migrate_group_members()

    members = {m.display_name: m for m in await _members(session)}
    # Ana and " ana " collapse into one member; Pepe and the unknown p7 are new.
    assert report == {"created": 3, "skipped": 3}
    assert set(members) == {"Luis", "Carla", "Ana", "Pepe", "Jugador"}
    assert members["Ana"].legacy_player_id == "p1"
    assert members["Ana"].legacy_player_ids == ["p3"]
    assert members["Ana"].is_guest
    assert members["Luis"].legacy_player_ids == ["p4"]
    assert members["Carla"].legacy_player_ids == []
    assert members["Jugador"].legacy_player_id == "p7"


async def test_same_player_in_two_groups_gets_two_members(session):
    await _seed_legacy(
        session,
        players=[{"id": "p1", "name": "Ana"}],
        matches=[
            {"id": "lm1", "group_id": "g1", "players1": [legacy("p1")], "players2": []},
            {"id": "lm2", "group_id": "g2", "players1": [legacy("p1")], "players2": []},
        ],
    )

    await IdentityDeduplicationEngine(session).migrate_group_members()

    assert len(await _members(session, "g1")) == 1
    assert len(await _members(session, "g2")) == 1


async def test_small_batches_commit_everything(session):
    players = [{"id": f"p{i}", "name": f"Player {i}"} for i in range(7)]
    await _seed_legacy(
        session,
        players=players,
        matches=[
            {"id": "lm1", "group_id": GROUP,
             "players1": [legacy(f"p{i}") for i in range(4)],
             "players2": [legacy(f"p{i}") for i in range(4, 7)]},
        ],
    )

    report = await IdentityDeduplicationEngine(session, batch_size=2).migrate_group_members()

    assert report["created"] == 7
    assert len(await _members(session)) == 7


async def _scenario(session):
    await _seed_legacy(
        session,
        players=[
            {"id": "p1", "group_id": GROUP, "name": "Ana"},
            {"id": "p2", "group_id": GROUP, "name": "Beto"},
            {"id": "p3", "group_id": GROUP, "name": "Caro"},
            {"id": "p4", "group_id": GROUP, "name": "Dani"},
        ],
        matches=[
            {
                "id": "lm1", "group_id": GROUP, "date": "2023-06-10T19:00:00Z",
                "goals_team1": 3, "goals_team2": 1,
                "players1": [legacy("p1"), legacy("p2", "DEL", goals=3)],
                "players2": [legacy("p3"), legacy("p4", "MED", goals=1)],
                "mvp_player_id": "p2",
            },
            {
                "id": "lm2", "group_id": GROUP, "date": "2024-02-01",
                "goals_team1": 0, "goals_team2": 0,
                "players1": [legacy("p1", "POR")], "players2": [legacy("p3", "POR")],
                "mvp_player_id": "ghost",
            },
            {
                "id": "lm3", "group_id": GROUP, "date": "2024-02-08",
                "goals_team1": 1, "goals_team2": 0,
                "players1": [legacy("p1", goals=1)], "players2": [{"goals": 0}],
            },
        ],
    )


async def test_full_run_migrates_matches_and_rebuilds_stats(session):
    await _scenario(session)

    report = await IdentityDeduplicationEngine(session).run_deduplication()

    assert report["members"] == {"created": 4, "skipped": 0}
    matches = report["matches"]
    assert matches["created"] == 2
    assert matches["skipped"] == 0
    assert len(matches["errors"]) == 1
    assert "lm3" in matches["errors"][0]
    assert matches["warnings"] == [
        "Match lm2: MVP legacy player 'ghost' has no group member; MVP cleared"
    ]

    members = {m.legacy_player_id: m.id for m in await _members(session)}
    rows = (await session.execute(select(Match).order_by(Match.date))).scalars().all()
    first, second = rows
    assert first.legacy_match_id == "lm1"
    assert first.season == 2023
    assert first.mvp_status == MVP_STATUS_CALCULATED
    assert first.mvp_group_member_id == members["p2"]
    assert [e["position"] for e in first.players1] == ["GK", "FW"]
    assert [e["position"] for e in first.players2] == ["GK", "MD"]
    assert second.mvp_group_member_id is None

    stats = await _stats(session)
    ana_2023 = stats[f"{GROUP}_2023_{members['p1']}"]
    assert (ana_2023.gk_matches, ana_2023.gk_won, ana_2023.gk_goals_conceded) == (1, 1, 1)
    beto_2023 = stats[f"{GROUP}_2023_{members['p2']}"]
    assert (beto_2023.field_goals, beto_2023.field_mvps) == (3, 1)
    caro_2024 = stats[f"{GROUP}_2024_{members['p3']}"]
    assert (caro_2024.gk_clean_sheets, caro_2024.gk_draw) == (1, 1)
    assert report["seasonStats"] == {"created": len(stats)}


async def test_rerun_is_idempotent(session):
    await _scenario(session)
    engine = IdentityDeduplicationEngine(session)
    await engine.run_deduplication()
    before_members = len(await _members(session))
    before_stats = _stat_values(await _stats(session))

    report = await engine.run_deduplication()

    assert report["members"]["created"] == 0
    assert report["matches"]["created"] == 0
    assert report["matches"]["skipped"] == 2
    assert len(await _members(session)) == before_members
    assert _stat_values(await _stats(session)) == before_stats


async def test_recompute_matches_incremental_totals(session):
    await add_members(session, "a", "b", "c", "d")
    clock = FixedClock()
    recorder = MatchRecorder(session, clock=clock, voting_window=timedelta(hours=24))
    first = await recorder.record_match(
        GROUP, date(2024, 3, 1), [entry("a", "GK"), entry("b", "FW", goals=2)],
        [entry("c", "GK"), entry("d", "DF", own_goals=1)],
    )
    second = await recorder.record_match(
        GROUP, date(2024, 3, 8), [entry("a", "FW", goals=1, assists=1)],
        [entry("b", "GK"), entry("c", "MD", goals=1)],
    )
    await recorder.record_match(
        GROUP, date(2025, 1, 5), [entry("d", "GK")], [entry("a", "DF")],
    )

    # a wins the first match in goal, c the second in midfield.
    voting = MvpVotingStateMachine(session, clock=clock)
    await voting.cast_vote(first, "b", "a")
    await voting.cast_vote(first, "c", "a")
    await voting.cast_vote(first, "d", "b")
    await voting.cast_vote(second, "a", "c")
    await voting.cast_vote(second, "b", "c")
    clock.advance(timedelta(hours=25))
    sweep = await voting.scheduled_sweep()
    assert (sweep["processed"], sweep["winners"], sweep["failures"]) == (3, 2, [])

    rows = await _stats(session)
    assert (rows[f"{GROUP}_2024_a"].gk_mvps, rows[f"{GROUP}_2024_a"].field_mvps) == (1, 0)
    assert (rows[f"{GROUP}_2024_c"].gk_mvps, rows[f"{GROUP}_2024_c"].field_mvps) == (0, 1)
    incremental = _stat_values(rows)

    await IdentityDeduplicationEngine(session, batch_size=2).recompute_season_stats()

    assert _stat_values(await _stats(session)) == incremental


async def test_unknown_players_stay_distinct(session):
    await _seed_legacy(
        session,
        players=[],
        matches=[
            {"id": "lm1", "group_id": GROUP, "goals_team1": 1, "goals_team2": 0,
             "players1": [legacy("x1"), legacy("x2", goals=1)],
             "players2": [legacy("x3"), legacy("x4")]},
        ],
    )
    engine = IdentityDeduplicationEngine(session)

    report = await engine.run_deduplication()

    assert report["members"] == {"created": 4, "skipped": 0}
    assert report["matches"]["errors"] == []
    match = (await session.execute(select(Match))).scalar_one()
    lineup = [e["groupMemberId"] for e in match.players1 + match.players2]
    assert len(set(lineup)) == 4

    # A later run must not fold new unknown players into the fallback-named guests.
    await _seed_legacy(
        session,
        players=[],
        matches=[
            {"id": "lm2", "group_id": GROUP, "players1": [legacy("x5")],
             "players2": [legacy("x6")]},
        ],
    )
    report = await engine.run_deduplication()

    assert report["members"] == {"created": 2, "skipped": 4}
    assert len({m.id for m in await _members(session)}) == 6


async def test_match_with_two_entries_for_one_member_is_skipped(session):
    await _seed_legacy(
        session,
        players=[
            {"id": "p1", "group_id": GROUP, "name": "Ana"},
            {"id": "p2", "group_id": GROUP, "name": "Beto"},
            {"id": "p3", "group_id": GROUP, "name": "ana"},
        ],
        matches=[
            {"id": "lm1", "group_id": GROUP, "players1": [legacy("p1")],
             "players2": [legacy("p3")]},
            {"id": "lm2", "group_id": GROUP, "players1": [legacy("p2"), legacy("p2")],
             "players2": [legacy("p1")]},
            {"id": "lm3", "group_id": GROUP, "players1": [legacy("p2")],
             "players2": [legacy("p3")]},
        ],
    )

    report = await IdentityDeduplicationEngine(session).run_deduplication()

    assert report["members"]["created"] == 2
    assert report["matches"]["created"] == 1
    assert report["matches"]["errors"] == [
        "Match lm1: legacy player 'p3' resolves to the same member as 'p1'; match skipped",
        "Match lm2: legacy player 'p2' is listed more than once; match skipped",
    ]
    migrated = (await session.execute(select(Match.legacy_match_id))).scalars().all()
    assert migrated == ["lm3"]


async def test_migration_guard_blocks_stats_writers_until_released(session):
    await add_members(session, "a", "b")
    clock = FixedClock()
    recorder = MatchRecorder(session, clock=clock, voting_window=timedelta(hours=24))
    match_id = await recorder.record_match(GROUP, date(2024, 5, 4), [entry("a")], [entry("b")])
    voting = MvpVotingStateMachine(session, clock=clock)

    async with migration_guard(session):
        assert await migration_running(session)
        with pytest.raises(MigrationInProgress):
            await recorder.record_match(GROUP, date(2024, 5, 5), [entry("a")], [entry("b")])
        with pytest.raises(MigrationInProgress):
            await voting.close_voting(match_id)
        with pytest.raises(MigrationInProgress):
            async with migration_guard(session):
                pass

    assert not await migration_running(session)
    assert len((await session.execute(select(Match.id))).scalars().all()) == 1
    assert (await voting.close_voting(match_id)).closed


async def test_migration_guard_releases_flag_when_the_run_fails(session):
    with pytest.raises(RuntimeError):
        async with migration_guard(session):
            raise RuntimeError("boom")

    assert not await migration_running(session)


async def test_flag_held_elsewhere_refuses_a_second_run(session):
    await acquire_migration_flag(session)

    with pytest.raises(MigrationInProgress):
        async with migration_guard(session):
            pass

    # The refused run must not clear the other holder's flag.
    assert await migration_running(session)
