import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from matchday.services.stats import (
    FIELD_BLOCK,
    GOALKEEPER_BLOCK,
    MatchEntry,
    SeasonStatsAccumulator,
    StatDelta,
    apply_deltas,
    combine_seasons,
    empty_totals,
    entries_from_payload,
    final_scores,
    match_deltas,
    mvp_delta,
    normalize_position,
    replace_all,
    stats_record_id,
    team_outcomes,
)
from matchday.models import SeasonStats

from helpers import GROUP


def _by_member(deltas):
    return {d.member_id: d for d in deltas}


def test_normalize_position_accepts_current_and_legacy_codes():
    assert normalize_position("gk") == "GK"
    assert normalize_position(" MD ") == "MD"
    assert normalize_position("POR") == "GK"
    assert normalize_position("DEF") == "DF"
    assert normalize_position("MED") == "MD"
    assert normalize_position("DEL") == "FW"
    assert normalize_position("striker") is None
    assert normalize_position(None) is None


def test_final_scores_credit_own_goals_to_the_opponent():
    team1 = [MatchEntry("a", "FW", goals=2), MatchEntry("b", "DF", own_goals=1)]
    team2 = [MatchEntry("c", "FW", goals=1, own_goals=1)]

    assert final_scores(team1, team2) == (3, 2)


def test_team_outcomes_draw_and_win():
    t1, t2 = team_outcomes(1, 1)
    assert (t1.won, t1.draw, t1.lost) == (False, True, False)
    assert (t2.won, t2.draw, t2.lost) == (False, True, False)

    t1, t2 = team_outcomes(0, 3)
    assert t1.lost and t2.won
    assert t1.goals_against == 3
    assert t2.goals_against == 0


def test_goalkeepers_concede_the_opposing_final_score():
    team1 = [MatchEntry("gk1", "GK"), MatchEntry("f1", "FW", goals=2)]
    team2 = [MatchEntry("gk2", "GK"), MatchEntry("f2", "FW", goals=1)]

    deltas = _by_member(match_deltas(team1, team2, 2, 1))

    gk1 = deltas["gk1"]
    assert gk1.block == GOALKEEPER_BLOCK
    assert gk1.values["goals_conceded"] == 1
    assert gk1.values["clean_sheets"] == 0
    assert gk1.values["won"] == 1

    gk2 = deltas["gk2"]
    assert gk2.values["goals_conceded"] == 2
    assert gk2.values["clean_sheets"] == 0
    assert gk2.values["lost"] == 1

    assert deltas["f1"].block == FIELD_BLOCK
    assert "goals_conceded" not in deltas["f1"].values


def test_clean_sheet_counts_own_goals_against():
    # Opponents scored nothing themselves but team1 put one in its own net.
    team1 = [MatchEntry("gk1", "GK"), MatchEntry("d1", "DF", own_goals=1)]
    team2 = [MatchEntry("gk2", "GK")]

    deltas = _by_member(match_deltas(team1, team2, *final_scores(team1, team2)))

    assert deltas["gk1"].values["clean_sheets"] == 0
    assert deltas["gk1"].values["goals_conceded"] == 1
    assert deltas["gk2"].values["clean_sheets"] == 1


def test_exactly_one_outcome_per_entry():
    team1 = [MatchEntry("a", "DF"), MatchEntry("b", "GK")]
    team2 = [MatchEntry("c", "MD")]
    for delta in match_deltas(team1, team2, 0, 0):
        assert delta.values["won"] + delta.values["draw"] + delta.values["lost"] == 1
        assert delta.values["matches"] == 1


def test_mvp_delta_uses_the_block_played_in_that_match():
    team1 = [MatchEntry("gk1", "GK")]
    team2 = [MatchEntry("f2", "FW")]

    assert mvp_delta("gk1", team1, team2).columns() == {"gk_mvps": 1}
    assert mvp_delta("f2", team1, team2).columns() == {"field_mvps": 1}
    assert mvp_delta("stranger", team1, team2) is None


def test_stat_delta_columns_skip_zero_values():
    delta = StatDelta("m", FIELD_BLOCK, {"matches": 1, "goals": 0, "won": 1})
    assert delta.columns() == {"field_matches": 1, "field_won": 1}


def test_stats_record_id_format():
    assert stats_record_id("g1", 2024, "m1") == "g1_2024_m1"


def test_entries_from_payload_ignores_junk():
    entries = entries_from_payload(
        [{"groupMemberId": "a", "position": "POR", "goals": 1}, "bad", None]
    )
    assert entries == [MatchEntry("a", "GK", goals=1)]
    assert entries_from_payload(None) == []


def test_accumulator_sums_repeated_members():
    team1 = [MatchEntry("a", "FW", goals=2)]
    team2 = [MatchEntry("b", "GK")]
    acc = SeasonStatsAccumulator()
    acc.add("g1", 2024, match_deltas(team1, team2, 2, 0))
    acc.add("g1", 2024, match_deltas(team1, team2, 2, 0))

    rows = {row["id"]: row for row in acc.rows()}
    assert len(acc) == 2
    assert rows["g1_2024_a"]["field_matches"] == 2
    assert rows["g1_2024_a"]["field_goals"] == 4
    assert rows["g1_2024_a"]["gk_matches"] == 0
    assert rows["g1_2024_b"]["gk_goals_conceded"] == 4
    assert rows["g1_2024_b"]["gk_lost"] == 2


def test_combine_seasons_sums_both_blocks():
    first = SeasonStats(
        id="g1_2023_a", group_id="g1", season=2023, group_member_id="a",
        field_matches=2, field_goals=3, gk_matches=1, gk_clean_sheets=1,
    )
    second = SeasonStats(
        id="g1_2024_a", group_id="g1", season=2024, group_member_id="a",
        field_matches=1, field_goals=1,
    )

    combined = combine_seasons([first, second])

    assert combined["a"]["field"]["matches"] == 3
    assert combined["a"]["field"]["goals"] == 4
    assert combined["a"]["gk"]["clean_sheets"] == 1
    assert combined["a"]["gk"]["goals_conceded"] == 0


@pytest.mark.anyio
async def test_replace_all_keeps_previous_rows_when_a_chunk_fails(session):
    await apply_deltas(session, GROUP, 2024, [StatDelta("a", FIELD_BLOCK, {"matches": 3})])
    await session.commit()

    good = empty_totals(GROUP, 2024, "b")
    broken = dict(empty_totals(GROUP, 2024, "c"), group_id=None)
    with pytest.raises(SQLAlchemyError):
        await replace_all(session, [good, broken], chunk_size=1)
    await session.rollback()

    rows = (
        await session.execute(
            select(SeasonStats).execution_options(populate_existing=True)
        )
    ).scalars().all()
    assert [(r.group_member_id, r.field_matches) for r in rows] == [("a", 3)]


@pytest.mark.anyio
async def test_replace_all_writes_every_chunk(session):
    rows = [empty_totals(GROUP, 2024, member_id) for member_id in ("a", "b", "c")]

    assert await replace_all(session, rows, chunk_size=2) == 3

    stored = (await session.execute(select(SeasonStats.group_member_id))).scalars().all()
    assert sorted(stored) == ["a", "b", "c"]
