import pytest

from matchday.exceptions import MemberNotFound
from matchday.models import GroupMember
from matchday.services.identity import GroupMemberRepository, MemberLookup

from helpers import GROUP, add_members

pytestmark = pytest.mark.anyio


def _member(**kwargs):
    values = {"group_id": GROUP, "legacy_player_ids": [], "display_name": "Ana"}
    values.update(kwargs)
    return GroupMember(**values)


def test_lookup_keys_are_scoped_by_group():
    lookup = MemberLookup()
    lookup.register_member(
        _member(id="m1", user_id="u1", legacy_player_id="p1", legacy_player_ids=["p9"])
    )

    assert lookup.by_legacy_id(GROUP, "p1") == "m1"
    assert lookup.by_legacy_id(GROUP, "p9") == "m1"
    assert lookup.by_user_id(GROUP, "u1") == "m1"
    assert lookup.by_display_name(GROUP, "  ANA ") == "m1"
    assert lookup.by_legacy_id("g2", "p1") is None
    assert lookup.by_display_name("g2", "ana") is None


def test_lookup_ignores_blank_identifiers():
    lookup = MemberLookup()
    lookup.register_member(_member(id="m1", user_id="  ", display_name="   "))

    assert len(lookup) == 0
    assert lookup.by_user_id(GROUP, None) is None
    assert lookup.by_display_name(GROUP, "") is None


async def test_search_needs_two_characters(session):
    await add_members(session, "ana", "mariana", "beto")
    repo = GroupMemberRepository(session)

    assert await repo.search(GROUP, "a") == []
    names = [m.display_name for m in await repo.search(GROUP, "ANA")]
    assert names == ["ANA", "MARIANA"]


async def test_search_treats_wildcards_literally(session):
    await add_members(session, "ana")
    assert await GroupMemberRepository(session).search(GROUP, "%%") == []


async def test_find_by_display_name_is_case_insensitive(session):
    await add_members(session, "ana")
    member = await GroupMemberRepository(session).find_by_display_name(GROUP, " ana ")
    assert member.id == "ana"


async def test_link_and_unlink_keep_member_identity(session):
    await add_members(session, "ana")
    repo = GroupMemberRepository(session)

    linked = await repo.link_user("ana", "user-1")
    assert (linked.user_id, linked.is_guest) == ("user-1", False)
    assert (await repo.find_by_user_id(GROUP, "user-1")).id == "ana"

    unlinked = await repo.unlink_user("ana")
    assert unlinked.id == "ana"
    assert (unlinked.user_id, unlinked.is_guest) == (None, True)


async def test_unlink_all_for_user(session):
    await add_members(session, "a", "b", user_ids={"a": "u1", "b": "u1"})
    await add_members(session, "c", group_id="g2", user_ids={"c": "u1"})

    assert await GroupMemberRepository(session).unlink_all_for_user("u1") == 3


async def test_append_legacy_id_skips_known_ids(session):
    session.add(_member(id="m1", legacy_player_id="p1"))
    await session.commit()
    repo = GroupMemberRepository(session)

    await repo.append_legacy_id("m1", "p1")
    await repo.append_legacy_id("m1", "p2")
    await repo.append_legacy_id("m1", "p2")
    await session.commit()

    assert (await repo.require("m1")).legacy_player_ids == ["p2"]


async def test_set_role_rejects_unknown_roles(session):
    await add_members(session, "ana")
    repo = GroupMemberRepository(session)

    with pytest.raises(ValueError):
        await repo.set_role("ana", "captain")
    assert (await repo.set_role("ana", "admin")).role == "admin"


async def test_require_unknown_member(session):
    with pytest.raises(MemberNotFound):
        await GroupMemberRepository(session).require("nobody")


async def test_user_ids_for_group_deduplicates(session):
    await add_members(session, "a", "b", "c", user_ids={"a": "u1", "b": "u1"})
    assert await GroupMemberRepository(session).user_ids_for_group(GROUP) == ["u1"]
