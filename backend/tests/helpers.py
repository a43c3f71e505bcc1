from datetime import datetime, timezone

import jwt

from matchday.models import GroupMember

TEST_JWT_SECRET = "x" * 32
GROUP = "g1"


def make_token(user_id: str, *, email: str | None = None, is_admin: bool = False) -> str:
    payload: dict[str, object] = {"sub": user_id, "is_admin": is_admin}
    if email:
        payload["email"] = email
    return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")


def auth_headers(user_id: str, **kwargs) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id, **kwargs)}"}


def entry(member_id, position="DF", goals=0, assists=0, own_goals=0):
    return {
        "groupMemberId": member_id,
        "position": position,
        "goals": goals,
        "assists": assists,
        "ownGoals": own_goals,
    }


async def add_members(session, *member_ids, group_id=GROUP, user_ids=None):
    user_ids = user_ids or {}
    for member_id in member_ids:
        session.add(
            GroupMember(
                id=member_id,
                group_id=group_id,
                user_id=user_ids.get(member_id),
                display_name=member_id.upper(),
                is_guest=member_id not in user_ids,
                role="member",
                legacy_player_ids=[],
            )
        )
    await session.commit()


class FixedClock:
    """Controllable clock for voting-window tests."""

    def __init__(self, now=None):
        self.now = now or datetime(2024, 5, 4, 18, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now = self.now + delta
