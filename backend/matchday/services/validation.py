from typing import Any, Mapping, Sequence

from ..exceptions import ValidationError
from ..models import GroupMember
from .stats import MatchEntry, normalize_position

MAX_STAT_PER_ENTRY = 99


def _stat_value(raw: Any, *, label: str, index: int, team: int) -> int:
    # Reject booleans explicitly (bool is a subclass of int in Python)
    if isinstance(raw, bool):
        raise ValidationError(
            f"Team {team} player #{index} {label} must be an integer (not a boolean)."
        )
    if raw is None:
        return 0
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Team {team} player #{index} {label} must be an integer.")
    if value < 0:
        raise ValidationError(f"Team {team} player #{index} {label} must be >= 0.")
    if value > MAX_STAT_PER_ENTRY:
        raise ValidationError(
            f"Team {team} player #{index} {label} must be <= {MAX_STAT_PER_ENTRY}."
        )
    return value


def validate_team_entries(entries: Sequence[Mapping[str, Any]], *, team: int) -> list[MatchEntry]:
    """Validate one team sheet and return it as ``MatchEntry`` values.

    Rules:
    - At least one player per team
    - Every entry names a member id
    - Position is one of GK, DF, MD, FW (legacy POR/DEF/MED/DEL accepted)
    - goals, assists and ownGoals are integers between 0 and ``MAX_STAT_PER_ENTRY``
    """

    if not isinstance(entries, Sequence) or isinstance(entries, (str, bytes)) or not entries:
        raise ValidationError(f"Team {team} must include at least one player.")

    validated: list[MatchEntry] = []
    for i, raw in enumerate(entries, start=1):
        if not isinstance(raw, Mapping):
            raise ValidationError(f"Team {team} player #{i} must be an object.")
        member_id = str(raw.get("groupMemberId") or "").strip()
        if not member_id:
            raise ValidationError(f"Team {team} player #{i} is missing a group member id.")
        position = normalize_position(raw.get("position"))
        if position is None:
            raise ValidationError(
                f"Team {team} player #{i} position must be one of GK, DF, MD, FW."
            )
        validated.append(
            MatchEntry(
                member_id=member_id,
                position=position,
                goals=_stat_value(raw.get("goals"), label="goals", index=i, team=team),
                assists=_stat_value(raw.get("assists"), label="assists", index=i, team=team),
                own_goals=_stat_value(raw.get("ownGoals"), label="ownGoals", index=i, team=team),
            )
        )
    return validated


def validate_lineups(
    group_id: str,
    team1: Sequence[MatchEntry],
    team2: Sequence[MatchEntry],
    members: Mapping[str, GroupMember],
) -> None:
    """Check that every entry resolves to a distinct member of ``group_id``."""

    seen: set[str] = set()
    duplicates: list[str] = []
    missing: list[str] = []
    foreign: list[str] = []
    for entry in (*team1, *team2):
        if entry.member_id in seen:
            duplicates.append(entry.member_id)
        seen.add(entry.member_id)
        member = members.get(entry.member_id)
        if member is None:
            missing.append(entry.member_id)
        elif member.group_id != group_id:
            foreign.append(entry.member_id)

    if missing:
        raise ValidationError(f"unknown group members: {', '.join(missing)}")
    if foreign:
        raise ValidationError(
            f"members not in group '{group_id}': {', '.join(foreign)}"
        )
    if duplicates:
        raise ValidationError(f"duplicate players: {', '.join(duplicates)}")
