from typing import Any, Dict, List, Literal, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator, ConfigDict

from .time_utils import require_utc


class MatchEntryIn(BaseModel):
    """One player line as submitted; stat ranges are checked by the recorder."""

    groupMemberId: str
    position: str
    goals: int = 0
    assists: int = 0
    ownGoals: int = 0


class MatchCreate(BaseModel):
    groupId: str = Field(..., min_length=1)
    date: datetime
    team1: List[MatchEntryIn]
    team2: List[MatchEntryIn]

    @field_validator("date")
    def _normalize_date(cls, v: datetime) -> datetime:
        return require_utc(v, field_name="date")


class MatchIdOut(BaseModel):
    """Schema returned after recording a match."""

    id: str


class MatchEntryOut(BaseModel):
    groupMemberId: str
    position: str
    goals: int
    assists: int
    ownGoals: int


class MvpVotingOut(BaseModel):
    status: Literal["open", "calculated"]
    opensAt: Optional[datetime] = None
    closesAt: Optional[datetime] = None
    calculatedAt: Optional[datetime] = None
    votes: Dict[str, str] = Field(default_factory=dict)


class MatchOut(BaseModel):
    """Detailed match information returned by the API."""

    id: str
    groupId: str
    season: int
    date: datetime
    goalsTeam1: int
    goalsTeam2: int
    players1: List[MatchEntryOut] = Field(default_factory=list)
    players2: List[MatchEntryOut] = Field(default_factory=list)
    mvpGroupMemberId: Optional[str] = None
    mvpVoting: MvpVotingOut
    legacyMatchId: Optional[str] = None


class MatchSummaryOut(BaseModel):
    """Lightweight representation of a match used in listings."""

    id: str
    date: datetime
    season: int
    goalsTeam1: int
    goalsTeam2: int
    mvpGroupMemberId: Optional[str] = None
    mvpStatus: str


class VoteCreate(BaseModel):
    voted_member_id: str = Field(..., min_length=1, alias="votedMemberId")

    model_config = ConfigDict(populate_by_name=True)


class VoteOut(BaseModel):
    matchId: str
    voterMemberId: str
    votedMemberId: str


class FieldStatsOut(BaseModel):
    matches: int = 0
    goals: int = 0
    assists: int = 0
    ownGoals: int = 0
    won: int = 0
    draw: int = 0
    lost: int = 0
    mvps: int = 0


class GoalkeeperStatsOut(BaseModel):
    matches: int = 0
    goalsConceded: int = 0
    cleanSheets: int = 0
    goals: int = 0
    assists: int = 0
    ownGoals: int = 0
    won: int = 0
    draw: int = 0
    lost: int = 0
    mvps: int = 0


class SeasonStatsOut(BaseModel):
    id: Optional[str] = None
    groupId: str
    season: Optional[int] = None
    groupMemberId: str
    playerStats: FieldStatsOut = Field(default_factory=FieldStatsOut)
    goalkeeperStats: GoalkeeperStatsOut = Field(default_factory=GoalkeeperStatsOut)


class SeasonStatsListOut(BaseModel):
    groupId: str
    season: int | Literal["all"]
    items: List[SeasonStatsOut] = Field(default_factory=list)


class GroupMemberOut(BaseModel):
    id: str
    groupId: str
    userId: Optional[str] = None
    displayName: str
    photoUrl: Optional[str] = None
    isGuest: bool
    role: str
    legacyPlayerId: Optional[str] = None
    legacyPlayerIds: List[str] = Field(default_factory=list)


class GroupMemberCreate(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=100, alias="displayName")

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    @field_validator("display_name", mode="before")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if not isinstance(value, str):
            raise TypeError("displayName must be a string")
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("displayName must not be empty")
        return trimmed


class GroupMemberUpdate(BaseModel):
    display_name: Optional[str] = Field(
        default=None, min_length=1, max_length=100, alias="displayName"
    )
    role: Optional[Literal["member", "admin", "owner"]] = None

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class MemberLinkRequest(BaseModel):
    user_id: str = Field(..., min_length=1, alias="userId")

    model_config = ConfigDict(populate_by_name=True)


class InviteCreate(BaseModel):
    group_member_id: str = Field(..., min_length=1, alias="groupMemberId")
    email: str = Field(..., min_length=3, max_length=320)
    invited_by_name: str = Field(default="", max_length=100, alias="invitedByName")

    model_config = ConfigDict(populate_by_name=True)


class InviteOut(BaseModel):
    id: str
    groupId: str
    groupMemberId: str
    email: str
    invitedById: str
    invitedByName: str
    status: Literal["pending", "accepted", "rejected"]
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class PushSubscriptionKeys(BaseModel):
    p256dh: str
    auth: str


class PushSubscriptionCreate(BaseModel):
    endpoint: str
    keys: PushSubscriptionKeys
    content_encoding: str | None = Field(default=None, alias="contentEncoding")

    model_config = ConfigDict(populate_by_name=True)


class PushSubscriptionOut(BaseModel):
    id: str
    endpoint: str
    createdAt: datetime


class MemberMigrationOut(BaseModel):
    created: int
    skipped: int


class MatchMigrationOut(BaseModel):
    created: int
    skipped: int
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class SeasonStatsRecomputeOut(BaseModel):
    created: int


class DeduplicationOut(BaseModel):
    members: MemberMigrationOut
    matches: MatchMigrationOut
    seasonStats: SeasonStatsRecomputeOut


class SweepFailureOut(BaseModel):
    matchId: str
    error: str


class SweepOut(BaseModel):
    processed: int
    winners: int
    failures: List[SweepFailureOut] = Field(default_factory=list)


class CloseVotingOut(BaseModel):
    matchId: str
    closed: bool
    winnerMemberId: Optional[str] = None


def model_payload(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json")
