from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Boolean,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from .db import Base

MVP_STATUS_OPEN = "open"
MVP_STATUS_CALCULATED = "calculated"

INVITE_PENDING = "pending"
INVITE_ACCEPTED = "accepted"
INVITE_REJECTED = "rejected"

_JSONType = JSON().with_variant(JSONB, "postgresql")


class GroupMember(Base):
    """Canonical identity of one physical player within a group."""

    __tablename__ = "group_member"
    id = Column(String, primary_key=True)
    group_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=True, index=True)
    display_name = Column(String, nullable=False)
    photo_url = Column(String, nullable=True)
    is_guest = Column(Boolean, nullable=False, default=True)
    role = Column(String, nullable=False, default="member")
    legacy_player_id = Column(String, nullable=True)
    legacy_player_ids = Column(_JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Match(Base):
    __tablename__ = "match"
    id = Column(String, primary_key=True)
    group_id = Column(String, nullable=False)
    season = Column(Integer, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)
    goals_team1 = Column(Integer, nullable=False, default=0)
    goals_team2 = Column(Integer, nullable=False, default=0)
    players1 = Column(_JSONType, nullable=False)
    players2 = Column(_JSONType, nullable=False)
    mvp_group_member_id = Column(String, nullable=True)
    mvp_status = Column(String, nullable=False, default=MVP_STATUS_OPEN)
    mvp_opens_at = Column(DateTime(timezone=True), nullable=True)
    mvp_closes_at = Column(DateTime(timezone=True), nullable=True)
    mvp_calculated_at = Column(DateTime(timezone=True), nullable=True)
    legacy_match_id = Column(String, nullable=True, unique=True)
    registered_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_match_group_id_date", "group_id", "date"),
        Index("ix_match_mvp_status_closes_at", "mvp_status", "mvp_closes_at"),
    )


class MvpBallot(Base):
    """A voter's current MVP choice for a match; one row per voter."""

    __tablename__ = "mvp_ballot"
    id = Column(String, primary_key=True)
    match_id = Column(String, ForeignKey("match.id", ondelete="CASCADE"), nullable=False)
    voter_member_id = Column(String, nullable=False)
    voted_member_id = Column(String, nullable=False)
    cast_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "match_id",
            "voter_member_id",
            name="uq_mvp_ballot_match_id_voter_member_id",
        ),
    )


class SeasonStats(Base):
    """Per (group, season, member) aggregates with field and goalkeeper blocks.

    The primary key is ``{group_id}_{season}_{group_member_id}``.
    """

    __tablename__ = "season_stats"
    id = Column(String, primary_key=True)
    group_id = Column(String, nullable=False)
    season = Column(Integer, nullable=False)
    group_member_id = Column(String, nullable=False)

    field_matches = Column(Integer, nullable=False, default=0)
    field_goals = Column(Integer, nullable=False, default=0)
    field_assists = Column(Integer, nullable=False, default=0)
    field_own_goals = Column(Integer, nullable=False, default=0)
    field_won = Column(Integer, nullable=False, default=0)
    field_draw = Column(Integer, nullable=False, default=0)
    field_lost = Column(Integer, nullable=False, default=0)
    field_mvps = Column(Integer, nullable=False, default=0)

    gk_matches = Column(Integer, nullable=False, default=0)
    gk_goals_conceded = Column(Integer, nullable=False, default=0)
    gk_clean_sheets = Column(Integer, nullable=False, default=0)
    gk_goals = Column(Integer, nullable=False, default=0)
    gk_assists = Column(Integer, nullable=False, default=0)
    gk_own_goals = Column(Integer, nullable=False, default=0)
    gk_won = Column(Integer, nullable=False, default=0)
    gk_draw = Column(Integer, nullable=False, default=0)
    gk_lost = Column(Integer, nullable=False, default=0)
    gk_mvps = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_season_stats_group_id_season", "group_id", "season"),
        Index("ix_season_stats_group_member_id", "group_member_id"),
    )


class Invite(Base):
    __tablename__ = "invite"
    id = Column(String, primary_key=True)
    group_id = Column(String, nullable=False)
    group_member_id = Column(String, ForeignKey("group_member.id"), nullable=False)
    email = Column(String, nullable=False, index=True)
    invited_by_id = Column(String, nullable=False)
    invited_by_name = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default=INVITE_PENDING)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PushSubscription(Base):
    __tablename__ = "push_subscription"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    email = Column(String, nullable=True, index=True)
    endpoint = Column(Text, nullable=False, unique=True)
    p256dh = Column(String, nullable=False)
    auth = Column(String, nullable=False)
    content_encoding = Column(String, nullable=False, default="aes128gcm")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class LegacyPlayer(Base):
    """Pre-migration player record; read-only input to the migration."""

    __tablename__ = "legacy_player"
    id = Column(String, primary_key=True)
    group_id = Column(String, nullable=True)
    name = Column(String, nullable=True)
    original_name = Column(String, nullable=True)
    photo_url = Column(String, nullable=True)
    user_id = Column(String, nullable=True)


class LegacyMatch(Base):
    """Pre-migration match record; entries reference ``LegacyPlayer`` ids."""

    __tablename__ = "legacy_match"
    id = Column(String, primary_key=True)
    group_id = Column(String, nullable=True)
    date = Column(String, nullable=True)
    goals_team1 = Column(Integer, nullable=True)
    goals_team2 = Column(Integer, nullable=True)
    players1 = Column(_JSONType, nullable=True)
    players2 = Column(_JSONType, nullable=True)
    mvp_player_id = Column(String, nullable=True)


class MaintenanceFlag(Base):
    """A named operator flag; while a row exists its holder owns the resource."""

    __tablename__ = "maintenance_flag"
    name = Column(String, primary_key=True)
    acquired_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
