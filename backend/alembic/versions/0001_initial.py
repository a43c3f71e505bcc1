from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamp(name):
    return sa.Column(
        name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def _counter(name):
    return sa.Column(name, sa.Integer(), nullable=False, server_default="0")


def upgrade():
    op.create_table(
        "group_member",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("group_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("photo_url", sa.String(), nullable=True),
        sa.Column("is_guest", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("role", sa.String(), nullable=False, server_default="member"),
        sa.Column("legacy_player_id", sa.String(), nullable=True),
        sa.Column("legacy_player_ids", JSON_TYPE, nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_group_member_group_id", "group_member", ["group_id"])
    op.create_index("ix_group_member_user_id", "group_member", ["user_id"])

    op.create_table(
        "match",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("group_id", sa.String(), nullable=False),
        sa.Column("season", sa.Integer(), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        _counter("goals_team1"),
        _counter("goals_team2"),
        sa.Column("players1", JSON_TYPE, nullable=False),
        sa.Column("players2", JSON_TYPE, nullable=False),
        sa.Column("mvp_group_member_id", sa.String(), nullable=True),
        sa.Column("mvp_status", sa.String(), nullable=False, server_default="open"),
        sa.Column("mvp_opens_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mvp_closes_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mvp_calculated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("legacy_match_id", sa.String(), nullable=True, unique=True),
        _timestamp("registered_at"),
    )
    op.create_index("ix_match_group_id_date", "match", ["group_id", "date"])
    op.create_index(
        "ix_match_mvp_status_closes_at", "match", ["mvp_status", "mvp_closes_at"]
    )

    op.create_table(
        "mvp_ballot",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "match_id",
            sa.String(),
            sa.ForeignKey("match.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("voter_member_id", sa.String(), nullable=False),
        sa.Column("voted_member_id", sa.String(), nullable=False),
        _timestamp("cast_at"),
        sa.UniqueConstraint(
            "match_id",
            "voter_member_id",
            name="uq_mvp_ballot_match_id_voter_member_id",
        ),
    )

    op.create_table(
        "season_stats",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("group_id", sa.String(), nullable=False),
        sa.Column("season", sa.Integer(), nullable=False),
        sa.Column("group_member_id", sa.String(), nullable=False),
        _counter("field_matches"),
        _counter("field_goals"),
        _counter("field_assists"),
        _counter("field_own_goals"),
        _counter("field_won"),
        _counter("field_draw"),
        _counter("field_lost"),
        _counter("field_mvps"),
        _counter("gk_matches"),
        _counter("gk_goals_conceded"),
        _counter("gk_clean_sheets"),
        _counter("gk_goals"),
        _counter("gk_assists"),
        _counter("gk_own_goals"),
        _counter("gk_won"),
        _counter("gk_draw"),
        _counter("gk_lost"),
        _counter("gk_mvps"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index(
        "ix_season_stats_group_id_season", "season_stats", ["group_id", "season"]
    )
    op.create_index(
        "ix_season_stats_group_member_id", "season_stats", ["group_member_id"]
    )

    op.create_table(
        "invite",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("group_id", sa.String(), nullable=False),
        sa.Column(
            "group_member_id",
            sa.String(),
            sa.ForeignKey("group_member.id"),
            nullable=False,
        ),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("invited_by_id", sa.String(), nullable=False),
        sa.Column("invited_by_name", sa.String(), nullable=False, server_default=""),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_invite_email", "invite", ["email"])

    op.create_table(
        "push_subscription",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("endpoint", sa.Text(), nullable=False, unique=True),
        sa.Column("p256dh", sa.String(), nullable=False),
        sa.Column("auth", sa.String(), nullable=False),
        sa.Column(
            "content_encoding", sa.String(), nullable=False, server_default="aes128gcm"
        ),
        _timestamp("created_at"),
    )
    op.create_index("ix_push_subscription_user_id", "push_subscription", ["user_id"])
    op.create_index("ix_push_subscription_email", "push_subscription", ["email"])

    op.create_table(
        "legacy_player",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("group_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("original_name", sa.String(), nullable=True),
        sa.Column("photo_url", sa.String(), nullable=True),
        sa.Column("user_id", sa.String(), nullable=True),
    )
    op.create_table(
        "legacy_match",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("group_id", sa.String(), nullable=True),
        sa.Column("date", sa.String(), nullable=True),
        sa.Column("goals_team1", sa.Integer(), nullable=True),
        sa.Column("goals_team2", sa.Integer(), nullable=True),
        sa.Column("players1", JSON_TYPE, nullable=True),
        sa.Column("players2", JSON_TYPE, nullable=True),
        sa.Column("mvp_player_id", sa.String(), nullable=True),
    )


def downgrade():
    op.drop_table("legacy_match")
    op.drop_table("legacy_player")
    op.drop_index("ix_push_subscription_email", table_name="push_subscription")
    op.drop_index("ix_push_subscription_user_id", table_name="push_subscription")
    op.drop_table("push_subscription")
    op.drop_index("ix_invite_email", table_name="invite")
    op.drop_table("invite")
    op.drop_index("ix_season_stats_group_member_id", table_name="season_stats")
    op.drop_index("ix_season_stats_group_id_season", table_name="season_stats")
    op.drop_table("season_stats")
    op.drop_table("mvp_ballot")
    op.drop_index("ix_match_mvp_status_closes_at", table_name="match")
    op.drop_index("ix_match_group_id_date", table_name="match")
    op.drop_table("match")
    op.drop_index("ix_group_member_user_id", table_name="group_member")
    op.drop_index("ix_group_member_group_id", table_name="group_member")
    op.drop_table("group_member")
