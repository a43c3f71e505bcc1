from alembic import op
import sqlalchemy as sa

revision = "0002_maintenance_flag"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "maintenance_flag",
        sa.Column("name", sa.String(), primary_key=True),
        sa.Column(
            "acquired_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade():
    op.drop_table("maintenance_flag")
