"""Competency profiles, action records and achievement unlocks."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_01_competency_records"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "competency_profiles",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("subject_id", sa.String(length=128), nullable=False),
        sa.Column("baseline_scores", sa.JSON(), nullable=False),
        sa.Column("current_scores", sa.JSON(), nullable=False),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tool_unlocks", sa.JSON(), nullable=False),
        sa.Column("last_action_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_assessment_date", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_competency_profiles_subject_id", "competency_profiles", ["subject_id"], unique=True)

    op.create_table(
        "competency_action_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "profile_id",
            sa.String(length=36),
            sa.ForeignKey("competency_profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action_id", sa.String(length=64), nullable=False),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("impact_level", sa.String(length=16), nullable=False),
        sa.Column("points_awarded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("evidence_link", sa.String(length=512), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("action_id", name="uq_competency_action_id"),
    )
    op.create_index(
        "ix_competency_action_records_profile_recorded",
        "competency_action_records",
        ["profile_id", "recorded_at"],
    )

    op.create_table(
        "competency_achievement_unlocks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "profile_id",
            sa.String(length=36),
            sa.ForeignKey("competency_profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("achievement_id", sa.String(length=128), nullable=False),
        sa.Column("bonus_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("profile_id", "achievement_id", name="uq_competency_achievement"),
    )
    op.create_index("ix_competency_achievement_unlocks_profile_id", "competency_achievement_unlocks", ["profile_id"])


def downgrade() -> None:
    op.drop_index("ix_competency_achievement_unlocks_profile_id", table_name="competency_achievement_unlocks")
    op.drop_table("competency_achievement_unlocks")
    op.drop_index("ix_competency_action_records_profile_recorded", table_name="competency_action_records")
    op.drop_table("competency_action_records")
    op.drop_index("ix_competency_profiles_subject_id", table_name="competency_profiles")
    op.drop_table("competency_profiles")
