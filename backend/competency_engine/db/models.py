"""ORM models backing the SQL record store."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class CompetencyProfileModel(TimestampMixin, Base):
    __tablename__ = "competency_profiles"
    __table_args__ = (Index("ix_competency_profiles_subject_id", "subject_id", unique=True),)

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    subject_id: Mapped[str] = mapped_column(String(128), nullable=False)
    baseline_scores: Mapped[dict[str, float]] = mapped_column(JSONType, default=dict, nullable=False)
    current_scores: Mapped[dict[str, float]] = mapped_column(JSONType, default=dict, nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tool_unlocks: Mapped[dict[str, bool]] = mapped_column(JSONType, default=dict, nullable=False)
    last_action_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_assessment_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    actions: Mapped[list["ActionRecordModel"]] = relationship(
        back_populates="profile", cascade="all, delete-orphan"
    )
    achievements: Mapped[list["AchievementUnlockModel"]] = relationship(
        back_populates="profile", cascade="all, delete-orphan", order_by="AchievementUnlockModel.id"
    )


class ActionRecordModel(Base):
    __tablename__ = "competency_action_records"
    __table_args__ = (
        UniqueConstraint("action_id", name="uq_competency_action_id"),
        Index("ix_competency_action_records_profile_recorded", "profile_id", "recorded_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("competency_profiles.id", ondelete="CASCADE"), nullable=False
    )
    action_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    impact_level: Mapped[str] = mapped_column(String(16), nullable=False)
    points_awarded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    evidence_link: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    profile: Mapped[CompetencyProfileModel] = relationship(back_populates="actions")


class AchievementUnlockModel(Base):
    __tablename__ = "competency_achievement_unlocks"
    __table_args__ = (
        UniqueConstraint("profile_id", "achievement_id", name="uq_competency_achievement"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("competency_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    achievement_id: Mapped[str] = mapped_column(String(128), nullable=False)
    bonus_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    profile: Mapped[CompetencyProfileModel] = relationship(back_populates="achievements")


__all__ = [
    "AchievementUnlockModel",
    "ActionRecordModel",
    "CompetencyProfileModel",
    "JSONType",
]
