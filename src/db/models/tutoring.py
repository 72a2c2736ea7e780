"""
Tutoring tables.

Implements:
- StudentModelRecord: one JSON learner document per user
- ProblemPoolRecord: shared cache of generated problems
- ProblemAttemptRecord: one row per answered problem

The learner document is stored whole; its shape is owned by
src.core.student_model and migrated lazily on load, so the table only
carries the columns needed to find and order rows.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONDocument


class StudentModelRecord(Base):
    __tablename__ = "student_models"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    document: Mapped[dict] = mapped_column(JSONDocument, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<StudentModelRecord(user_id={self.user_id}, version={self.version})>"


class ProblemPoolRecord(Base):
    __tablename__ = "problem_pool"
    __table_args__ = (Index("ix_problem_pool_skill_level_created", "skill_id", "level", "created_at"),)

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    skill_id: Mapped[str] = mapped_column(Text, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-4
    problem: Mapped[dict] = mapped_column(JSONDocument, nullable=False)
    used_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ProblemPoolRecord(skill={self.skill_id}, level={self.level})>"


class ProblemAttemptRecord(Base):
    __tablename__ = "problem_attempts"
    __table_args__ = (Index("ix_problem_attempts_user_skill_created", "user_id", "skill_id", "created_at"),)

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    skill_id: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    problem_source: Mapped[str] = mapped_column(Text, default="reference_book")  # reference_book | ai_generated | other
    problem_identifier: Mapped[str | None] = mapped_column(Text)
    conversation_id: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ProblemAttemptRecord(user={self.user_id}, skill={self.skill_id}, correct={self.is_correct})>"
