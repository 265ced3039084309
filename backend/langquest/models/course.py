"""
Course models for LangQuest.

Defines Course, Unit, Lesson, Challenge and ChallengeOption models for
the learning content graph. The content graph is read-only from the
progress engine's point of view.
"""

from datetime import datetime
from typing import Optional, List
from enum import Enum
from sqlalchemy import (
    Boolean, Integer, String, DateTime, Text,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.sql import func

from langquest.core.database import Base


class ChallengeType(str, Enum):
    """Types of challenges in a lesson."""
    SELECT = "SELECT"
    ASSIST = "ASSIST"


class Course(Base):
    """
    Course model representing one language a user can learn.
    """
    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    image_src: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    # Relationships
    units: Mapped[List["Unit"]] = relationship(
        "Unit",
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="Unit.order"
    )

    def __repr__(self) -> str:
        return f"<Course(id={self.id}, title='{self.title}')>"


class Unit(Base):
    """
    A unit groups lessons within a course.
    """
    __tablename__ = "units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    course_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    course: Mapped["Course"] = relationship("Course", back_populates="units")
    lessons: Mapped[List["Lesson"]] = relationship(
        "Lesson",
        back_populates="unit",
        cascade="all, delete-orphan",
        order_by="Lesson.order"
    )

    __table_args__ = (
        UniqueConstraint("course_id", "order", name="uq_unit_course_order"),
    )

    def __repr__(self) -> str:
        return f"<Unit(id={self.id}, title='{self.title}', order={self.order})>"


class Lesson(Base):
    """
    A lesson is an ordered set of challenges within a unit.
    """
    __tablename__ = "lessons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("units.id", ondelete="CASCADE"),
        nullable=False
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    unit: Mapped["Unit"] = relationship("Unit", back_populates="lessons")
    challenges: Mapped[List["Challenge"]] = relationship(
        "Challenge",
        back_populates="lesson",
        cascade="all, delete-orphan",
        order_by="Challenge.order"
    )

    __table_args__ = (
        UniqueConstraint("unit_id", "order", name="uq_lesson_unit_order"),
    )

    def __repr__(self) -> str:
        return f"<Lesson(id={self.id}, title='{self.title}', order={self.order})>"


class Challenge(Base):
    """
    A single question inside a lesson.
    """
    __tablename__ = "challenges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    lesson_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("lessons.id", ondelete="CASCADE"),
        nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    lesson: Mapped["Lesson"] = relationship("Lesson", back_populates="challenges")
    options: Mapped[List["ChallengeOption"]] = relationship(
        "ChallengeOption",
        back_populates="challenge",
        cascade="all, delete-orphan",
        order_by="ChallengeOption.id"
    )

    __table_args__ = (
        UniqueConstraint("lesson_id", "order", name="uq_challenge_lesson_order"),
    )

    def __repr__(self) -> str:
        return f"<Challenge(id={self.id}, type='{self.type}', order={self.order})>"


class ChallengeOption(Base):
    """
    One answer option for a challenge. Every challenge has at least one
    correct option.
    """
    __tablename__ = "challenge_options"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    challenge_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("challenges.id", ondelete="CASCADE"),
        nullable=False
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    image_src: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    audio_src: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    challenge: Mapped["Challenge"] = relationship("Challenge", back_populates="options")

    __table_args__ = (
        Index("idx_challenge_options_challenge", "challenge_id"),
    )

    def __repr__(self) -> str:
        return f"<ChallengeOption(id={self.id}, correct={self.correct})>"
