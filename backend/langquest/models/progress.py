"""
Progress tracking models for LangQuest.

Defines UserProgress (hearts, points, active course) and ChallengeProgress
(per user, per challenge completion).
"""

from typing import Optional
from sqlalchemy import (
    Boolean, Integer, String, ForeignKey, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from langquest.core.database import Base


class UserProgress(Base):
    """
    One row per user, keyed by the identity provider's user id.
    """
    __tablename__ = "user_progress"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Profile mirrored from the identity provider
    user_name: Mapped[str] = mapped_column(String(255), default="User", nullable=False)
    user_image_src: Mapped[str] = mapped_column(String(500), default="/mascot.png", nullable=False)

    active_course_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=True
    )

    # Game state
    hearts: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    active_course = relationship("Course", foreign_keys=[active_course_id])

    __table_args__ = (
        CheckConstraint("hearts >= 0 AND hearts <= 5", name="check_hearts_range"),
        CheckConstraint("points >= 0", name="check_points_positive"),
        Index("idx_user_progress_points", "points"),
    )

    def __repr__(self) -> str:
        return f"<UserProgress(user_id={self.user_id}, hearts={self.hearts}, points={self.points})>"


class ChallengeProgress(Base):
    """
    Completion record for one (user, challenge) pair. Created the first
    time the user submits an answer to the challenge.
    """
    __tablename__ = "challenge_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    challenge_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("challenges.id", ondelete="CASCADE"),
        nullable=False
    )
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    challenge = relationship("Challenge")

    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", name="uq_challenge_progress_user_challenge"),
        Index("idx_challenge_progress_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChallengeProgress(user_id={self.user_id}, challenge_id={self.challenge_id}, "
            f"completed={self.completed})>"
        )
