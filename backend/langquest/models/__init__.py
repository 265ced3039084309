"""
Database models for LangQuest.

This module contains all SQLAlchemy models for the application:
- Course models for the learning content graph
- Progress models for hearts, points and challenge completion
- Subscription models for paid plans and processed payment events
"""

from langquest.core.database import Base

# Import all models to ensure they're registered with SQLAlchemy
from .course import Course, Unit, Lesson, Challenge, ChallengeOption, ChallengeType
from .progress import UserProgress, ChallengeProgress
from .subscription import UserSubscription, ProcessedWebhookEvent

# Export all models
__all__ = [
    "Base",
    "Course",
    "Unit",
    "Lesson",
    "Challenge",
    "ChallengeOption",
    "ChallengeType",
    "UserProgress",
    "ChallengeProgress",
    "UserSubscription",
    "ProcessedWebhookEvent"
]
