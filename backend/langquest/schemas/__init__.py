"""
Pydantic schemas for LangQuest API requests and responses.
"""

from .course import (
    CourseResponse,
    ChallengeOptionResponse,
    ChallengeResponse,
    LessonSummary,
    LessonDetail,
    UnitResponse
)
from .progress import (
    UserProgressResponse,
    CourseSelection,
    CourseProgressResponse,
    LessonPercentage,
    HeartUpdate,
    HeartRefill,
    ChallengeSubmission,
    LeaderboardEntry,
    Quest
)
from .subscription import SubscriptionResponse, WebhookAck

__all__ = [
    "CourseResponse",
    "ChallengeOptionResponse",
    "ChallengeResponse",
    "LessonSummary",
    "LessonDetail",
    "UnitResponse",
    "UserProgressResponse",
    "CourseSelection",
    "CourseProgressResponse",
    "LessonPercentage",
    "HeartUpdate",
    "HeartRefill",
    "ChallengeSubmission",
    "LeaderboardEntry",
    "Quest",
    "SubscriptionResponse",
    "WebhookAck"
]
