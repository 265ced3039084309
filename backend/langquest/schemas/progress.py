"""
Progress schemas: hearts, points, the resume pointer and the results of
progress mutations.
"""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict

from .course import CourseResponse, LessonSummary


class UserProgressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    user_name: str
    user_image_src: str
    active_course_id: Optional[int] = None
    active_course: Optional[CourseResponse] = None
    hearts: int
    points: int


class CourseSelection(BaseModel):
    user_progress: UserProgressResponse
    invalidated_views: List[str]
    redirect_to: str


class CourseProgressResponse(BaseModel):
    active_lesson: Optional[LessonSummary] = None
    active_lesson_id: Optional[int] = None


class LessonPercentage(BaseModel):
    lesson_id: Optional[int] = None
    percentage: int


class HeartUpdate(BaseModel):
    """Result of a heart charge; ``error`` is ``practice`` or ``hearts`` for guarded outcomes."""
    model_config = ConfigDict(from_attributes=True)

    error: Optional[str] = None
    hearts: Optional[int] = None
    invalidated_views: List[str] = []


class HeartRefill(BaseModel):
    hearts: int
    points: int
    invalidated_views: List[str]


class ChallengeSubmission(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    error: Optional[str] = None
    practice: bool = False
    hearts: Optional[int] = None
    points: Optional[int] = None
    invalidated_views: List[str] = []


class LeaderboardEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    user_name: str
    user_image_src: str
    points: int


class Quest(BaseModel):
    title: str
    value: int
    progress: float
    completed: bool
