"""
Course and lesson schemas.
"""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class CourseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    image_src: str


class ChallengeOptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    text: str
    correct: bool
    image_src: Optional[str] = None
    audio_src: Optional[str] = None


class ChallengeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lesson_id: int
    type: str
    question: str
    order: int
    completed: bool
    options: List[ChallengeOptionResponse] = []


class LessonSummary(BaseModel):
    """A lesson as listed inside its unit."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    order: int
    unit_id: int
    completed: bool


class LessonDetail(LessonSummary):
    challenges: List[ChallengeResponse] = []


class UnitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    order: int
    course_id: int
    lessons: List[LessonSummary] = []
