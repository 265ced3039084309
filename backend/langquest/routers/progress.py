"""
Progress router for LangQuest.

Handles the learning dashboard (units, resume pointer, lessons and
percentages), hearts and points mutations, the leaderboard, quests and
the user's subscription status.
"""

from typing import List, Optional, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from langquest.core.database import get_db
from langquest.core.exceptions import NotFoundError, RefillRejectedError
from langquest.routers.auth import get_current_user_id
from langquest.schemas.course import LessonDetail, LessonSummary, UnitResponse
from langquest.schemas.progress import (
    UserProgressResponse,
    CourseProgressResponse,
    LessonPercentage,
    HeartUpdate,
    HeartRefill,
    ChallengeSubmission,
    LeaderboardEntry,
    Quest
)
from langquest.schemas.subscription import SubscriptionResponse
from langquest.services import progress_engine
from langquest.services.progress_engine import LearningSnapshot
from langquest.services.subscriptions import subscription_status


router = APIRouter()


def get_snapshot(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> LearningSnapshot:
    """Request-scoped learning snapshot for the current user."""
    return LearningSnapshot(db, user_id)


def _not_found(e: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/", response_model=UserProgressResponse)
async def get_user_progress(
    snapshot: LearningSnapshot = Depends(get_snapshot)
) -> UserProgressResponse:
    """
    Get the user's hearts, points and active course.
    """
    progress = snapshot.user_progress
    if progress is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User progress not found"
        )
    return UserProgressResponse.model_validate(progress)


@router.get("/units", response_model=List[UnitResponse])
async def get_units(
    snapshot: LearningSnapshot = Depends(get_snapshot)
) -> List[UnitResponse]:
    """
    Units of the active course with per-lesson completion.
    """
    return [UnitResponse.model_validate(unit) for unit in snapshot.units]


@router.get("/course", response_model=Optional[CourseProgressResponse])
async def get_course_progress(
    snapshot: LearningSnapshot = Depends(get_snapshot)
) -> Optional[CourseProgressResponse]:
    """
    The lesson the user should resume, or null without an active course.
    """
    course_progress = snapshot.course_progress()
    if course_progress is None:
        return None

    active_lesson = course_progress.active_lesson
    return CourseProgressResponse(
        active_lesson=LessonSummary.model_validate(active_lesson) if active_lesson else None,
        active_lesson_id=course_progress.active_lesson_id
    )


@router.get("/lessons/active", response_model=LessonDetail)
async def get_active_lesson(
    snapshot: LearningSnapshot = Depends(get_snapshot)
) -> LessonDetail:
    """
    The resume lesson with its challenges and options.
    """
    lesson = snapshot.lesson()
    if lesson is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active lesson"
        )
    return LessonDetail.model_validate(lesson)


@router.get("/lessons/{lesson_id}", response_model=LessonDetail)
async def get_lesson(
    lesson_id: int,
    snapshot: LearningSnapshot = Depends(get_snapshot)
) -> LessonDetail:
    """
    A lesson with its challenges, options and per-user completion.
    """
    lesson = snapshot.lesson(lesson_id)
    if lesson is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Lesson {lesson_id} not found"
        )
    return LessonDetail.model_validate(lesson)


@router.get("/lesson-percentage", response_model=LessonPercentage)
async def get_lesson_percentage(
    lesson_id: Optional[int] = Query(None, ge=1),
    snapshot: LearningSnapshot = Depends(get_snapshot)
) -> Dict[str, Any]:
    """
    Completion percentage of a lesson, defaulting to the resume lesson.
    """
    lesson = snapshot.lesson(lesson_id)
    return {
        "lesson_id": lesson.id if lesson else lesson_id,
        "percentage": snapshot.lesson_percentage(lesson_id)
    }


@router.post("/challenges/{challenge_id}/hearts", response_model=HeartUpdate)
async def consume_heart(
    challenge_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> HeartUpdate:
    """
    Charge a heart for a wrong answer.

    Repeat attempts report ``practice`` and cost nothing; with no hearts
    left the result reports ``hearts``.
    """
    try:
        result = progress_engine.consume_heart(db, user_id, challenge_id)
    except NotFoundError as e:
        raise _not_found(e)
    return HeartUpdate.model_validate(result)


@router.post("/challenges/{challenge_id}/complete", response_model=ChallengeSubmission)
async def submit_challenge(
    challenge_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> ChallengeSubmission:
    """
    Record a correct answer and award points.
    """
    try:
        result = progress_engine.submit_challenge(db, user_id, challenge_id)
    except NotFoundError as e:
        raise _not_found(e)
    return ChallengeSubmission.model_validate(result)


@router.post("/hearts/refill", response_model=HeartRefill)
async def refill_hearts(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Spend points to restore all hearts.
    """
    try:
        return progress_engine.refill_hearts(db, user_id)
    except NotFoundError as e:
        raise _not_found(e)
    except RefillRejectedError as e:
        if e.reason == RefillRejectedError.CONFLICT:
            code = status.HTTP_409_CONFLICT
        else:
            code = status.HTTP_400_BAD_REQUEST
        raise HTTPException(
            status_code=code,
            detail={"reason": e.reason, "message": str(e)}
        )


@router.get("/leaderboard", response_model=List[LeaderboardEntry])
async def get_leaderboard(
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> List[LeaderboardEntry]:
    """
    Top users by points.
    """
    return [
        LeaderboardEntry.model_validate(progress)
        for progress in progress_engine.top_users(db, limit)
    ]


@router.get("/quests", response_model=List[Quest])
async def get_quests(
    snapshot: LearningSnapshot = Depends(get_snapshot)
) -> List[Dict[str, Any]]:
    """
    Point milestones and how far the user is towards each.
    """
    progress = snapshot.user_progress
    if progress is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User progress not found"
        )
    return progress_engine.quest_progress(progress.points)


@router.get("/subscription", response_model=Optional[SubscriptionResponse])
async def get_subscription(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> Optional[Dict[str, Any]]:
    """
    The user's subscription and whether it is currently active.
    """
    return subscription_status(db, user_id)
