"""
Courses router for LangQuest.

Handles listing courses and choosing the active course.
"""

from typing import List, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from langquest.core.database import get_db
from langquest.core.exceptions import NotFoundError
from langquest.core.security import Identity
from langquest.models.course import Course
from langquest.routers.auth import get_current_identity
from langquest.schemas.course import CourseResponse
from langquest.schemas.progress import CourseSelection, UserProgressResponse
from langquest.services import progress_engine


router = APIRouter()


@router.get("/", response_model=List[CourseResponse])
async def list_courses(
    db: Session = Depends(get_db)
) -> List[Course]:
    """
    List all available courses.
    """
    return progress_engine.list_courses(db)


@router.get("/{course_id}", response_model=CourseResponse)
async def get_course(
    course_id: int,
    db: Session = Depends(get_db)
) -> Course:
    """
    Get a single course.
    """
    try:
        return progress_engine.get_course(db, course_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/{course_id}/select", response_model=CourseSelection)
async def select_course(
    course_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Make a course the user's active course.

    Creates the user's progress on first selection. The response names the
    dashboard path the client should navigate to next.
    """
    try:
        result = progress_engine.select_course(db, identity, course_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return {
        "user_progress": UserProgressResponse.model_validate(result["user_progress"]),
        "invalidated_views": result["invalidated_views"],
        "redirect_to": result["redirect_to"]
    }
