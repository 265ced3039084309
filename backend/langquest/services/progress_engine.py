"""
Progress engine for LangQuest.

Computes a user's learning state from the content graph plus their own
progress rows, and applies the guarded mutations on hearts and points.

Read path:
- LearningSnapshot is built once per request and memoizes every derived
  value, so the units tree, the course progress pointer and lesson
  percentages all come from the same reads.

Write path:
- select_course(): create or update the user's progress row
- consume_heart(): charge one heart for a first attempt at a challenge
- refill_hearts(): trade points for a full set of hearts
- submit_challenge(): record a correct answer and award points

Every read-modify-write on hearts/points is a single conditional UPDATE,
so two concurrent requests from the same user cannot both spend the last
heart or both pay for one refill.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from langquest.core import views
from langquest.core.config import settings
from langquest.core.exceptions import NotFoundError, RefillRejectedError
from langquest.core.security import Identity
from langquest.core.views import view_invalidator
from langquest.models.course import Challenge, Course, Lesson, Unit
from langquest.models.progress import ChallengeProgress, UserProgress


logger = logging.getLogger(__name__)


# Guarded outcomes, returned as data
PRACTICE = "practice"
NO_HEARTS = "hearts"


@dataclass
class OptionView:
    id: int
    text: str
    correct: bool
    image_src: Optional[str] = None
    audio_src: Optional[str] = None


@dataclass
class ChallengeView:
    id: int
    lesson_id: int
    type: str
    question: str
    order: int
    completed: bool
    options: List[OptionView] = field(default_factory=list)


@dataclass
class LessonView:
    id: int
    title: str
    order: int
    unit_id: int
    challenges: List[ChallengeView] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return is_lesson_completed(self)


@dataclass
class UnitView:
    id: int
    title: str
    description: str
    order: int
    course_id: int
    lessons: List[LessonView] = field(default_factory=list)


@dataclass
class CourseProgress:
    active_lesson: Optional[LessonView]

    @property
    def active_lesson_id(self) -> Optional[int]:
        return self.active_lesson.id if self.active_lesson else None


@dataclass
class HeartResult:
    error: Optional[str] = None
    hearts: Optional[int] = None
    invalidated_views: List[str] = field(default_factory=list)


@dataclass
class ChallengeResult:
    error: Optional[str] = None
    practice: bool = False
    hearts: Optional[int] = None
    points: Optional[int] = None
    invalidated_views: List[str] = field(default_factory=list)


# Pure derivations

def is_challenge_completed(progress_flags: Sequence[bool]) -> bool:
    """A challenge is completed iff at least one row exists and every row is completed."""
    return len(progress_flags) > 0 and all(progress_flags)


def is_lesson_completed(lesson: LessonView) -> bool:
    """A lesson without challenges is never completed."""
    if not lesson.challenges:
        return False
    return all(challenge.completed for challenge in lesson.challenges)


def find_active_lesson(units: Sequence[UnitView]) -> Optional[LessonView]:
    """First lesson, in unit then lesson order, with an incomplete challenge."""
    for unit in units:
        for lesson in unit.lessons:
            if any(not challenge.completed for challenge in lesson.challenges):
                return lesson
    return None


def lesson_percentage(lesson: Optional[LessonView]) -> int:
    """Share of completed challenges, rounded half up to a whole percent."""
    if lesson is None or not lesson.challenges:
        return 0
    completed = sum(1 for challenge in lesson.challenges if challenge.completed)
    return int(math.floor(100 * completed / len(lesson.challenges) + 0.5))


def quest_progress(points: int) -> List[Dict]:
    """Progress of the user's points towards each quest milestone."""
    quests = []
    for value in settings.QUEST_MILESTONES:
        quests.append({
            "title": f"Earn {value} XP",
            "value": value,
            "progress": min(100.0, points / value * 100),
            "completed": points >= value
        })
    return quests


def _build_lesson(lesson: Lesson, progress_map: Dict[int, List[bool]]) -> LessonView:
    challenges = [
        ChallengeView(
            id=challenge.id,
            lesson_id=challenge.lesson_id,
            type=challenge.type,
            question=challenge.question,
            order=challenge.order,
            completed=is_challenge_completed(progress_map.get(challenge.id, [])),
            options=[
                OptionView(
                    id=option.id,
                    text=option.text,
                    correct=option.correct,
                    image_src=option.image_src,
                    audio_src=option.audio_src
                )
                for option in challenge.options
            ]
        )
        for challenge in sorted(lesson.challenges, key=lambda c: c.order)
    ]
    return LessonView(
        id=lesson.id,
        title=lesson.title,
        order=lesson.order,
        unit_id=lesson.unit_id,
        challenges=challenges
    )


class LearningSnapshot:
    """
    Request-scoped view of one user's learning state.

    All derived values are computed at most once per snapshot; repeated
    calls within a request observe the same data.
    """

    def __init__(self, db: Session, user_id: str):
        self.db = db
        self.user_id = user_id
        self._user_progress_loaded = False
        self._user_progress: Optional[UserProgress] = None
        self._units: Optional[List[UnitView]] = None
        self._course_progress: Optional[CourseProgress] = None
        self._lessons: Dict[int, Optional[LessonView]] = {}

    @property
    def user_progress(self) -> Optional[UserProgress]:
        if not self._user_progress_loaded:
            self._user_progress = self.db.execute(
                select(UserProgress)
                .options(selectinload(UserProgress.active_course))
                .where(UserProgress.user_id == self.user_id)
            ).scalar_one_or_none()
            self._user_progress_loaded = True
        return self._user_progress

    def _progress_map(self, challenge_ids: List[int]) -> Dict[int, List[bool]]:
        """Completion flags of this user's own progress rows, per challenge."""
        progress_map: Dict[int, List[bool]] = {}
        if not challenge_ids:
            return progress_map
        rows = self.db.execute(
            select(ChallengeProgress.challenge_id, ChallengeProgress.completed).where(
                ChallengeProgress.user_id == self.user_id,
                ChallengeProgress.challenge_id.in_(challenge_ids)
            )
        ).all()
        for challenge_id, completed in rows:
            progress_map.setdefault(challenge_id, []).append(completed)
        return progress_map

    @property
    def units(self) -> List[UnitView]:
        """Units of the active course with lessons and per-user completion."""
        if self._units is not None:
            return self._units

        progress = self.user_progress
        if progress is None or progress.active_course_id is None:
            self._units = []
            return self._units

        units = self.db.execute(
            select(Unit)
            .where(Unit.course_id == progress.active_course_id)
            .order_by(Unit.order)
            .options(
                selectinload(Unit.lessons)
                .selectinload(Lesson.challenges)
                .selectinload(Challenge.options)
            )
        ).scalars().all()

        challenge_ids = [
            challenge.id
            for unit in units
            for lesson in unit.lessons
            for challenge in lesson.challenges
        ]
        progress_map = self._progress_map(challenge_ids)

        self._units = []
        for unit in units:
            lessons = []
            for lesson in sorted(unit.lessons, key=lambda l: l.order):
                # A lesson already served by this snapshot keeps its first view
                if self._lessons.get(lesson.id) is None:
                    self._lessons[lesson.id] = _build_lesson(lesson, progress_map)
                lessons.append(self._lessons[lesson.id])
            self._units.append(UnitView(
                id=unit.id,
                title=unit.title,
                description=unit.description,
                order=unit.order,
                course_id=unit.course_id,
                lessons=lessons
            ))
        return self._units

    def course_progress(self) -> Optional[CourseProgress]:
        """The resume pointer, or None when the user has no active course."""
        progress = self.user_progress
        if progress is None or progress.active_course_id is None:
            return None
        if self._course_progress is None:
            self._course_progress = CourseProgress(active_lesson=find_active_lesson(self.units))
        return self._course_progress

    def lesson(self, lesson_id: Optional[int] = None) -> Optional[LessonView]:
        """A lesson with its challenges; defaults to the resume pointer's lesson."""
        if lesson_id is None:
            course_progress = self.course_progress()
            if course_progress is None or course_progress.active_lesson_id is None:
                return None
            lesson_id = course_progress.active_lesson_id

        if lesson_id in self._lessons:
            return self._lessons[lesson_id]

        lesson = self.db.execute(
            select(Lesson)
            .where(Lesson.id == lesson_id)
            .options(selectinload(Lesson.challenges).selectinload(Challenge.options))
        ).scalar_one_or_none()

        if lesson is None:
            self._lessons[lesson_id] = None
            return None

        progress_map = self._progress_map([challenge.id for challenge in lesson.challenges])
        self._lessons[lesson_id] = _build_lesson(lesson, progress_map)
        return self._lessons[lesson_id]

    def lesson_percentage(self, lesson_id: Optional[int] = None) -> int:
        return lesson_percentage(self.lesson(lesson_id))


def _get_challenge(db: Session, challenge_id: int) -> Challenge:
    challenge = db.get(Challenge, challenge_id)
    if challenge is None:
        raise NotFoundError("Challenge", challenge_id)
    return challenge


def _get_user_progress(db: Session, user_id: str) -> UserProgress:
    progress = db.get(UserProgress, user_id)
    if progress is None:
        raise NotFoundError("User progress")
    return progress


def _has_challenge_progress(db: Session, user_id: str, challenge_id: int) -> bool:
    return db.execute(
        select(ChallengeProgress.id).where(
            ChallengeProgress.user_id == user_id,
            ChallengeProgress.challenge_id == challenge_id
        ).limit(1)
    ).first() is not None


# Queries

def list_courses(db: Session) -> List[Course]:
    return list(db.execute(select(Course).order_by(Course.id)).scalars().all())


def get_course(db: Session, course_id: int) -> Course:
    course = db.get(Course, course_id)
    if course is None:
        raise NotFoundError("Course", course_id)
    return course


def top_users(db: Session, limit: Optional[int] = None) -> List[UserProgress]:
    """Leaderboard: users with the most points first."""
    limit = limit or settings.LEADERBOARD_SIZE
    return list(db.execute(
        select(UserProgress)
        .order_by(UserProgress.points.desc(), UserProgress.user_id)
        .limit(limit)
    ).scalars().all())


# Mutations

def select_course(db: Session, identity: Identity, course_id: int) -> Dict:
    """
    Make ``course_id`` the user's active course.

    The display name and avatar are refreshed from the identity on every
    call. Whether the course has any lessons is deliberately not checked.

    Returns:
        Dict: the progress row, the stale views and the dashboard path
    """
    course = get_course(db, course_id)

    user_name = identity.display_name or settings.DEFAULT_USER_NAME
    user_image_src = identity.avatar_url or settings.DEFAULT_USER_IMAGE

    progress = db.get(UserProgress, identity.user_id)
    if progress is not None:
        progress.active_course_id = course.id
        progress.user_name = user_name
        progress.user_image_src = user_image_src
        db.commit()
    else:
        db.add(UserProgress(
            user_id=identity.user_id,
            active_course_id=course.id,
            user_name=user_name,
            user_image_src=user_image_src,
            hearts=settings.MAX_HEARTS,
            points=0
        ))
        try:
            db.commit()
        except IntegrityError:
            # A concurrent request created the row first
            db.rollback()
            db.execute(
                update(UserProgress)
                .where(UserProgress.user_id == identity.user_id)
                .values(
                    active_course_id=course.id,
                    user_name=user_name,
                    user_image_src=user_image_src
                )
            )
            db.commit()
        progress = db.get(UserProgress, identity.user_id)

    db.refresh(progress)
    logger.info(f"User {identity.user_id} selected course {course.id}")

    invalidated = view_invalidator.invalidate(identity.user_id, [views.COURSES, views.LEARN])
    return {
        "user_progress": progress,
        "invalidated_views": invalidated,
        "redirect_to": settings.DASHBOARD_PATH
    }


def consume_heart(db: Session, user_id: str, challenge_id: int) -> HeartResult:
    """
    Charge one heart for a first attempt at a challenge.

    A repeat attempt is practice and costs nothing, even with zero hearts.
    """
    challenge = _get_challenge(db, challenge_id)

    if _has_challenge_progress(db, user_id, challenge_id):
        return HeartResult(error=PRACTICE)

    progress = _get_user_progress(db, user_id)
    if progress.hearts <= 0:
        return HeartResult(error=NO_HEARTS, hearts=0)

    result = db.execute(
        update(UserProgress)
        .where(UserProgress.user_id == user_id, UserProgress.hearts > 0)
        .values(hearts=UserProgress.hearts - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # Lost the race for the last heart
        db.rollback()
        return HeartResult(error=NO_HEARTS, hearts=0)

    db.commit()
    db.refresh(progress)
    logger.info(f"User {user_id} lost a heart on challenge {challenge_id}: {progress.hearts} left")

    invalidated = view_invalidator.invalidate(user_id, [
        views.LEARN,
        views.SHOP,
        views.QUESTS,
        views.LEADERBOARD,
        views.lesson_view(challenge.lesson_id)
    ])
    return HeartResult(hearts=progress.hearts, invalidated_views=invalidated)


def refill_hearts(db: Session, user_id: str) -> Dict:
    """
    Spend a flat HEART_REFILL_COST points to restore hearts to MAX_HEARTS.

    Raises:
        NotFoundError: the user has no progress row
        RefillRejectedError: hearts are full or points are short
    """
    progress = _get_user_progress(db, user_id)

    for _ in range(2):
        _check_refill(progress)
        if _apply_refill(db, user_id):
            break
        # Hearts or points changed since the read; look again
        db.rollback()
        db.refresh(progress)
    else:
        _check_refill(progress)
        raise RefillRejectedError(RefillRejectedError.CONFLICT, "Hearts changed during refill")

    db.commit()
    db.refresh(progress)
    logger.info(f"User {user_id} refilled hearts, {progress.points} points left")

    invalidated = view_invalidator.invalidate(user_id, [
        views.LEARN,
        views.SHOP,
        views.QUESTS,
        views.LEADERBOARD
    ])
    return {
        "hearts": progress.hearts,
        "points": progress.points,
        "invalidated_views": invalidated
    }


def _apply_refill(db: Session, user_id: str) -> bool:
    """Refill in one conditional UPDATE; False when the row no longer qualifies."""
    result = db.execute(
        update(UserProgress)
        .where(
            UserProgress.user_id == user_id,
            UserProgress.hearts < settings.MAX_HEARTS,
            UserProgress.points >= settings.HEART_REFILL_COST
        )
        .values(
            hearts=settings.MAX_HEARTS,
            points=UserProgress.points - settings.HEART_REFILL_COST
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def _check_refill(progress: UserProgress) -> None:
    if progress.hearts >= settings.MAX_HEARTS:
        raise RefillRejectedError(RefillRejectedError.HEARTS_FULL, "Hearts are already full")
    if progress.points < settings.HEART_REFILL_COST:
        raise RefillRejectedError(RefillRejectedError.INSUFFICIENT_POINTS, "Not enough points")


def submit_challenge(db: Session, user_id: str, challenge_id: int) -> ChallengeResult:
    """
    Record a correct answer to a challenge.

    The first correct answer creates the user's progress row for the
    challenge. Answering an already-engaged challenge again is practice:
    it restores one heart (up to MAX_HEARTS) and still earns points.
    """
    challenge = _get_challenge(db, challenge_id)
    progress = _get_user_progress(db, user_id)

    reward = settings.POINTS_PER_CHALLENGE

    if _has_challenge_progress(db, user_id, challenge_id):
        db.execute(
            update(ChallengeProgress)
            .where(
                ChallengeProgress.user_id == user_id,
                ChallengeProgress.challenge_id == challenge_id
            )
            .values(completed=True)
            .execution_options(synchronize_session=False)
        )
        db.execute(
            update(UserProgress)
            .where(UserProgress.user_id == user_id)
            .values(
                hearts=case(
                    (UserProgress.hearts < settings.MAX_HEARTS, UserProgress.hearts + 1),
                    else_=settings.MAX_HEARTS
                ),
                points=UserProgress.points + reward
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        practice = True
    else:
        if progress.hearts <= 0:
            return ChallengeResult(error=NO_HEARTS, hearts=0, points=progress.points)

        db.add(ChallengeProgress(user_id=user_id, challenge_id=challenge_id, completed=True))
        db.execute(
            update(UserProgress)
            .where(UserProgress.user_id == user_id)
            .values(points=UserProgress.points + reward)
            .execution_options(synchronize_session=False)
        )
        try:
            db.commit()
        except IntegrityError:
            # A concurrent submission recorded the first answer
            db.rollback()
            return submit_challenge(db, user_id, challenge_id)
        practice = False

    db.refresh(progress)
    logger.info(
        f"User {user_id} completed challenge {challenge_id} "
        f"({'practice' if practice else 'first attempt'}), {progress.points} points"
    )

    invalidated = view_invalidator.invalidate(user_id, [
        views.LEARN,
        views.QUESTS,
        views.LEADERBOARD,
        views.lesson_view(challenge.lesson_id)
    ])
    return ChallengeResult(
        practice=practice,
        hearts=progress.hearts,
        points=progress.points,
        invalidated_views=invalidated
    )
