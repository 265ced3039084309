import hashlib
import hmac
import json
import os
import time

# Settings are read at import time; configure the test environment first
os.environ["TESTING"] = "True"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_API_KEY"] = "sk_test_dummy"

import pytest
from fastapi.testclient import TestClient

from langquest.core.database import DatabaseManager, SessionLocal, get_db
from langquest.core.security import create_access_token
from langquest.main import app
from langquest.models import (
    Challenge, ChallengeOption, ChallengeProgress, ChallengeType,
    Course, Lesson, Unit, UserProgress
)
from langquest.services.payments import StripeGateway, SubscriptionDetails, get_payment_gateway


WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def db():
    """Fresh in-memory schema per test"""
    DatabaseManager.create_all_tables()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        DatabaseManager.drop_all_tables()


class FakeGateway(StripeGateway):
    """Real signature checks, canned subscriptions"""

    def __init__(self):
        super().__init__(api_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET, tolerance=300)
        self.subscriptions = {}
        self.retrieved = []
        self.error = None

    def retrieve_subscription(self, subscription_id):
        self.retrieved.append(subscription_id)
        if self.error is not None:
            raise self.error
        return self.subscriptions.get(
            subscription_id,
            SubscriptionDetails(id=None, customer_id=None, price_id=None, current_period_end=None)
        )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user_id="user_1", name="Ana", picture="https://img.example/ana.png"):
    claims = {}
    if name is not None:
        claims["name"] = name
    if picture is not None:
        claims["picture"] = picture
    token = create_access_token(user_id, additional_claims=claims)
    return {"Authorization": f"Bearer {token}"}


def signed_headers(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None):
    timestamp = int(timestamp if timestamp is not None else time.time())
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256
    ).hexdigest()
    return {"Stripe-Signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"}


def event_payload(event_id, event_type, obj):
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}})


def build_course(db, layout, title="Spanish"):
    """
    Create a course from ``layout``: a list of units, each a list of lessons,
    each the number of challenges in that lesson.

    Returns the course and the lessons in unit-then-lesson order.
    """
    course = Course(title=title, image_src=f"/{title.lower()}.svg")
    db.add(course)
    db.flush()

    lessons = []
    for unit_order, unit_lessons in enumerate(layout, start=1):
        unit = Unit(
            title=f"Unit {unit_order}",
            description=f"Learn the basics {unit_order}",
            course_id=course.id,
            order=unit_order
        )
        db.add(unit)
        db.flush()
        for lesson_order, challenge_count in enumerate(unit_lessons, start=1):
            lesson = Lesson(title=f"Lesson {unit_order}.{lesson_order}", unit_id=unit.id, order=lesson_order)
            db.add(lesson)
            db.flush()
            for challenge_order in range(1, challenge_count + 1):
                challenge = Challenge(
                    lesson_id=lesson.id,
                    type=ChallengeType.SELECT.value,
                    question=f"Which one is \"the man\"? ({challenge_order})",
                    order=challenge_order
                )
                db.add(challenge)
                db.flush()
                db.add_all([
                    ChallengeOption(challenge_id=challenge.id, text="el hombre", correct=True,
                                    image_src="/man.svg", audio_src="/es_man.mp3"),
                    ChallengeOption(challenge_id=challenge.id, text="la mujer", correct=False),
                ])
            lessons.append(lesson)
    db.commit()
    return course, lessons


def add_user(db, user_id="user_1", course=None, hearts=5, points=0, name="Ana"):
    progress = UserProgress(
        user_id=user_id,
        user_name=name,
        user_image_src="/mascot.png",
        active_course_id=course.id if course is not None else None,
        hearts=hearts,
        points=points
    )
    db.add(progress)
    db.commit()
    return progress


def complete(db, lesson, user_id="user_1", completed=True):
    for challenge in lesson.challenges:
        db.add(ChallengeProgress(user_id=user_id, challenge_id=challenge.id, completed=completed))
    db.commit()
