import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Environment must be in place before `studyabroad` is imported: settings,
# the engine and the mail backend are built at import time.
_TMP = Path(tempfile.mkdtemp(prefix="studyabroad-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["MEDIA_ROOT"] = str(_TMP / "media")
os.environ["EMAIL_BACKEND"] = "memory"
os.environ["ENV"] = "dev"
os.environ["DEFAULT_CURRENCY"] = "INR"
os.environ["AUTH_RATE_LIMIT_PER_MIN"] = "1000"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_PUBLISHABLE_KEY"] = "pk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "rzp_webhook_secret"

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from studyabroad import models  # noqa: E402
from studyabroad.auth import create_access_token, hash_password  # noqa: E402
from studyabroad.database import engine  # noqa: E402
from studyabroad.main import app  # noqa: E402
from studyabroad.utils.mailer import outbox  # noqa: E402
from studyabroad.utils.rate_limit import auth_limiter  # noqa: E402


@pytest.fixture(scope="session")
def client():
    return TestClient(app)


@pytest.fixture(autouse=True)
def _reset_state():
    outbox.clear()
    auth_limiter.reset()
    yield


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_user(db):
    """Create a user straight in the database; e-mails are unique per call."""
    def _make(role=models.UserRole.STUDENT, password="password123", **fields):
        user = models.User(
            email=fields.pop("email", f"user-{uuid.uuid4().hex[:10]}@example.com"),
            password_hash=hash_password(password),
            first_name=fields.pop("first_name", "Test"),
            last_name=fields.pop("last_name", "User"),
            role=role,
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user)}"}
    return _headers


@pytest.fixture
def student(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role=models.UserRole.ADMIN)


@pytest.fixture
def super_admin(make_user):
    return make_user(role=models.UserRole.SUPER_ADMIN)


def unique(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def make_course(client, admin, headers):
    """Create a course through the admin API and return its JSON."""
    def _make(**fields):
        body = {
            "title": fields.pop("title", unique("Course")),
            "description": "A thorough preparation course.",
            "instructor_name": "Dr. Rao",
            "is_published": True,
            **fields,
        }
        r = client.post("/admin/courses", json=body, headers=headers(admin))
        assert r.status_code == 201, r.text
        return r.json()
    return _make


@pytest.fixture
def make_test(client, admin, headers):
    """Create a test with one section of three questions via the admin API."""
    def _make(**fields):
        body = {
            "title": fields.pop("title", unique("IELTS Mock")),
            "description": "Full-length practice test.",
            "type": "IELTS",
            "is_published": True,
            "passing_score": 50,
            "sections": [{
                "section_name": "Reading",
                "questions": [
                    {"question_text": "Capital of France?", "options": ["Paris", "Rome"], "correct_answer": "Paris"},
                    {"question_text": "2 + 2?", "options": ["3", "4"], "correct_answer": "4", "points": 2},
                    {"question_text": "Sky colour?", "question_type": "SHORT_ANSWER", "correct_answer": "Blue"},
                ],
            }],
            **fields,
        }
        r = client.post("/admin/tests", json=body, headers=headers(admin))
        assert r.status_code == 201, r.text
        return r.json()
    return _make


@pytest.fixture
def booking_day():
    """A Monday one to two weeks ahead, so bookings are always in the future."""
    today = datetime.now(timezone.utc).date()
    return today + timedelta(days=14 - today.weekday())
