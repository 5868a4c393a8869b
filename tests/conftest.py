import os
import sys
import time
import uuid

import jwt
import pytest
from sqlalchemy import event

# Ensure project root is on sys.path so tests can import app.py
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app import create_app  # noqa: E402
from models import db, User, Student, Mark, RevaluationRequest, Subject  # noqa: E402
from utils.grading import compute_result  # noqa: E402
from utils.identity import DUPLICATE_EMAIL_MESSAGE, DuplicateEmailError  # noqa: E402

TEST_JWT_SECRET = "test-jwt-secret-for-the-revaluation-portal-000"


class FakeIdentity:
    """Stands in for the Supabase admin API."""

    def __init__(self):
        self.users = {}
        self.deleted = []
        self.error = None

    def create_user(self, email, password, user_metadata):
        if self.error is not None:
            raise self.error
        if any(u["email"] == email for u in self.users.values()):
            raise DuplicateEmailError(DUPLICATE_EMAIL_MESSAGE, "email_exists")
        user = {
            "id": str(uuid.uuid4()),
            "email": email,
            "user_metadata": dict(user_metadata),
            "created_at": None,
        }
        self.users[user["id"]] = user
        return user

    def delete_user(self, user_id):
        self.deleted.append(user_id)
        self.users.pop(user_id, None)


class FakeQueue:
    key = "queue:test"

    def __init__(self, delay=0, error=None):
        self.delay = delay
        self.error = error
        self.jobs = []

    def add(self, job_name, data):
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        job = {"id": str(uuid.uuid4()), "name": job_name, "data": data}
        self.jobs.append(job)
        return job

    def pop(self, timeout=5):
        return self.jobs.pop(0) if self.jobs else None


def make_token(user_id, role=None, department=None, email=None, expires_in=3600):
    now = int(time.time())
    claims = {
        "sub": user_id,
        "aud": "authenticated",
        "role": "authenticated",
        "email": email or f"{user_id}@univ.edu",
        "iat": now,
        "exp": now + expires_in,
        "user_metadata": {"role": role, "department": department},
    }
    return jwt.encode(claims, TEST_JWT_SECRET, algorithm="HS256")


def auth(user_id, role=None, department=None, **kwargs):
    return {
        "Authorization": f"Bearer {make_token(user_id, role, department, **kwargs)}"
    }


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "SUPABASE_JWT_SECRET": TEST_JWT_SECRET,
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
            "OCR_ENQUEUE_TIMEOUT": 0.2,
            "MAIL_DEFAULT_SENDER": "exam-cell@univ.edu",
            "SOCKETIO_MESSAGE_QUEUE": None,
        }
    )
    app.extensions["identity"] = FakeIdentity()
    app.extensions["ocr_queue"] = FakeQueue()
    with app.app_context():
        # SQLite leaves foreign keys off unless asked per connection
        event.listen(db.engine, "connect", _enable_sqlite_foreign_keys)
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def identity(app):
    return app.extensions["identity"]


@pytest.fixture
def queue(app):
    return app.extensions["ocr_queue"]


@pytest.fixture
def student(app):
    user = User(
        id="stu-1",
        email="asha@univ.edu",
        full_name="Asha Rao",
        department="CSE",
        role="student",
    )
    db.session.add(user)
    db.session.add(Student(user_id="stu-1", reg_no="21CS001", department="CSE"))
    db.session.commit()
    return user


@pytest.fixture
def teacher(app):
    user = User(
        id="tch-1",
        email="kumar@univ.edu",
        full_name="R. Kumar",
        department="CSE",
        role="teacher",
    )
    db.session.add(user)
    db.session.commit()
    return user


def add_mark(student_id, code, score, total=100, name=None):
    grade, status = compute_result(score, total)
    mark = Mark(
        student_id=student_id,
        subject_code=code,
        subject_name=name or code,
        score=score,
        total_score=total,
        grade=grade,
        status=status,
        reg_no="21CS001",
    )
    db.session.add(mark)
    db.session.commit()
    return mark


def add_request(student_id, code, status="SUBMITTED", urls=None):
    reval = RevaluationRequest(
        student_id=student_id,
        subject_code=code,
        status=status,
        answer_script_urls=urls or [],
    )
    db.session.add(reval)
    db.session.commit()
    return reval


def add_subject(code, department, name=None):
    subject = Subject(code=code, name=name or code, department=department)
    db.session.add(subject)
    db.session.commit()
    return subject


def add_user(user_id, email=None, role="student", department="CSE"):
    user = User(
        id=user_id,
        email=email or f"{user_id}@univ.edu",
        full_name=user_id,
        department=department,
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    return user
