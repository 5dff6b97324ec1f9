import os
import tempfile

# Settings are read at import time
_tmp = tempfile.mkdtemp(prefix="examhub-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_tmp, 'import.db')}")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("PROMETHEUS_ENABLED", "false")
os.environ["REDIS_URL"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from examhub.core.auth import TokenData, create_token, hash_password
from examhub.core.database import get_db, init_db, make_engine
from examhub.main import app
from examhub.models.orm import ExamStatus, User
from examhub.services import exams as exam_svc


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'examhub.db'}")
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(username: str, role: str = "student") -> User:
        user = User(username=username, email=f"{username}@example.com", name=username.title(),
                    password_hash=hash_password("secret123"), role=role)
        db.add(user); db.commit()
        return user
    return _make


@pytest.fixture
def teacher(make_user): return make_user("teacher", "teacher")

@pytest.fixture
def student(make_user): return make_user("student", "student")

@pytest.fixture
def other_student(make_user): return make_user("other", "student")


def identity(user: User) -> TokenData:
    return TokenData(sub=str(user.id), role=user.role)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_token(user.id, user.role)}"}


def build_exam(db, teacher: User, status: str = ExamStatus.ACTIVE.value, duration: int = 30):
    """Exam with a 2-point multiple choice, a 1-point true/false and a 3-point essay."""
    exam = exam_svc.create_exam(db, teacher.id, {"title": "Biology 101", "subject": "Biology", "duration": duration})
    mc = exam_svc.create_question(db, exam.id, teacher.id, {
        "type": "multiple_choice", "text": "Powerhouse of the cell?", "points": 2, "order": 1,
        "options": [{"id": "a", "text": "Nucleus"}, {"id": "b", "text": "Mitochondria"}], "correct_answer": "b",
    })
    tf = exam_svc.create_question(db, exam.id, teacher.id, {
        "type": "true_false", "text": "DNA is a double helix", "points": 1, "order": 2, "correct_answer": "true",
    })
    essay = exam_svc.create_question(db, exam.id, teacher.id, {
        "type": "essay", "text": "Explain osmosis", "points": 3, "order": 3, "correct_answer": [],
    })
    if status != ExamStatus.DRAFT.value:
        exam = exam_svc.update_exam(db, exam.id, teacher.id, {"status": ExamStatus.ACTIVE.value})
        if status == ExamStatus.ARCHIVED.value:
            exam = exam_svc.update_exam(db, exam.id, teacher.id, {"status": status})
    return exam, mc, tf, essay


@pytest.fixture
def exam_setup(db, teacher):
    return build_exam(db, teacher)
