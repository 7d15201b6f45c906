"""
Shared fixtures: an in-memory SQLite database recreated per test, a
TestClient wired to it, users with bearer tokens, and a test factory.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["AUTO_CREATE_TABLES"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from lms_backend import models  # noqa: E402
from lms_backend.auth.jwt import create_access_token  # noqa: E402
from lms_backend.database import Base, SessionLocal, engine, get_db  # noqa: E402
from lms_backend.main import app  # noqa: E402


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_user(db_session, email, role=models.UserRole.STUDENT):
    user = models.User(email=email, full_name=email.split("@")[0].title(), role=role)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def _headers_for(user):
    token = create_access_token({"sub": str(user.id), "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student(db_session):
    return _create_user(db_session, "student@example.com")


@pytest.fixture
def other_student(db_session):
    return _create_user(db_session, "other@example.com")


@pytest.fixture
def admin(db_session):
    return _create_user(db_session, "admin@example.com", role=models.UserRole.ADMIN)


@pytest.fixture
def auth_headers(student):
    return _headers_for(student)


@pytest.fixture
def other_auth_headers(other_student):
    return _headers_for(other_student)


@pytest.fixture
def admin_headers(admin):
    return _headers_for(admin)


@pytest.fixture
def make_test(db_session):
    """
    Build a test with questions.

    Each question is described by a dict with optional ``stem``, ``kind``, ``points``
    and ``options`` (a list of ``(text, is_correct)`` pairs). Tests are
    published unless ``published=False`` is passed.
    """
    def _make(questions=(), **fields):
        fields.setdefault("title", "Sample Test")
        fields.setdefault("published", True)
        test = models.Test(**fields)
        for index, item in enumerate(questions):
            question = models.Question(
                stem=item.get("stem", f"Question {index + 1}"),
                kind=item.get("kind", models.QuestionKind.SINGLE_CHOICE),
                points=item.get("points", 1),
                order_index=index,
            )
            question.options = [
                models.QuestionOption(option_text=text, is_correct=correct, order_index=i)
                for i, (text, correct) in enumerate(item.get("options", []))
            ]
            test.questions.append(question)
        db_session.add(test)
        db_session.commit()
        db_session.refresh(test)
        return test

    return _make


@pytest.fixture
def two_question_test(make_test):
    """Two single-choice questions worth one point each, one correct option per question."""
    choice = {"options": [("Right", True), ("Wrong", False)]}
    return make_test([dict(choice), dict(choice)], passing_score=60)


@pytest.fixture
def answer_key():
    """Return (correct_option_id, wrong_option_id) for a choice question."""
    def _key(question):
        correct = next(o.id for o in question.options if o.is_correct)
        wrong = next(o.id for o in question.options if not o.is_correct)
        return correct, wrong

    return _key
