import json
import os
import tempfile
import uuid
from pathlib import Path

import pytest

# Point the app at a throwaway database before anything imports quizforce.
_DB_DIR = Path(tempfile.mkdtemp(prefix="quizforce-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ["ENV"] = "dev"
os.environ["JWT_SECRET"] = "quizforce-test-secret-with-enough-length-for-hs256"

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from quizforce.database import engine, create_db_and_tables  # noqa: E402
from quizforce import models, repositories, services  # noqa: E402


SAMPLE_EXAM = {
    "certification": {"name": "Platform Administrator", "description": "Admin track"},
    "practice_exam": {"name": "Practice Exam 1", "time_limit_minutes": 90, "passing_threshold_percentage": 65},
    "knowledge_areas": [
        {"name": "User Management", "weight_percentage": 40},
        {"name": "Data Security", "weight_percentage": 60},
    ],
    "questions": [
        {
            "question_text": "Which feature controls object-level access?",
            "explanation": "Profiles and permission sets grant object permissions.",
            "knowledge_area": "User Management",
            "difficulty_level": "easy",
            "answers": [
                {"answer_text": "Profiles", "is_correct": True, "explanation": "Object permissions live on the profile."},
                {"answer_text": "Themes"},
            ],
        },
        {
            "question_text": "Where are login hours configured?",
            "knowledge_area": "User Management",
            "difficulty_level": "medium",
            "answers": [
                {"answer_text": "Page layouts"},
                {"answer_text": "Profiles", "is_correct": True},
            ],
        },
        {
            "question_text": "Which setting restricts record visibility org-wide?",
            "knowledge_area": "Data Security",
            "difficulty_level": "hard",
            "answers": [
                {"answer_text": "Organization-wide defaults", "is_correct": True},
                {"answer_text": "List views"},
            ],
        },
    ],
}


@pytest.fixture(scope="session", autouse=True)
def database():
    """Create the schema once for the whole run."""
    create_db_and_tables()
    yield engine


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture(scope="session")
def client():
    from quizforce.main import app
    return TestClient(app)


@pytest.fixture
def make_user(db):
    """Create a user with a unique email and return (user, auth headers)."""
    def _make(role: str = "user"):
        user = repositories.UserRepository(db).create(
            models.User(email=f"{uuid.uuid4().hex}@example.com", role=role)
        )
        token = services.issue_token(user)
        return user, {"Authorization": f"Bearer {token}"}
    return _make


@pytest.fixture
def sample_exam(db):
    """Import SAMPLE_EXAM and return a small map of its ids.

    `questions` is ordered by question number; each entry maps answer
    text to answer id under `answers` and lists the correct ids.
    """
    result = services.ImportService(db).import_file(json.dumps(SAMPLE_EXAM).encode(), "sample.json", deduplicate=False)
    exam_id = result["practice_exam_id"]
    q_repo = repositories.QuestionRepository(db)
    questions = []
    for q in q_repo.list_for_exam(exam_id):
        answers = q_repo.list_answers(q.id)
        questions.append({
            "id": q.id,
            "answers": [a.id for a in answers],
            "correct": [a.id for a in answers if a.is_correct],
            "wrong": [a.id for a in answers if not a.is_correct],
        })
    return {"exam_id": exam_id, "questions": questions}
