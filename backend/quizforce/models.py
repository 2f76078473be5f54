"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.
Score fields on `ExamAttempt` are written once, when the attempt is
submitted.
"""

from typing import List, Optional
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """A learner or admin known to the backend.

    Identity is established by the bearer token; this row only anchors
    attempts to a user id.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    full_name: Optional[str] = None
    role: str = "user"
    created_at: datetime = Field(default_factory=_utcnow)


class Certification(SQLModel, table=True):
    """A certification in the catalog (e.g. an admin or developer exam)."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    description: Optional[str] = None
    exam_count: int = 0
    knowledge_areas: List['KnowledgeArea'] = Relationship(back_populates='certification')
    practice_exams: List['PracticeExam'] = Relationship(back_populates='certification')


class KnowledgeArea(SQLModel, table=True):
    """Syllabus topic of a certification.

    `weight_percentage` is the topic's share of the syllabus. It is shown
    next to scores but never affects pass/fail.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    certification_id: int = Field(foreign_key='certification.id', index=True)
    name: str
    description: Optional[str] = None
    weight_percentage: float = 0
    sort_order: int = 0
    certification: Optional[Certification] = Relationship(back_populates='knowledge_areas')


class PracticeExam(SQLModel, table=True):
    """One practice exam of a certification."""
    id: Optional[int] = Field(default=None, primary_key=True)
    certification_id: int = Field(foreign_key='certification.id', index=True)
    name: str
    description: Optional[str] = None
    question_count: int = 0
    time_limit_minutes: int = 90
    passing_threshold_percentage: int = 65
    is_active: bool = True
    certification: Optional[Certification] = Relationship(back_populates='practice_exams')
    questions: List['Question'] = Relationship(back_populates='practice_exam')


class Question(SQLModel, table=True):
    """A single or multi-select question of a practice exam."""
    id: Optional[int] = Field(default=None, primary_key=True)
    practice_exam_id: int = Field(foreign_key='practiceexam.id', index=True)
    knowledge_area_id: int = Field(foreign_key='knowledgearea.id')
    question_text: str
    explanation: Optional[str] = None
    difficulty_level: str = "medium"
    question_number: int = Field(default=0, index=True)
    required_selections: int = 1
    practice_exam: Optional[PracticeExam] = Relationship(back_populates='questions')
    answers: List['Answer'] = Relationship(back_populates='question')


class Answer(SQLModel, table=True):
    """Candidate answer for a `Question`.

    `is_correct` marks whether this answer is part of the correct set.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: int = Field(foreign_key='question.id', index=True)
    answer_text: str
    explanation: Optional[str] = None
    is_correct: bool = False
    answer_letter: str = "A"
    question: Optional[Question] = Relationship(back_populates='answers')


class ExamAttempt(SQLModel, table=True):
    """One user taking one practice exam.

    `status` moves from `in_progress` to either `completed` (submitted)
    or `abandoned` (restarted).
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    practice_exam_id: int = Field(foreign_key='practiceexam.id', index=True)
    mode: str = "exam"
    status: str = Field(default="in_progress", index=True)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    time_spent_minutes: Optional[int] = None
    score_percentage: Optional[int] = None
    correct_answers: int = 0
    total_questions: int = 0
    passed: Optional[bool] = None
    answers: List['UserAnswer'] = Relationship(back_populates='exam_attempt')


class UserAnswer(SQLModel, table=True):
    """A selected answer for a question in an attempt.

    Multi-select questions store one row per selected answer. A row with
    no `answer_id` records time spent on a question whose selection was
    cleared.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    exam_attempt_id: int = Field(foreign_key='examattempt.id', index=True)
    question_id: int = Field(foreign_key='question.id')
    answer_id: Optional[int] = Field(default=None, foreign_key='answer.id')
    is_correct: Optional[bool] = None
    time_spent_seconds: int = 0
    answered_at: datetime = Field(default_factory=_utcnow)
    exam_attempt: Optional[ExamAttempt] = Relationship(back_populates='answers')
