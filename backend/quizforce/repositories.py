"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
catalog content, questions, attempts). Repositories return SQLModel
objects and perform commits/refreshes where appropriate.

`QuestionRepository.with_answers_for_exam` and
`AttemptRepository.submitted_answers` are the persistence boundary of
the scoring engine: they turn rows into the frozen value objects from
`quizforce.schemas` so the engine never sees a database object.
"""

from collections import OrderedDict
from typing import Dict, List, Optional
from sqlmodel import Session, select
from sqlalchemy import func
from . import models
from .schemas import CandidateAnswer, KnowledgeAreaRef, QuestionWithAnswers, SubmittedAnswer


def _persist(session: Session, obj, commit: bool = True):
    """Add `obj` and commit it, or only flush it when `commit` is False.

    Flushing assigns primary keys while leaving the transaction open for
    callers that write several aggregates atomically.
    """
    session.add(obj)
    if commit:
        session.commit()
        session.refresh(obj)
    else:
        session.flush()
    return obj


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)


class CatalogRepository:
    """Certifications, knowledge areas and practice exams."""
    def __init__(self, session: Session):
        self.session = session

    def get_or_create_certification(self, name: str, description: Optional[str] = None,
                                    commit: bool = True) -> models.Certification:
        stmt = select(models.Certification).where(models.Certification.name == name)
        cert = self.session.exec(stmt).first()
        if cert:
            return cert
        return _persist(self.session, models.Certification(name=name, description=description), commit)

    def get_or_create_knowledge_area(self, certification_id: int, name: str, weight_percentage: float = 0,
                                     description: Optional[str] = None, commit: bool = True) -> models.KnowledgeArea:
        """Return the named area of a certification, creating it if missing.

        An existing area keeps its stored weight.
        """
        stmt = select(models.KnowledgeArea).where(
            models.KnowledgeArea.certification_id == certification_id,
            models.KnowledgeArea.name == name
        )
        area = self.session.exec(stmt).first()
        if area:
            return area
        area = models.KnowledgeArea(certification_id=certification_id, name=name,
                                    weight_percentage=weight_percentage, description=description)
        return _persist(self.session, area, commit)

    def create_practice_exam(self, exam: models.PracticeExam, commit: bool = True) -> models.PracticeExam:
        _persist(self.session, exam, commit=False)
        cert = self.session.get(models.Certification, exam.certification_id)
        if cert:
            cert.exam_count = len(self.list_exams_for_certification(cert.id))
            self.session.add(cert)
        if commit:
            self.session.commit()
            self.session.refresh(exam)
        return exam

    def get_practice_exam(self, exam_id: int) -> Optional[models.PracticeExam]:
        return self.session.get(models.PracticeExam, exam_id)

    def list_exams_for_certification(self, certification_id: int) -> List[models.PracticeExam]:
        stmt = select(models.PracticeExam).where(models.PracticeExam.certification_id == certification_id)
        return self.session.exec(stmt).all()

    def knowledge_area_question_counts(self, exam_id: int) -> List[dict]:
        """Return the knowledge areas used by an exam with their question counts."""
        stmt = (
            select(models.KnowledgeArea, func.count(models.Question.id))
            .join(models.Question, models.Question.knowledge_area_id == models.KnowledgeArea.id)
            .where(models.Question.practice_exam_id == exam_id)
            .group_by(models.KnowledgeArea.id)
            .order_by(models.KnowledgeArea.weight_percentage.desc(), models.KnowledgeArea.id)
        )
        return [
            {'id': area.id, 'name': area.name, 'weight_percentage': area.weight_percentage, 'question_count': count}
            for area, count in self.session.exec(stmt).all()
        ]


class QuestionRepository:
    """CRUD operations for `Question` and related `Answer` records."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, question: models.Question, answers: List[models.Answer], commit: bool = True) -> models.Question:
        """Create a question and attach provided answers.

        The question is flushed first to obtain an id, which is then
        assigned to the answers. With `commit=False` nothing is committed.
        """
        _persist(self.session, question, commit=False)
        for a in answers:
            a.question_id = question.id
            self.session.add(a)
        if commit:
            self.session.commit()
            self.session.refresh(question)
        else:
            self.session.flush()
        return question

    def get(self, question_id: int) -> Optional[models.Question]:
        """Fetch a question by id."""
        return self.session.get(models.Question, question_id)

    def list_for_exam(self, exam_id: int) -> List[models.Question]:
        """Return the questions of an exam in exam order."""
        stmt = (
            select(models.Question)
            .where(models.Question.practice_exam_id == exam_id)
            .order_by(models.Question.question_number, models.Question.id)
        )
        return self.session.exec(stmt).all()

    def list_answers(self, question_id: int) -> List[models.Answer]:
        """List all answer rows for the provided `question_id`."""
        stmt = select(models.Answer).where(models.Answer.question_id == question_id).order_by(models.Answer.answer_letter)
        return self.session.exec(stmt).all()

    def exists_in_exam(self, exam_id: int, question_text: str) -> bool:
        """Return True if the exam already holds a question with this text."""
        stmt = select(models.Question.id).where(
            models.Question.practice_exam_id == exam_id,
            models.Question.question_text == question_text
        )
        return self.session.exec(stmt).first() is not None

    def with_answers_for_exam(self, exam_id: int) -> List[QuestionWithAnswers]:
        """Build the scoring engine's question view for an exam."""
        questions = self.list_for_exam(exam_id)
        if not questions:
            return []
        qids = [q.id for q in questions]
        answers: Dict[int, List[models.Answer]] = {qid: [] for qid in qids}
        stmt = select(models.Answer).where(models.Answer.question_id.in_(qids)).order_by(models.Answer.answer_letter)
        for a in self.session.exec(stmt).all():
            answers[a.question_id].append(a)
        area_ids = {q.knowledge_area_id for q in questions}
        areas = {
            a.id: KnowledgeAreaRef(id=a.id, name=a.name, weight_percentage=a.weight_percentage, description=a.description)
            for a in self.session.exec(select(models.KnowledgeArea).where(models.KnowledgeArea.id.in_(area_ids))).all()
        }
        out = []
        for q in questions:
            # a dangling area id still scores; it just reports under a placeholder name
            area = areas.get(q.knowledge_area_id) or KnowledgeAreaRef(id=q.knowledge_area_id, name='Unknown')
            out.append(QuestionWithAnswers(
                id=q.id,
                question_text=q.question_text,
                difficulty_level=q.difficulty_level,
                question_number=q.question_number,
                required_selections=q.required_selections,
                explanation=q.explanation,
                knowledge_area=area,
                answers=tuple(
                    CandidateAnswer(id=a.id, question_id=a.question_id, answer_text=a.answer_text,
                                    is_correct=a.is_correct, answer_letter=a.answer_letter,
                                    explanation=a.explanation)
                    for a in answers[q.id]
                ),
            ))
        return out


class AttemptRepository:
    """Persist exam attempts and the answers saved during them."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, attempt: models.ExamAttempt) -> models.ExamAttempt:
        self.session.add(attempt)
        self.session.commit()
        self.session.refresh(attempt)
        return attempt

    def save(self, attempt: models.ExamAttempt) -> models.ExamAttempt:
        self.session.add(attempt)
        self.session.commit()
        self.session.refresh(attempt)
        return attempt

    def get_for_user(self, attempt_id: int, user_id: int) -> Optional[models.ExamAttempt]:
        """Fetch an attempt only if it belongs to `user_id`."""
        stmt = select(models.ExamAttempt).where(
            models.ExamAttempt.id == attempt_id,
            models.ExamAttempt.user_id == user_id
        )
        return self.session.exec(stmt).first()

    def active_for_exam(self, user_id: int, exam_id: int) -> Optional[models.ExamAttempt]:
        """Return the user's in-progress attempt on an exam, if any."""
        stmt = select(models.ExamAttempt).where(
            models.ExamAttempt.user_id == user_id,
            models.ExamAttempt.practice_exam_id == exam_id,
            models.ExamAttempt.status == 'in_progress'
        ).order_by(models.ExamAttempt.started_at.desc())
        return self.session.exec(stmt).first()

    def completed_for_exam(self, user_id: int, exam_id: int) -> List[models.ExamAttempt]:
        stmt = select(models.ExamAttempt).where(
            models.ExamAttempt.user_id == user_id,
            models.ExamAttempt.practice_exam_id == exam_id,
            models.ExamAttempt.status == 'completed'
        )
        return self.session.exec(stmt).all()

    def replace_answers(self, attempt_id: int, question_id: int, answer_ids: List[int], time_spent_seconds: int) -> List[models.UserAnswer]:
        """Replace the stored selection of one question.

        Time is attached to the first row so summing rows per question
        yields the time spent once.
        """
        stmt = select(models.UserAnswer).where(
            models.UserAnswer.exam_attempt_id == attempt_id,
            models.UserAnswer.question_id == question_id
        )
        for row in self.session.exec(stmt).all():
            self.session.delete(row)
        rows = []
        for idx, answer_id in enumerate(answer_ids or [None]):
            rows.append(models.UserAnswer(
                exam_attempt_id=attempt_id,
                question_id=question_id,
                answer_id=answer_id,
                time_spent_seconds=time_spent_seconds if idx == 0 else 0,
            ))
        self.session.add_all(rows)
        self.session.commit()
        for row in rows:
            self.session.refresh(row)
        return rows

    def list_answers(self, attempt_id: int) -> List[models.UserAnswer]:
        stmt = select(models.UserAnswer).where(models.UserAnswer.exam_attempt_id == attempt_id).order_by(models.UserAnswer.id)
        return self.session.exec(stmt).all()

    def submitted_answers(self, attempt_id: int) -> List[SubmittedAnswer]:
        """Group stored rows into one `SubmittedAnswer` per question."""
        grouped: "OrderedDict[int, dict]" = OrderedDict()
        for row in self.list_answers(attempt_id):
            entry = grouped.setdefault(row.question_id, {'ids': [], 'seconds': 0})
            if row.answer_id is not None:
                entry['ids'].append(row.answer_id)
            entry['seconds'] += row.time_spent_seconds or 0
        return [
            SubmittedAnswer(exam_attempt_id=attempt_id, question_id=qid,
                            answer_ids=tuple(e['ids']), time_spent_seconds=e['seconds'])
            for qid, e in grouped.items()
        ]

    def mark_correctness(self, attempt_id: int, correct_by_question: Dict[int, bool]):
        """Stamp `is_correct` on every stored row of the attempt (no commit)."""
        for row in self.list_answers(attempt_id):
            row.is_correct = bool(correct_by_question.get(row.question_id, False))
            self.session.add(row)
