"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and the scoring engine. Services are intentionally thin: they perform
validation, execute domain logic and persist aggregates via
repositories. Validation problems raise `ValueError`; missing or
foreign records raise `LookupError`.
"""

import json
import logging
import string
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .schemas import AttemptInfo, ExamResults
from .scoring import calculate_simple_score, compute_results

logger = logging.getLogger("quizforce.exam")

ANSWER_LETTERS = string.ascii_uppercase[:5]
DIFFICULTIES = ("easy", "medium", "hard")
MODES = ("exam", "practice")


def issue_token(user: models.User, expire_hours: Optional[int] = None) -> str:
    """Sign a bearer token for `user`.

    Used by scripts and tests; interactive login lives outside this
    service.
    """
    hours = settings.JWT_EXPIRE_HOURS if expire_hours is None else expire_hours
    expire = datetime.now(timezone.utc) + timedelta(hours=hours)
    payload = {"user_id": user.id, "email": user.email, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CatalogService:
    """Read-only views of practice exams for the pre-exam page."""
    def __init__(self, session: Session):
        self.session = session
        self.catalog_repo = repositories.CatalogRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)

    def pre_exam(self, user_id: int, practice_exam_id: int) -> dict:
        """Return exam metadata, knowledge areas and the user's history."""
        exam = self.catalog_repo.get_practice_exam(practice_exam_id)
        if not exam or not exam.is_active:
            raise LookupError(f"practice exam not found: {practice_exam_id}")
        cert = self.session.get(models.Certification, exam.certification_id)
        completed = self.attempt_repo.completed_for_exam(user_id, exam.id)
        scores = [a.score_percentage for a in completed if a.score_percentage is not None]
        active = self.attempt_repo.active_for_exam(user_id, exam.id)
        return {
            'practice_exam': {
                'id': exam.id,
                'name': exam.name,
                'description': exam.description,
                'question_count': exam.question_count,
                'time_limit_minutes': exam.time_limit_minutes,
                'passing_threshold_percentage': exam.passing_threshold_percentage,
                'certification': {'id': cert.id, 'name': cert.name} if cert else None,
            },
            'user_status': {
                'previous_attempts': len(completed),
                'best_score': max(scores) if scores else None,
                'active_attempt_id': active.id if active else None,
            },
            'knowledge_areas': self.catalog_repo.knowledge_area_question_counts(exam.id),
        }


class ExamService:
    """Run an attempt from start to submission and serve its results."""
    def __init__(self, session: Session):
        self.session = session
        self.catalog_repo = repositories.CatalogRepository(session)
        self.q_repo = repositories.QuestionRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)

    def _attempt(self, user_id: int, attempt_id: int) -> models.ExamAttempt:
        attempt = self.attempt_repo.get_for_user(attempt_id, user_id)
        if not attempt:
            raise LookupError(f"exam attempt not found: {attempt_id}")
        return attempt

    def _exam(self, exam_id: int) -> models.PracticeExam:
        exam = self.catalog_repo.get_practice_exam(exam_id)
        if not exam:
            raise LookupError(f"practice exam not found: {exam_id}")
        return exam

    def start(self, user_id: int, practice_exam_id: int, mode: str = "exam") -> models.ExamAttempt:
        """Start an attempt, or resume the user's in-progress one.

        Only one attempt per user and exam may be in progress.
        """
        if mode not in MODES:
            raise ValueError(f"invalid mode: {mode}")
        exam = self._exam(practice_exam_id)
        if not exam.is_active:
            raise LookupError(f"practice exam not found: {practice_exam_id}")
        existing = self.attempt_repo.active_for_exam(user_id, exam.id)
        if existing:
            logger.info("resuming attempt %s for user %s", existing.id, user_id)
            return existing
        questions = self.q_repo.list_for_exam(exam.id)
        if not questions:
            raise ValueError("practice exam has no questions")
        attempt = models.ExamAttempt(user_id=user_id, practice_exam_id=exam.id, mode=mode,
                                     total_questions=len(questions))
        attempt = self.attempt_repo.create(attempt)
        logger.info("started attempt %s (exam %s, mode %s) for user %s", attempt.id, exam.id, mode, user_id)
        return attempt

    def save_answer(self, user_id: int, attempt_id: int, question_id: int, answer_ids: List[int], time_spent_seconds: int) -> List[models.UserAnswer]:
        """Replace the saved selection for one question of an attempt."""
        if time_spent_seconds is None or time_spent_seconds < 0:
            raise ValueError("time_spent_seconds must be >= 0")
        attempt = self._attempt(user_id, attempt_id)
        if attempt.status != 'in_progress':
            raise ValueError(f"exam attempt is {attempt.status}")
        question = self.q_repo.get(question_id)
        if not question or question.practice_exam_id != attempt.practice_exam_id:
            raise LookupError(f"question not found: {question_id}")
        unique_ids = list(dict.fromkeys(answer_ids))
        valid_ids = {a.id for a in self.q_repo.list_answers(question.id)}
        foreign = [aid for aid in unique_ids if aid not in valid_ids]
        if foreign:
            raise ValueError(f"answer not found for question: {foreign[0]}")
        if unique_ids and len(unique_ids) != question.required_selections:
            raise ValueError(
                f"expected exactly {question.required_selections} answer(s), received {len(unique_ids)}"
            )
        return self.attempt_repo.replace_answers(attempt.id, question.id, unique_ids, time_spent_seconds)

    def _score(self, attempt: models.ExamAttempt, exam: models.PracticeExam) -> ExamResults:
        questions = self.q_repo.with_answers_for_exam(exam.id)
        submitted = self.attempt_repo.submitted_answers(attempt.id)
        info = AttemptInfo(
            id=attempt.id,
            started_at=attempt.started_at,
            completed_at=attempt.completed_at,
            time_spent_minutes=attempt.time_spent_minutes,
            mode=attempt.mode,
        )
        return compute_results(questions, submitted, info, exam.passing_threshold_percentage)

    def submit(self, user_id: int, attempt_id: int, completed_at: Optional[datetime] = None) -> ExamResults:
        """Score an in-progress attempt and write the score back onto it."""
        attempt = self._attempt(user_id, attempt_id)
        if attempt.status != 'in_progress':
            raise ValueError("exam attempt not found or already completed")
        exam = self._exam(attempt.practice_exam_id)
        completed_at = _utc(completed_at or datetime.now(timezone.utc))
        elapsed = (completed_at - _utc(attempt.started_at)).total_seconds()
        attempt.completed_at = completed_at
        attempt.time_spent_minutes = max(0, int(round(elapsed / 60)))
        results = self._score(attempt, exam)
        attempt.status = 'completed'
        attempt.score_percentage = results.score_percentage
        attempt.correct_answers = results.correct_answers
        attempt.total_questions = results.total_questions
        attempt.passed = results.passed
        self.attempt_repo.mark_correctness(attempt.id, {r.question_id: r.is_correct for r in results.question_results})
        self.attempt_repo.save(attempt)
        logger.info(
            "submitted attempt %s: %s%% (%s/%s) passed=%s",
            attempt.id, results.score_percentage, results.correct_answers, results.total_questions, results.passed,
        )
        return results

    def results(self, user_id: int, attempt_id: int) -> ExamResults:
        """Recompute results of a completed attempt for review."""
        attempt = self._attempt(user_id, attempt_id)
        if attempt.status != 'completed':
            raise ValueError("exam attempt has not been submitted")
        return self._score(attempt, self._exam(attempt.practice_exam_id))

    def session_data(self, user_id: int, attempt_id: int, now: Optional[datetime] = None) -> dict:
        """Return what the exam page needs to render or resume an attempt.

        Correctness flags and explanations are only included once the
        attempt is completed (review mode). `current_question_index` is
        the first question without a saved selection, or 0 when every
        question has one.
        """
        attempt = self._attempt(user_id, attempt_id)
        exam = self._exam(attempt.practice_exam_id)
        questions = self.q_repo.with_answers_for_exam(exam.id)
        submitted = self.attempt_repo.submitted_answers(attempt.id)
        review = attempt.status == 'completed'
        answered = {s.question_id for s in submitted if s.answer_ids}
        current = next((i for i, q in enumerate(questions) if q.id not in answered), 0)
        remaining = None
        if attempt.mode == 'exam' and attempt.status == 'in_progress':
            now = _utc(now or datetime.now(timezone.utc))
            elapsed = (now - _utc(attempt.started_at)).total_seconds()
            remaining = max(0, int(exam.time_limit_minutes * 60 - elapsed))
        progress = calculate_simple_score(questions, submitted) if attempt.mode == 'practice' else None
        return {
            'attempt': {
                'id': attempt.id,
                'practice_exam_id': attempt.practice_exam_id,
                'status': attempt.status,
                'mode': attempt.mode,
                'started_at': _utc(attempt.started_at).isoformat(),
            },
            'questions': [self._session_question(q, review) for q in questions],
            'user_answers': [
                {'question_id': s.question_id, 'answer_ids': list(s.answer_ids), 'time_spent_seconds': s.time_spent_seconds}
                for s in submitted
            ],
            'answered_count': len(answered),
            'current_question_index': current,
            'time_remaining_seconds': remaining,
            'progress': progress.model_dump() if progress else None,
        }

    @staticmethod
    def _session_question(q, review: bool) -> dict:
        answers = []
        for a in q.answers:
            item = {'id': a.id, 'answer_letter': a.answer_letter, 'answer_text': a.answer_text}
            if review:
                item.update(is_correct=a.is_correct, explanation=a.explanation)
            answers.append(item)
        data = {
            'id': q.id,
            'question_number': q.question_number,
            'question_text': q.question_text,
            'difficulty_level': q.difficulty_level,
            'required_selections': q.required_selections,
            'knowledge_area': q.knowledge_area.name,
            'answers': answers,
        }
        if review:
            data['explanation'] = q.explanation
        return data

    def restart(self, user_id: int, attempt_id: int) -> models.ExamAttempt:
        """Abandon an in-progress attempt and start a fresh one."""
        attempt = self._attempt(user_id, attempt_id)
        if attempt.status != 'in_progress':
            raise ValueError(f"exam attempt is {attempt.status}")
        attempt.status = 'abandoned'
        attempt.completed_at = datetime.now(timezone.utc)
        self.attempt_repo.save(attempt)
        logger.info("abandoned attempt %s for user %s", attempt.id, user_id)
        return self.start(user_id, attempt.practice_exam_id, attempt.mode)


class ImportService:
    """Import practice exams from JSON files and persist them to the DB."""
    def __init__(self, session: Session):
        self.session = session
        self.catalog_repo = repositories.CatalogRepository(session)
        self.q_repo = repositories.QuestionRepository(session)

    def import_file(self, file_bytes: bytes, filename: str, deduplicate: bool = True, dry_run: bool = False) -> dict:
        """Parse a practice exam definition and create its rows.

        Returns a dictionary with the created exam id, the number of
        created/skipped questions and any validation `errors` per item.
        Invalid questions are reported and skipped; an invalid document
        raises `ValueError`.
        """
        if not filename.lower().endswith('.json'):
            raise ValueError(f"unsupported file type: {filename}")
        try:
            doc = json.loads(file_bytes.decode('utf-8-sig'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"invalid JSON: {e}")
        self._validate_document(doc)
        errors = []
        valid = []
        for idx, q in enumerate(doc['questions']):
            try:
                self._validate_question(q)
            except ValueError as e:
                errors.append({'index': idx, 'error': str(e)})
                continue
            valid.append(q)
        if dry_run:
            return {'practice_exam_id': None, 'created': 0, 'skipped': 0, 'errors': errors, 'valid': len(valid)}

        # All rows are written in one transaction; any failure leaves nothing behind.
        try:
            exam, created, skipped = self._write(doc, valid, deduplicate)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception("import of %s failed; rolled back", filename)
            raise
        self.session.refresh(exam)
        logger.info("imported %s: exam %s with %s questions (%s skipped, %s errors)",
                    filename, exam.id, created, skipped, len(errors))
        return {'practice_exam_id': exam.id, 'created': created, 'skipped': skipped, 'errors': errors}

    def _write(self, doc: dict, valid: List[dict], deduplicate: bool):
        """Add the certification, areas, exam and questions without committing."""
        cert_doc = doc['certification']
        cert = self.catalog_repo.get_or_create_certification(cert_doc['name'], cert_doc.get('description'), commit=False)
        areas = {}
        for a in doc.get('knowledge_areas', []):
            area = self.catalog_repo.get_or_create_knowledge_area(
                cert.id, a['name'], float(a.get('weight_percentage') or 0), a.get('description'), commit=False)
            areas[area.name] = area
        exam_doc = doc['practice_exam']
        exam = self.catalog_repo.create_practice_exam(models.PracticeExam(
            certification_id=cert.id,
            name=exam_doc['name'],
            description=exam_doc.get('description'),
            time_limit_minutes=exam_doc.get('time_limit_minutes', 90),
            passing_threshold_percentage=exam_doc.get('passing_threshold_percentage', 65),
        ), commit=False)
        created = 0
        skipped = 0
        for q in valid:
            # Prevent dupes within the exam when requested.
            if deduplicate and self.q_repo.exists_in_exam(exam.id, q['question_text']):
                skipped += 1
                continue
            area = areas.get(q['knowledge_area'])
            if area is None:
                area = self.catalog_repo.get_or_create_knowledge_area(cert.id, q['knowledge_area'], commit=False)
                areas[area.name] = area
            correct_count = sum(1 for a in q['answers'] if a.get('is_correct'))
            question = models.Question(
                practice_exam_id=exam.id,
                knowledge_area_id=area.id,
                question_text=q['question_text'],
                explanation=q.get('explanation'),
                difficulty_level=q.get('difficulty_level', 'medium'),
                question_number=created + 1,
                required_selections=q.get('required_selections') or correct_count,
            )
            answers = [
                models.Answer(answer_text=a['answer_text'], explanation=a.get('explanation'),
                              is_correct=bool(a.get('is_correct')), answer_letter=ANSWER_LETTERS[i])
                for i, a in enumerate(q['answers'])
            ]
            self.q_repo.create(question, answers, commit=False)
            created += 1
        exam.question_count = created
        self.session.add(exam)
        return exam, created, skipped

    def _validate_document(self, doc):
        """Validate the top-level structure and raise ValueError on error.

        Everything the writer converts or stores is type-checked here so
        no write starts on a document that cannot be imported.
        """
        if not isinstance(doc, dict):
            raise ValueError('document must be an object')
        cert = doc.get('certification')
        if not isinstance(cert, dict) or not _is_text(cert.get('name')):
            raise ValueError('certification.name missing')
        if not _is_optional_text(cert.get('description')):
            raise ValueError('certification.description must be a string')
        exam = doc.get('practice_exam')
        if not isinstance(exam, dict) or not _is_text(exam.get('name')):
            raise ValueError('practice_exam.name missing')
        if not _is_optional_text(exam.get('description')):
            raise ValueError('practice_exam.description must be a string')
        threshold = exam.get('passing_threshold_percentage', 65)
        if not _is_int(threshold) or not 0 <= threshold <= 100:
            raise ValueError('passing_threshold_percentage must be an integer between 0 and 100')
        time_limit = exam.get('time_limit_minutes', 90)
        if not _is_int(time_limit) or time_limit <= 0:
            raise ValueError('time_limit_minutes must be a positive integer')
        if not isinstance(doc.get('knowledge_areas', []), list):
            raise ValueError('knowledge_areas must be a list')
        for a in doc.get('knowledge_areas', []):
            if not isinstance(a, dict) or not _is_text(a.get('name')):
                raise ValueError('each knowledge area needs a name')
            weight = a.get('weight_percentage', 0)
            if weight is not None and (not _is_number(weight) or not 0 <= weight <= 100):
                raise ValueError(f"weight_percentage of {a['name']} must be a number between 0 and 100")
            if not _is_optional_text(a.get('description')):
                raise ValueError(f"description of {a['name']} must be a string")
        if not isinstance(doc.get('questions'), list):
            raise ValueError('questions must be a list')

    def _validate_question(self, q):
        """Validate a question dictionary and raise ValueError on error."""
        if not isinstance(q, dict):
            raise ValueError('question item must be an object')
        if not _is_text(q.get('question_text')):
            raise ValueError('missing or empty question_text')
        if not _is_text(q.get('knowledge_area')):
            raise ValueError('knowledge_area must be a non-empty string')
        if not _is_optional_text(q.get('explanation')):
            raise ValueError('explanation must be a string')
        if q.get('difficulty_level', 'medium') not in DIFFICULTIES:
            raise ValueError(f"difficulty_level must be one of {', '.join(DIFFICULTIES)}")
        answers = q.get('answers')
        if not answers or not isinstance(answers, list):
            raise ValueError('answers missing or empty')
        if len(answers) > len(ANSWER_LETTERS):
            raise ValueError(f'at most {len(ANSWER_LETTERS)} answers per question')
        for a in answers:
            if not isinstance(a, dict):
                raise ValueError('each answer must be an object')
            if not _is_text(a.get('answer_text')):
                raise ValueError('answer missing answer_text')
            if not _is_optional_text(a.get('explanation')):
                raise ValueError('answer explanation must be a string')
        correct_count = sum(1 for a in answers if a.get('is_correct'))
        if correct_count == 0:
            raise ValueError('no answer marked correct')
        required = q.get('required_selections')
        if required is not None and (not _is_int(required) or required != correct_count):
            raise ValueError(f'required_selections ({required}) does not match correct answer count ({correct_count})')


def _is_text(value) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _is_optional_text(value) -> bool:
    return value is None or isinstance(value, str)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
