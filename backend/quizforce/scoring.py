"""Exam scoring engine.

Given the questions of a practice exam, the learner's submitted answers
and the attempt metadata, `compute_results` produces an immutable
`ExamResults` value: overall score and verdict, a per-question list for
review mode, per knowledge area and per difficulty breakdowns, and the
qualitative performance and time-efficiency levels.

The module is pure. It performs no I/O, keeps no module-level state and
never raises for well-typed input: degenerate data (no questions, no
answers, questions without a correct answer, ids that belong to another
question) is logged and scored as incorrect.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Sequence, Tuple

from .schemas import (
    AttemptInfo,
    DifficultyBreakdown,
    DifficultyScore,
    ExamResults,
    KnowledgeAreaScore,
    QuestionResult,
    QuestionWithAnswers,
    SimpleScore,
    SubmittedAnswer,
)

logger = logging.getLogger("quizforce.scoring")

DIFFICULTY_BANDS = ("easy", "medium", "hard")

# (minimum score percentage, level), checked top to bottom
PERFORMANCE_THRESHOLDS = (
    (90, "excellent"),
    (80, "good"),
    (60, "needs_improvement"),
)

# (minimum average minutes per question, level), checked top to bottom
TIME_EFFICIENCY_THRESHOLDS = (
    (1.0, "excellent"),
    (0.75, "good"),
    (0.5, "adequate"),
)


def percentage(correct: int, total: int) -> int:
    """Return `correct / total * 100` rounded half up, or 0 when `total` is 0.

    Integer arithmetic keeps .5 ties rounding up (`round()` would round
    them to even).
    """
    if total <= 0:
        return 0
    return (200 * correct + total) // (2 * total)


def _selections_by_question(submitted: Iterable[SubmittedAnswer]) -> Dict[int, Tuple[Tuple[int, ...], int]]:
    """Merge submitted rows per question into (unique ids in order, seconds)."""
    ids: Dict[int, List[int]] = {}
    seconds: Dict[int, int] = {}
    for row in submitted:
        bucket = ids.setdefault(row.question_id, [])
        for answer_id in row.answer_ids:
            if answer_id not in bucket:
                bucket.append(answer_id)
        seconds[row.question_id] = seconds.get(row.question_id, 0) + max(0, row.time_spent_seconds or 0)
    return {qid: (tuple(bucket), seconds[qid]) for qid, bucket in ids.items()}


def is_question_correct(question: QuestionWithAnswers, selected_ids: Iterable[int]) -> bool:
    """Return True when the selection equals the set of correct answers.

    No partial credit: the selected set must match the correct set
    exactly. Unanswered questions and questions with no correct answer
    defined are always incorrect.
    """
    selected = set(selected_ids)
    correct = set(question.correct_answer_ids)
    if not correct:
        logger.warning("question %s has no correct answer defined", question.id)
        return False
    if len(correct) != question.required_selections:
        logger.warning(
            "question %s: required_selections (%s) does not match correct answer count (%s)",
            question.id, question.required_selections, len(correct),
        )
    if not selected:
        return False
    unknown = selected - {a.id for a in question.answers}
    if unknown:
        logger.warning("question %s: selected ids %s do not belong to the question", question.id, sorted(unknown))
    return selected == correct


def score_questions(questions: Sequence[QuestionWithAnswers], submitted: Iterable[SubmittedAnswer]) -> List[QuestionResult]:
    """Score every question, ordered by its position in the exam."""
    selections = _selections_by_question(submitted)
    ordered = sorted(questions, key=lambda q: q.question_number)
    results = []
    for q in ordered:
        selected, seconds = selections.get(q.id, ((), 0))
        results.append(QuestionResult(
            question_id=q.id,
            question_number=q.question_number,
            selected_answer_ids=selected,
            correct_answer_ids=q.correct_answer_ids,
            is_correct=is_question_correct(q, selected),
            time_spent_seconds=seconds,
            knowledge_area=q.knowledge_area.name,
        ))
    return results


def performance_level(score_percentage: int) -> str:
    for minimum, level in PERFORMANCE_THRESHOLDS:
        if score_percentage >= minimum:
            return level
    return "poor"


def time_efficiency(time_spent_minutes: float, question_count: int) -> str:
    """Classify pacing from the average minutes spent per question.

    >= 1.0 excellent, >= 0.75 good, >= 0.5 adequate, otherwise rushed.
    An exam without questions is reported as adequate.
    """
    if question_count <= 0:
        return "adequate"
    average = (time_spent_minutes or 0) / question_count
    for minimum, level in TIME_EFFICIENCY_THRESHOLDS:
        if average >= minimum:
            return level
    return "rushed"


def knowledge_area_scores(questions: Sequence[QuestionWithAnswers], results: Sequence[QuestionResult]) -> List[KnowledgeAreaScore]:
    """Group results by knowledge area, heaviest weighted area first.

    Only areas referenced by at least one question appear. The declared
    weight is passed through untouched.
    """
    correct_by_question = {r.question_id: r.is_correct for r in results}
    areas = {}
    tallies: Dict[int, List[int]] = {}
    for q in questions:
        area = q.knowledge_area
        areas.setdefault(area.id, area)
        tally = tallies.setdefault(area.id, [0, 0])
        tally[1] += 1
        if correct_by_question.get(q.id):
            tally[0] += 1
    scores = []
    for area_id, (correct, total) in tallies.items():
        area = areas[area_id]
        score = percentage(correct, total)
        scores.append(KnowledgeAreaScore(
            id=area.id,
            name=area.name,
            weight_percentage=area.weight_percentage,
            correct_answers=correct,
            total_questions=total,
            score_percentage=score,
            performance_level=performance_level(score),
        ))
    # sorted() is stable so equal weights keep first-appearance order
    return sorted(scores, key=lambda s: -s.weight_percentage)


def difficulty_breakdown(questions: Sequence[QuestionWithAnswers], results: Sequence[QuestionResult]) -> DifficultyBreakdown:
    correct_by_question = {r.question_id: r.is_correct for r in results}
    tallies = {band: [0, 0] for band in DIFFICULTY_BANDS}
    for q in questions:
        tally = tallies[q.difficulty_level]
        tally[1] += 1
        if correct_by_question.get(q.id):
            tally[0] += 1
    return DifficultyBreakdown(**{
        band: DifficultyScore(correct=c, total=t, percentage=percentage(c, t))
        for band, (c, t) in tallies.items()
    })


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive timestamps; they are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_time_spent_minutes(attempt: AttemptInfo, results: Sequence[QuestionResult]) -> int:
    """Return elapsed minutes for the attempt.

    Prefers the recorded value, then the start/completion timestamps,
    then the per-question seconds.
    """
    if attempt.time_spent_minutes is not None:
        return max(0, attempt.time_spent_minutes)
    if attempt.started_at and attempt.completed_at:
        elapsed = (_as_utc(attempt.completed_at) - _as_utc(attempt.started_at)).total_seconds()
        return max(0, int(elapsed // 60))
    seconds = sum(r.time_spent_seconds for r in results)
    return (seconds + 30) // 60


def compute_results(
    questions: Sequence[QuestionWithAnswers],
    submitted_answers: Iterable[SubmittedAnswer],
    attempt: AttemptInfo,
    passing_threshold_percentage: int,
) -> ExamResults:
    """Score one attempt.

    Same inputs always produce an equal `ExamResults`; nothing is read
    from or written to anywhere but the arguments and the return value.
    """
    question_results = score_questions(questions, submitted_answers)
    correct = sum(1 for r in question_results if r.is_correct)
    total = len(question_results)
    score = percentage(correct, total)
    minutes = resolve_time_spent_minutes(attempt, question_results)
    results = ExamResults(
        attempt_id=attempt.id,
        score_percentage=score,
        correct_answers=correct,
        total_questions=total,
        passed=score >= passing_threshold_percentage,
        passing_threshold_percentage=passing_threshold_percentage,
        time_spent_minutes=minutes,
        question_results=tuple(question_results),
        knowledge_area_scores=tuple(knowledge_area_scores(questions, question_results)),
        difficulty_breakdown=difficulty_breakdown(questions, question_results),
        overall_performance_level=performance_level(score),
        time_efficiency=time_efficiency(minutes, total),
    )
    logger.debug("attempt %s scored %s%% (%s/%s)", attempt.id, score, correct, total)
    return results


def calculate_simple_score(questions: Sequence[QuestionWithAnswers], submitted_answers: Iterable[SubmittedAnswer]) -> SimpleScore:
    """Correct/total/percentage only, for progress displays."""
    results = score_questions(questions, submitted_answers)
    correct = sum(1 for r in results if r.is_correct)
    return SimpleScore(correct=correct, total=len(results), percentage=percentage(correct, len(results)))
