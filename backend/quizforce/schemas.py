"""Pydantic schemas used by the scoring engine and the API.

Two groups live here. The frozen value objects (`QuestionWithAnswers`,
`SubmittedAnswer`, `AttemptInfo`, `ExamResults` and friends) are the
scoring engine's inputs and outputs; they are built once at the
persistence boundary and never mutated. The remaining models describe
request payloads accepted by the HTTP controllers.
"""

from datetime import datetime
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

Difficulty = Literal["easy", "medium", "hard"]
ExamMode = Literal["exam", "practice"]
PerformanceLevel = Literal["excellent", "good", "needs_improvement", "poor"]
TimeEfficiency = Literal["excellent", "good", "adequate", "rushed"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class KnowledgeAreaRef(_Frozen):
    """Syllabus topic a question is tagged with."""
    id: int
    name: str
    weight_percentage: float = 0
    description: Optional[str] = None


class CandidateAnswer(_Frozen):
    """One selectable answer of a question."""
    id: int
    question_id: int
    answer_text: str
    is_correct: bool = False
    answer_letter: Literal["A", "B", "C", "D", "E"] = "A"
    explanation: Optional[str] = None


class QuestionWithAnswers(_Frozen):
    """A question joined with its candidate answers and knowledge area.

    `required_selections` is 1 for single-choice questions and the number
    of answers to pick for multi-select ones.
    """
    id: int
    question_text: str
    difficulty_level: Difficulty = "medium"
    question_number: int = 0
    required_selections: int = 1
    answers: Tuple[CandidateAnswer, ...] = ()
    knowledge_area: KnowledgeAreaRef
    explanation: Optional[str] = None

    @property
    def correct_answer_ids(self) -> Tuple[int, ...]:
        return tuple(a.id for a in self.answers if a.is_correct)


class SubmittedAnswer(_Frozen):
    """The learner's selection for one question of an attempt."""
    exam_attempt_id: int
    question_id: int
    answer_ids: Tuple[int, ...] = ()
    time_spent_seconds: int = 0


class AttemptInfo(_Frozen):
    """Attempt metadata the engine needs for timing."""
    id: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent_minutes: Optional[int] = None
    mode: ExamMode = "exam"


class QuestionResult(_Frozen):
    question_id: int
    question_number: int
    selected_answer_ids: Tuple[int, ...]
    correct_answer_ids: Tuple[int, ...]
    is_correct: bool
    time_spent_seconds: int
    knowledge_area: str


class KnowledgeAreaScore(_Frozen):
    id: int
    name: str
    weight_percentage: float
    correct_answers: int
    total_questions: int
    score_percentage: int
    performance_level: PerformanceLevel


class DifficultyScore(_Frozen):
    correct: int = 0
    total: int = 0
    percentage: int = 0


class DifficultyBreakdown(_Frozen):
    easy: DifficultyScore = DifficultyScore()
    medium: DifficultyScore = DifficultyScore()
    hard: DifficultyScore = DifficultyScore()


class SimpleScore(_Frozen):
    correct: int
    total: int
    percentage: int


class ExamResults(_Frozen):
    """Complete scored outcome of one attempt."""
    attempt_id: int
    score_percentage: int
    correct_answers: int
    total_questions: int
    passed: bool
    passing_threshold_percentage: int
    time_spent_minutes: int
    question_results: Tuple[QuestionResult, ...]
    knowledge_area_scores: Tuple[KnowledgeAreaScore, ...]
    difficulty_breakdown: DifficultyBreakdown
    overall_performance_level: PerformanceLevel
    time_efficiency: TimeEfficiency


class StartExamIn(BaseModel):
    """Payload for starting (or resuming) an attempt."""
    practice_exam_id: int
    mode: ExamMode = "exam"


class SaveAnswerIn(BaseModel):
    """Payload for saving the selection on one question.

    `answer_ids` wins over the single `answer_id` field when both are sent.
    An empty selection clears the question.
    """
    exam_attempt_id: int
    question_id: int
    answer_id: Optional[int] = None
    answer_ids: List[int] = Field(default_factory=list)
    time_spent_seconds: int = 0

    def selected_ids(self) -> List[int]:
        if self.answer_ids:
            return list(self.answer_ids)
        if self.answer_id is not None:
            return [self.answer_id]
        return []


class AttemptRefIn(BaseModel):
    """Payload naming an existing attempt (submit/restart)."""
    exam_attempt_id: int
