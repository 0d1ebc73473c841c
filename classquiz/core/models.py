"""Domain models for quizzes, questions and submissions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import math
from typing import Any, ClassVar, Union

from classquiz.constants.quiz_constants import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PASSING_SCORE,
    DEFAULT_QUESTION_POINTS,
    QUESTION_DURATION_MINUTES,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    OPEN_ENDED = "open_ended"
    MATCHING = "matching"
    FILL_BLANK = "fill_blank"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class QuizStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    PUBLISHED = "published"
    CLOSED = "closed"


class AnswerVisibility(str, Enum):
    IMMEDIATELY = "immediately"
    AFTER_SUBMISSION = "after_submission"
    NEVER = "never"


class SubmissionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    GRADED = "graded"


@dataclass(slots=True, kw_only=True)
class BaseQuestion:
    """Fields shared by every question variant."""

    question_type: ClassVar[QuestionType]

    id: str
    prompt: str
    points: int = DEFAULT_QUESTION_POINTS
    difficulty: Difficulty = Difficulty.MEDIUM
    explanation: str | None = None
    hint: str | None = None
    order: int = 0


@dataclass(slots=True)
class MultipleChoiceOption:
    id: str
    text: str
    is_correct: bool = False


@dataclass(slots=True, kw_only=True)
class MultipleChoiceQuestion(BaseQuestion):
    """Single- or multi-correct choice question. Response: list of option ids."""

    question_type: ClassVar[QuestionType] = QuestionType.MULTIPLE_CHOICE

    options: list[MultipleChoiceOption] = field(default_factory=list)
    shuffle_options: bool = False

    def correct_option_ids(self) -> set[str]:
        return {option.id for option in self.options if option.is_correct}


@dataclass(slots=True, kw_only=True)
class TrueFalseQuestion(BaseQuestion):
    """Response: a boolean."""

    question_type: ClassVar[QuestionType] = QuestionType.TRUE_FALSE

    correct_answer: bool


@dataclass(slots=True, kw_only=True)
class OpenEndedQuestion(BaseQuestion):
    """Free-text question graded manually by the teacher. Response: text."""

    question_type: ClassVar[QuestionType] = QuestionType.OPEN_ENDED

    sample_answer: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    keywords: list[str] = field(default_factory=list)


@dataclass(slots=True)
class MatchingPair:
    id: str
    left: str
    right: str


@dataclass(slots=True, kw_only=True)
class MatchingQuestion(BaseQuestion):
    """Response: mapping of left id to the chosen right id.

    Both sides of a pair are addressed by the pair id, so the correct mapping
    sends every pair id to itself.
    """

    question_type: ClassVar[QuestionType] = QuestionType.MATCHING

    pairs: list[MatchingPair] = field(default_factory=list)
    left_column_title: str | None = None
    right_column_title: str | None = None


@dataclass(slots=True)
class BlankSlot:
    id: str
    correct_answer: str
    alternatives: list[str] = field(default_factory=list)
    case_sensitive: bool = False


@dataclass(slots=True, kw_only=True)
class FillBlankQuestion(BaseQuestion):
    """Response: mapping of blank id to the typed text.

    ``text_with_blanks`` marks slots as ``{{blank_id}}``.
    """

    question_type: ClassVar[QuestionType] = QuestionType.FILL_BLANK

    text_with_blanks: str = ""
    blanks: list[BlankSlot] = field(default_factory=list)


Question = Union[
    MultipleChoiceQuestion,
    TrueFalseQuestion,
    OpenEndedQuestion,
    MatchingQuestion,
    FillBlankQuestion,
]

QUESTION_CLASSES: dict[QuestionType, type] = {
    QuestionType.MULTIPLE_CHOICE: MultipleChoiceQuestion,
    QuestionType.TRUE_FALSE: TrueFalseQuestion,
    QuestionType.OPEN_ENDED: OpenEndedQuestion,
    QuestionType.MATCHING: MatchingQuestion,
    QuestionType.FILL_BLANK: FillBlankQuestion,
}


@dataclass(slots=True)
class QuizSettings:
    time_limit_minutes: int | None = None
    passing_score: int | None = DEFAULT_PASSING_SCORE
    show_correct_answers: AnswerVisibility = AnswerVisibility.AFTER_SUBMISSION
    max_attempts: int | None = DEFAULT_MAX_ATTEMPTS

    @property
    def time_limit_seconds(self) -> int | None:
        if not self.time_limit_minutes:
            return None
        return self.time_limit_minutes * 60


@dataclass(slots=True)
class Quiz:
    """A teacher-authored assessment."""

    id: str
    title: str
    teacher_id: str
    description: str = ""
    questions: list[Question] = field(default_factory=list)
    settings: QuizSettings = field(default_factory=QuizSettings)
    status: QuizStatus = QuizStatus.DRAFT
    class_ids: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    published_at: datetime | None = None

    @property
    def total_points(self) -> int:
        return sum(question.points for question in self.questions)

    @property
    def estimated_duration_minutes(self) -> int:
        minutes = sum(
            QUESTION_DURATION_MINUTES.get(question.question_type.value, 1)
            for question in self.questions
        )
        return math.ceil(minutes)

    def find_question(self, question_id: str) -> Question | None:
        return next((q for q in self.questions if q.id == question_id), None)


@dataclass(slots=True)
class QuestionAnswer:
    """One graded response inside a submission."""

    question_id: str
    question_type: QuestionType
    response: Any
    is_correct: bool | None = None
    points_earned: int = 0
    answered_at: datetime | None = None
    time_spent: float = 0.0
    feedback: str | None = None


@dataclass(slots=True)
class Submission:
    """One student's attempt at one quiz."""

    id: str
    quiz_id: str
    student_id: str
    total_points: int
    attempt_number: int
    status: SubmissionStatus = SubmissionStatus.IN_PROGRESS
    answers: list[QuestionAnswer] = field(default_factory=list)
    score: int = 0
    percentage: int = 0
    passed: bool | None = None
    started_at: datetime = field(default_factory=utc_now)
    submitted_at: datetime | None = None
    graded_at: datetime | None = None
    duration_seconds: int | None = None

    @property
    def is_in_progress(self) -> bool:
        return self.status is SubmissionStatus.IN_PROGRESS
