"""Pure scoring functions for quiz answers.

Every auto-graded type is all-or-nothing: a correct answer earns the full
question points, anything else earns zero. Fill-in-the-blank questions are
scored as a whole, so a single wrong blank makes the question incorrect.
Open ended questions stay ungraded (``is_correct`` is None) until a teacher
grades them.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import logging
import math
from typing import Any

from classquiz.core.errors import ScoringKeyError
from classquiz.core.models import (
    BlankSlot,
    FillBlankQuestion,
    MatchingQuestion,
    MultipleChoiceQuestion,
    OpenEndedQuestion,
    Question,
    Quiz,
    TrueFalseQuestion,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QuestionScore:
    is_correct: bool | None
    points_earned: int


@dataclass(slots=True)
class ScoreSummary:
    """Aggregate result for a set of answers."""

    score: int
    total_points: int
    percentage: int
    passed: bool
    question_scores: dict[str, QuestionScore] = field(default_factory=dict)
    anomalies: list[str] = field(default_factory=list)


def score_question(question: Question, response: Any) -> QuestionScore:
    """Score one response. Raises ScoringKeyError for a question with no usable key."""
    if isinstance(question, OpenEndedQuestion):
        return QuestionScore(is_correct=None, points_earned=0)

    if isinstance(question, MultipleChoiceQuestion):
        is_correct = _multiple_choice_correct(question, response)
    elif isinstance(question, TrueFalseQuestion):
        if not isinstance(question.correct_answer, bool):
            raise ScoringKeyError(f"Question {question.id} has no boolean answer key.")
        is_correct = isinstance(response, bool) and response is question.correct_answer
    elif isinstance(question, FillBlankQuestion):
        is_correct = _fill_blank_correct(question, response)
    elif isinstance(question, MatchingQuestion):
        is_correct = _matching_correct(question, response)
    else:
        raise ScoringKeyError(f"Unsupported question object: {type(question).__name__}")

    return QuestionScore(
        is_correct=is_correct,
        points_earned=question.points if is_correct else 0,
    )


def _multiple_choice_correct(question: MultipleChoiceQuestion, response: Any) -> bool:
    correct_ids = question.correct_option_ids()
    if not correct_ids:
        raise ScoringKeyError(f"Question {question.id} has no option marked correct.")
    if isinstance(response, str):
        response = [response]
    if not isinstance(response, (list, tuple, set)):
        return False
    return set(response) == correct_ids


def _fill_blank_correct(question: FillBlankQuestion, response: Any) -> bool:
    if not question.blanks:
        raise ScoringKeyError(f"Question {question.id} has no blanks.")
    if not isinstance(response, Mapping):
        return False
    return all(_blank_correct(blank, response.get(blank.id)) for blank in question.blanks)


def _blank_correct(blank: BlankSlot, given: Any) -> bool:
    if not isinstance(given, str):
        return False
    candidate = given.strip()
    accepted = [blank.correct_answer, *blank.alternatives]
    if blank.case_sensitive:
        return any(candidate == answer.strip() for answer in accepted)
    candidate = candidate.lower()
    return any(candidate == answer.strip().lower() for answer in accepted)


def _matching_correct(question: MatchingQuestion, response: Any) -> bool:
    if not question.pairs:
        raise ScoringKeyError(f"Question {question.id} has no pairs.")
    if not isinstance(response, Mapping):
        return False
    expected = {pair.id: pair.id for pair in question.pairs}
    return dict(response) == expected


def compute_percentage(score: int | float, total_points: int | float) -> int:
    """Round half up like the result screen does; 0 when the quiz has no points."""
    if total_points <= 0:
        return 0
    percentage = math.floor(100 * score / total_points + 0.5)
    return max(0, min(100, percentage))


def is_passing(percentage: int, passing_score: int | None) -> bool:
    if not passing_score:
        return True
    return percentage >= passing_score


def score_answers(
    quiz: Quiz,
    answers: Mapping[str, Any],
    total_points: int | None = None,
) -> ScoreSummary:
    """Score every answered question of ``quiz``.

    ``total_points`` defaults to the live quiz total; submissions pass the
    value copied when the attempt started. Answers for unknown questions are
    ignored and malformed questions count as unanswered; both are reported in
    ``anomalies`` instead of raising.
    """
    if total_points is None:
        total_points = quiz.total_points

    question_scores: dict[str, QuestionScore] = {}
    anomalies: list[str] = []
    for question_id, response in answers.items():
        question = quiz.find_question(question_id)
        if question is None:
            anomalies.append(f"Answer for unknown question {question_id} ignored.")
            continue
        try:
            question_scores[question_id] = score_question(question, response)
        except ScoringKeyError as exc:
            anomalies.append(str(exc))

    for anomaly in anomalies:
        logger.warning("Scoring anomaly in quiz %s: %s", quiz.id, anomaly)

    score = sum(result.points_earned for result in question_scores.values())
    percentage = compute_percentage(score, total_points)
    return ScoreSummary(
        score=score,
        total_points=total_points,
        percentage=percentage,
        passed=is_passing(percentage, quiz.settings.passing_score),
        question_scores=question_scores,
        anomalies=anomalies,
    )
