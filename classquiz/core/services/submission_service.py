"""Submission records: start/resume, finalization and manual grading."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
import logging
from typing import Any

from classquiz.core.errors import DocumentNotFoundError, QuizNotFoundError, SessionStateError
from classquiz.core.models import (
    AnswerVisibility,
    QuestionAnswer,
    Quiz,
    Submission,
    SubmissionStatus,
    utc_now,
)
from classquiz.core.scoring import ScoreSummary, compute_percentage, is_passing, score_answers
from classquiz.core.services.document_store import DocumentStore
from classquiz.core.services.lifecycle import LifecycleController

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ManualGrade:
    """Teacher-assigned points for one answer."""

    question_id: str
    points_earned: int
    feedback: str | None = None
    is_correct: bool | None = None


def build_question_answers(
    quiz: Quiz,
    answers: Mapping[str, Any],
    *,
    total_points: int,
    answered_at: Mapping[str, datetime] | None = None,
    time_spent: Mapping[str, float] | None = None,
) -> tuple[list[QuestionAnswer], ScoreSummary]:
    """Turn an answer map into scored QuestionAnswer records in quiz order.

    Questions the scorer could not grade are left out, exactly like
    unanswered ones.
    """
    answered_at = answered_at or {}
    time_spent = time_spent or {}
    summary = score_answers(quiz, answers, total_points)
    records: list[QuestionAnswer] = []
    for question in sorted(quiz.questions, key=lambda q: q.order):
        result = summary.question_scores.get(question.id)
        if result is None:
            continue
        records.append(
            QuestionAnswer(
                question_id=question.id,
                question_type=question.question_type,
                response=answers[question.id],
                is_correct=result.is_correct,
                points_earned=result.points_earned,
                answered_at=answered_at.get(question.id),
                time_spent=round(time_spent.get(question.id, 0.0), 1),
            )
        )
    return records, summary


def answers_visible(quiz: Quiz, submission: Submission | None) -> bool:
    """Whether correct answers and explanations may be shown to the student."""
    policy = quiz.settings.show_correct_answers
    if policy is AnswerVisibility.IMMEDIATELY:
        return True
    if policy is AnswerVisibility.NEVER or submission is None:
        return False
    return submission.status in (SubmissionStatus.SUBMITTED, SubmissionStatus.GRADED)


class SubmissionService:
    """Owns the persistence side of a student's attempt."""

    def __init__(self, store: DocumentStore, lifecycle: LifecycleController) -> None:
        self._store = store
        self._lifecycle = lifecycle

    async def start_or_resume(self, quiz: Quiz, student_id: str) -> tuple[Submission, bool]:
        """Return the student's in-progress attempt, creating one if none exists.

        The boolean is True when an existing attempt was resumed.
        """
        prior = await self._store.list_submissions(quiz.id, student_id)
        in_progress = [s for s in prior if s.is_in_progress]
        if in_progress:
            if len(in_progress) > 1:
                logger.warning(
                    "Student %s has %d in-progress attempts on quiz %s; resuming the oldest",
                    student_id,
                    len(in_progress),
                    quiz.id,
                )
            return in_progress[0], True
        submission = await self._lifecycle.create_attempt(quiz, student_id)
        return submission, False

    async def finalize(
        self,
        quiz: Quiz,
        submission: Submission,
        answers: Mapping[str, Any],
        *,
        answered_at: Mapping[str, datetime] | None = None,
        time_spent: Mapping[str, float] | None = None,
    ) -> Submission:
        """Score ``answers`` and persist the submission as submitted.

        Makes exactly one store call. Returns the terminal submission.
        """
        if not submission.is_in_progress:
            raise SessionStateError(f"Submission {submission.id} is already {submission.status.value}.")
        records, summary = build_question_answers(
            quiz,
            answers,
            total_points=submission.total_points,
            answered_at=answered_at,
            time_spent=time_spent,
        )
        submitted_at = utc_now()
        await self._store.finalize_submission(
            submission.id,
            records,
            summary=summary,
            submitted_at=submitted_at,
        )
        logger.info(
            "Submission %s finalized: %d/%d (%d%%)",
            submission.id,
            summary.score,
            summary.total_points,
            summary.percentage,
        )
        return replace(
            submission,
            answers=records,
            score=summary.score,
            percentage=summary.percentage,
            passed=summary.passed,
            status=SubmissionStatus.SUBMITTED,
            submitted_at=submitted_at,
            duration_seconds=max(0, int((submitted_at - submission.started_at).total_seconds())),
        )

    async def get_submission(self, submission_id: str) -> Submission:
        submission = await self._store.get_submission(submission_id)
        if submission is None:
            raise DocumentNotFoundError(f"Submission {submission_id} not found.")
        return submission

    async def apply_manual_grades(
        self, submission_id: str, grades: Iterable[ManualGrade]
    ) -> Submission:
        """Apply teacher grades, recompute the totals and mark the submission graded."""
        submission = await self.get_submission(submission_id)
        if submission.is_in_progress:
            raise SessionStateError("An in-progress submission cannot be graded.")
        quiz = await self._store.get_quiz(submission.quiz_id)
        if quiz is None:
            raise QuizNotFoundError(submission.quiz_id)

        by_question = {answer.question_id: answer for answer in submission.answers}
        for grade in grades:
            question = quiz.find_question(grade.question_id)
            answer = by_question.get(grade.question_id)
            if question is None or answer is None:
                raise ValueError(f"No answer for question {grade.question_id} in this submission.")
            if not 0 <= grade.points_earned <= question.points:
                raise ValueError(
                    f"Points for question {grade.question_id} must be between 0 and {question.points}."
                )
            answer.points_earned = grade.points_earned
            answer.is_correct = (
                grade.is_correct
                if grade.is_correct is not None
                else grade.points_earned == question.points
            )
            answer.feedback = grade.feedback

        submission.score = sum(answer.points_earned for answer in submission.answers)
        submission.percentage = compute_percentage(submission.score, submission.total_points)
        submission.passed = is_passing(submission.percentage, quiz.settings.passing_score)
        submission.status = SubmissionStatus.GRADED
        submission.graded_at = utc_now()
        await self._store.save_graded_submission(submission)
        logger.info("Submission %s graded: %d%%", submission.id, submission.percentage)
        return submission
