"""Document persistence contract for quizzes and submissions.

The real backend is an external document database. ``InMemoryDocumentStore``
implements the same contract for the bundled server and the tests; it hands
out copies so callers never mutate stored records by accident.
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Protocol
from uuid import uuid4

from classquiz.core.errors import DocumentNotFoundError, SessionStateError
from classquiz.core.models import (
    QuestionAnswer,
    Quiz,
    QuizStatus,
    Submission,
    SubmissionStatus,
    utc_now,
)
from classquiz.core.scoring import ScoreSummary


class DocumentStore(Protocol):
    """CRUD operations the quiz core needs from the document database.

    Missing quizzes come back as ``None``; other missing records raise
    DocumentNotFoundError. Transient failures raise StoreUnavailableError.
    """

    async def get_quiz(self, quiz_id: str) -> Quiz | None: ...

    async def save_quiz(self, quiz: Quiz) -> None: ...

    async def list_quizzes(self, teacher_id: str | None = None) -> list[Quiz]: ...

    async def update_quiz_status(self, quiz_id: str, status: QuizStatus) -> None: ...

    async def create_submission(
        self,
        quiz_id: str,
        student_id: str,
        *,
        attempt_number: int,
        total_points: int,
    ) -> Submission: ...

    async def list_submissions(self, quiz_id: str, student_id: str) -> list[Submission]: ...

    async def get_submission(self, submission_id: str) -> Submission | None: ...

    async def finalize_submission(
        self,
        submission_id: str,
        answers: list[QuestionAnswer],
        *,
        summary: ScoreSummary,
        submitted_at: datetime,
    ) -> None: ...

    async def save_graded_submission(self, submission: Submission) -> None: ...


class InMemoryDocumentStore:
    """Process-local document store."""

    def __init__(self) -> None:
        self._quizzes: dict[str, Quiz] = {}
        self._submissions: dict[str, Submission] = {}

    async def get_quiz(self, quiz_id: str) -> Quiz | None:
        quiz = self._quizzes.get(quiz_id)
        return copy.deepcopy(quiz) if quiz is not None else None

    async def save_quiz(self, quiz: Quiz) -> None:
        self._quizzes[quiz.id] = copy.deepcopy(quiz)

    async def list_quizzes(self, teacher_id: str | None = None) -> list[Quiz]:
        quizzes = [
            copy.deepcopy(quiz)
            for quiz in self._quizzes.values()
            if teacher_id is None or quiz.teacher_id == teacher_id
        ]
        return sorted(quizzes, key=lambda q: q.created_at, reverse=True)

    async def update_quiz_status(self, quiz_id: str, status: QuizStatus) -> None:
        quiz = self._quizzes.get(quiz_id)
        if quiz is None:
            raise DocumentNotFoundError(f"Quiz {quiz_id} not found.")
        now = utc_now()
        quiz.status = status
        quiz.updated_at = now
        if status is QuizStatus.PUBLISHED and quiz.published_at is None:
            quiz.published_at = now

    async def create_submission(
        self,
        quiz_id: str,
        student_id: str,
        *,
        attempt_number: int,
        total_points: int,
    ) -> Submission:
        submission = Submission(
            id=uuid4().hex,
            quiz_id=quiz_id,
            student_id=student_id,
            total_points=total_points,
            attempt_number=attempt_number,
        )
        self._submissions[submission.id] = submission
        return copy.deepcopy(submission)

    async def list_submissions(self, quiz_id: str, student_id: str) -> list[Submission]:
        matches = [
            copy.deepcopy(submission)
            for submission in self._submissions.values()
            if submission.quiz_id == quiz_id and submission.student_id == student_id
        ]
        return sorted(matches, key=lambda s: (s.started_at, s.attempt_number))

    async def get_submission(self, submission_id: str) -> Submission | None:
        submission = self._submissions.get(submission_id)
        return copy.deepcopy(submission) if submission is not None else None

    async def finalize_submission(
        self,
        submission_id: str,
        answers: list[QuestionAnswer],
        *,
        summary: ScoreSummary,
        submitted_at: datetime,
    ) -> None:
        submission = self._submissions.get(submission_id)
        if submission is None:
            raise DocumentNotFoundError(f"Submission {submission_id} not found.")
        if submission.status is not SubmissionStatus.IN_PROGRESS:
            raise SessionStateError(f"Submission {submission_id} was already submitted.")
        submission.answers = copy.deepcopy(answers)
        submission.score = summary.score
        submission.percentage = summary.percentage
        submission.passed = summary.passed
        submission.status = SubmissionStatus.SUBMITTED
        submission.submitted_at = submitted_at
        submission.duration_seconds = max(
            0, int((submitted_at - submission.started_at).total_seconds())
        )

    async def save_graded_submission(self, submission: Submission) -> None:
        if submission.id not in self._submissions:
            raise DocumentNotFoundError(f"Submission {submission.id} not found.")
        self._submissions[submission.id] = copy.deepcopy(submission)
